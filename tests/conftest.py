import json

import pytest

from remote_convert.conversion import ConversionService, UploadFailedError
from remote_convert.settings import Settings


def job_payload(job_id: str, status: str, tasks: list[dict] | None = None) -> dict:
    return {"data": {"id": job_id, "status": status, "tasks": tasks or []}}


def task(task_id: str, name: str, operation: str, status: str = "waiting", **extra) -> dict:
    return {"id": task_id, "name": name, "operation": operation, "status": status, **extra}


def export_task(url: str = "https://x/out.pdf", filename: str = "out.pdf") -> dict:
    return task(
        "t-export", "export", "export/url", "finished",
        result={"files": [{"filename": filename, "url": url}]},
    )


def form_payload(task_id: str, url: str, parameters: dict | None = None) -> dict:
    return {"data": {"id": task_id, "result": {"form": {"url": url, "parameters": parameters or {}}}}}


class FakeTransport:
    """In-memory Transport. Queued responses per (method, endpoint); the last one repeats."""

    def __init__(self) -> None:
        self.responses: dict[tuple[str, str], list] = {}
        self.calls: list[tuple[str, str, dict | None]] = []
        self.uploads: list[tuple[object, bytes, str]] = []
        self.downloads: list[str] = []
        self.files: dict[str, bytes] = {}
        self.upload_error: Exception | None = None

    def add(self, method: str, endpoint: str, *payloads) -> None:
        queue = self.responses.setdefault((method, endpoint), [])
        for p in payloads:
            queue.append(p if isinstance(p, (bytes, Exception)) else json.dumps(p).encode())

    def endpoints(self) -> list[tuple[str, str]]:
        return [(m, e) for m, e, _ in self.calls]

    async def request(self, endpoint, method, body=None):
        self.calls.append((method, endpoint, body))
        queue = self.responses[(method, endpoint)]
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def upload_multipart(self, target, data, filename):
        self.uploads.append((target, data, filename))
        if self.upload_error is not None:
            raise self.upload_error

    async def download(self, url):
        self.downloads.append(url)
        return self.files[url]


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="test-key", base_url="https://api.test/v2")


@pytest.fixture
def service(transport, clock, settings) -> ConversionService:
    return ConversionService(transport, settings, sleep=clock.sleep, clock=clock)


@pytest.fixture
def failing_upload(transport) -> FakeTransport:
    transport.upload_error = UploadFailedError("Upload failed: HTTP 403")
    return transport
