import asyncio

import pytest
from fastapi.testclient import TestClient

from remote_convert import webapi
from remote_convert.conversion import JobFailedError, JobTimeoutError, RemoteAPIError
from remote_convert.conversion.adapters import LocalResultStore
from remote_convert.settings import Settings


class StubService:
    def __init__(self) -> None:
        self.calls: list[tuple] = []
        self.error: Exception | None = None

    async def _answer(self, name, *args, result=b"RESULT"):
        self.calls.append((name, *args))
        if self.error is not None:
            raise self.error
        return result

    async def convert_to_pdf(self, data, filename):
        return await self._answer("convert_to_pdf", data, filename)

    async def convert_from_pdf(self, data, filename, output_format):
        return await self._answer("convert_from_pdf", data, filename, output_format)

    async def capture_website(self, url):
        return await self._answer("capture_website", url)

    async def merge_pdfs(self, files):
        return await self._answer("merge_pdfs", [f.filename for f in files])

    async def ocr_pdf(self, data, filename, language="eng"):
        return await self._answer("ocr_pdf", data, filename, language)


@pytest.fixture
def stub(monkeypatch, tmp_path) -> StubService:
    service = StubService()
    monkeypatch.setattr(webapi, "SERVICE", service)
    monkeypatch.setattr(webapi, "STORE", LocalResultStore(tmp_path))
    monkeypatch.setattr(webapi, "SETTINGS", Settings(max_upload_mb=1, data_dir=tmp_path))
    return service


@pytest.fixture
def client(stub) -> TestClient:
    return TestClient(webapi.app)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_convert_to_pdf_returns_bytes_and_records_history(client, stub):
    resp = client.post("/convert/to-pdf", files={"file": ("report.docx", b"doc", "application/octet-stream")})

    assert resp.status_code == 200
    assert resp.content == b"RESULT"
    assert resp.headers["content-type"] == "application/pdf"
    assert 'filename="report_' in resp.headers["content-disposition"]
    assert stub.calls == [("convert_to_pdf", b"doc", "report.docx")]

    history = client.get("/history").json()
    assert len(history) == 1
    assert history[0]["operation"] == "to_pdf"
    assert history[0]["source_format"] == "docx"
    assert history[0]["id"] == resp.headers["x-history-id"]


def test_convert_to_pdf_needs_extension(client):
    resp = client.post("/convert/to-pdf", files={"file": ("README", b"doc", "text/plain")})
    assert resp.status_code == 400


def test_convert_from_pdf(client, stub):
    resp = client.post(
        "/convert/from-pdf",
        params={"format": "docx"},
        files={"file": ("scan.pdf", b"pdf", "application/pdf")},
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/vnd.openxmlformats")
    assert 'filename="scan_converted.docx"' in resp.headers["content-disposition"]
    assert stub.calls[0][3] == "docx"


def test_convert_from_pdf_rejects_unknown_format(client):
    resp = client.post(
        "/convert/from-pdf",
        params={"format": "heic"},
        files={"file": ("scan.pdf", b"pdf", "application/pdf")},
    )
    assert resp.status_code == 422


def test_capture(client, stub):
    resp = client.post("/capture", json={"url": "https://example.com"})
    assert resp.status_code == 200
    assert stub.calls == [("capture_website", "https://example.com")]


def test_merge_keeps_part_order(client, stub):
    files = [
        ("files", ("b.pdf", b"2", "application/pdf")),
        ("files", ("a.pdf", b"1", "application/pdf")),
        ("files", ("c.pdf", b"3", "application/pdf")),
    ]
    resp = client.post("/merge", files=files)

    assert resp.status_code == 200
    assert stub.calls == [("merge_pdfs", ["b.pdf", "a.pdf", "c.pdf"])]


def test_merge_needs_two_files(client):
    resp = client.post("/merge", files=[("files", ("a.pdf", b"1", "application/pdf"))])
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "too_few_files"


def test_ocr_passes_language(client, stub):
    resp = client.post("/ocr", params={"language": "deu"}, files={"file": ("scan.pdf", b"pdf", "application/pdf")})
    assert resp.status_code == 200
    assert stub.calls == [("ocr_pdf", b"pdf", "scan.pdf", "deu")]


@pytest.mark.parametrize("error, status_code, code", [
    (JobFailedError("Unsupported format"), 422, "job_failed"),
    (JobTimeoutError(), 504, "timeout"),
    (RemoteAPIError("HTTP 500"), 502, "upstream_error"),
])
def test_conversion_errors_map_to_http(client, stub, error, status_code, code):
    stub.error = error
    resp = client.post("/convert/to-pdf", files={"file": ("a.docx", b"doc", "application/octet-stream")})

    assert resp.status_code == status_code
    assert resp.json()["detail"] == {"code": code, "message": error.message}
    assert client.get("/history").json() == []


def test_upload_too_large(client, stub):
    big = b"x" * (1024 * 1024 + 1)
    resp = client.post("/convert/to-pdf", files={"file": ("big.docx", big, "application/octet-stream")})

    assert resp.status_code == 413
    assert stub.calls == []


def test_clear_history(client):
    client.post("/capture", json={"url": "https://example.com"})
    assert len(client.get("/history").json()) == 1

    assert client.delete("/history").status_code == 204
    assert client.get("/history").json() == []


def test_delete_history_entry(client):
    keep = client.post("/capture", json={"url": "https://example.com/a"}).headers["x-history-id"]
    drop = client.post("/capture", json={"url": "https://example.com/b"}).headers["x-history-id"]

    assert client.delete(f"/history/{drop}").status_code == 204
    assert [e["id"] for e in client.get("/history").json()] == [keep]


def test_delete_unknown_history_entry(client):
    resp = client.delete("/history/missing")

    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "not_found"


def test_result_file_is_written_off_the_event_loop(client, monkeypatch, tmp_path):
    offloaded = []
    real_to_thread = asyncio.to_thread

    async def spy(func, *args, **kwargs):
        offloaded.append(getattr(func, "__name__", func))
        return await real_to_thread(func, *args, **kwargs)

    monkeypatch.setattr(webapi.asyncio, "to_thread", spy)

    resp = client.post("/capture", json={"url": "https://example.com"})

    assert resp.status_code == 200
    assert offloaded == ["save"]
    stored = list((tmp_path / "results").iterdir())
    assert [p.read_bytes() for p in stored] == [b"RESULT"]
    assert stored[0].name.startswith(resp.headers["x-history-id"] + "_")
