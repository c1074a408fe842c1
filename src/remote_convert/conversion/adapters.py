import asyncio
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path

import requests

from ..settings import Settings
from .errors import InvalidURLError, RemoteAPIError, UploadFailedError
from .interfaces import HistoryEntry, ResultStore, Transport
from .models import UploadTarget

logger = logging.getLogger(__name__)

_URL_ERRORS = (
    requests.exceptions.MissingSchema,
    requests.exceptions.InvalidSchema,
    requests.exceptions.InvalidURL,
)


def _prepare(request: requests.Request) -> requests.PreparedRequest:
    try:
        return request.prepare()
    except _URL_ERRORS as e:
        raise InvalidURLError(f"Invalid URL: {request.url}") from e


def build_upload_request(target: UploadTarget, data: bytes, filename: str) -> requests.PreparedRequest:
    """Multipart body: every form parameter as a plain field, then one ``file`` part."""
    files = {"file": (filename, data, "application/octet-stream")}
    return _prepare(requests.Request("POST", target.url, data=dict(target.parameters), files=files))


def _error_message(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return f"HTTP {resp.status_code}"


class RequestsTransport(Transport):
    """Blocking ``requests`` calls run in worker threads.

    Holds no per-job state. Without an injected session a fresh one is opened
    for every call.
    """

    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self._settings = settings
        self._session = session
        self._lock = threading.Lock()

    @property
    def settings(self) -> Settings:
        with self._lock:
            return self._settings

    def configure(self, api_key: str) -> None:
        with self._lock:
            self._settings = self._settings.with_api_key(api_key)
        logger.info("API key configured", extra={"api_key": self.settings.api_key_hint})

    def _send(self, prepared: requests.PreparedRequest) -> requests.Response:
        timeout = self.settings.request_timeout
        if self._session is not None:
            return self._session.send(prepared, timeout=timeout)
        with requests.Session() as session:
            return session.send(prepared, timeout=timeout)

    async def request(self, endpoint: str, method: str, body: dict[str, object] | None = None) -> bytes:
        settings = self.settings
        headers = {
            "Authorization": f"Bearer {settings.api_key}",
            "Content-Type": "application/json",
        }
        payload = json.dumps(body).encode("utf-8") if body is not None else None
        prepared = _prepare(requests.Request(method, settings.base_url + endpoint, headers=headers, data=payload))

        logger.debug("%s %s", method, endpoint)
        try:
            resp = await asyncio.to_thread(self._send, prepared)
        except requests.RequestException as e:
            raise RemoteAPIError(f"{method} {endpoint} failed: {e}") from e
        logger.debug("%s %s -> HTTP %s", method, endpoint, resp.status_code)

        if not 200 <= resp.status_code < 300:
            message = _error_message(resp)
            logger.warning(
                "API error",
                extra={"endpoint": endpoint, "status_code": resp.status_code, "body": resp.text[:500]},
            )
            raise RemoteAPIError(message, status_code=resp.status_code)
        return resp.content

    async def upload_multipart(self, target: UploadTarget, data: bytes, filename: str) -> None:
        prepared = build_upload_request(target, data, filename)
        logger.info("Uploading %s (%d bytes)", filename, len(data))
        try:
            resp = await asyncio.to_thread(self._send, prepared)
        except requests.RequestException as e:
            raise UploadFailedError(f"Upload failed: {e}") from e
        if not 200 <= resp.status_code < 300:
            logger.warning("Upload failed: HTTP %s", resp.status_code)
            raise UploadFailedError(f"Upload failed: HTTP {resp.status_code}")

    async def download(self, url: str) -> bytes:
        prepared = _prepare(requests.Request("GET", url))
        try:
            resp = await asyncio.to_thread(self._send, prepared)
        except requests.RequestException as e:
            raise RemoteAPIError(f"Download failed: {e}") from e
        if not 200 <= resp.status_code < 300:
            raise RemoteAPIError(f"HTTP {resp.status_code}", status_code=resp.status_code)
        return resp.content


class LocalResultStore(ResultStore):
    """Converted files under ``<data_dir>/results`` plus a JSON history list."""

    def __init__(self, data_dir: str | Path) -> None:
        self._base = Path(data_dir).resolve()
        self._results = self._base / "results"
        self._history = self._base / "history.json"
        self._lock = threading.Lock()

    def _load(self) -> list[dict[str, object]]:
        if not self._history.exists():
            return []
        with self._history.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _dump(self, items: list[dict[str, object]]) -> None:
        self._base.mkdir(parents=True, exist_ok=True)
        with self._history.open("w", encoding="utf-8") as f:
            json.dump(items, f, ensure_ascii=False, indent=2)

    def save(
        self,
        data: bytes,
        filename: str,
        *,
        operation: str,
        source_format: str,
        result_format: str,
    ) -> HistoryEntry:
        safe_name = Path(filename).name or "result"
        entry_id = str(uuid.uuid4())
        self._results.mkdir(parents=True, exist_ok=True)
        # Display names repeat across runs; the stored file is keyed by entry id.
        path = self._results / f"{entry_id}_{safe_name}"
        with path.open("wb") as f:
            f.write(data)

        entry = HistoryEntry(
            id=entry_id,
            filename=safe_name,
            operation=operation,
            source_format=source_format,
            result_format=result_format,
            size_bytes=len(data),
            created_at=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            path=str(path),
        )
        with self._lock:
            items = self._load()
            items.insert(0, entry.to_dict())
            self._dump(items)
        logger.info("Result saved", extra={"result_file": safe_name, "size_bytes": len(data)})
        return entry

    def list_entries(self) -> list[HistoryEntry]:
        with self._lock:
            items = self._load()
        return [HistoryEntry.from_dict(i) for i in items]

    def clear(self) -> None:
        with self._lock:
            for item in self._load():
                if item.get("path"):
                    Path(str(item["path"])).unlink(missing_ok=True)
            self._dump([])

    def delete(self, entry_id: str) -> bool:
        with self._lock:
            items = self._load()
            match = next((i for i in items if i.get("id") == entry_id), None)
            if match is None:
                return False
            if match.get("path"):
                Path(str(match["path"])).unlink(missing_ok=True)
            self._dump([i for i in items if i is not match])
        logger.info("History entry deleted", extra={"entry_id": entry_id})
        return True
