import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from pathlib import PurePath
from typing import Any
from urllib.parse import quote

from fastapi import FastAPI, File, HTTPException, Query, Response, UploadFile, status
from pydantic import BaseModel

from remote_convert.conversion import (
    ConversionError,
    ConversionFormat,
    ConversionService,
    InvalidURLError,
    JobFailedError,
    JobTimeoutError,
    ResultStore,
    UploadSource,
)
from remote_convert.conversion.adapters import LocalResultStore, RequestsTransport
from remote_convert.logconfig import setup_logging
from remote_convert.settings import Settings

logger = logging.getLogger(__name__)

SETTINGS: Settings | None = None
SERVICE: ConversionService | None = None
STORE: ResultStore | None = None

CHUNK = 1024 * 1024

MEDIA_TYPES = {
    ConversionFormat.PDF: "application/pdf",
    ConversionFormat.JPG: "image/jpeg",
    ConversionFormat.PNG: "image/png",
    ConversionFormat.DOCX: "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ConversionFormat.XLSX: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ConversionFormat.PPTX: "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ConversionFormat.TXT: "text/plain",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    global SETTINGS, SERVICE, STORE
    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    SETTINGS = Settings.from_env()
    if not SETTINGS.api_key:
        logger.warning("CONVERT_API_KEY is not set; remote calls will be rejected")
    transport = RequestsTransport(SETTINGS)
    SERVICE = ConversionService(transport, SETTINGS)
    STORE = LocalResultStore(SETTINGS.data_dir)
    logger.info("Conversion service ready", extra={"api_base": SETTINGS.base_url})
    yield
    logger.info("Shutting down")


app = FastAPI(
    title="Remote Convert Service",
    version=os.getenv("CONVERT_SERVICE_VERSION", "0.1.0"),
    description=(
        "RESTful front-end for a job-based remote conversion API: documents to "
        "PDF and back, website capture, PDF merge and OCR."
    ),
    lifespan=lifespan,
)


class CaptureRequest(BaseModel):
    url: str


def _service() -> ConversionService:
    assert SERVICE is not None
    return SERVICE


def _store() -> ResultStore:
    assert STORE is not None
    return STORE


def _max_upload_mb() -> int:
    return SETTINGS.max_upload_mb if SETTINGS is not None else int(os.getenv("MAX_UPLOAD_MB", "100"))


async def _read_upload(file: UploadFile) -> UploadSource:
    max_bytes = _max_upload_mb() * 1024 * 1024
    chunks: list[bytes] = []
    size_bytes = 0
    while True:
        chunk = await file.read(CHUNK)
        if not chunk:
            break
        size_bytes += len(chunk)
        if size_bytes > max_bytes:
            raise HTTPException(
                status_code=413,
                detail={"code": "payload_too_large", "message": f"upload exceeds {_max_upload_mb()} MB"},
            )
        chunks.append(chunk)
    return UploadSource(b"".join(chunks), file.filename or "upload")


def _http_error(e: ConversionError) -> HTTPException:
    if isinstance(e, InvalidURLError):
        code, status_code = "invalid_url", 400
    elif isinstance(e, JobFailedError):
        code, status_code = "job_failed", 422
    elif isinstance(e, JobTimeoutError):
        code, status_code = "timeout", 504
    else:
        code, status_code = "upstream_error", 502
    return HTTPException(status_code=status_code, detail={"code": code, "message": e.message})


async def _result_response(
    data: bytes,
    filename: str,
    fmt: ConversionFormat,
    *,
    operation: str,
    source_format: str,
) -> Response:
    entry = await asyncio.to_thread(
        _store().save,
        data,
        filename,
        operation=operation,
        source_format=source_format,
        result_format=fmt.value,
    )
    fallback = entry.filename.encode("ascii", "ignore").decode("ascii") or "result"
    disposition = f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(entry.filename)}"
    headers = {"Content-Disposition": disposition, "X-History-Id": entry.id}
    return Response(content=data, media_type=MEDIA_TYPES[fmt], headers=headers)


def _stem(name: str) -> str:
    return PurePath(name).stem or "document"


@app.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.post("/convert/to-pdf")
async def convert_to_pdf(file: UploadFile = File(...)) -> Response:
    """Convert an office document or image to PDF."""
    source = await _read_upload(file)
    source_format = PurePath(source.filename).suffix.lstrip(".").lower()
    if not source_format:
        raise HTTPException(
            status_code=400,
            detail={"code": "unknown_format", "message": "filename has no extension"},
        )
    try:
        data = await _service().convert_to_pdf(source.data, source.filename)
    except ConversionError as e:
        raise _http_error(e) from e
    filename = f"{_stem(source.filename)}_{int(time.time())}.pdf"
    return await _result_response(data, filename, ConversionFormat.PDF, operation="to_pdf", source_format=source_format)


@app.post("/convert/from-pdf")
async def convert_from_pdf(
    file: UploadFile = File(...),
    format: ConversionFormat = Query(...),
) -> Response:
    source = await _read_upload(file)
    try:
        data = await _service().convert_from_pdf(source.data, source.filename, format)
    except ConversionError as e:
        raise _http_error(e) from e
    filename = f"{_stem(source.filename)}_converted.{format.value}"
    return await _result_response(data, filename, format, operation="from_pdf", source_format="pdf")


@app.post("/capture")
async def capture_website(req: CaptureRequest) -> Response:
    try:
        data = await _service().capture_website(req.url)
    except ConversionError as e:
        raise _http_error(e) from e
    filename = f"Website_{int(time.time())}.pdf"
    return await _result_response(data, filename, ConversionFormat.PDF, operation="url_to_pdf", source_format="url")


@app.post("/merge")
async def merge_pdfs(files: list[UploadFile] = File(...)) -> Response:
    """Merge PDFs; the order of the ``files`` parts is the page order."""
    if len(files) < 2:
        raise HTTPException(
            status_code=400,
            detail={"code": "too_few_files", "message": "merge needs at least two files"},
        )
    sources = [await _read_upload(f) for f in files]
    try:
        data = await _service().merge_pdfs(sources)
    except ConversionError as e:
        raise _http_error(e) from e
    filename = f"Merged_{int(time.time())}.pdf"
    return await _result_response(data, filename, ConversionFormat.PDF, operation="merge", source_format="pdf")


@app.post("/ocr")
async def ocr_pdf(file: UploadFile = File(...), language: str = Query("eng")) -> Response:
    source = await _read_upload(file)
    try:
        data = await _service().ocr_pdf(source.data, source.filename, language=language)
    except ConversionError as e:
        raise _http_error(e) from e
    filename = f"{_stem(source.filename)}_ocr.pdf"
    return await _result_response(data, filename, ConversionFormat.PDF, operation="ocr", source_format="pdf")


@app.get("/history")
def list_history() -> list[dict[str, Any]]:
    return [e.to_dict() for e in _store().list_entries()]


@app.delete("/history/{entry_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_history_entry(entry_id: str) -> Response:
    if not _store().delete(entry_id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "history entry not found"})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.delete("/history", status_code=status.HTTP_204_NO_CONTENT)
def clear_history() -> Response:
    _store().clear()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    setup_logging(os.getenv("LOG_LEVEL", "INFO"))
    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8080"))
    # Enable reload in dev unless explicitly disabled
    reload = os.getenv("RELOAD", "true").lower() in {"1", "true", "yes", "on"}

    uvicorn.run("remote_convert.webapi:app", host=host, port=port, reload=reload, log_config=None)


if __name__ == "__main__":
    run()
