import asyncio
import json
import logging
import time
from pathlib import PurePath
from typing import Any, Awaitable, Callable, Mapping, Sequence

from ..settings import Settings
from .errors import (
    JobFailedError,
    JobTimeoutError,
    NoResultError,
    RemoteAPIError,
    UploadFailedError,
)
from .interfaces import Transport, UploadSource
from .jobs import (
    TaskGraph,
    capture_website_graph,
    convert_graph,
    import_convert_graph,
    merge_graph,
    ocr_graph,
)
from .models import ConversionFormat, Job, JobStatus, Operation, ResultFile, Task, UploadTarget

logger = logging.getLogger(__name__)


def _decode_data(raw: bytes) -> dict[str, Any]:
    try:
        body = json.loads(raw)
        data = body["data"]
    except (ValueError, KeyError, TypeError) as e:
        raise RemoteAPIError(f"Invalid response: {e}") from e
    if not isinstance(data, dict):
        raise RemoteAPIError("Invalid response: 'data' is not an object")
    return data


def _decode_job(raw: bytes) -> Job:
    data = _decode_data(raw)
    try:
        return Job.from_dict(data)
    except (KeyError, TypeError, AttributeError) as e:
        raise RemoteAPIError(f"Invalid job payload: {e}") from e


class ConversionService:
    """Drives jobs on the remote conversion API from submission to result bytes.

    Every public operation builds a task graph and hands it to ``run``:
    submit, upload pending inputs, poll until a terminal status, download
    the export file. Nothing is retried; any failure ends the attempt and the
    remote job is left as is.
    """

    def __init__(
        self,
        transport: Transport,
        settings: Settings,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._settings = settings
        self._sleep = sleep
        self._clock = clock

    @property
    def settings(self) -> Settings:
        return self._settings

    # Job Driver

    async def submit(self, graph: TaskGraph) -> Job:
        raw = await self._transport.request("/jobs", "POST", graph.to_payload())
        job = _decode_job(raw)
        logger.info("Job created", extra={"job_id": job.id, "status": job.status})
        return job

    async def create_upload_task(self) -> tuple[str, UploadTarget]:
        """Standalone upload task, for inputs that must exist before the job graph."""
        raw = await self._transport.request("/import/upload", "POST", {})
        task = Task.from_dict(_decode_data(raw))
        target = task.upload_target
        if not task.id or target is None:
            raise UploadFailedError("Upload task has no upload form")
        return task.id, target

    async def fetch_upload_target(self, task_id: str) -> UploadTarget:
        raw = await self._transport.request(f"/tasks/{task_id}", "GET")
        target = Task.from_dict(_decode_data(raw)).upload_target
        if target is None:
            raise UploadFailedError(f"Task {task_id} has no upload form")
        return target

    async def upload_pending(self, job: Job, graph: TaskGraph, uploads: Mapping[str, UploadSource]) -> None:
        """Send bytes for every upload step that the job created without data."""
        for step in graph.upload_steps():
            source = uploads.get(step.name)
            if source is None:
                raise UploadFailedError(f"No data supplied for upload task {step.name!r}")
            task = job.task_named(step.name)
            if task is None:
                raise UploadFailedError(f"Job {job.id} has no task named {step.name!r}")
            target = await self.fetch_upload_target(task.id)
            logger.info("Uploading to task", extra={"job_id": job.id, "task_id": task.id})
            await self._transport.upload_multipart(target, source.data, source.filename)
            logger.info("Upload finished", extra={"job_id": job.id, "task_id": task.id})

    async def wait_for_job(self, job_id: str, timeout: float | None = None) -> Job:
        timeout = self._settings.job_timeout if timeout is None else timeout
        interval = self._settings.poll_interval
        max_polls = self._settings.max_polls
        start = self._clock()
        polls = 0

        try:
            while self._clock() - start < timeout:
                if polls >= max_polls:
                    logger.error("Poll limit reached", extra={"job_id": job_id, "polls": polls})
                    raise JobTimeoutError(f"Job {job_id} still running after {polls} polls")
                polls += 1
                job = _decode_job(await self._transport.request(f"/jobs/{job_id}", "GET"))
                elapsed = self._clock() - start
                logger.info(
                    "Poll #%d: status=%s (%.0fs)", polls, job.status, elapsed,
                    extra={"job_id": job_id, "status": job.status},
                )

                if job.status == JobStatus.FINISHED:
                    logger.info("Job completed in %.0fs", elapsed, extra={"job_id": job_id})
                    return job
                if job.status == JobStatus.ERROR:
                    message = job.failure_message()
                    logger.error("Job failed: %s", message, extra={"job_id": job_id})
                    raise JobFailedError(message)
                await self._sleep(interval)
        except asyncio.CancelledError:
            logger.warning("Polling cancelled; remote job keeps running", extra={"job_id": job_id})
            raise

        logger.error("Job timeout after %.0fs", timeout, extra={"job_id": job_id, "polls": polls})
        raise JobTimeoutError(f"Job {job_id} did not finish within {timeout:.0f}s")

    # Result Resolver

    @staticmethod
    def resolve_result_file(job: Job) -> ResultFile:
        export = job.first_task(Operation.EXPORT_URL)
        if export is None:
            raise NoResultError("Job has no export task")
        files = export.files
        if not files or not files[0].url:
            raise NoResultError("No download URL found")
        return files[0]

    async def download_result(self, job: Job) -> bytes:
        file = self.resolve_result_file(job)
        logger.info("Downloading %s", file.filename, extra={"job_id": job.id})
        data = await self._transport.download(str(file.url))
        logger.info("Downloaded result: %d bytes", len(data), extra={"job_id": job.id})
        return data

    async def run(
        self,
        graph: TaskGraph,
        uploads: Mapping[str, UploadSource] | None = None,
        timeout: float | None = None,
    ) -> bytes:
        graph.validate()
        job = await self.submit(graph)
        if graph.upload_steps():
            await self.upload_pending(job, graph, uploads or {})
        finished = await self.wait_for_job(job.id, timeout=timeout)
        return await self.download_result(finished)

    async def _preupload(self, source: UploadSource) -> str:
        task_id, target = await self.create_upload_task()
        await self._transport.upload_multipart(target, source.data, source.filename)
        logger.info("Upload finished", extra={"task_id": task_id})
        return task_id

    # Public operations

    async def convert_to_pdf(self, data: bytes, filename: str, input_format: str | None = None) -> bytes:
        fmt = input_format or PurePath(filename).suffix
        logger.info("Converting to PDF: %s (input format %s)", filename, fmt)
        graph = convert_graph(fmt, ConversionFormat.PDF)
        return await self.run(graph, {"upload": UploadSource(data, filename)})

    async def convert_from_pdf(self, data: bytes, filename: str, output_format: "str | ConversionFormat") -> bytes:
        fmt = ConversionFormat.parse(output_format)
        logger.info("Converting from PDF to %s (%d bytes)", fmt.display_name, len(data))
        graph = convert_graph(ConversionFormat.PDF, fmt)
        return await self.run(graph, {"upload": UploadSource(data, filename)})

    async def capture_website(self, url: str) -> bytes:
        logger.info("Capturing website: %s", url)
        return await self.run(capture_website_graph(url))

    async def merge_pdfs(self, files: Sequence[UploadSource]) -> bytes:
        logger.info("Merging %d PDFs", len(files))
        if not files:
            raise ValueError("merge needs at least one file")
        uploads = [asyncio.ensure_future(self._preupload(f)) for f in files]
        try:
            # gather keeps results in argument order, which is the page order.
            task_ids = await asyncio.gather(*uploads)
        except BaseException:
            for upload in uploads:
                upload.cancel()
            await asyncio.gather(*uploads, return_exceptions=True)
            raise
        return await self.run(merge_graph(list(task_ids)))

    async def ocr_pdf(self, data: bytes, filename: str, language: str = "eng") -> bytes:
        logger.info("OCR processing: %s", filename)
        task_id = await self._preupload(UploadSource(data, filename))
        return await self.run(ocr_graph(task_id, language=language))

    async def convert_uploaded(
        self,
        task_id: str,
        input_format: "str | ConversionFormat",
        output_format: "str | ConversionFormat",
    ) -> bytes:
        return await self.run(import_convert_graph(task_id, input_format, output_format))
