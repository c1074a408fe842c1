from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class JobStatus:
    WAITING = "waiting"
    PROCESSING = "processing"
    FINISHED = "finished"
    ERROR = "error"

    TERMINAL = frozenset({FINISHED, ERROR})

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        # Unrecognised statuses are treated as still running.
        return status in cls.TERMINAL


class Operation:
    IMPORT_UPLOAD = "import/upload"
    CONVERT = "convert"
    MERGE = "merge"
    EXPORT_URL = "export/url"
    CAPTURE_WEBSITE = "capture-website"
    PDF_OCR = "pdf/ocr"


class ConversionFormat(str, Enum):
    PDF = "pdf"
    JPG = "jpg"
    PNG = "png"
    DOCX = "docx"
    XLSX = "xlsx"
    PPTX = "pptx"
    TXT = "txt"

    @property
    def display_name(self) -> str:
        return self.value.upper()

    @classmethod
    def parse(cls, value: "str | ConversionFormat") -> "ConversionFormat":
        if isinstance(value, ConversionFormat):
            return value
        try:
            return cls(str(value).strip().lstrip(".").lower())
        except ValueError:
            raise ValueError(f"unsupported output format: {value!r}") from None


@dataclass(frozen=True)
class ResultFile:
    filename: str
    url: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResultFile":
        return cls(filename=str(data.get("filename", "")), url=data.get("url"))


@dataclass(frozen=True)
class UploadTarget:
    """Pre-signed form: POST ``url`` with ``parameters`` plus a ``file`` part."""

    url: str
    parameters: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_form(cls, form: dict[str, Any] | None) -> "UploadTarget | None":
        if not form or not form.get("url"):
            return None
        params = form.get("parameters") or {}
        return cls(url=str(form["url"]), parameters={str(k): str(v) for k, v in params.items()})


@dataclass(frozen=True)
class Task:
    id: str
    name: str
    operation: str
    status: str
    result: dict[str, Any] | None = None
    message: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name", "")),
            operation=str(data.get("operation", "")),
            status=str(data.get("status", "")),
            result=data.get("result"),
            message=data.get("message"),
        )

    @property
    def files(self) -> list[ResultFile]:
        raw = (self.result or {}).get("files") or []
        return [ResultFile.from_dict(f) for f in raw if isinstance(f, dict)]

    @property
    def upload_target(self) -> UploadTarget | None:
        return UploadTarget.from_form((self.result or {}).get("form"))


@dataclass(frozen=True)
class Job:
    id: str
    status: str
    tasks: tuple[Task, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        tasks = data.get("tasks") or []
        return cls(
            id=str(data["id"]),
            status=str(data.get("status", "")),
            tasks=tuple(Task.from_dict(t) for t in tasks),
        )

    @property
    def is_terminal(self) -> bool:
        return JobStatus.is_terminal(self.status)

    def task_named(self, name: str) -> Task | None:
        return next((t for t in self.tasks if t.name == name), None)

    def first_task(self, operation: str) -> Task | None:
        return next((t for t in self.tasks if t.operation == operation), None)

    def failure_message(self) -> str:
        failed = next((t for t in self.tasks if t.status == JobStatus.ERROR), None)
        if failed is not None and failed.message:
            return failed.message
        return "Unknown error"
