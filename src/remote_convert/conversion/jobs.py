"""
Job Builder: declarative task graphs for the remote job API.

A graph is an ordered set of named steps; each step names its operation and
the steps it consumes. ``TaskGraph.to_payload()`` produces the body of
``POST /jobs``. Nothing here performs I/O.
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from .models import ConversionFormat, Operation


@dataclass(frozen=True)
class TaskStep:
    name: str
    operation: str
    input: tuple[str, ...] = ()
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def existing_task_id(self) -> str | None:
        """Id of an upload task created ahead of the job, if any."""
        value = self.options.get("task")
        return str(value) if value else None

    def descriptor(self) -> dict[str, Any]:
        out: dict[str, Any] = {"operation": self.operation}
        if self.input:
            out["input"] = list(self.input)
        out.update(self.options)
        return out


class TaskGraph:
    def __init__(self, steps: Iterable[TaskStep] = ()) -> None:
        self._steps: dict[str, TaskStep] = {}
        for step in steps:
            self.add(step)

    def add(self, step: TaskStep) -> "TaskGraph":
        if step.name in self._steps:
            raise ValueError(f"duplicate task name: {step.name!r}")
        self._steps[step.name] = step
        return self

    @property
    def steps(self) -> list[TaskStep]:
        return list(self._steps.values())

    def __getitem__(self, name: str) -> TaskStep:
        return self._steps[name]

    def __contains__(self, name: object) -> bool:
        return name in self._steps

    def __len__(self) -> int:
        return len(self._steps)

    def upload_steps(self) -> list[TaskStep]:
        """Upload steps whose bytes must be sent after the job is created."""
        return [
            s for s in self._steps.values()
            if s.operation == Operation.IMPORT_UPLOAD and s.existing_task_id is None
        ]

    def validate(self) -> None:
        if not self._steps:
            raise ValueError("task graph is empty")
        for step in self._steps.values():
            for ref in step.input:
                if ref not in self._steps:
                    raise ValueError(f"task {step.name!r} references unknown task {ref!r}")
        if not any(s.operation == Operation.EXPORT_URL for s in self._steps.values()):
            raise ValueError(f"task graph has no {Operation.EXPORT_URL!r} task")

    def to_payload(self) -> dict[str, Any]:
        self.validate()
        return {"tasks": {name: step.descriptor() for name, step in self._steps.items()}}


def _format_value(value: "str | ConversionFormat") -> str:
    if isinstance(value, ConversionFormat):
        return value.value
    fmt = str(value).strip().lstrip(".").lower()
    if not fmt:
        raise ValueError("format must not be empty")
    return fmt


def _export(source: str) -> TaskStep:
    return TaskStep("export", Operation.EXPORT_URL, input=(source,))


def convert_graph(input_format: "str | ConversionFormat", output_format: "str | ConversionFormat") -> TaskGraph:
    return TaskGraph([
        TaskStep("upload", Operation.IMPORT_UPLOAD),
        TaskStep(
            "convert",
            Operation.CONVERT,
            input=("upload",),
            options={
                "input_format": _format_value(input_format),
                "output_format": _format_value(output_format),
            },
        ),
        _export("convert"),
    ])


def capture_website_graph(
    url: str,
    output_format: "str | ConversionFormat" = ConversionFormat.PDF,
    wait_until: str = "networkidle0",
) -> TaskGraph:
    return TaskGraph([
        TaskStep(
            "capture",
            Operation.CAPTURE_WEBSITE,
            options={"url": url, "output_format": _format_value(output_format), "wait_until": wait_until},
        ),
        _export("capture"),
    ])


def merge_graph(
    upload_task_ids: Sequence[str],
    output_format: "str | ConversionFormat" = ConversionFormat.PDF,
) -> TaskGraph:
    """Merge pre-uploaded files; input order is the page order of the result."""
    if not upload_task_ids:
        raise ValueError("merge needs at least one input")
    imports = [
        TaskStep(f"import-{i}", Operation.IMPORT_UPLOAD, options={"task": task_id})
        for i, task_id in enumerate(upload_task_ids)
    ]
    merge = TaskStep(
        "merge",
        Operation.MERGE,
        input=tuple(s.name for s in imports),
        options={"output_format": _format_value(output_format)},
    )
    return TaskGraph([*imports, merge, _export("merge")])


def ocr_graph(upload_task_id: str, language: str = "eng") -> TaskGraph:
    return TaskGraph([
        TaskStep("import", Operation.IMPORT_UPLOAD, options={"task": upload_task_id}),
        TaskStep("ocr", Operation.PDF_OCR, input=("import",), options={"language": language}),
        _export("ocr"),
    ])


def import_convert_graph(
    upload_task_id: str,
    input_format: "str | ConversionFormat",
    output_format: "str | ConversionFormat",
) -> TaskGraph:
    return TaskGraph([
        TaskStep("import", Operation.IMPORT_UPLOAD, options={"task": upload_task_id}),
        TaskStep(
            "convert",
            Operation.CONVERT,
            input=("import",),
            options={
                "input_format": _format_value(input_format),
                "output_format": _format_value(output_format),
            },
        ),
        _export("convert"),
    ])
