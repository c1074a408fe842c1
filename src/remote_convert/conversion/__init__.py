"""
Domain layer for remote document conversion.
Provides the task-graph builder, the transport and result-store interfaces,
and a service that drives jobs on the remote API to completion, so front-ends
(HTTP or others) can use the same core logic.
"""

from .errors import (
    ConversionError,
    InvalidURLError,
    JobFailedError,
    JobTimeoutError,
    NoResultError,
    RemoteAPIError,
    UploadFailedError,
)
from .interfaces import HistoryEntry, ResultStore, Transport, UploadSource
from .jobs import TaskGraph, TaskStep
from .models import ConversionFormat, Job, JobStatus, ResultFile, Task, UploadTarget
from .service import ConversionService
