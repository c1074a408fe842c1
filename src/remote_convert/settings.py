import os
from dataclasses import dataclass, replace
from pathlib import Path

DEFAULT_API_BASE = "https://api.cloudconvert.com/v2"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    """Immutable client configuration, built once and passed to collaborators."""

    api_key: str = ""
    base_url: str = DEFAULT_API_BASE
    request_timeout: float = 30.0
    poll_interval: float = 2.0
    job_timeout: float = 300.0
    max_polls: int = 1000
    data_dir: Path = Path("./data")
    max_upload_mb: int = 100

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            api_key=os.getenv("CONVERT_API_KEY", ""),
            base_url=os.getenv("CONVERT_API_BASE", DEFAULT_API_BASE).rstrip("/"),
            request_timeout=_env_float("CONVERT_REQUEST_TIMEOUT_SEC", 30.0),
            poll_interval=_env_float("CONVERT_POLL_INTERVAL_SEC", 2.0),
            job_timeout=_env_float("CONVERT_JOB_TIMEOUT_SEC", 300.0),
            max_polls=_env_int("CONVERT_MAX_POLLS", 1000),
            data_dir=Path(os.getenv("DATA_DIR", "./data")).resolve(),
            max_upload_mb=_env_int("MAX_UPLOAD_MB", 100),
        )

    def with_api_key(self, api_key: str) -> "Settings":
        return replace(self, api_key=api_key)

    @property
    def api_key_hint(self) -> str:
        # Safe for logs
        return f"{self.api_key[:6]}..." if self.api_key else "<unset>"
