from __future__ import annotations

import abc
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import db


class RegistryImportError(RuntimeError):
    """Base class for failures that abort an import run.

    Any of these leaves the previously published generation live.
    """


@dataclass(frozen=True)
class IngestRunResult:
    success: bool
    record_count: int
    duration_seconds: float
    error: str | None = None
    generation_id: int | None = None
    parse_stats: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "record_count": self.record_count,
            "duration_seconds": round(self.duration_seconds, 3),
            "error": self.error,
            "generation_id": self.generation_id,
            "parse_stats": dict(self.parse_stats),
        }


class SourceIngestBase(abc.ABC):
    """Reusable base class for source ingestion jobs.

    Subclasses should implement:
    - `source_name`: short name used in logs and job state.
    - `run()`: perform the whole import and report the outcome.

    `run()` is expected to report failures through `IngestRunResult` rather
    than raise, so background runners only need to store the result.
    """

    source_name: str

    def __init__(
        self,
        *,
        raw_data_dir: Path | str | None = None,
        session_factory: Any = None,
    ) -> None:
        self.raw_data_dir = Path(raw_data_dir) if raw_data_dir else None
        self.session_factory = session_factory or db.SessionLocal

    @abc.abstractmethod
    def run(self) -> IngestRunResult:  # pragma: no cover
        raise NotImplementedError
