"""Domain types for projects, pages and render jobs."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from vidfrompdf.render.runner import CancelToken


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProjectState(str, Enum):
    """Lifecycle state of a project."""

    NEW = "new"
    EXTRACTING = "extracting"
    READY = "ready"
    RENDERING = "rendering"
    RENDERED = "rendered"
    FAILED = "failed"


class Stage(str, Enum):
    """Pipeline stage a failed project can be retried from."""

    EXTRACTING = "extracting"
    RENDERING = "rendering"


class RenderJobStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class Page:
    """One slide: a rasterized image and optional narration."""

    index: int
    image_path: Path
    audio_path: Optional[Path] = None
    # Length of the attached audio; None means the page is silent
    duration_s: Optional[float] = None

    def effective_duration(self, silence_duration_s: float) -> float:
        if self.audio_path is not None and self.duration_s:
            return self.duration_s
        return silence_duration_s


@dataclass
class OutputArtifact:
    """A successfully rendered video."""

    path: Path
    codec_profile: str
    job_id: str
    created_at: datetime = field(default_factory=_utcnow)


@dataclass
class RenderJob:
    """One in-flight execution of the assembly pipeline for a project."""

    id: str
    project_id: str
    status: RenderJobStatus = RenderJobStatus.RUNNING
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    current_stage: Optional[str] = None
    cancel_token: CancelToken = field(default_factory=CancelToken, repr=False)
    error_message: Optional[str] = None

    @property
    def is_live(self) -> bool:
        return self.status == RenderJobStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "current_stage": self.current_stage,
            "error_message": self.error_message,
        }


@dataclass
class Project:
    """One pdf-to-video conversion task."""

    identifier: str
    directory: Path
    source_pdf: Optional[Path] = None
    pages: list[Page] = field(default_factory=list)
    state: ProjectState = ProjectState.NEW
    failed_stage: Optional[Stage] = None
    output: Optional[OutputArtifact] = None
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def page(self, index: int) -> Page:
        """Return the page at index; raises IndexError for out-of-range indices."""
        if index < 0 or index >= len(self.pages):
            raise IndexError(index)
        return self.pages[index]
