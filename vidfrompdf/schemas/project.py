from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from vidfrompdf.models.project import ProjectState, Stage


# =============================================================================
# API responses
# =============================================================================


class PageResponse(BaseModel):
    img_url: str
    audio_url: str | None = None


class ProjectResponse(BaseModel):
    identifier: str
    pages: list[PageResponse]
    output: str | None = None


class RenderJobResponse(BaseModel):
    id: str
    project_id: str
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    current_stage: str | None = None
    error_message: str | None = None


# =============================================================================
# Persisted project records (project.json)
# =============================================================================


class PageRecord(BaseModel):
    index: int = Field(..., ge=0)
    image: str = Field(..., min_length=1)
    audio: str | None = None
    duration_s: float | None = Field(None, gt=0)


class OutputRecord(BaseModel):
    file: str = Field(..., min_length=1)
    codec_profile: str
    job_id: str
    created_at: datetime


class ProjectRecord(BaseModel):
    """On-disk form of a project; file names are relative to its directory."""

    identifier: str = Field(..., min_length=1)
    source_pdf: str | None = None
    pages: list[PageRecord] = Field(default_factory=list)
    state: ProjectState = ProjectState.NEW
    failed_stage: Optional[Stage] = None
    output: OutputRecord | None = None
    last_error: str | None = None
    created_at: datetime
    updated_at: datetime

    @field_validator("identifier")
    @classmethod
    def validate_identifier(cls, v: str) -> str:
        if "/" in v or "\\" in v or v in (".", ".."):
            raise ValueError(f"identifier is not a plain name (got {v!r})")
        return v

    @model_validator(mode="after")
    def validate_pages(self) -> "ProjectRecord":
        indices = [p.index for p in self.pages]
        if indices != list(range(len(indices))):
            raise ValueError(f"page indices must be contiguous from 0 (got {indices})")
        if self.state == ProjectState.FAILED and self.failed_stage is None:
            raise ValueError("failed projects must record the failed stage")
        return self
