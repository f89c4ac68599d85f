"""
In-memory owner of all project state.

Callers never receive the store's own Project objects: every read returns a
deep copy, and every mutation goes through a named transition that is
validated by the state machine under the store lock. With persist_projects
enabled each committed transition is written to <project dir>/project.json.
"""

import copy
import logging
import secrets
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from vidfrompdf.config import Settings, get_settings
from vidfrompdf.exceptions import (
    AlreadyRenderingError,
    InvalidStateError,
    PageNotFoundError,
    ProjectNotFoundError,
)
from vidfrompdf.models.project import (
    OutputArtifact,
    Page,
    Project,
    ProjectState,
    RenderJob,
    RenderJobStatus,
    Stage,
)
from vidfrompdf.schemas.project import OutputRecord, PageRecord, ProjectRecord
from vidfrompdf.services.state_machine import can_attach_audio, ensure_transition
from vidfrompdf.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)

RECORD_FILENAME = "project.json"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProjectStore:
    """Thread-safe project registry with validated transitions."""

    def __init__(
        self,
        storage: LocalStorageService,
        settings: Optional[Settings] = None,
    ) -> None:
        self.storage = storage
        self.settings = settings or get_settings()
        self._lock = threading.RLock()
        self._projects: dict[str, Project] = {}
        # project identifier -> live render job
        self._jobs: dict[str, RenderJob] = {}

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, identifier: str) -> Project:
        """Snapshot of a project. Raises ProjectNotFoundError."""
        with self._lock:
            return copy.deepcopy(self._require(identifier))

    def exists(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self._projects

    def list_projects(self) -> list[Project]:
        with self._lock:
            projects = sorted(self._projects.values(), key=lambda p: p.created_at)
            return [copy.deepcopy(p) for p in projects]

    def live_job(self, identifier: str) -> Optional[RenderJob]:
        """The project's running render job, shared with the executor."""
        with self._lock:
            job = self._jobs.get(identifier)
            return job if job is not None and job.is_live else None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self) -> Project:
        """Register a new, empty project with its own directory."""
        with self._lock:
            identifier = secrets.token_urlsafe(16)
            while identifier in self._projects:
                identifier = secrets.token_urlsafe(16)
            directory = self.storage.create_project_dir(identifier)
            project = Project(identifier=identifier, directory=directory)
            self._projects[identifier] = project
            self._persist(project)
            logger.info(f"[STORE] Created project {identifier}")
            return copy.deepcopy(project)

    def begin_extraction(self, identifier: str, source_pdf: Path) -> Project:
        with self._lock:
            project = self._require(identifier)
            self._apply(project, ProjectState.EXTRACTING)
            project.source_pdf = source_pdf
            self._persist(project)
            return copy.deepcopy(project)

    def commit_extraction(self, identifier: str, images: list[Path]) -> Project:
        """Replace the page set as a whole and move to Ready."""
        with self._lock:
            project = self._require(identifier)
            self._apply(project, ProjectState.READY)
            project.pages = [Page(index=i, image_path=path) for i, path in enumerate(images)]
            project.last_error = None
            self._persist(project)
            logger.info(f"[STORE] Project {identifier} ready with {len(images)} pages")
            return copy.deepcopy(project)

    def fail_extraction(self, identifier: str, error: str) -> Project:
        with self._lock:
            project = self._require(identifier)
            self._apply(project, ProjectState.FAILED, Stage.EXTRACTING)
            project.last_error = error
            self._persist(project)
            logger.warning(f"[STORE] Extraction failed for {identifier}: {error}")
            return copy.deepcopy(project)

    def set_page_audio(
        self,
        identifier: str,
        index: int,
        audio_path: Path,
        duration_s: float,
    ) -> tuple[Project, Optional[Path]]:
        """
        Attach or replace the audio of one page.

        Returns:
            The updated snapshot and the previously attached audio, if any

        Raises:
            InvalidStateError: If the project is not Ready or Rendered
            PageNotFoundError: If index is out of range
        """
        with self._lock:
            project = self._require(identifier)
            if not can_attach_audio(project.state):
                raise InvalidStateError(
                    f"Cannot attach audio while project is '{project.state.value}'"
                )
            try:
                page = project.page(index)
            except IndexError:
                raise PageNotFoundError(index, len(project.pages))
            replaced = page.audio_path
            page.audio_path = audio_path
            page.duration_s = duration_s
            project.updated_at = _utcnow()
            self._persist(project)
            return copy.deepcopy(project), replaced

    def begin_render(self, identifier: str) -> RenderJob:
        """
        Move a project to Rendering and register its render job.

        Both happen in one critical section, so of several concurrent callers
        exactly one gets a job.

        Raises:
            AlreadyRenderingError: If a job is live for the project
            InvalidStateError: If the project has no pages or cannot render
        """
        with self._lock:
            project = self._require(identifier)
            if self.live_job(identifier) is not None:
                raise AlreadyRenderingError(identifier)
            if not project.pages:
                raise InvalidStateError("Cannot render a project without pages")
            self._apply(project, ProjectState.RENDERING)
            job = RenderJob(id=uuid.uuid4().hex, project_id=identifier)
            self._jobs[identifier] = job
            self._persist(project)
            logger.info(f"[STORE] Render job {job.id} started for {identifier}")
            return job

    def complete_render(
        self, identifier: str, job: RenderJob, artifact: OutputArtifact
    ) -> Optional[OutputArtifact]:
        """Record the output of a successful job. Returns the output it replaced."""
        with self._lock:
            project = self._require(identifier)
            self._require_job(identifier, job)
            self._apply(project, ProjectState.RENDERED)
            previous = project.output
            project.output = artifact
            project.last_error = None
            self._finish_job(identifier, job, RenderJobStatus.SUCCEEDED)
            self._persist(project)
            return previous

    def abort_render(
        self, identifier: str, job: RenderJob, error: str, internal: bool = False
    ) -> Project:
        """
        End a job that did not produce a video.

        The project returns to Ready with its prior output intact; an internal
        error moves it to Failed(rendering) instead.
        """
        with self._lock:
            project = self._require(identifier)
            self._require_job(identifier, job)
            if internal:
                self._apply(project, ProjectState.FAILED, Stage.RENDERING)
            else:
                self._apply(project, ProjectState.READY)
            project.last_error = error
            job.error_message = error
            self._finish_job(identifier, job, RenderJobStatus.FAILED)
            self._persist(project)
            return copy.deepcopy(project)

    def delete(self, identifier: str) -> Project:
        """Forget a project. Raises InvalidStateError while it is extracting or rendering."""
        with self._lock:
            project = self._require(identifier)
            if self.live_job(identifier) is not None:
                raise InvalidStateError(f"Project {identifier} is rendering")
            if project.state == ProjectState.EXTRACTING:
                raise InvalidStateError(f"Project {identifier} is extracting")
            del self._projects[identifier]
            self._jobs.pop(identifier, None)
            logger.info(f"[STORE] Removed project {identifier}")
            return project

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load_persisted(self) -> int:
        """Reload every project.json below the storage root. Returns the count."""
        if not self.settings.persist_projects:
            return 0

        loaded = 0
        for directory in self.storage.list_project_dirs():
            record_path = directory / RECORD_FILENAME
            if not record_path.is_file():
                continue
            try:
                record = ProjectRecord.model_validate_json(record_path.read_text(encoding="utf-8"))
            except (OSError, ValidationError) as e:
                logger.warning(f"[STORE] Skipping unreadable record {record_path}: {e}")
                continue
            if record.identifier != directory.name:
                logger.warning(f"[STORE] Skipping {record_path}: identifier does not match directory")
                continue

            project = self._from_record(record, directory)
            with self._lock:
                self._projects[project.identifier] = project
                self._persist(project)
            loaded += 1

        if loaded:
            logger.info(f"[STORE] Loaded {loaded} persisted projects")
        return loaded

    def _persist(self, project: Project) -> None:
        if not self.settings.persist_projects:
            return
        record = self._to_record(project)
        self.storage.write_text(project.directory / RECORD_FILENAME, record.model_dump_json(indent=2))

    @staticmethod
    def _to_record(project: Project) -> ProjectRecord:
        output = None
        if project.output is not None:
            output = OutputRecord(
                file=project.output.path.name,
                codec_profile=project.output.codec_profile,
                job_id=project.output.job_id,
                created_at=project.output.created_at,
            )
        return ProjectRecord(
            identifier=project.identifier,
            source_pdf=project.source_pdf.name if project.source_pdf else None,
            pages=[
                PageRecord(
                    index=p.index,
                    image=p.image_path.name,
                    audio=p.audio_path.name if p.audio_path else None,
                    duration_s=p.duration_s,
                )
                for p in project.pages
            ],
            state=project.state,
            failed_stage=project.failed_stage,
            output=output,
            last_error=project.last_error,
            created_at=project.created_at,
            updated_at=project.updated_at,
        )

    @staticmethod
    def _from_record(record: ProjectRecord, directory: Path) -> Project:
        state = record.state
        failed_stage = record.failed_stage
        # The process that owned these stages is gone
        if state == ProjectState.EXTRACTING:
            state, failed_stage = ProjectState.FAILED, Stage.EXTRACTING
        elif state == ProjectState.RENDERING:
            state, failed_stage = ProjectState.READY, None
        elif state == ProjectState.NEW:
            state, failed_stage = ProjectState.FAILED, Stage.EXTRACTING

        output = None
        if record.output is not None:
            output = OutputArtifact(
                path=directory / record.output.file,
                codec_profile=record.output.codec_profile,
                job_id=record.output.job_id,
                created_at=record.output.created_at,
            )
        return Project(
            identifier=record.identifier,
            directory=directory,
            source_pdf=directory / record.source_pdf if record.source_pdf else None,
            pages=[
                Page(
                    index=p.index,
                    image_path=directory / p.image,
                    audio_path=directory / p.audio if p.audio else None,
                    duration_s=p.duration_s,
                )
                for p in record.pages
            ],
            state=state,
            failed_stage=failed_stage if state == ProjectState.FAILED else None,
            output=output,
            last_error=record.last_error,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    # ------------------------------------------------------------------
    # Internals (called under lock)
    # ------------------------------------------------------------------

    def _require(self, identifier: str) -> Project:
        project = self._projects.get(identifier)
        if project is None:
            raise ProjectNotFoundError(identifier)
        return project

    def _require_job(self, identifier: str, job: RenderJob) -> None:
        if self._jobs.get(identifier) is not job or not job.is_live:
            raise InvalidStateError(f"Render job {job.id} is not live for project {identifier}")

    def _apply(
        self, project: Project, target: ProjectState, failed_stage: Optional[Stage] = None
    ) -> None:
        ensure_transition(project.state, project.failed_stage, target)
        project.state = target
        project.failed_stage = failed_stage if target == ProjectState.FAILED else None
        project.updated_at = _utcnow()

    def _finish_job(self, identifier: str, job: RenderJob, status: RenderJobStatus) -> None:
        job.status = status
        job.completed_at = _utcnow()
        self._jobs.pop(identifier, None)
