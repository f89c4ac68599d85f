"""
Project orchestration.

ProjectService is the only entry point the web boundary and the CLI use. It
validates input, asks the store for a transition, does the blocking work
(rasterization, ffprobe, rendering) and commits the outcome back to the store.
All methods block; async callers run them with asyncio.to_thread.
"""

import logging
import mimetypes
import secrets
from pathlib import Path
from typing import Optional

from vidfrompdf.config import Settings, get_settings
from vidfrompdf.exceptions import (
    InvalidStateError,
    PageNotFoundError,
    SubprocessFailureError,
    ToolNotFoundError,
    UnsupportedMediaTypeError,
    UploadError,
    UploadTooLargeError,
    VidFromPdfError,
)
from vidfrompdf.models.project import OutputArtifact, Project, RenderJob
from vidfrompdf.render.codecs import CodecNegotiator
from vidfrompdf.render.pipeline import RenderPipeline
from vidfrompdf.render.rasterizer import RasterizationBackend
from vidfrompdf.render.runner import SubprocessRunner
from vidfrompdf.schemas.project import PageResponse, ProjectResponse
from vidfrompdf.services.project_store import ProjectStore
from vidfrompdf.services.state_machine import can_attach_audio
from vidfrompdf.services.storage_service import LocalStorageService
from vidfrompdf.utils.media_info import get_audio_duration

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPES = {"application/pdf"}
PDF_MAGIC = b"%PDF-"
SOURCE_PDF_NAME = "source.pdf"


def _base_content_type(content_type: Optional[str]) -> str:
    return (content_type or "").split(";", 1)[0].strip().lower()


class ProjectService:
    """Drives projects through extraction, audio editing and rendering."""

    def __init__(
        self,
        store: ProjectStore,
        storage: LocalStorageService,
        backend: RasterizationBackend,
        negotiator: CodecNegotiator,
        pipeline: RenderPipeline,
        runner: SubprocessRunner,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.backend = backend
        self.negotiator = negotiator
        self.pipeline = pipeline
        self.runner = runner
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Creation and extraction
    # ------------------------------------------------------------------

    def validate_pdf(self, data: bytes, content_type: Optional[str]) -> None:
        """
        Raises:
            UnsupportedMediaTypeError: Content type is not application/pdf
            UploadTooLargeError: Body exceeds max_upload_size_mb
            UploadError: Body is empty or not a pdf document
        """
        if _base_content_type(content_type) not in PDF_CONTENT_TYPES:
            raise UnsupportedMediaTypeError()
        if len(data) > self.settings.max_upload_size_bytes:
            raise UploadTooLargeError(
                f"Upload exceeds {self.settings.max_upload_size_mb} MB"
            )
        if not data.startswith(PDF_MAGIC):
            raise UploadError("The uploaded file is not a pdf document")

    def new_project(self, data: bytes, content_type: Optional[str]) -> Project:
        """Validate the upload and register a project holding it, not yet extracted."""
        self.validate_pdf(data, content_type)
        project = self.store.create()
        self.storage.write_bytes(project.directory / SOURCE_PDF_NAME, data)
        return project

    def extract(self, identifier: str) -> Project:
        """
        Rasterize the project's stored pdf into its pages.

        On failure the project moves to Failed(extracting), keeps no partial
        pages and the error is re-raised.
        """
        project = self.store.get(identifier)
        source = project.source_pdf or project.directory / SOURCE_PDF_NAME
        if not source.is_file():
            raise InvalidStateError(f"Project {identifier} has no source pdf")

        self.store.begin_extraction(identifier, source)
        try:
            images = self.backend.extract_pages(source, project.directory)
        except VidFromPdfError as e:
            self.store.fail_extraction(identifier, e.message)
            raise
        except Exception as e:
            logger.exception(f"[EXTRACT] Unexpected failure for {identifier}")
            self.store.fail_extraction(identifier, str(e))
            raise
        return self.store.commit_extraction(identifier, images)

    def create_project(self, data: bytes, content_type: Optional[str]) -> Project:
        """Create a project from a pdf upload and extract its pages."""
        project = self.new_project(data, content_type)
        return self.extract(project.identifier)

    def retry_extraction(self, identifier: str) -> Project:
        return self.extract(identifier)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_project(self, identifier: str) -> Project:
        return self.store.get(identifier)

    def list_projects(self) -> list[Project]:
        return self.store.list_projects()

    def live_job(self, identifier: str) -> Optional[RenderJob]:
        self.store.get(identifier)
        return self.store.live_job(identifier)

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def attach_audio(
        self,
        identifier: str,
        index: int,
        data: bytes,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> Project:
        """
        Attach or replace the audio of one page.

        The file is probed with ffprobe; its length becomes the page's
        duration. Other pages are never touched.
        """
        if not data:
            raise UploadError("The uploaded audio is empty")
        if len(data) > self.settings.max_upload_size_bytes:
            raise UploadTooLargeError(
                f"Upload exceeds {self.settings.max_upload_size_mb} MB"
            )

        project = self.store.get(identifier)
        if not can_attach_audio(project.state):
            raise InvalidStateError(
                f"Cannot attach audio while project is '{project.state.value}'"
            )
        if index < 0 or index >= len(project.pages):
            raise PageNotFoundError(index, len(project.pages))

        suffix = self._audio_suffix(content_type, filename)
        path = project.directory / f"audio-{index:04d}-{secrets.token_hex(4)}{suffix}"
        self.storage.write_bytes(path, data)

        try:
            duration = get_audio_duration(self.runner, path, self.settings)
        except ToolNotFoundError:
            self.storage.delete_file(path)
            raise
        except SubprocessFailureError as e:
            self.storage.delete_file(path)
            raise UploadError(f"The uploaded audio could not be read: {e.message}") from e
        except VidFromPdfError:
            self.storage.delete_file(path)
            raise

        try:
            updated, replaced = self.store.set_page_audio(identifier, index, path, duration)
        except VidFromPdfError:
            self.storage.delete_file(path)
            raise

        if replaced is not None and replaced != path:
            self.storage.delete_file(replaced)
        logger.info(f"[AUDIO] Page {index} of {identifier}: {duration:.2f}s")
        return updated

    @staticmethod
    def _audio_suffix(content_type: Optional[str], filename: Optional[str]) -> str:
        if filename:
            suffix = Path(filename).suffix.lower()
            if suffix and suffix[1:].isalnum():
                return suffix
        guessed = mimetypes.guess_extension(_base_content_type(content_type)) if content_type else None
        return guessed or ".audio"

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def render(self, identifier: str) -> Project:
        """
        Render the project's pages into one video.

        Raises:
            AlreadyRenderingError: A render job is already live
            InvalidStateError: No pages, or the state does not permit rendering
            RenderError: Every codec profile failed
            SubprocessCancelledError: The job was cancelled
        """
        job = self.store.begin_render(identifier)
        project = self.store.get(identifier)
        output_path = project.directory / f"output-{job.id}.mp4"

        try:
            profiles = self.negotiator.negotiate()
            result = self.pipeline.render(job, project.pages, profiles, output_path)
        except VidFromPdfError as e:
            self.storage.delete_file(output_path)
            self.store.abort_render(identifier, job, e.message)
            raise
        except Exception as e:
            logger.exception(f"[RENDER] Unexpected failure for {identifier}")
            self.storage.delete_file(output_path)
            self.store.abort_render(identifier, job, str(e), internal=True)
            raise

        artifact = OutputArtifact(
            path=result.output_path,
            codec_profile=result.profile.name,
            job_id=job.id,
        )
        previous = self.store.complete_render(identifier, job, artifact)
        if previous is not None and previous.path != artifact.path:
            self.storage.delete_file(previous.path)
        return self.store.get(identifier)

    def cancel_render(self, identifier: str) -> bool:
        """Ask the live render job to stop. Returns False if none is running."""
        job = self.live_job(identifier)
        if job is None:
            return False
        logger.info(f"[RENDER] Cancelling job {job.id} for {identifier}")
        job.cancel_token.cancel()
        return True

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def delete_project(self, identifier: str) -> None:
        """Remove a project and its files. Raises InvalidStateError while rendering."""
        self.store.delete(identifier)
        self.storage.delete_project_dir(identifier)

    def discard_project(self, identifier: str) -> bool:
        """Delete a project a session moved away from, unless it is extracting or rendering."""
        if not self.store.exists(identifier):
            return False
        try:
            self.delete_project(identifier)
        except InvalidStateError as e:
            logger.info(f"[STORE] Keeping {identifier}: {e.message}")
            return False
        return True

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_response(self, project: Project) -> ProjectResponse:
        output = None
        if project.output is not None:
            output = self.storage.asset_url(project.identifier, project.output.path)
        return ProjectResponse(
            identifier=project.identifier,
            pages=[
                PageResponse(
                    img_url=self.storage.asset_url(project.identifier, page.image_path),
                    audio_url=(
                        self.storage.asset_url(project.identifier, page.audio_path)
                        if page.audio_path is not None
                        else None
                    ),
                )
                for page in project.pages
            ],
            output=output,
        )
