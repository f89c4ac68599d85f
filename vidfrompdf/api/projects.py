import asyncio
import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import FileResponse
from pydantic import BaseModel

from vidfrompdf.api.deps import CurrentSession, Service, SessionContext, Storage
from vidfrompdf.exceptions import ProjectNotFoundError, UploadTooLargeError
from vidfrompdf.schemas.project import ProjectResponse, RenderJobResponse

logger = logging.getLogger(__name__)

router = APIRouter()


class CancelResponse(BaseModel):
    cancelled: bool


async def _read_body(request: Request, limit: int) -> bytes:
    """Read the raw request body, refusing anything larger than limit."""
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > limit:
        raise UploadTooLargeError()
    chunks: list[bytes] = []
    size = 0
    async for chunk in request.stream():
        size += len(chunk)
        if size > limit:
            raise UploadTooLargeError()
        chunks.append(chunk)
    return b"".join(chunks)


def _current_project_id(session: SessionContext) -> str:
    project_id = session.project_id
    if project_id is None:
        raise ProjectNotFoundError()
    return project_id


@router.put("/new", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def new_project(
    request: Request,
    session: CurrentSession,
    service: Service,
) -> ProjectResponse:
    """Create a project from a pdf body and extract its pages.

    The session's previous project is discarded unless it is rendering.
    """
    body = await _read_body(request, service.settings.max_upload_size_bytes)
    project = await asyncio.to_thread(
        service.new_project, body, request.headers.get("content-type")
    )

    previous = session.bind(project.identifier)
    if previous and previous != project.identifier:
        discarded = await asyncio.to_thread(service.discard_project, previous)
        if discarded:
            request.app.state.sessions.forget_project(previous)

    project = await asyncio.to_thread(service.extract, project.identifier)
    return service.to_response(project)


@router.post("/extract", response_model=ProjectResponse)
async def retry_extraction(session: CurrentSession, service: Service) -> ProjectResponse:
    """Re-run page extraction for a project whose extraction failed."""
    project_id = _current_project_id(session)
    project = await asyncio.to_thread(service.retry_extraction, project_id)
    return service.to_response(project)


@router.get("/get", response_model=ProjectResponse)
async def get_current_project(session: CurrentSession, service: Service) -> ProjectResponse:
    """Return the session's current project."""
    project = service.get_project(_current_project_id(session))
    return service.to_response(project)


@router.get("/edit/{identifier}", response_model=ProjectResponse)
async def edit_project(
    identifier: str,
    session: CurrentSession,
    service: Service,
) -> ProjectResponse:
    """Return a project by identifier and make it the session's current project."""
    project = service.get_project(identifier)
    session.bind(project.identifier)
    return service.to_response(project)


@router.put("/page/{index}", response_model=ProjectResponse)
async def attach_page_audio(
    index: int,
    request: Request,
    session: CurrentSession,
    service: Service,
) -> ProjectResponse:
    """Attach or replace the audio of one page of the current project."""
    project_id = _current_project_id(session)
    body = await _read_body(request, service.settings.max_upload_size_bytes)
    project = await asyncio.to_thread(
        service.attach_audio,
        project_id,
        index,
        body,
        request.headers.get("content-type"),
        request.headers.get("x-filename"),
    )
    return service.to_response(project)


@router.post("/render", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def render_project(session: CurrentSession, service: Service) -> ProjectResponse:
    """Render the current project; answers once the video exists."""
    project_id = _current_project_id(session)
    project = await asyncio.to_thread(service.render, project_id)
    return service.to_response(project)


@router.get("/render", response_model=RenderJobResponse | None)
async def render_status(session: CurrentSession, service: Service) -> RenderJobResponse | None:
    """The current project's live render job, if any."""
    job = service.live_job(_current_project_id(session))
    if job is None:
        return None
    return RenderJobResponse(**job.to_dict())


@router.post("/render/cancel", response_model=CancelResponse)
async def cancel_render(session: CurrentSession, service: Service) -> CancelResponse:
    cancelled = service.cancel_render(_current_project_id(session))
    return CancelResponse(cancelled=cancelled)


@router.get("/asset/{identifier}/{name}")
async def get_asset(identifier: str, name: str, storage: Storage) -> FileResponse:
    """Serve a page image, page audio or rendered video."""
    path = storage.resolve_asset(identifier, name)
    return FileResponse(path)
