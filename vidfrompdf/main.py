import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from vidfrompdf.api import projects
from vidfrompdf.api.deps import SessionRegistry
from vidfrompdf.config import Settings, get_settings
from vidfrompdf.exceptions import VidFromPdfError
from vidfrompdf.render.codecs import CodecNegotiator
from vidfrompdf.render.pipeline import RenderPipeline
from vidfrompdf.render.rasterizer import select_backend
from vidfrompdf.render.runner import SubprocessRunner
from vidfrompdf.services.project_service import ProjectService
from vidfrompdf.services.project_store import ProjectStore
from vidfrompdf.services.storage_service import LocalStorageService

logger = logging.getLogger(__name__)


def build_service(settings: Settings) -> ProjectService:
    """Wire the core: pick the rasterizer, negotiate codecs once, reload projects."""
    runner = SubprocessRunner()
    storage = LocalStorageService(settings)
    store = ProjectStore(storage, settings)
    backend = select_backend(runner, settings)
    negotiator = CodecNegotiator(runner, settings)
    negotiator.negotiate()
    store.load_persisted()
    return ProjectService(
        store=store,
        storage=storage,
        backend=backend,
        negotiator=negotiator,
        pipeline=RenderPipeline(runner, settings),
        runner=runner,
        settings=settings,
    )


def create_app(
    service: Optional[ProjectService] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or (service.settings if service else get_settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        if getattr(app.state, "project_service", None) is None:
            app.state.project_service = build_service(settings)
        logger.info(f"{settings.app_name} {settings.app_version} listening on {settings.host}:{settings.port}")
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.sessions = SessionRegistry(settings.session_ttl_s, settings.session_max_entries)
    app.state.project_service = service

    @app.exception_handler(VidFromPdfError)
    async def vid_from_pdf_exception_handler(request: Request, exc: VidFromPdfError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # Global exception handler to ensure errors return proper JSON
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    # Routers
    app.include_router(projects.router, prefix="/project", tags=["projects"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version}

    return app


app = create_app()
