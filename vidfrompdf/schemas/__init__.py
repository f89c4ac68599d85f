from vidfrompdf.schemas.project import (
    OutputRecord,
    PageRecord,
    PageResponse,
    ProjectRecord,
    ProjectResponse,
    RenderJobResponse,
)

__all__ = [
    "PageResponse",
    "ProjectResponse",
    "RenderJobResponse",
    "PageRecord",
    "OutputRecord",
    "ProjectRecord",
]
