from vidfrompdf.models.project import (
    OutputArtifact,
    Page,
    Project,
    ProjectState,
    RenderJob,
    RenderJobStatus,
    Stage,
)

__all__ = [
    "Project",
    "ProjectState",
    "Stage",
    "Page",
    "OutputArtifact",
    "RenderJob",
    "RenderJobStatus",
]
