"""
Render pipeline turning a project's pages into one video.

This module orchestrates a render job:
1. Prepare per-page audio (attached narration or generated silence)
2. Write chapter metadata
3. For each negotiated codec profile, in priority order:
   encode one segment per page, then concatenate the segments
4. The first profile that completes wins; failures fall through to the next

All intermediate files live in a scratch directory owned by the job and
removed on every exit path. The output is written next to its final location
and moved into place only on success, so a failed render never clobbers an
earlier video.
"""

import logging
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from vidfrompdf.config import Settings, get_settings
from vidfrompdf.exceptions import (
    CodecUnavailableError,
    InvalidStateError,
    RenderError,
    SubprocessFailureError,
    SubprocessTimeoutError,
)
from vidfrompdf.models.project import Page, RenderJob
from vidfrompdf.render.assembly import (
    SegmentSpec,
    build_concat_command,
    build_segment_command,
    build_silence_command,
    chapter_metadata,
    write_concat_manifest,
)
from vidfrompdf.render.codecs import CodecProfile
from vidfrompdf.render.runner import SubprocessRunner
from vidfrompdf.utils.media_info import get_audio_duration

logger = logging.getLogger(__name__)


@dataclass
class RenderResult:
    """Outcome of a successful render."""

    output_path: Path
    profile: CodecProfile
    # (profile name, cause) for every profile that failed before the winner
    failed_attempts: list[tuple[str, str]] = field(default_factory=list)
    elapsed_s: float = 0.0


class RenderPipeline:
    """Drives ffmpeg through the segment and concatenation steps."""

    def __init__(self, runner: SubprocessRunner, settings: Optional[Settings] = None):
        self.runner = runner
        self.settings = settings or get_settings()

    def render(
        self,
        job: RenderJob,
        pages: list[Page],
        profiles: list[CodecProfile],
        output_path: Path,
    ) -> RenderResult:
        """
        Execute the full render pipeline.

        Args:
            job: The live render job; its cancel token aborts running tools
            pages: Pages in order, each with an image and optional audio
            profiles: Codec profiles in the order they should be attempted
            output_path: Final location of the video

        Returns:
            RenderResult naming the profile that produced the video

        Raises:
            InvalidStateError: If there are no pages
            CodecUnavailableError: If profiles is empty
            RenderError: If every profile failed
            SubprocessCancelledError: If the job was cancelled
        """
        if not pages:
            raise InvalidStateError("Cannot render a project without pages")
        if not profiles:
            raise CodecUnavailableError()

        started = time.monotonic()
        output_path.parent.mkdir(parents=True, exist_ok=True)
        work_dir = Path(tempfile.mkdtemp(prefix=f"vfp_render_{job.id}_"))
        logger.info(
            f"[RENDER] Job {job.id}: {len(pages)} pages, profiles={[p.name for p in profiles]}"
        )

        try:
            self._set_stage(job, "Preparing audio")
            segments = self._prepare_segments(job, pages, work_dir)

            metadata_path = work_dir / "chapters.txt"
            metadata_path.write_text(
                chapter_metadata([s.duration_s for s in segments]), encoding="utf-8"
            )

            failed: list[tuple[str, str]] = []
            for profile in profiles:
                job.cancel_token.raise_if_cancelled()
                self._set_stage(job, f"Encoding with {profile.name}")
                try:
                    staged = self._encode_with_profile(
                        job, segments, profile, metadata_path, work_dir, output_path.suffix
                    )
                except (SubprocessFailureError, SubprocessTimeoutError) as exc:
                    logger.warning(f"[RENDER] Job {job.id}: profile {profile.name} failed: {exc}")
                    failed.append((profile.name, exc.message))
                    shutil.rmtree(work_dir / profile.name, ignore_errors=True)
                    continue

                shutil.move(str(staged), str(output_path))
                elapsed = time.monotonic() - started
                self._set_stage(job, "Complete")
                logger.info(
                    f"[RENDER] Job {job.id}: finished with {profile.name} in {elapsed:.1f}s -> {output_path}"
                )
                return RenderResult(
                    output_path=output_path,
                    profile=profile,
                    failed_attempts=failed,
                    elapsed_s=elapsed,
                )

            raise RenderError(failed)
        finally:
            self._cleanup(work_dir)

    def _prepare_segments(
        self, job: RenderJob, pages: list[Page], work_dir: Path
    ) -> list[SegmentSpec]:
        """Resolve each page's audio and duration, generating silence where needed."""
        audio_dir = work_dir / "audio"
        audio_dir.mkdir()
        silence_s = self.settings.render_silence_duration_s

        segments: list[SegmentSpec] = []
        for page in pages:
            job.cancel_token.raise_if_cancelled()
            if page.audio_path is not None and not page.duration_s:
                duration = get_audio_duration(
                    self.runner, page.audio_path, self.settings, cancel=job.cancel_token
                )
            else:
                duration = page.effective_duration(silence_s)

            if page.audio_path is not None:
                audio_path = page.audio_path
            else:
                audio_path = audio_dir / f"silence-{page.index:04d}.wav"
                try:
                    self.runner.run(
                        build_silence_command(self.settings, duration, audio_path),
                        timeout=self.settings.render_timeout_s,
                        cancel=job.cancel_token,
                    )
                except (SubprocessFailureError, SubprocessTimeoutError) as exc:
                    raise RenderError([("silence", exc.message)])
            segments.append(
                SegmentSpec(
                    index=page.index,
                    image_path=page.image_path,
                    audio_path=audio_path,
                    duration_s=duration,
                )
            )
        return segments

    def _encode_with_profile(
        self,
        job: RenderJob,
        segments: list[SegmentSpec],
        profile: CodecProfile,
        metadata_path: Path,
        work_dir: Path,
        suffix: str,
    ) -> Path:
        """Encode all segments with one profile and join them; returns the staged video."""
        profile_dir = work_dir / profile.name
        profile_dir.mkdir()

        segment_paths: list[Path] = []
        for segment in segments:
            segment_path = profile_dir / f"segment-{segment.index:04d}.mp4"
            self.runner.run(
                build_segment_command(self.settings, segment, profile, segment_path),
                timeout=self.settings.render_timeout_s,
                cancel=job.cancel_token,
            )
            segment_paths.append(segment_path)

        manifest = write_concat_manifest(segment_paths, profile_dir / "segments.txt")
        staged = profile_dir / f"output{suffix or '.mp4'}"
        self.runner.run(
            build_concat_command(self.settings, manifest, metadata_path, staged),
            timeout=self.settings.render_timeout_s,
            cancel=job.cancel_token,
        )
        if not staged.exists():
            raise SubprocessFailureError(
                [self.settings.ffmpeg_path], 0, message="ffmpeg reported success but wrote no video"
            )
        return staged

    def _set_stage(self, job: RenderJob, stage: str) -> None:
        job.current_stage = stage
        logger.debug(f"[RENDER] Job {job.id}: {stage}")

    def _cleanup(self, work_dir: Path) -> None:
        """Clean up temporary files."""
        shutil.rmtree(work_dir, ignore_errors=True)
