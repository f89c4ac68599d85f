"""
FFmpeg command builders for turning pages into a video.

Each page becomes one segment: the still image looped for the page's duration
with its audio (or generated silence). Segments share encoder settings, so the
final step concatenates them without re-encoding and attaches one chapter per
page.
"""

from dataclasses import dataclass
from pathlib import Path

from vidfrompdf.config import Settings
from vidfrompdf.render.codecs import CodecProfile

METADATA_TITLE = "Created with vid-from-pdf"


@dataclass
class SegmentSpec:
    """Inputs for one page's segment."""

    index: int
    image_path: Path
    audio_path: Path
    duration_s: float


def _escape_concat_path(path: Path) -> str:
    # concat demuxer quoting: close the quote, escape the quote, reopen
    return str(path).replace("'", "'\\''")


def build_silence_command(settings: Settings, duration_s: float, output_path: Path) -> list[str]:
    """Command producing a silent WAV of the given length."""
    return [
        settings.ffmpeg_path,
        "-y",
        "-hide_banner",
        "-f", "lavfi",
        "-i", f"anullsrc=r={settings.render_audio_sample_rate}:cl=stereo",
        "-t", f"{duration_s:.3f}",
        "-f", "wav",
        str(output_path),
    ]


def build_segment_command(
    settings: Settings,
    segment: SegmentSpec,
    profile: CodecProfile,
    output_path: Path,
) -> list[str]:
    """Command encoding one page's still image and audio into a segment."""
    width = settings.render_output_width
    height = settings.render_output_height
    video_filter = ",".join([
        f"scale=w={width}:h={height}:force_original_aspect_ratio=decrease:flags=lanczos",
        f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2:color=black",
        profile.pixel_filter,
    ])
    return [
        settings.ffmpeg_path,
        "-y",
        "-hide_banner",
        *profile.input_args,
        "-loop", "1",
        "-framerate", str(settings.render_fps),
        "-i", str(segment.image_path),
        "-i", str(segment.audio_path),
        "-map", "0:v:0",
        "-map", "1:a:0",
        "-vf", video_filter,
        *profile.video_args(),
        "-r", str(settings.render_fps),
        "-c:a", "aac",
        "-b:a", settings.render_audio_bitrate,
        "-ar", str(settings.render_audio_sample_rate),
        "-ac", "2",
        "-af", "apad",
        "-t", f"{segment.duration_s:.3f}",
        str(output_path),
    ]


def write_concat_manifest(segment_paths: list[Path], manifest_path: Path) -> Path:
    """Write an ffmpeg concat demuxer list."""
    lines = [f"file '{_escape_concat_path(p)}'" for p in segment_paths]
    manifest_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return manifest_path


def chapter_metadata(durations_s: list[float], title: str = METADATA_TITLE) -> str:
    """FFMETADATA text with one chapter per page."""
    lines = [";FFMETADATA1", f"title={title}"]
    up_to_now_ms = 0
    for idx, duration in enumerate(durations_s):
        start = up_to_now_ms
        up_to_now_ms += int(round(duration * 1000))
        lines.extend([
            "[CHAPTER]",
            "TIMEBASE=1/1000",
            f"START={start}",
            f"END={up_to_now_ms}",
            f"title=Chapter {idx + 1}",
        ])
    return "\n".join(lines) + "\n"


def build_concat_command(
    settings: Settings,
    manifest_path: Path,
    metadata_path: Path,
    output_path: Path,
) -> list[str]:
    """Command joining the segments and attaching chapters, without re-encoding."""
    return [
        settings.ffmpeg_path,
        "-y",
        "-hide_banner",
        "-f", "concat",
        "-safe", "0",
        "-i", str(manifest_path),
        "-f", "ffmetadata",
        "-i", str(metadata_path),
        "-map", "0",
        "-map_metadata", "1",
        "-map_chapters", "1",
        "-c", "copy",
        "-movflags", "+faststart",
        str(output_path),
    ]
