"""Media file information utilities using FFprobe."""

import json
from pathlib import Path
from typing import Optional

from vidfrompdf.config import Settings, get_settings
from vidfrompdf.exceptions import SubprocessFailureError, UploadError
from vidfrompdf.render.runner import CancelToken, SubprocessRunner


def _run_ffprobe(
    runner: SubprocessRunner,
    settings: Settings,
    file_path: Path,
    *args: str,
    cancel: Optional[CancelToken] = None,
) -> dict:
    """Run ffprobe and return parsed JSON."""
    cmd = [
        settings.ffprobe_path,
        "-v", "error",
        "-print_format", "json",
        *args,
        str(file_path),
    ]
    result = runner.run(cmd, timeout=settings.probe_timeout_s, cancel=cancel)
    try:
        return json.loads(result.stdout or "{}")
    except json.JSONDecodeError as e:
        raise SubprocessFailureError(cmd, result.returncode, message=f"Failed to parse ffprobe output: {e}")


def get_audio_duration(
    runner: SubprocessRunner,
    file_path: Path,
    settings: Optional[Settings] = None,
    cancel: Optional[CancelToken] = None,
) -> float:
    """
    Get the duration in seconds of a file that must contain an audio stream.

    Raises:
        UploadError: If the file has no audio stream or no usable duration
        SubprocessFailureError: If ffprobe itself fails
    """
    settings = settings or get_settings()
    data = _run_ffprobe(
        runner, settings, file_path,
        "-show_format", "-show_streams", "-select_streams", "a",
        cancel=cancel,
    )

    if not data.get("streams"):
        raise UploadError(f"No audio track in file: {file_path.name}")

    raw = data.get("format", {}).get("duration")
    try:
        duration = float(raw)
    except (TypeError, ValueError):
        raise UploadError(f"Duration not found in: {file_path.name}")

    if duration <= 0:
        raise UploadError(f"Audio in {file_path.name} has no length")
    return duration
