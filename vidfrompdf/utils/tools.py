"""Locating external tools and reading their versions."""

import shutil
from pathlib import Path
from typing import Optional

from vidfrompdf.render.runner import SubprocessRunner

FFMPEG_VERSION_SIGNATURE = "ffmpeg version "


def find_tool(tool: str) -> Optional[str]:
    """Resolve a tool name or path to an executable path, or None."""
    if Path(tool).is_absolute():
        return tool if shutil.which(tool) else None
    return shutil.which(tool)


def parse_ffmpeg_version(output: str) -> str:
    """
    Extract the version from `ffmpeg -version` output.

    The first line looks like
    ``ffmpeg version n4.3.1 Copyright (c) 2000-2020 the FFmpeg developers``;
    a leading non-digit (``n``) is dropped.

    Raises:
        ValueError: If the output does not look like ffmpeg's version banner
    """
    lines = output.strip().splitlines()
    if not lines or not lines[0].startswith(FFMPEG_VERSION_SIGNATURE):
        raise ValueError("The ffmpeg program did not appear to provide version information.")

    rest = lines[0][len(FFMPEG_VERSION_SIGNATURE):].split()
    if not rest:
        raise ValueError("The ffmpeg program did not appear to provide version information.")

    version = rest[0]
    if not version[0].isdigit():
        version = version[1:]
    if not version or not version[0].isdigit():
        raise ValueError(
            f"The ffmpeg program provided version number `{rest[0]}` but it was not understood."
        )
    return version


def ffmpeg_version(runner: SubprocessRunner, ffmpeg_path: str, timeout: float = 30.0) -> str:
    """Run `ffmpeg -version` and return the parsed version string."""
    result = runner.run([ffmpeg_path, "-version"], timeout=timeout)
    return parse_ffmpeg_version(result.stdout)
