"""Command line entry point: serve the web UI, or print a tool report."""

import argparse
import logging
import sys
from typing import Optional

import uvicorn

from vidfrompdf.config import get_settings
from vidfrompdf.exceptions import VidFromPdfError
from vidfrompdf.render.codecs import CodecNegotiator
from vidfrompdf.render.rasterizer import BACKENDS
from vidfrompdf.render.runner import SubprocessRunner
from vidfrompdf.utils.tools import ffmpeg_version, find_tool

logger = logging.getLogger(__name__)


def _configure_logging(level: str, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def probe_report() -> list[str]:
    """Lines describing the tools this host offers."""
    settings = get_settings()
    runner = SubprocessRunner()
    lines: list[str] = []

    for tool in (settings.ffmpeg_path, settings.ffprobe_path, settings.pdftoppm_path, settings.magick_path):
        lines.append(f"{tool}: {find_tool(tool) or 'not found'}")

    try:
        lines.append(f"ffmpeg version: {ffmpeg_version(runner, settings.ffmpeg_path, settings.probe_timeout_s)}")
    except (VidFromPdfError, ValueError) as e:
        lines.append(f"ffmpeg version: unknown ({e})")

    lines.append(f"Storage: {settings.storage_path}")

    for backend_cls in BACKENDS.values():
        backend = backend_cls(runner, settings)
        state = "available" if backend.is_available() else "unavailable"
        lines.extend(backend.describe())
        lines.append(f" -> {state}")

    negotiator = CodecNegotiator(runner, settings)
    for profile in negotiator.probe():
        mark = "yes" if profile.available else "no"
        lines.append(f"Codec {profile.priority} {profile.name} ({profile.encoder}): {mark}")
    return lines


def main(argv: Optional[list[str]] = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="vid-from-pdf", description="Turn a pdf slide deck into a narrated video.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Start the web UI (default)")
    serve.add_argument("--host", default=settings.host, help="Host to bind")
    serve.add_argument("--port", type=int, default=settings.port, help="Port to bind")

    subparsers.add_parser("probe", help="Report external tools and usable encoders")

    args = parser.parse_args(argv)
    _configure_logging(settings.log_level, args.verbose)

    if args.command == "probe":
        for line in probe_report():
            print(line)
        return 0

    host = getattr(args, "host", settings.host)
    port = getattr(args, "port", settings.port)
    print(f"Go to http://{host}:{port}/ in your browser")
    uvicorn.run("vidfrompdf.main:app", host=host, port=port, log_level=settings.log_level.lower())
    return 0


if __name__ == "__main__":
    sys.exit(main())
