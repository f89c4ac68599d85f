"""
Pytest fixtures for vid-from-pdf tests.

External tools are replaced by FakeRunner, which records every command line
and materializes the files the real tool would have written. Runner tests
use the Python interpreter itself as the external process.
"""

import json
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Sequence

import pytest
from PIL import Image

from vidfrompdf.config import Settings
from vidfrompdf.exceptions import SubprocessCancelledError, SubprocessFailureError
from vidfrompdf.render.codecs import CodecNegotiator
from vidfrompdf.render.pipeline import RenderPipeline
from vidfrompdf.render.rasterizer import PdfToPpmBackend
from vidfrompdf.render.runner import CancelToken, CompletedRun
from vidfrompdf.services.project_service import ProjectService
from vidfrompdf.services.project_store import ProjectStore
from vidfrompdf.services.storage_service import LocalStorageService

ENCODERS_OUTPUT = """Encoders:
 V..... = Video
 A..... = Audio
 ------
 V....D libx264              libx264 H.264 / AVC / MPEG-4 AVC / MPEG-4 part 10 (codec h264)
 V....D h264_nvenc           NVIDIA NVENC H.264 encoder (codec h264)
 V....D h264_vaapi           H.264/AVC (VAAPI) (codec h264)
 A....D aac                  AAC (Advanced Audio Coding)
"""

# Smallest body the upload validation accepts as a pdf
MINIMAL_PDF = b"%PDF-1.4\n1 0 obj <<>> endobj\ntrailer <<>>\n%%EOF\n"
NOT_AUDIO_MARKER = b"NOTAUDIO"


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "slow: mark test as spawning real processes that sleep"
    )


def _write_png(path: Path, size: tuple[int, int] = (40, 30), color=(200, 30, 30)) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGB", size, color).save(path, format="PNG")


class FakeRunner:
    """Stand-in for SubprocessRunner that imitates ffmpeg, ffprobe, pdftoppm and magick."""

    def __init__(self, pages: int = 3) -> None:
        self.pages = pages
        self.encoders_output = ENCODERS_OUTPUT
        self.audio_duration_s = 2.5
        self.failing_encoders: set[str] = set()
        self.fail_concat = False
        self.fail_pdftoppm = False
        # When set, segment encodes wait for it (or for cancellation)
        self.gate: Optional[threading.Event] = None
        self.entered = threading.Event()
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    def run(
        self,
        args: Sequence[str],
        *,
        timeout: float,
        cancel: Optional[CancelToken] = None,
        cwd: Optional[Path] = None,
        check: bool = True,
    ) -> CompletedRun:
        args = [str(a) for a in args]
        with self._lock:
            self.calls.append(args)
        if cancel is not None:
            cancel.raise_if_cancelled()

        tool = Path(args[0]).name
        handler: Callable[[list[str], Optional[CancelToken]], str] = {
            "ffprobe": self._ffprobe,
            "pdftoppm": self._pdftoppm,
            "magick": self._magick,
        }.get(tool, self._ffmpeg)
        stdout = handler(args, cancel)
        return CompletedRun(args=args, returncode=0, stdout=stdout, stderr="", duration_s=0.0)

    def commands(self, predicate: Callable[[list[str]], bool]) -> list[list[str]]:
        with self._lock:
            return [c for c in self.calls if predicate(c)]

    def segment_encoders(self) -> list[str]:
        return [c[c.index("-c:v") + 1] for c in self.commands(lambda c: "-loop" in c)]

    # ------------------------------------------------------------------

    def _wait_at_gate(self, args: list[str], cancel: Optional[CancelToken]) -> None:
        """Block a gated tool until the test opens the gate or cancels."""
        if self.gate is None:
            return
        self.entered.set()
        deadline = time.monotonic() + 10
        while not self.gate.is_set() and time.monotonic() < deadline:
            if cancel is not None and cancel.cancelled:
                raise SubprocessCancelledError(f"{args[0]} was cancelled")
            time.sleep(0.01)

    def _ffmpeg(self, args: list[str], cancel: Optional[CancelToken]) -> str:
        if "-version" in args:
            return "ffmpeg version n4.3.1 Copyright (c) 2000-2020 the FFmpeg developers\n"
        if "-encoders" in args:
            return self.encoders_output

        output = Path(args[-1])
        if "-loop" in args:
            encoder = args[args.index("-c:v") + 1]
            self._wait_at_gate(args, cancel)
            if encoder in self.failing_encoders:
                raise SubprocessFailureError(args, 1, f"Cannot load {encoder}\nConversion failed!")
        elif "concat" in args and self.fail_concat:
            raise SubprocessFailureError(args, 1, "Invalid data found when processing input")

        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"fake media " + " ".join(args[1:4]).encode())
        return ""

    def _ffprobe(self, args: list[str], cancel: Optional[CancelToken]) -> str:
        path = Path(args[-1])
        if path.read_bytes().startswith(NOT_AUDIO_MARKER):
            return json.dumps({"streams": [], "format": {"duration": "1.0"}})
        return json.dumps({
            "streams": [{"codec_type": "audio", "codec_name": "mp3"}],
            "format": {"duration": str(self.audio_duration_s)},
        })

    def _pdftoppm(self, args: list[str], cancel: Optional[CancelToken]) -> str:
        self._wait_at_gate(args, cancel)
        if self.fail_pdftoppm:
            raise SubprocessFailureError(args, 1, "Syntax Error: Couldn't read xref table")
        prefix = Path(args[-1])
        width = len(str(self.pages))
        for n in range(1, self.pages + 1):
            _write_png(prefix.parent / f"{prefix.name}-{n:0{width}d}.png", color=(n * 40 % 256, 10, 10))
        return ""

    def _magick(self, args: list[str], cancel: Optional[CancelToken]) -> str:
        _write_png(Path(args[-1]))
        return ""


@pytest.fixture
def temp_output_dir():
    """Temporary directory for test outputs."""
    with tempfile.TemporaryDirectory(prefix="vfp_test_") as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def settings(temp_output_dir: Path) -> Settings:
    return Settings(
        _env_file=None,
        storage_path=str(temp_output_dir / "storage"),
        render_output_width=64,
        render_output_height=36,
        render_timeout_s=30,
        extract_timeout_s=30,
        probe_timeout_s=10,
        vaapi_device=str(temp_output_dir / "renderD128"),
    )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner(pages=3)


@pytest.fixture
def storage(settings: Settings) -> LocalStorageService:
    return LocalStorageService(settings)


@pytest.fixture
def store(storage: LocalStorageService, settings: Settings) -> ProjectStore:
    return ProjectStore(storage, settings)


@pytest.fixture
def service(
    store: ProjectStore,
    storage: LocalStorageService,
    fake_runner: FakeRunner,
    settings: Settings,
) -> ProjectService:
    return ProjectService(
        store=store,
        storage=storage,
        backend=PdfToPpmBackend(fake_runner, settings),
        negotiator=CodecNegotiator(fake_runner, settings),
        pipeline=RenderPipeline(fake_runner, settings),
        runner=fake_runner,
        settings=settings,
    )


@pytest.fixture
def ready_project(service: ProjectService):
    """A three page project with its pages extracted."""
    return service.create_project(MINIMAL_PDF, "application/pdf")

