"""
Turn a pdf into one image per page.

Two interchangeable backends:

- PdfToPpmBackend runs poppler's `pdftoppm` once for the whole document and
  scales the resulting images to the output box afterwards.
- MuPdfSvgBackend opens the document with PyMuPDF, emits every page as an SVG
  scene already fitted to the output box, and rasterizes that scene with
  ImageMagick.

Extraction is all-or-nothing: images are produced in a staging directory and
only moved into place once every page succeeded.
"""

import logging
import re
import shutil
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import fitz  # PyMuPDF
from PIL import Image

from vidfrompdf.config import Settings, get_settings
from vidfrompdf.exceptions import (
    RasterizationError,
    SubprocessFailureError,
    SubprocessTimeoutError,
    ToolNotFoundError,
)
from vidfrompdf.render.runner import CancelToken, SubprocessRunner
from vidfrompdf.utils.tools import find_tool

logger = logging.getLogger(__name__)

PAGE_IMAGE_TEMPLATE = "page-{index:04d}.png"

_PDFTOPPM_OUTPUT = re.compile(r"^raw-(\d+)\.png$")


def fit_to_box(source: Path, target: Path, width: int, height: int) -> None:
    """Scale an image to fit inside width x height without distorting it."""
    with Image.open(source) as image:
        image.load()
        if image.mode not in ("RGB", "L"):
            background = Image.new("RGB", image.size, (255, 255, 255))
            if "A" in image.getbands():
                background.paste(image, mask=image.getchannel("A"))
            else:
                background.paste(image.convert("RGB"))
            image = background
        scale = min(width / image.width, height / image.height)
        size = (max(1, round(image.width * scale)), max(1, round(image.height * scale)))
        if size != image.size:
            image = image.resize(size, Image.Resampling.LANCZOS)
        image.save(target, format="PNG")


class RasterizationBackend(ABC):
    """Converts every page of a pdf into a still image."""

    name: str = "abstract"

    def __init__(self, runner: SubprocessRunner, settings: Optional[Settings] = None):
        self.runner = runner
        self.settings = settings or get_settings()

    def extract_pages(
        self,
        pdf: Union[bytes, Path],
        output_dir: Path,
        cancel: Optional[CancelToken] = None,
    ) -> list[Path]:
        """
        Rasterize every page of pdf into output_dir.

        Args:
            pdf: The document, either its bytes or a path to it
            output_dir: Directory receiving page-0000.png, page-0001.png, ...
            cancel: Optional token to abort a running extraction

        Returns:
            Image paths ordered by page

        Raises:
            RasterizationError: If any page fails; output_dir is left untouched
            SubprocessCancelledError: If cancel was set
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".extract-", dir=output_dir))
        try:
            if isinstance(pdf, (bytes, bytearray)):
                pdf_path = staging / "source.pdf"
                pdf_path.write_bytes(pdf)
            else:
                pdf_path = Path(pdf)

            rendered = self._render(pdf_path, staging, cancel)
            if not rendered:
                raise RasterizationError(self.name, "render", "The pdf has no pages")

            pages: list[Path] = []
            for index, raw in enumerate(rendered):
                target = output_dir / PAGE_IMAGE_TEMPLATE.format(index=index)
                staged = staging / ("fitted-" + target.name)
                try:
                    fit_to_box(
                        raw, staged,
                        self.settings.render_output_width,
                        self.settings.render_output_height,
                    )
                except OSError as e:
                    raise RasterizationError(self.name, "scale", str(e), page_index=index)
                pages.append(staged)

            final: list[Path] = []
            for index, staged in enumerate(pages):
                target = output_dir / PAGE_IMAGE_TEMPLATE.format(index=index)
                staged.replace(target)
                final.append(target)

            # Pages left over from an earlier extraction of a longer document
            for stale in output_dir.glob("page-*.png"):
                if stale not in final:
                    stale.unlink()

            logger.info(f"[EXTRACT] {self.name}: {len(final)} pages into {output_dir}")
            return final
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    @abstractmethod
    def _render(
        self, pdf_path: Path, staging: Path, cancel: Optional[CancelToken]
    ) -> list[Path]:
        """Produce raw page images in staging, ordered by page."""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the tools this backend needs are installed."""

    def describe(self) -> list[str]:
        """Human readable lines for the `probe` report."""
        return [f"Using {self.name} to deconstruct pdf"]


class PdfToPpmBackend(RasterizationBackend):
    """Rasterizes with poppler's pdftoppm, one batch call per document."""

    name = "pdftoppm"

    def is_available(self) -> bool:
        return find_tool(self.settings.pdftoppm_path) is not None

    def describe(self) -> list[str]:
        return [
            "Using pdftoppm to deconstruct pdf",
            f" pdftoppm: {find_tool(self.settings.pdftoppm_path) or self.settings.pdftoppm_path}",
        ]

    def _render(
        self, pdf_path: Path, staging: Path, cancel: Optional[CancelToken]
    ) -> list[Path]:
        dpi = str(self.settings.raster_dpi)
        cmd = [
            self.settings.pdftoppm_path,
            "-png",
            "-rx", dpi,
            "-ry", dpi,
            str(pdf_path),
            str(staging / "raw"),
        ]
        try:
            self.runner.run(cmd, timeout=self.settings.extract_timeout_s, cancel=cancel)
        except (SubprocessFailureError, SubprocessTimeoutError) as e:
            raise RasterizationError(self.name, "render", str(e))

        # pdftoppm zero-pads the page number to the width of the page count
        numbered: dict[int, Path] = {}
        for entry in staging.iterdir():
            match = _PDFTOPPM_OUTPUT.match(entry.name)
            if match:
                numbered[int(match.group(1))] = entry

        ordered = [numbered[n] for n in sorted(numbered)]
        expected = list(range(1, len(ordered) + 1))
        if sorted(numbered) != expected:
            missing = sorted(set(range(1, max(numbered, default=0) + 1)) - set(numbered))
            raise RasterizationError(
                self.name, "collect",
                f"pdftoppm did not produce every page (missing {missing})",
                page_index=missing[0] - 1 if missing else None,
            )
        return ordered


class MuPdfSvgBackend(RasterizationBackend):
    """Emits pages as SVG with PyMuPDF and rasterizes them with ImageMagick."""

    name = "mupdf"

    def is_available(self) -> bool:
        return find_tool(self.settings.magick_path) is not None

    def describe(self) -> list[str]:
        return [
            f"Using `mupdf` {fitz.VersionBind} to deconstruct pdf",
            f" magick: {find_tool(self.settings.magick_path) or self.settings.magick_path}",
        ]

    def page_matrix(self, bounds: fitz.Rect) -> fitz.Matrix:
        """Scale a page to fit the output box without distorting it."""
        if bounds.width <= 0 or bounds.height <= 0:
            raise ValueError("page has zero size")
        scale = min(
            self.settings.render_output_width / bounds.width,
            self.settings.render_output_height / bounds.height,
        )
        return fitz.Matrix(scale, scale)

    def _render(
        self, pdf_path: Path, staging: Path, cancel: Optional[CancelToken]
    ) -> list[Path]:
        try:
            document = fitz.open(pdf_path)
        except (RuntimeError, ValueError) as e:
            raise RasterizationError(self.name, "open", str(e))

        rendered: list[Path] = []
        with document:
            for index in range(document.page_count):
                if cancel is not None:
                    cancel.raise_if_cancelled()
                try:
                    page = document.load_page(index)
                    matrix = self.page_matrix(page.rect)
                    svg = page.get_svg_image(matrix=matrix, text_as_path=True)
                except (RuntimeError, ValueError) as e:
                    raise RasterizationError(self.name, "svg", str(e), page_index=index)

                svg_path = staging / f"raw-{index:04d}.svg"
                png_path = staging / f"raw-{index:04d}.png"
                svg_path.write_text(svg, encoding="utf-8")

                cmd = [
                    self.settings.magick_path,
                    "-background", "white",
                    str(svg_path),
                    "-flatten",
                    str(png_path),
                ]
                try:
                    self.runner.run(cmd, timeout=self.settings.extract_timeout_s, cancel=cancel)
                except (SubprocessFailureError, SubprocessTimeoutError) as e:
                    raise RasterizationError(self.name, "rasterize", str(e), page_index=index)
                if not png_path.exists():
                    raise RasterizationError(
                        self.name, "rasterize", "converter produced no image", page_index=index
                    )
                rendered.append(png_path)
        return rendered


BACKENDS: dict[str, type[RasterizationBackend]] = {
    MuPdfSvgBackend.name: MuPdfSvgBackend,
    PdfToPpmBackend.name: PdfToPpmBackend,
}


def select_backend(
    runner: SubprocessRunner, settings: Optional[Settings] = None
) -> RasterizationBackend:
    """
    Pick the rasterization backend for this process.

    With rasterizer_backend="auto" the library backend is preferred and
    pdftoppm is the fallback; an explicit choice must be installed.

    Raises:
        ToolNotFoundError: If no candidate backend has its tools installed
    """
    settings = settings or get_settings()
    if settings.rasterizer_backend == "auto":
        ranked = [MuPdfSvgBackend, PdfToPpmBackend]
    else:
        ranked = [BACKENDS[settings.rasterizer_backend]]

    for backend_cls in ranked:
        backend = backend_cls(runner, settings)
        if backend.is_available():
            logger.info(f"[EXTRACT] Selected rasterization backend: {backend.name}")
            return backend
        logger.info(f"[EXTRACT] Rasterization backend {backend.name} unavailable")

    tools = " or ".join(
        settings.magick_path if cls is MuPdfSvgBackend else settings.pdftoppm_path
        for cls in ranked
    )
    raise ToolNotFoundError(tools, "no pdf rasterization tool is installed")
