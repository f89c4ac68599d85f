"""
Video encoder negotiation.

Profiles are ranked: NVENC first, VA-API second, libx264 last. The software
profile is always returned so a render can never run out of encoders because
hardware is missing. The probe runs once and its result is cached; renders
read the cached list and never re-probe.
"""

import logging
import os
import re
import threading
from dataclasses import dataclass, field, replace
from typing import Optional

from vidfrompdf.config import Settings, get_settings
from vidfrompdf.exceptions import SubprocessFailureError, SubprocessTimeoutError
from vidfrompdf.render.runner import SubprocessRunner

logger = logging.getLogger(__name__)

_ENCODER_LINE = re.compile(r"^\s*[VAS][F.][S.][X.][B.][D.]\s+(\S+)")


@dataclass(frozen=True)
class CodecProfile:
    """A ranked, concrete encoder configuration."""

    name: str
    encoder: str
    priority: int
    hardware: bool
    available: bool = False
    # Placed before the inputs, e.g. to open a VA-API device
    input_args: tuple[str, ...] = ()
    # Pixel format conversion appended to the scale/pad filter chain
    pixel_filter: str = "format=yuv420p"
    encoder_args: tuple[str, ...] = field(default_factory=tuple)

    def video_args(self) -> list[str]:
        """Encoder arguments for an ffmpeg output."""
        return ["-c:v", self.encoder, *self.encoder_args]


def default_profiles(settings: Settings) -> list[CodecProfile]:
    """The candidate profiles in priority order, availability not yet probed."""
    return [
        CodecProfile(
            name="nvenc",
            encoder="h264_nvenc",
            priority=1,
            hardware=True,
            encoder_args=("-preset", "fast"),
        ),
        CodecProfile(
            name="vaapi",
            encoder="h264_vaapi",
            priority=2,
            hardware=True,
            input_args=("-vaapi_device", settings.vaapi_device),
            pixel_filter="format=nv12,hwupload",
        ),
        CodecProfile(
            name="software",
            encoder="libx264",
            priority=3,
            hardware=False,
            available=True,
            encoder_args=("-preset", "fast", "-tune", "stillimage"),
        ),
    ]


def parse_encoder_list(output: str) -> set[str]:
    """Collect encoder names from `ffmpeg -hide_banner -encoders` output."""
    names: set[str] = set()
    for line in output.splitlines():
        match = _ENCODER_LINE.match(line)
        if match and match.group(1) != "=":
            names.add(match.group(1))
    return names


class CodecNegotiator:
    """Probes ffmpeg for hardware encoders and ranks the usable profiles."""

    def __init__(self, runner: SubprocessRunner, settings: Optional[Settings] = None):
        self.runner = runner
        self.settings = settings or get_settings()
        self._lock = threading.Lock()
        self._profiles: Optional[list[CodecProfile]] = None

    def probe(self) -> list[CodecProfile]:
        """Evaluate availability of every candidate profile."""
        candidates = default_profiles(self.settings)

        if self.settings.render_disable_hardware:
            logger.info("[CODEC] Hardware encoding disabled by configuration")
            return [replace(p, available=not p.hardware) for p in candidates]

        encoders = self._list_encoders()
        probed: list[CodecProfile] = []
        for profile in candidates:
            if not profile.hardware:
                if encoders and profile.encoder not in encoders:
                    logger.warning(
                        f"[CODEC] {profile.encoder} not listed by ffmpeg; keeping it as last resort"
                    )
                probed.append(replace(profile, available=True))
                continue

            available = profile.encoder in encoders
            if available and profile.name == "vaapi" and not os.path.exists(self.settings.vaapi_device):
                logger.info(f"[CODEC] VA-API device {self.settings.vaapi_device} missing")
                available = False
            probed.append(replace(profile, available=available))

        return probed

    def negotiate(self, refresh: bool = False) -> list[CodecProfile]:
        """Return the available profiles ordered by priority, probing at most once."""
        with self._lock:
            if self._profiles is None or refresh:
                probed = self.probe()
                self._profiles = sorted(
                    (p for p in probed if p.available), key=lambda p: p.priority
                )
                logger.info(
                    f"[CODEC] Negotiated profiles: {[p.name for p in self._profiles]}"
                )
            return list(self._profiles)

    def _list_encoders(self) -> set[str]:
        try:
            result = self.runner.run(
                [self.settings.ffmpeg_path, "-hide_banner", "-encoders"],
                timeout=self.settings.probe_timeout_s,
            )
        except (SubprocessFailureError, SubprocessTimeoutError) as exc:
            logger.warning(f"[CODEC] Failed to probe FFmpeg encoders: {exc}")
            return set()
        return parse_encoder_list(result.stdout)
