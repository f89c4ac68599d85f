from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="VFP_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Application
    app_name: str = "vid-from-pdf"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    host: str = "localhost"
    port: int = 8051

    # Storage: one directory per project below storage_path
    storage_path: str = "/tmp/vid-from-pdf"
    persist_projects: bool = True
    max_upload_size_mb: int = 200

    # External tools
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    pdftoppm_path: str = "pdftoppm"
    magick_path: str = "magick"
    vaapi_device: str = "/dev/dri/renderD128"

    # Rasterization
    rasterizer_backend: Literal["auto", "mupdf", "pdftoppm"] = "auto"
    raster_dpi: int = 200

    # Render settings
    render_output_width: int = 1920
    render_output_height: int = 1080
    render_fps: int = 10
    render_audio_bitrate: str = "192k"
    render_audio_sample_rate: int = 48000
    # Pages without audio are shown for this long
    render_silence_duration_s: float = 5.0
    # Skip hardware probing and always encode in software
    render_disable_hardware: bool = False

    # Timeouts in seconds, applied per external process
    probe_timeout_s: float = 30.0
    extract_timeout_s: float = 600.0
    render_timeout_s: float = 1800.0

    # Session
    session_cookie_name: str = "vfp_session"
    # Idle sessions are forgotten after this long
    session_ttl_s: float = 86400.0
    session_max_entries: int = 10000

    @property
    def max_upload_size_bytes(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


@lru_cache
def get_settings() -> Settings:
    return Settings()
