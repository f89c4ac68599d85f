"""Tests for ffmpeg command builders."""

from pathlib import Path

from vidfrompdf.render.assembly import (
    METADATA_TITLE,
    SegmentSpec,
    build_concat_command,
    build_segment_command,
    build_silence_command,
    chapter_metadata,
    write_concat_manifest,
)
from vidfrompdf.render.codecs import default_profiles


def _segment() -> SegmentSpec:
    return SegmentSpec(
        index=0,
        image_path=Path("/p/page-0000.png"),
        audio_path=Path("/p/audio-0000.mp3"),
        duration_s=2.5,
    )


class TestChapterMetadata:
    """Tests for FFMETADATA chapter generation."""

    def test_header(self):
        text = chapter_metadata([1.0])
        lines = text.splitlines()
        assert lines[0] == ";FFMETADATA1"
        assert lines[1] == f"title={METADATA_TITLE}"
        assert METADATA_TITLE == "Created with vid-from-pdf"

    def test_one_chapter_per_page(self):
        text = chapter_metadata([1.5, 5.0, 0.25])
        assert text.count("[CHAPTER]") == 3
        assert text.count("TIMEBASE=1/1000") == 3

    def test_chapters_are_contiguous(self):
        text = chapter_metadata([1.5, 5.0, 0.25])
        starts = [int(l.split("=")[1]) for l in text.splitlines() if l.startswith("START=")]
        ends = [int(l.split("=")[1]) for l in text.splitlines() if l.startswith("END=")]
        assert starts == [0, 1500, 6500]
        assert ends == [1500, 6500, 6750]

    def test_chapter_titles(self):
        text = chapter_metadata([1.0, 1.0])
        assert "title=Chapter 1" in text
        assert "title=Chapter 2" in text


class TestConcatManifest:
    """Tests for the concat demuxer list."""

    def test_lists_segments_in_order(self, temp_output_dir):
        paths = [temp_output_dir / "segment-0000.mp4", temp_output_dir / "segment-0001.mp4"]
        manifest = write_concat_manifest(paths, temp_output_dir / "segments.txt")
        lines = manifest.read_text().splitlines()
        assert lines == [f"file '{paths[0]}'", f"file '{paths[1]}'"]

    def test_quotes_escaped(self, temp_output_dir):
        path = temp_output_dir / "it's.mp4"
        manifest = write_concat_manifest([path], temp_output_dir / "segments.txt")
        assert "it'\\''s.mp4" in manifest.read_text()


class TestCommands:
    """Tests for the ffmpeg command lines."""

    def test_silence_command(self, settings):
        cmd = build_silence_command(settings, 5.0, Path("/w/silence.wav"))
        assert cmd[0] == settings.ffmpeg_path
        assert f"anullsrc=r={settings.render_audio_sample_rate}:cl=stereo" in cmd
        assert cmd[cmd.index("-t") + 1] == "5.000"
        assert cmd[-1] == "/w/silence.wav"

    def test_segment_command_software(self, settings):
        software = default_profiles(settings)[-1]
        cmd = build_segment_command(settings, _segment(), software, Path("/w/segment.mp4"))

        assert cmd[cmd.index("-c:v") + 1] == "libx264"
        assert cmd[cmd.index("-loop") + 1] == "1"
        assert cmd[cmd.index("-t") + 1] == "2.500"
        assert "/p/page-0000.png" in cmd
        assert "/p/audio-0000.mp3" in cmd
        assert cmd[-1] == "/w/segment.mp4"

    def test_segment_filter_preserves_aspect(self, settings):
        software = default_profiles(settings)[-1]
        cmd = build_segment_command(settings, _segment(), software, Path("/w/segment.mp4"))
        vf = cmd[cmd.index("-vf") + 1]
        assert "force_original_aspect_ratio=decrease" in vf
        assert "flags=lanczos" in vf
        assert f"pad={settings.render_output_width}:{settings.render_output_height}" in vf
        assert vf.endswith("format=yuv420p")

    def test_segment_command_vaapi_opens_device_before_inputs(self, settings):
        vaapi = default_profiles(settings)[1]
        cmd = build_segment_command(settings, _segment(), vaapi, Path("/w/segment.mp4"))
        assert cmd.index("-vaapi_device") < cmd.index("-i")
        assert cmd[cmd.index("-vf") + 1].endswith("format=nv12,hwupload")

    def test_concat_command(self, settings):
        cmd = build_concat_command(
            settings, Path("/w/segments.txt"), Path("/w/chapters.txt"), Path("/o/out.mp4")
        )
        assert cmd[cmd.index("-f") + 1] == "concat"
        assert cmd[cmd.index("-safe") + 1] == "0"
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert cmd[cmd.index("-map_chapters") + 1] == "1"
        assert cmd[-1] == "/o/out.mp4"
