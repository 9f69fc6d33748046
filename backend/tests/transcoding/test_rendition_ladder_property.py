"""Property-based tests for the rendition ladder and the HLS command.

For any ladder of N renditions the single ffmpeg invocation must fan out
into exactly N scaled branches, N encoder configurations and N entries of
the variant stream map.
"""

import json

import pytest
from hypothesis import given, settings, strategies as st

from vod_pipeline.modules.transcoding.abr import (
    RenditionLadder,
    RenditionSpec,
    load_ladder,
    stream_dir_name,
)
from vod_pipeline.modules.transcoding.ffmpeg import build_hls_command
from vod_pipeline.modules.transcoding.schemas import PipelineConfig


rendition_strategy = st.builds(
    RenditionSpec,
    label=st.text(alphabet="abcdefghijklmnop0123456789", min_size=1, max_size=8),
    width=st.integers(min_value=16, max_value=7680),
    height=st.integers(min_value=16, max_value=4320),
    video_bitrate_kbps=st.integers(min_value=100, max_value=50000),
    max_bitrate_kbps=st.integers(min_value=100, max_value=60000),
    buffer_size_kbps=st.integers(min_value=100, max_value=90000),
    audio_bitrate_kbps=st.integers(min_value=32, max_value=320),
)

ladder_strategy = st.lists(
    rendition_strategy, min_size=1, max_size=6, unique_by=lambda r: r.label
).map(lambda renditions: RenditionLadder(renditions=tuple(renditions)))


def _config(ladder: RenditionLadder) -> PipelineConfig:
    return PipelineConfig(ffmpeg_path="ffmpeg", ffprobe_path="ffprobe", ladder=ladder)


class TestDefaultLadder:
    def test_default_ladder_is_1080_720_480(self) -> None:
        ladder = RenditionLadder.create_default_ladder()
        assert [r.label for r in ladder] == ["1080p", "720p", "480p"]
        assert [(r.width, r.height) for r in ladder] == [(1920, 1080), (1280, 720), (854, 480)]

    def test_default_ladder_is_ordered_highest_first(self) -> None:
        ladder = RenditionLadder.create_default_ladder()
        bitrates = [r.video_bitrate_kbps for r in ladder]
        assert bitrates == sorted(bitrates, reverse=True)

    def test_stream_dirs_follow_ordinals(self) -> None:
        ladder = RenditionLadder.create_default_ladder()
        assert ladder.stream_dirs == ["stream_0", "stream_1", "stream_2"]
        assert stream_dir_name(7) == "stream_7"

    def test_empty_setting_loads_default(self) -> None:
        assert load_ladder(None) == RenditionLadder.create_default_ladder()
        assert load_ladder("") == RenditionLadder.create_default_ladder()


class TestLadderFromJson:
    def test_parses_in_given_order(self) -> None:
        raw = json.dumps([
            {"label": "720p", "width": 1280, "height": 720, "video_bitrate_kbps": 2800,
             "max_bitrate_kbps": 2996, "buffer_size_kbps": 4200, "audio_bitrate_kbps": 128},
            {"label": "360p", "width": 640, "height": 360, "video_bitrate_kbps": 800},
        ])
        ladder = RenditionLadder.from_json(raw)

        assert len(ladder) == 2
        assert ladder[0].label == "720p"
        assert ladder[1].audio_bitrate_kbps == 128
        # Headroom derived from the target bitrate when not given
        assert ladder[1].max_bitrate_kbps == 856
        assert ladder[1].buffer_size_kbps == 1200

    @pytest.mark.parametrize("raw", [
        "not json",
        "{}",
        "[]",
        '[{"label": "x", "width": 0, "height": 10, "video_bitrate_kbps": 100}]',
        '[{"label": "a", "width": 10, "height": 10, "video_bitrate_kbps": 100},'
        ' {"label": "a", "width": 20, "height": 20, "video_bitrate_kbps": 200}]',
    ])
    def test_rejects_invalid_ladders(self, raw: str) -> None:
        with pytest.raises(ValueError):
            RenditionLadder.from_json(raw)


class TestHLSCommandProperty:
    @given(ladder=ladder_strategy)
    @settings(max_examples=100)
    def test_command_fans_out_into_every_rendition(self, ladder: RenditionLadder) -> None:
        cmd = build_hls_command(_config(ladder), "/in/source.mp4", "/work/job")
        n = len(ladder)

        filter_graph = cmd[cmd.index("-filter_complex") + 1]
        assert filter_graph.startswith(f"[0:v]split={n}")
        for i, rendition in enumerate(ladder):
            assert f"[v{i + 1}]scale=w={rendition.width}:h={rendition.height}[v{i + 1}out]" in filter_graph
            assert f"[v{i + 1}out]" in cmd
            assert cmd[cmd.index(f"-b:v:{i}") + 1] == f"{rendition.video_bitrate_kbps}k"
            assert cmd[cmd.index(f"-maxrate:v:{i}") + 1] == f"{rendition.max_bitrate_kbps}k"
            assert cmd[cmd.index(f"-bufsize:v:{i}") + 1] == f"{rendition.buffer_size_kbps}k"
            assert cmd[cmd.index(f"-b:a:{i}") + 1] == f"{rendition.audio_bitrate_kbps}k"

        stream_map = cmd[cmd.index("-var_stream_map") + 1]
        assert stream_map.split(" ") == [f"v:{i},a:{i}" for i in range(n)]
        assert cmd.count("a:0") == n

    @given(ladder=ladder_strategy)
    @settings(max_examples=50)
    def test_video_only_sources_map_no_audio(self, ladder: RenditionLadder) -> None:
        cmd = build_hls_command(_config(ladder), "/in/source.mp4", "/work/job", has_audio=False)

        assert "a:0" not in cmd
        assert not any(arg.startswith("-c:a") for arg in cmd)
        stream_map = cmd[cmd.index("-var_stream_map") + 1]
        assert stream_map.split(" ") == [f"v:{i}" for i in range(len(ladder))]

    def test_command_writes_vod_hls_layout(self) -> None:
        config = PipelineConfig(
            ffmpeg_path="/opt/ffmpeg",
            ffprobe_path="ffprobe",
            segment_seconds=15,
            video_encoder="libx264",
            encoder_preset="veryfast",
        )
        cmd = build_hls_command(config, "/in/source.mp4", "/work/job")

        assert cmd[0] == "/opt/ffmpeg"
        assert cmd[cmd.index("-i") + 1] == "/in/source.mp4"
        assert cmd[cmd.index("-hls_time") + 1] == "15"
        assert cmd[cmd.index("-hls_playlist_type") + 1] == "vod"
        assert cmd[cmd.index("-master_pl_name") + 1] == "master.m3u8"
        assert cmd[cmd.index("-hls_segment_filename") + 1] == "/work/job/stream_%v/data%03d.ts"
        assert cmd[cmd.index("-c:v:0") + 1] == "libx264"
        assert cmd[cmd.index("-preset:v:2") + 1] == "veryfast"
        assert cmd[-1] == "/work/job/stream_%v/playlist.m3u8"
