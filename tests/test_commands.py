"""
Tests for ffmpeg argument construction.
"""

import pytest

from ffqueue.errors import ERR_BAD_OPTIONS, ERR_UNSUPPORTED_ENCODER, InvalidOptionsError, UnsupportedEncoderError
from ffqueue.models import (
    AudioCodec, AudioCopy, AudioEncode, Container, PresetName, VideoCodec, VideoPreset,
)
from ffqueue.transcoding.commands import (
    build_full_args, build_scale_args, build_trim_args, build_video_args, escape_filter_path,
    escape_subtitle_filter_path, recommended_audio_bitrate, to_preset, validate_audio_bitrate,
    validate_options, validate_path,
)
from ffqueue.transcoding.constants import PRESET_ARGS

from .conftest import make_options


def _full(**overrides):
    params = dict(
        input_path="/videos/in.mov",
        output_path="/out/in_h264.mp4.tmp",
        codec=VideoCodec.LIBX264,
        preset=to_preset(PresetName.BALANCED, VideoCodec.LIBX264),
        container=Container.MP4,
        audio=AudioCopy(),
    )
    params.update(overrides)
    return build_full_args(**params)


class TestToPreset:
    """Tests for preset expansion."""

    @pytest.mark.parametrize("name", [PresetName.HQ_SLOW, PresetName.BALANCED, PresetName.FAST_SMALL])
    @pytest.mark.parametrize("codec", list(VideoCodec))
    def test_every_tier_covers_every_codec(self, name, codec):
        preset = to_preset(name, codec)
        assert preset.name == name
        assert preset.args == PRESET_ARGS[name][codec]
        assert preset.args

    def test_software_uses_crf(self):
        assert "-crf" in to_preset(PresetName.HQ_SLOW, "libx264").args

    def test_nvenc_uses_constant_quality(self):
        args = to_preset(PresetName.BALANCED, "h264_nvenc").args
        assert args[args.index("-rc") + 1] == "vbr"
        assert "-cq" in args

    def test_custom_has_no_args(self):
        assert to_preset("custom", "libx264").args == []

    def test_unknown_codec(self):
        with pytest.raises(UnsupportedEncoderError) as exc:
            to_preset(PresetName.BALANCED, "libvpx")
        assert exc.value.code == ERR_UNSUPPORTED_ENCODER
        assert "unsupported encoder: libvpx" in str(exc.value)

    def test_unknown_preset(self):
        with pytest.raises(InvalidOptionsError) as exc:
            to_preset("ultra", "libx264")
        assert exc.value.code == ERR_BAD_OPTIONS


class TestBuildVideoArgs:
    """Tests for the encoder section of the command."""

    def test_copy_audio(self):
        preset = VideoPreset(name=PresetName.CUSTOM, args=["-crf", "30"])
        args = build_video_args("libx265", preset, "mkv", AudioCopy())
        assert args == ["-c:v", "libx265", "-crf", "30", "-c:a", "copy"]

    def test_encode_audio(self):
        preset = to_preset(PresetName.FAST_SMALL, "libx264")
        args = build_video_args("libx264", preset, "mp4", AudioEncode(codec=AudioCodec.AAC, bitrate_k=192))
        assert args[-4:] == ["-c:a", "aac", "-b:a", "192k"]

    def test_exactly_one_codec_pair(self):
        preset = to_preset(PresetName.HQ_SLOW, "hevc_qsv")
        args = build_video_args("hevc_qsv", preset, "mkv", AudioEncode(codec="libopus", bitrate_k=96))
        assert args.count("-c:v") == 1
        assert args.count("-c:a") == 1

    def test_unknown_codec(self):
        with pytest.raises(UnsupportedEncoderError):
            build_video_args("mpeg2video", VideoPreset(name=PresetName.CUSTOM), "mp4", AudioCopy())


class TestBuildFullArgs:
    """Tests for the complete argument list."""

    def test_layout(self):
        args = _full()
        assert args[:3] == ["-y", "-i", "/videos/in.mov"]
        assert args[-1] == "/out/in_h264.mp4.tmp"
        assert args[args.index("-f") + 1] == "mp4"
        assert args[-4:-1] == ["-progress", "pipe:1", "-nostats"]

    def test_muxer_before_output(self):
        args = _full(container=Container.MKV, output_path="/out/in_h264.mkv.tmp")
        assert args[args.index("-f") + 1] == "matroska"
        assert args.index("-f") < len(args) - 1

    def test_faststart_only_for_mp4(self):
        assert "+faststart" in _full()
        assert "+faststart" not in _full(fast_start=False)
        assert "+faststart" not in _full(container=Container.MKV)

    def test_extra_args_after_codecs(self):
        args = _full(extra_args=["-map_metadata", "-1"])
        assert args.index("-map_metadata") > args.index("-c:a")
        assert args.index("-map_metadata") < args.index("-f")

    def test_subtitles_filter_escaped(self):
        args = _full(subtitle_path="C:\\subs\\movie [eng].srt")
        vf = args[args.index("-vf") + 1]
        assert vf == "subtitles='C\\:/subs/movie \\[eng\\].srt'"

    def test_no_subtitles_no_filter(self):
        assert "-vf" not in _full()

    @pytest.mark.parametrize("bad", ["in;rm -rf.mp4", "a|b.mp4", "$(x).mp4", "`x`.mp4", "a&b.mp4", "a!.mp4"])
    def test_rejects_shell_metacharacters(self, bad):
        with pytest.raises(InvalidOptionsError):
            _full(input_path=bad)

    def test_rejects_bad_output(self):
        with pytest.raises(InvalidOptionsError):
            _full(output_path="out>file.mp4")

    def test_paths_are_single_elements(self):
        args = _full(input_path="/videos/my holiday clip.mov")
        assert "/videos/my holiday clip.mov" in args


class TestValidation:
    """Tests for path and option validation."""

    def test_empty_path(self):
        with pytest.raises(InvalidOptionsError):
            validate_path("")

    def test_long_path(self):
        with pytest.raises(InvalidOptionsError):
            validate_path("/" + "a" * 300)

    def test_ok_path(self):
        validate_path("/home/user/Videos/clip (1).mp4")

    def test_bitrate_range(self):
        assert validate_audio_bitrate(32)
        assert validate_audio_bitrate(320)
        assert not validate_audio_bitrate(31)
        assert not validate_audio_bitrate(321)

    def test_recommended_bitrate(self):
        assert recommended_audio_bitrate(AudioCodec.OPUS) < recommended_audio_bitrate(AudioCodec.AAC)
        assert recommended_audio_bitrate("vorbis") == 128

    def test_options_bitrate_out_of_range(self):
        options = make_options(audio=AudioEncode(codec="aac", bitrate_k=999))
        with pytest.raises(InvalidOptionsError) as exc:
            validate_options(options)
        assert exc.value.code == ERR_BAD_OPTIONS

    def test_mp4_rejects_opus(self):
        options = make_options(container="mp4", audio=AudioEncode(codec="libopus", bitrate_k=96))
        with pytest.raises(InvalidOptionsError):
            validate_options(options)

    def test_mkv_accepts_opus(self):
        validate_options(make_options(container="mkv", audio=AudioEncode(codec="libopus", bitrate_k=96)))

    def test_bad_subtitle_path(self):
        with pytest.raises(InvalidOptionsError):
            validate_options(make_options(subtitle_path="subs;.srt"))


class TestEscaping:
    """Tests for filtergraph path escaping."""

    def test_windows_path(self):
        assert escape_filter_path("C:\\a\\b.srt") == "C\\:/a/b.srt"

    def test_quote_and_comma(self):
        assert escape_filter_path("/x/it's,here.srt") == "/x/it\\'s\\,here.srt"

    def test_plain_path_unchanged(self):
        assert escape_filter_path("/subs/movie.srt") == "/subs/movie.srt"

    def test_subtitle_path_validated(self):
        with pytest.raises(InvalidOptionsError):
            escape_subtitle_filter_path("/subs/$HOME.srt")


class TestHelpers:

    def test_trim(self):
        assert build_trim_args(1.5, 10) == ["-ss", "1.5", "-t", "10"]

    def test_scale(self):
        assert build_scale_args(1280, 720) == ["-vf", "scale=1280:720:flags=lanczos"]

    def test_scale_unknown_algorithm(self):
        with pytest.raises(InvalidOptionsError):
            build_scale_args(1280, 720, "nearest")
