"""
Tests for the filter chain builders and FilterGraph.
"""

from adstitch.ffmpeg_filters import AudioFilterChain, FilterGraph, FilterStep, VideoFilterChain


class TestFilterStep:
    """Tests for FilterStep rendering."""

    def test_no_params(self):
        """A step without params renders as the bare filter name."""
        assert FilterStep("null").to_string() == "null"

    def test_params_in_order(self):
        """Params are rendered key=value, colon separated, in insertion order."""
        assert FilterStep("scale", {"w": 1920, "h": 1080}).to_string() == "scale=w=1920:h=1080"

    def test_special_characters_are_quoted(self):
        """String values with separators are single-quoted."""
        step = FilterStep("drawtext", {"text": "a:b"})
        assert step.to_string() == "drawtext=text='a:b'"


class TestVideoFilterChain:
    """Tests for per-clip video normalization."""

    def test_full_normalization_chain(self):
        """Trim, reset, format, fit, pad, sar and fps render in order."""
        chain = (VideoFilterChain()
            .add_trim(duration=4.0)
            .add_setpts_reset()
            .add_format("yuv420p")
            .add_scale_fit(1080, 1920)
            .add_pad_center(1080, 1920)
            .add_setsar()
            .add_fps(30)
            .build())
        assert chain == (
            "trim=duration=4.000,"
            "setpts=expr=PTS-STARTPTS,"
            "format=pix_fmts=yuv420p,"
            "scale=w=1080:h=1920:force_original_aspect_ratio=decrease,"
            "pad=w=1080:h=1920:x=(ow-iw)/2:y=(oh-ih)/2:color=black,"
            "setsar=sar=1,"
            "fps=fps=30"
        )

    def test_trim_with_start(self):
        """A positive start is emitted before the duration."""
        assert VideoFilterChain().add_trim(duration=1.5, start=2.25).build() == "trim=start=2.250:duration=1.500"

    def test_len_counts_steps(self):
        """len() reports the number of filters added."""
        assert len(VideoFilterChain().add_setsar().add_fps(25)) == 2


class TestAudioFilterChain:
    """Tests for per-source audio chains."""

    def test_delay_in_milliseconds(self):
        """adelay is expressed in whole milliseconds for all channels."""
        assert AudioFilterChain().add_delay(1.25).build() == "adelay=delays=1250:all=1"

    def test_zero_delay_is_skipped(self):
        """No adelay is emitted for a stream starting at zero."""
        assert AudioFilterChain().add_delay(0.0).build() == ""

    def test_aformat_and_volume(self):
        """aformat normalizes rate and layout; volume has two decimals."""
        chain = AudioFilterChain().add_aformat(sample_rate=48000).add_volume(0.3).build()
        assert chain == "aformat=sample_rates=48000:channel_layouts=stereo,volume=volume=0.30"


class TestFilterGraph:
    """Tests for labeled graph assembly."""

    def test_chains_joined_with_semicolons(self):
        """Statements carry input/output labels and join with ';'."""
        graph = FilterGraph()
        graph.add_chain(["0:v"], "null", ["v0"])
        graph.add_chain(["1:v"], "null", ["v1"])
        assert graph.build() == "[0:v]null[v0];[1:v]null[v1]"

    def test_concat_counts_segments(self):
        """concat n is the number of video inputs."""
        graph = FilterGraph().add_concat(["v0", "v1", "v2"], "vout")
        assert graph.build() == "[v0][v1][v2]concat=n=3:v=1:a=0[vout]"

    def test_amix_single_input_passthrough(self):
        """A single audio source is passed through instead of mixed."""
        assert FilterGraph().add_amix(["a0"], "mix").build() == "[a0]anull[mix]"

    def test_amix_multiple_inputs(self):
        """Several sources are mixed over the longest input."""
        graph = FilterGraph().add_amix(["a0", "music"], "mix")
        assert graph.build() == "[a0][music]amix=inputs=2:duration=longest:dropout_transition=0[mix]"

    def test_silence_source(self):
        """Silence is a stereo null source trimmed to the timeline."""
        graph = FilterGraph().add_silence(8.0, "aout")
        assert graph.build() == "anullsrc=channel_layout=stereo:sample_rate=48000,atrim=duration=8.000[aout]"
