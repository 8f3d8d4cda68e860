"""
Filter graph construction for AdStitch compositions.

Follows the builder pattern: per-stream filter chains are assembled step by
step and rendered to FFmpeg filter strings, then wired together with labeled
pads into one ``-filter_complex`` graph.

Usage:
    from adstitch.ffmpeg_filters import VideoFilterChain, AudioFilterChain, FilterGraph

    video = (VideoFilterChain()
        .add_trim(duration=4.0)
        .add_setpts_reset()
        .add_scale_fit(1080, 1920)
        .add_pad_center(1080, 1920)
        .build())

    graph = FilterGraph()
    graph.add_chain(["0:v"], video, ["v0"])
    graph.build()  # "[0:v]trim=duration=4.000,...[v0]"
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from .ffmpeg_utils import format_seconds


@dataclass
class FilterStep:
    """Single filter operation in a chain."""
    name: str
    params: Dict[str, Any] = field(default_factory=dict)

    def to_string(self) -> str:
        """Convert filter step to FFmpeg filter string.

        Example:
            FilterStep("scale", {"w": 1920, "h": 1080})
            → "scale=w=1920:h=1080"
        """
        if not self.params:
            return self.name

        parts = []
        for key, value in self.params.items():
            if isinstance(value, str):
                # Quote string values if they contain special chars
                if any(c in value for c in " ;:[],'\""):
                    value = f"'{value}'"
            parts.append(f"{key}={value}")

        return f"{self.name}={':'.join(parts)}"


class _FilterChain:
    def __init__(self):
        self.filters: List[FilterStep] = []

    def add(self, name: str, **params: Any):
        self.filters.append(FilterStep(name, dict(params)))
        return self

    def build(self) -> str:
        """Render the chain as a comma-separated FFmpeg filter string."""
        return ",".join(step.to_string() for step in self.filters)

    def __len__(self) -> int:
        return len(self.filters)


class VideoFilterChain(_FilterChain):
    """Builder for per-clip video normalization chains."""

    def __init__(self, pad_color: str = "black"):
        super().__init__()
        self.pad_color = pad_color

    def add_trim(self, duration: float, start: float = 0.0) -> "VideoFilterChain":
        params: Dict[str, Any] = {}
        if start > 0:
            params["start"] = format_seconds(start)
        params["duration"] = format_seconds(duration)
        self.filters.append(FilterStep("trim", params))
        return self

    def add_setpts_reset(self) -> "VideoFilterChain":
        """Restart timestamps at zero after a trim."""
        self.filters.append(FilterStep("setpts", {"expr": "PTS-STARTPTS"}))
        return self

    def add_format(self, pix_fmt: str = "yuv420p") -> "VideoFilterChain":
        self.filters.append(FilterStep("format", {"pix_fmts": pix_fmt}))
        return self

    def add_scale_fit(self, width: int, height: int) -> "VideoFilterChain":
        """Scale to fit inside width x height, preserving aspect ratio."""
        self.filters.append(FilterStep("scale", {
            "w": width,
            "h": height,
            "force_original_aspect_ratio": "decrease",
        }))
        return self

    def add_pad_center(self, width: int, height: int) -> "VideoFilterChain":
        """Pad to exactly width x height with the picture centered."""
        self.filters.append(FilterStep("pad", {
            "w": width,
            "h": height,
            "x": "(ow-iw)/2",
            "y": "(oh-ih)/2",
            "color": self.pad_color,
        }))
        return self

    def add_setsar(self, ratio: str = "1") -> "VideoFilterChain":
        self.filters.append(FilterStep("setsar", {"sar": ratio}))
        return self

    def add_fps(self, fps: int) -> "VideoFilterChain":
        self.filters.append(FilterStep("fps", {"fps": fps}))
        return self


class AudioFilterChain(_FilterChain):
    """Builder for per-source audio chains."""

    def add_atrim(self, duration: float, start: float = 0.0) -> "AudioFilterChain":
        params: Dict[str, Any] = {}
        if start > 0:
            params["start"] = format_seconds(start)
        params["duration"] = format_seconds(duration)
        self.filters.append(FilterStep("atrim", params))
        return self

    def add_asetpts_reset(self) -> "AudioFilterChain":
        self.filters.append(FilterStep("asetpts", {"expr": "PTS-STARTPTS"}))
        return self

    def add_aformat(self, sample_rate: int = 48000, layout: str = "stereo") -> "AudioFilterChain":
        """Normalize sample format so every mixer input matches."""
        self.filters.append(FilterStep("aformat", {
            "sample_rates": sample_rate,
            "channel_layouts": layout,
        }))
        return self

    def add_delay(self, seconds: float) -> "AudioFilterChain":
        """Shift the stream to start at ``seconds`` on the timeline."""
        millis = int(round(max(0.0, seconds) * 1000))
        if millis > 0:
            self.filters.append(FilterStep("adelay", {"delays": millis, "all": 1}))
        return self

    def add_volume(self, volume: float) -> "AudioFilterChain":
        self.filters.append(FilterStep("volume", {"volume": f"{volume:.2f}"}))
        return self


def _label(name: str) -> str:
    return f"[{name}]"


class FilterGraph:
    """Labeled filter_complex graph assembled from chains."""

    def __init__(self):
        self.statements: List[str] = []

    def add_chain(self, inputs: Sequence[str], chain: str, outputs: Sequence[str]) -> "FilterGraph":
        ins = "".join(_label(i) for i in inputs)
        outs = "".join(_label(o) for o in outputs)
        self.statements.append(f"{ins}{chain}{outs}")
        return self

    def add_concat(self, inputs: Sequence[str], output: str, video: int = 1, audio: int = 0) -> "FilterGraph":
        n = len(inputs) // max(1, video + audio)
        step = FilterStep("concat", {"n": n, "v": video, "a": audio})
        return self.add_chain(inputs, step.to_string(), [output])

    def add_amix(self, inputs: Sequence[str], output: str, duration: str = "longest") -> "FilterGraph":
        if len(inputs) == 1:
            return self.add_chain(inputs, "anull", [output])
        step = FilterStep("amix", {"inputs": len(inputs), "duration": duration, "dropout_transition": 0})
        return self.add_chain(inputs, step.to_string(), [output])

    def add_silence(self, duration: float, output: str, sample_rate: int = 48000) -> "FilterGraph":
        """Silent stereo source spanning ``duration`` seconds."""
        src = FilterStep("anullsrc", {"channel_layout": "stereo", "sample_rate": sample_rate}).to_string()
        trim = FilterStep("atrim", {"duration": format_seconds(duration)}).to_string()
        return self.add_chain([], f"{src},{trim}", [output])

    def build(self) -> str:
        return ";".join(self.statements)
