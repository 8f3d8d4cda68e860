"""
Composer - Multi-track filter graph assembly and final encode.

Given an ordered, contiguous list of clips, builds one ffmpeg invocation:

    video:  per clip  trim → setpts → format → scale(fit) → pad(center) → setsar → fps
            then concat in index order (hard cuts)
    audio:  per clip  embedded audio if present, else its voice track
            (split into pieces when timing hints exist), each delayed to its
            timeline position; optional looped background music; all mixed
            with amix duration=longest. No source at all → synthesized silence.

The encode always uses the fixed compatibility profile from ffmpeg_config.
Output is written atomically; ffmpeg stderr is raised verbatim in FFmpegError.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from .core.cmd_runner import CommandError, run_command
from .core.models import Clip, CompositionOptions
from .core.temp_files import atomic_ffmpeg
from .exceptions import FFmpegError, RequestValidationError
from .ffmpeg_config import FFmpegConfig
from .ffmpeg_filters import AudioFilterChain, FilterGraph, VideoFilterChain
from .ffmpeg_utils import build_ffmpeg_cmd, format_seconds, stderr_tail
from .config import get_settings
from .logger import logger
from .video_metadata import has_audio_stream

# Timeline tolerance when checking clip contiguity (seconds)
CONTIGUITY_TOLERANCE = 1e-3

EXPORT_FORMATS = ("webm", "gif", "hls")


@dataclass
class CompositionPlan:
    """Everything needed to run the compose encode, minus the output path."""
    input_args: List[str]
    filter_complex: str
    map_args: List[str]
    total_duration: float
    audio_sources: int
    notes: List[str] = field(default_factory=list)


def validate_timeline(clips: Sequence[Clip]) -> None:
    """
    Reject empty or non-contiguous timelines.

    Raises:
        RequestValidationError: no clips, or a gap/overlap between neighbours
    """
    if not clips:
        raise RequestValidationError("At least one clip is required")
    for i in range(len(clips) - 1):
        gap = clips[i + 1].start_time - clips[i].end_time
        if abs(gap) > CONTIGUITY_TOLERANCE:
            raise RequestValidationError(
                f"Clip timeline is not contiguous between clip {i} and {i + 1} "
                f"(end {clips[i].end_time:.3f} vs start {clips[i + 1].start_time:.3f})"
            )


def total_duration(clips: Sequence[Clip]) -> float:
    return sum(c.duration for c in clips)


def _voice_piece_chains(clip: Clip, sample_rate: int) -> List[str]:
    """
    Voice track split into consecutive pieces, one per timing hint.

    Piece i lasts as long as hint i and is cut sequentially from the voice
    file; it is placed at clip.start_time + hint.start_time.
    """
    chains = []
    offset = 0.0
    for hint in clip.timing_hints:
        piece_len = min(hint.duration, max(0.0, clip.duration - hint.start_time))
        if piece_len <= 0:
            offset += hint.duration
            continue
        chain = (AudioFilterChain()
            .add_atrim(duration=piece_len, start=offset)
            .add_asetpts_reset()
            .add_aformat(sample_rate=sample_rate)
            .add_delay(clip.start_time + hint.start_time)
            .build())
        chains.append(chain)
        offset += hint.duration
    return chains


def build_filter_graph(
    clips: Sequence[Clip],
    options: CompositionOptions,
    clip_has_audio: Sequence[bool],
    config: Optional[FFmpegConfig] = None,
) -> CompositionPlan:
    """
    Build the composition graph without touching the filesystem.

    ``clip_has_audio[i]`` says whether clip i's source carries an embedded
    audio stream. Identical arguments always yield an identical plan.
    """
    validate_timeline(clips)
    if len(clip_has_audio) != len(clips):
        raise RequestValidationError("clip_has_audio must have one entry per clip")

    config = config or FFmpegConfig()
    width, height = options.output_width, options.output_height
    total = total_duration(clips)

    input_args: List[str] = []
    graph = FilterGraph()
    notes: List[str] = []
    audio_labels: List[str] = []

    for clip in clips:
        input_args += ["-i", clip.local_path]
    next_input = len(clips)

    # Video: normalize every clip, then concat
    video_labels = []
    for i, clip in enumerate(clips):
        chain = (VideoFilterChain()
            .add_trim(duration=clip.duration)
            .add_setpts_reset()
            .add_format(config.pix_fmt)
            .add_scale_fit(width, height)
            .add_pad_center(width, height)
            .add_setsar()
            .add_fps(config.fps)
            .build())
        graph.add_chain([f"{i}:v"], chain, [f"v{i}"])
        video_labels.append(f"v{i}")
    if len(video_labels) == 1:
        graph.add_chain(video_labels, "null", ["vout"])
    else:
        graph.add_concat(video_labels, "vout", video=1, audio=0)

    # Audio: embedded stream, else voice track
    for i, clip in enumerate(clips):
        if clip_has_audio[i]:
            chain = (AudioFilterChain()
                .add_atrim(duration=clip.duration)
                .add_asetpts_reset()
                .add_aformat(sample_rate=config.audio_rate)
                .add_delay(clip.start_time)
                .build())
            graph.add_chain([f"{i}:a"], chain, [f"a{i}"])
            audio_labels.append(f"a{i}")
            continue

        if not clip.voice_path:
            notes.append(f"clip {i}: no audio source")
            continue

        voice_input = next_input
        next_input += 1
        input_args += ["-i", clip.voice_path]

        if clip.timing_hints:
            pieces = _voice_piece_chains(clip, config.audio_rate)
            if pieces:
                split_labels = [f"vs{i}_{k}" for k in range(len(pieces))]
                if len(pieces) == 1:
                    graph.add_chain([f"{voice_input}:a"], pieces[0], [f"a{i}_0"])
                else:
                    graph.add_chain([f"{voice_input}:a"], f"asplit={len(pieces)}", split_labels)
                    for k, piece in enumerate(pieces):
                        graph.add_chain([split_labels[k]], piece, [f"a{i}_{k}"])
                audio_labels += [f"a{i}_{k}" for k in range(len(pieces))]
                notes.append(f"clip {i}: voice split into {len(pieces)} timed pieces")
                continue

        chain = (AudioFilterChain()
            .add_atrim(duration=clip.duration)
            .add_asetpts_reset()
            .add_aformat(sample_rate=config.audio_rate)
            .add_delay(clip.start_time)
            .build())
        graph.add_chain([f"{voice_input}:a"], chain, [f"a{i}"])
        audio_labels.append(f"a{i}")

    # Background music: looped, trimmed to the timeline, attenuated
    if options.background_music_path:
        music_input = next_input
        next_input += 1
        input_args += ["-stream_loop", "-1", "-i", options.background_music_path]
        chain = (AudioFilterChain()
            .add_atrim(duration=total)
            .add_asetpts_reset()
            .add_aformat(sample_rate=config.audio_rate)
            .add_volume(options.music_volume / 100.0)
            .build())
        graph.add_chain([f"{music_input}:a"], chain, ["music"])
        audio_labels.append("music")

    audio_sources = len(audio_labels)
    if audio_labels:
        graph.add_amix(audio_labels, "amixed", duration="longest")
        graph.add_chain(["amixed"], "apad", ["aout"])
    else:
        notes.append("no audio sources, synthesizing silence")
        graph.add_silence(total, "aout", sample_rate=config.audio_rate)

    map_args = ["-map", "[vout]", "-map", "[aout]", "-t", format_seconds(total)]
    return CompositionPlan(
        input_args=input_args,
        filter_complex=graph.build(),
        map_args=map_args,
        total_duration=total,
        audio_sources=audio_sources,
        notes=notes,
    )


def build_compose_command(plan: CompositionPlan, output_path: str, config: Optional[FFmpegConfig] = None) -> List[str]:
    config = config or FFmpegConfig()
    args = (
        plan.input_args
        + ["-filter_complex", plan.filter_complex]
        + plan.map_args
        + config.video_params()
        + config.audio_params()
        + config.container_params()
        + [output_path]
    )
    return build_ffmpeg_cmd(args, hide_banner=True)


def _run_ffmpeg(cmd: List[str], what: str, timeout: Optional[int] = None) -> None:
    try:
        run_command(cmd, timeout=timeout)
    except CommandError as e:
        raise FFmpegError(
            f"{what} failed (exit {e.returncode}): {stderr_tail(e.stderr)}",
            command=" ".join(str(x) for x in cmd),
            stderr=e.stderr,
        ) from e


def compose_video(
    clips: Sequence[Clip],
    options: CompositionOptions,
    audio_probe: Callable[[str], bool] = None,
    config: Optional[FFmpegConfig] = None,
) -> str:
    """
    Compose clips into one video at ``options.output_path``.

    Args:
        clips: Ordered, contiguous timeline clips
        options: Output size, music and transition settings
        audio_probe: Embedded-audio detector (default: ffprobe)
        config: Encoding parameters (default: from settings)

    Returns:
        The output path

    Raises:
        RequestValidationError: invalid timeline
        FFmpegError: the encode failed; nothing is written to output_path
    """
    validate_timeline(clips)
    audio_probe = audio_probe or has_audio_stream
    config = config or FFmpegConfig.from_settings()

    logger.info(f"[Compose] Composing {len(clips)} clip(s) → {options.output_path}")
    if options.transition != "none":
        logger.info(f"[Compose] Transition '{options.transition}' requested; using hard cuts")

    clip_has_audio = [audio_probe(c.local_path) for c in clips]
    plan = build_filter_graph(clips, options, clip_has_audio, config)
    for note in plan.notes:
        logger.debug(f"[Compose] {note}")
    logger.info(
        f"[Compose] Timeline {plan.total_duration:.2f}s, "
        f"{sum(clip_has_audio)} embedded audio, {plan.audio_sources} audio source(s)"
    )

    with atomic_ffmpeg(options.output_path) as temp_path:
        cmd = build_compose_command(plan, temp_path, config)
        _run_ffmpeg(cmd, "Composition", timeout=get_settings().encoding.timeout)

    logger.info(f"   ✅ Composition written: {options.output_path}")
    return options.output_path


def export_to_format(input_path: str, output_path: str, fmt: str) -> str:
    """
    Re-encode a composed video as webm, gif or an HLS playlist.

    For HLS, ``output_path`` is the .m3u8 playlist; segments are written
    next to it.
    """
    if fmt not in EXPORT_FORMATS:
        raise RequestValidationError(f"Unsupported export format: {fmt}")

    out_dir = Path(output_path).parent
    out_dir.mkdir(parents=True, exist_ok=True)
    if fmt == "webm":
        args = ["-i", input_path, "-c:v", "libvpx-vp9", "-crf", "32", "-b:v", "0", "-c:a", "libopus"]
    elif fmt == "gif":
        args = ["-i", input_path, "-vf", "fps=10,scale=320:-1:flags=lanczos", "-an"]
    else:
        args = [
            "-i", input_path,
            "-c:v", "libx264", "-c:a", "aac",
            "-hls_time", "10",
            "-hls_playlist_type", "vod",
            "-hls_segment_filename", str(out_dir / "segment_%03d.ts"),
        ]

    logger.info(f"[Export] {Path(input_path).name} → {fmt}")
    if fmt == "hls":
        # Playlist plus segments cannot be renamed atomically as one file
        _run_ffmpeg(build_ffmpeg_cmd(args + [output_path], hide_banner=True), f"Export to {fmt}")
        return output_path

    with atomic_ffmpeg(output_path) as temp_path:
        _run_ffmpeg(build_ffmpeg_cmd(args + [temp_path], hide_banner=True), f"Export to {fmt}")
    return output_path
