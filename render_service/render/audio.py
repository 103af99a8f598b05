from __future__ import annotations

import pathlib
from typing import Any, List, Optional

from render_service.render.ffmpeg import FFmpegRunner, escape_filter_value

NARRATION_VOLUME = 0.9

CAPTION_STYLE: dict[str, Any] = {
    "font_size": 18,
    "color": "#FFFFFF",
    "outline_color": "#000000",
    "border_style": 3,
    "outline": 1,
    "shadow": 1,
    "margin_bottom": 25,
}


def ass_color(value: str) -> str:
    hex_value = value.lstrip("#")
    if len(hex_value) != 6:
        return "&H00FFFFFF"
    r = hex_value[0:2]
    g = hex_value[2:4]
    b = hex_value[4:6]
    return f"&H00{b}{g}{r}"


def force_style(style: dict[str, Any]) -> str:
    parts = []
    font = style.get("font_family")
    if font:
        parts.append(f"Fontname={font}")
    if style.get("font_size"):
        parts.append(f"Fontsize={style['font_size']}")
    if style.get("color"):
        parts.append(f"PrimaryColour={ass_color(style['color'])}")
    if style.get("outline_color"):
        parts.append(f"OutlineColour={ass_color(style['outline_color'])}")
    for key, name in (("border_style", "BorderStyle"), ("outline", "Outline"), ("shadow", "Shadow")):
        if style.get(key) is not None:
            parts.append(f"{name}={style[key]}")
    if style.get("margin_bottom") is not None:
        parts.append(f"MarginV={style['margin_bottom']}")
    return ",".join(parts)


def captions_filter(captions_path: str, style: dict[str, Any] | None = None) -> str:
    subs = escape_filter_value(pathlib.Path(captions_path).as_posix())
    return f"subtitles='{subs}':force_style='{force_style(style or CAPTION_STYLE)}'"


def watermark_filter(text: str) -> str:
    return (
        f"drawtext=text='{escape_filter_value(text)}':fontcolor=white@0.6:fontsize=24"
        ":box=1:boxcolor=black@0.4:boxborderw=5:x=w-tw-10:y=h-th-10"
    )


def audio_filter(has_music: bool) -> str:
    narration = f"[1:a]volume={NARRATION_VOLUME}"
    if not has_music:
        return f"{narration}[final_audio]"
    # music is ducked under the narration, then both are mixed for the narration's length
    return ";".join(
        [
            f"{narration},asplit=2[narr][narr_key]",
            "[2:a][narr_key]sidechaincompress=threshold=0.05:ratio=6:attack=5:release=300[ducked]",
            "[narr][ducked]amix=inputs=2:duration=first:dropout_transition=2,volume=1.0[final_audio]",
        ]
    )


def video_filter(captions_path: Optional[str], watermark: Optional[str]) -> str:
    # the last frame is held so the picture never ends before the audio
    steps = ["tpad=stop=-1:stop_mode=clone"]
    if captions_path:
        steps.append(captions_filter(captions_path))
    if watermark:
        steps.append(watermark_filter(watermark))
    return f"[0:v]{','.join(steps)}[vout]"


class AudioMixer:
    def __init__(self, runner: FFmpegRunner) -> None:
        self.runner = runner

    def build_command(
        self,
        video_path: str,
        narration_path: str,
        output_path: str,
        encode_options: List[str],
        music_path: Optional[str] = None,
        captions_path: Optional[str] = None,
        watermark: Optional[str] = None,
    ) -> List[str]:
        inputs = ["-i", video_path, "-i", narration_path]
        if music_path:
            inputs.extend(["-stream_loop", "-1", "-i", music_path])
        graph = ";".join([video_filter(captions_path, watermark), audio_filter(bool(music_path))])
        return self.runner.command(
            *inputs,
            "-filter_complex", graph,
            "-map", "[vout]",
            "-map", "[final_audio]",
            *encode_options,
            "-c:a", "aac",
            "-b:a", "192k",
            "-shortest",
            output_path,
        )

    def mix(
        self,
        video_path: str,
        narration_path: str,
        output_path: str,
        encode_options: List[str],
        music_path: Optional[str] = None,
        captions_path: Optional[str] = None,
        watermark: Optional[str] = None,
    ) -> str:
        cmd = self.build_command(
            video_path,
            narration_path,
            output_path,
            encode_options,
            music_path=music_path,
            captions_path=captions_path,
            watermark=watermark,
        )
        self.runner.run(cmd, step="mix" if not captions_path else "mix+captions")
        return output_path
