from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from typing import List, Optional, Sequence

from render_service.models.domain import TransitionKind
from render_service.render.ffmpeg import INTERMEDIATE_OPTIONS, FFmpegRunner

DEFAULT_OVERLAP = 0.75

XFADE_NAMES: dict[TransitionKind, str] = {
    TransitionKind.FADE: "fade",
    TransitionKind.WIPE_LEFT: "wipeleft",
    TransitionKind.WIPE_RIGHT: "wiperight",
    TransitionKind.CIRCLE_OPEN: "circleopen",
    TransitionKind.DISSOLVE: "dissolve",
}


@dataclass(frozen=True)
class Segment:
    path: str
    duration: float
    transition: TransitionKind


@dataclass(frozen=True)
class Join:
    """How segment ``index`` is joined onto the chain built so far."""

    index: int
    transition: TransitionKind
    offset: Optional[float]

    @property
    def crossfade(self) -> bool:
        return self.offset is not None


@dataclass(frozen=True)
class TransitionPlan:
    joins: List[Join]
    total_duration: float


def plan_transitions(
    durations: Sequence[float],
    transitions: Sequence[TransitionKind],
    overlap: float = DEFAULT_OVERLAP,
) -> TransitionPlan:
    """Compute crossfade offsets for a chain of segments.

    ``transitions[i]`` governs the join between segment ``i`` and ``i + 1``;
    the last entry is ignored. ``offset`` is the cumulative length of the
    chain so far minus the overlap. A join whose neighbours are not longer
    than the overlap degrades to a plain concatenation.
    """
    if not durations:
        return TransitionPlan(joins=[], total_duration=0.0)
    joins: List[Join] = []
    chain_length = float(durations[0])
    for index in range(1, len(durations)):
        kind = transitions[index - 1]
        previous, current = float(durations[index - 1]), float(durations[index])
        if kind != TransitionKind.NONE and previous > overlap and current > overlap:
            offset = round(chain_length - overlap, 6)
            joins.append(Join(index=index, transition=kind, offset=offset))
            chain_length += current - overlap
        else:
            joins.append(Join(index=index, transition=TransitionKind.NONE, offset=None))
            chain_length += current
    return TransitionPlan(joins=joins, total_duration=round(chain_length, 6))


def build_filter_graph(plan: TransitionPlan, overlap: float = DEFAULT_OVERLAP) -> str:
    parts: List[str] = []
    current = "[0:v]"
    for join in plan.joins:
        label = "[vout]" if join is plan.joins[-1] else f"[v{join.index}]"
        if join.crossfade:
            parts.append(
                f"{current}[{join.index}:v]xfade=transition={XFADE_NAMES[join.transition]}"
                f":duration={overlap:g}:offset={join.offset:g}{label}"
            )
        else:
            parts.append(f"{current}[{join.index}:v]concat=n=2:v=1:a=0{label}")
        current = label
    return ";".join(parts)


class TransitionComposer:
    def __init__(
        self,
        runner: FFmpegRunner,
        overlap: float = DEFAULT_OVERLAP,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.runner = runner
        self.overlap = overlap
        self.log = logger or logging.getLogger(__name__)

    def plan(self, segments: Sequence[Segment]) -> TransitionPlan:
        return plan_transitions(
            [segment.duration for segment in segments],
            [segment.transition for segment in segments],
            self.overlap,
        )

    def build_command(self, segments: Sequence[Segment], plan: TransitionPlan, output_path: str) -> List[str]:
        inputs: List[str] = []
        for segment in segments:
            inputs.extend(["-i", segment.path])
        return self.runner.command(
            *inputs,
            "-filter_complex", build_filter_graph(plan, self.overlap),
            "-map", "[vout]",
            "-an",
            *INTERMEDIATE_OPTIONS,
            output_path,
        )

    def compose(self, segments: Sequence[Segment], output_path: str) -> TransitionPlan:
        plan = self.plan(segments)
        if len(segments) == 1:
            shutil.copyfile(segments[0].path, output_path)
            return plan
        self.log.info(
            "composing transitions",
            extra={
                "segments": len(segments),
                "crossfades": sum(1 for join in plan.joins if join.crossfade),
                "duration": plan.total_duration,
            },
        )
        self.runner.run(self.build_command(segments, plan, output_path), step="transitions")
        return plan
