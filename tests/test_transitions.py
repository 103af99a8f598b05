import pytest

from render_service.models.domain import TransitionKind
from render_service.render.transitions import Segment, TransitionComposer, build_filter_graph, plan_transitions

from .conftest import RecordingRunner

FADE = TransitionKind.FADE
NONE = TransitionKind.NONE


def test_three_scenes_two_fades_last_seven_and_a_half_seconds():
    plan = plan_transitions([3, 3, 3], [FADE, FADE, NONE], overlap=0.75)

    assert plan.total_duration == pytest.approx(7.5)
    assert [join.offset for join in plan.joins] == [pytest.approx(2.25), pytest.approx(4.5)]


def test_fade_then_none_lasts_five_and_a_quarter_seconds():
    plan = plan_transitions([3, 3], [FADE, NONE], overlap=0.75)

    assert plan.total_duration == pytest.approx(5.25)
    assert plan.joins[0].offset == pytest.approx(2.25)


def test_none_joins_concatenate_without_overlap():
    plan = plan_transitions([2, 4, 3], [NONE, NONE, FADE])

    assert plan.total_duration == pytest.approx(9)
    assert all(not join.crossfade for join in plan.joins)


def test_offsets_track_cumulative_overlaps_with_mixed_joins():
    plan = plan_transitions([4, 2, 5, 3], [TransitionKind.WIPE_LEFT, NONE, TransitionKind.DISSOLVE, NONE])

    # chain: 4 -> xfade(3.25) -> 5.25 -> concat -> 10.25 -> xfade(9.5) -> 12.5
    assert plan.joins[0].offset == pytest.approx(3.25)
    assert plan.joins[1].offset is None
    assert plan.joins[2].offset == pytest.approx(9.5)
    assert plan.total_duration == pytest.approx(4 + 2 + 5 + 3 - 2 * 0.75)


def test_scene_shorter_than_overlap_falls_back_to_concat():
    plan = plan_transitions([3, 0.5, 3], [FADE, FADE, NONE])

    assert all(not join.crossfade for join in plan.joins)
    assert plan.total_duration == pytest.approx(6.5)


def test_single_segment_has_no_joins():
    plan = plan_transitions([4], [FADE])
    assert plan.joins == []
    assert plan.total_duration == 4


def test_filter_graph_chains_xfade_and_concat():
    plan = plan_transitions([3, 3, 3], [TransitionKind.CIRCLE_OPEN, NONE, NONE])

    graph = build_filter_graph(plan, overlap=0.75)

    assert graph == (
        "[0:v][1:v]xfade=transition=circleopen:duration=0.75:offset=2.25[v1];"
        "[v1][2:v]concat=n=2:v=1:a=0[vout]"
    )


def test_composer_runs_one_ffmpeg_step(tmp_path):
    runner = RecordingRunner()
    composer = TransitionComposer(runner, overlap=0.75)
    segments = [
        Segment(path=str(tmp_path / f"clip-{i}.mp4"), duration=3, transition=FADE) for i in range(3)
    ]

    plan = composer.compose(segments, str(tmp_path / "joined.mp4"))

    assert runner.steps() == ["transitions"]
    cmd = runner.command_for("transitions")
    assert cmd.count("-i") == 3
    assert cmd[cmd.index("-map") + 1] == "[vout]"
    assert plan.total_duration == pytest.approx(7.5)


def test_composer_copies_single_segment(tmp_path):
    runner = RecordingRunner()
    source = tmp_path / "clip-0.mp4"
    source.write_bytes(b"clip")

    TransitionComposer(runner).compose([Segment(path=str(source), duration=3, transition=FADE)], str(tmp_path / "out.mp4"))

    assert runner.commands == []
    assert (tmp_path / "out.mp4").read_bytes() == b"clip"
