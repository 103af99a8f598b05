import pytest

from render_service.models.domain import Plan
from render_service.services.plans import clamp_resolution, plan_resolution, resolve_plan


@pytest.mark.parametrize(
    "plan, expected",
    [
        ("free", (854, 480)),
        ("plus", (1280, 720)),
        ("pro", (1920, 1080)),
        ("studio", (3840, 2160)),
        ("enterprise", (854, 480)),
        (None, (854, 480)),
        ("", (854, 480)),
    ],
)
def test_plan_to_resolution(plan, expected):
    resolution = plan_resolution(plan)
    assert (resolution.width, resolution.height) == expected


def test_billing_price_ids_map_to_tiers():
    assert resolve_plan("price_pro") == Plan.PRO
    assert resolve_plan("PLUS") == Plan.PLUS
    assert resolve_plan("price_unknown") == Plan.FREE


def test_requested_size_is_clamped_to_plan_keeping_aspect():
    resolution = clamp_resolution(Plan.FREE, 1920, 1080)
    assert (resolution.width, resolution.height) == (854, 480)

    portrait = clamp_resolution(Plan.PLUS, 1080, 1920)
    assert portrait.height == 720
    assert portrait.width == 404


def test_requested_size_within_limits_is_kept():
    resolution = clamp_resolution(Plan.PRO, 1280, 720)
    assert (resolution.width, resolution.height) == (1280, 720)


@pytest.mark.parametrize(
    "plan, width, height",
    [
        (Plan.FREE, 1, 1),
        (Plan.FREE, 5000, 2),
        (Plan.FREE, 2, 5000),
        (Plan.PRO, 3, 1),
    ],
)
def test_degenerate_sizes_stay_encodable(plan, width, height):
    resolution = clamp_resolution(plan, width, height)
    assert resolution.width >= 2 and resolution.height >= 2
    assert resolution.width % 2 == 0 and resolution.height % 2 == 0
