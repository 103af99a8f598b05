from __future__ import annotations

from dataclasses import dataclass

from render_service.models.domain import Plan, Resolution


@dataclass(frozen=True)
class PlanLimits:
    max_width: int
    max_height: int
    max_scenes: int


PLAN_LIMITS: dict[Plan, PlanLimits] = {
    Plan.FREE: PlanLimits(max_width=854, max_height=480, max_scenes=3),
    Plan.PLUS: PlanLimits(max_width=1280, max_height=720, max_scenes=8),
    Plan.PRO: PlanLimits(max_width=1920, max_height=1080, max_scenes=15),
    Plan.STUDIO: PlanLimits(max_width=3840, max_height=2160, max_scenes=50),
}

# Billing price ids as issued by the subscription collaborator.
PRICE_ID_TO_PLAN: dict[str, Plan] = {
    "price_plus": Plan.PLUS,
    "price_pro": Plan.PRO,
    "price_studio": Plan.STUDIO,
}


def resolve_plan(value: str | Plan | None) -> Plan:
    """Map a tier name or billing price id to a plan; anything unknown is free."""
    if isinstance(value, Plan):
        return value
    if not value:
        return Plan.FREE
    normalized = value.strip().lower()
    try:
        return Plan(normalized)
    except ValueError:
        return PRICE_ID_TO_PLAN.get(normalized, Plan.FREE)


def plan_limits(plan: Plan) -> PlanLimits:
    return PLAN_LIMITS.get(plan, PLAN_LIMITS[Plan.FREE])


def plan_resolution(plan: Plan | str | None) -> Resolution:
    limits = plan_limits(resolve_plan(plan))
    return Resolution(width=limits.max_width, height=limits.max_height)


def clamp_resolution(plan: Plan, width: int | None, height: int | None) -> Resolution:
    """Honour a requested size but keep it inside the plan limits and aspect ratio."""
    if not width or not height:
        return plan_resolution(plan)
    limits = plan_limits(plan)
    ratio = width / height
    final_w, final_h = width, height
    if final_w > limits.max_width:
        final_w = limits.max_width
        final_h = round(final_w / ratio)
    if final_h > limits.max_height:
        final_h = limits.max_height
        final_w = round(final_h * ratio)
    # x264 with yuv420p needs even dimensions of at least 2px
    return Resolution(width=_even(final_w), height=_even(final_h))


def _even(value: int) -> int:
    return max(2, value - value % 2)
