"""Derived analysis: deterministic functions over accumulated answers.

Nothing here touches the database or the text-generation collaborator, so every
result is reproducible from its inputs:

- ``classify_allocation``  -- time-allocation banding (valid / warning / error)
- ``compose_health``       -- share of allocation per direction
- ``compute_trend``        -- per-direction delta between two health snapshots
- ``evaluate_triggers``    -- re-setup trigger met / approaching status
- ``check_bet_evaluation`` -- legal bet status transitions at review time
- text splitters used as fallbacks when the collaborator is unavailable
"""
from __future__ import annotations

import re
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Iterable, Protocol, Sequence

from boardroom.accumulators import (
    HealthTrend,
    PortfolioHealthSnapshot,
    SetupProblem,
    SetupTrigger,
    TriggerStatus,
)
from boardroom.enums import BetStatus, Direction
from boardroom.errors import ValidationError
from boardroom.utils import format_percent

# ---------------------------------------------------------------------------
# Time allocation
# ---------------------------------------------------------------------------


class AllocationBand(StrEnum):
    VALID = "valid"
    WARNING = "warning"
    ERROR = "error"

    @property
    def permits_proceed(self) -> bool:
        return self is not AllocationBand.ERROR


def classify_allocation(total: float) -> AllocationBand:
    if 95 <= total <= 105:
        return AllocationBand.VALID
    if 90 <= total <= 110:
        return AllocationBand.WARNING
    return AllocationBand.ERROR


def allocation_message(total: float) -> str:
    band = classify_allocation(total)
    t = format_percent(total)
    if band is AllocationBand.VALID:
        return f"Time allocation is {t}%. Looking good!"
    if band is AllocationBand.WARNING:
        return f"Time allocation is {t}%. This is outside the ideal range (95-105%) but you can continue."
    return f"Time allocation is {t}%. Must be between 90% and 110% to proceed."


def total_allocation(problems: Iterable[SetupProblem]) -> float:
    return sum(p.time_allocation_percent for p in problems)


# ---------------------------------------------------------------------------
# Portfolio health
# ---------------------------------------------------------------------------


class _Directed(Protocol):
    direction: Direction | str | None
    time_allocation_percent: float


def compose_health(problems: Iterable[_Directed]) -> PortfolioHealthSnapshot:
    """Sum allocation per direction; unclassified problems count as stable.

    Accepts accumulator problems and stored ``Problem`` rows alike.
    """
    sums = {d: 0.0 for d in Direction}
    for p in problems:
        sums[Direction.parse(p.direction)] += p.time_allocation_percent or 0
    return PortfolioHealthSnapshot(
        appreciating_percent=sums[Direction.APPRECIATING],
        depreciating_percent=sums[Direction.DEPRECIATING],
        stable_percent=sums[Direction.STABLE],
    )


def fallback_health_statements(health: PortfolioHealthSnapshot) -> tuple[str, str]:
    """Risk and opportunity sentences derived from the composition alone."""
    dep = format_percent(health.depreciating_percent)
    app = format_percent(health.appreciating_percent)
    if health.depreciating_percent > health.appreciating_percent:
        risk = f"{dep}% of your time goes to depreciating work, which is losing market value."
    elif health.depreciating_percent > 0:
        risk = f"{dep}% of your time still goes to depreciating work."
    else:
        risk = "No time is allocated to depreciating work; the main risk is complacency."
    if health.appreciating_percent > 0:
        opportunity = f"{app}% of your time is on appreciating work; compounding it is the clearest upside."
    else:
        opportunity = "Nothing is classified as appreciating yet; finding one such problem is the opportunity."
    return risk, opportunity


def compute_trend(
    previous: PortfolioHealthSnapshot | None, current: PortfolioHealthSnapshot,
) -> HealthTrend:
    previous = previous or PortfolioHealthSnapshot()
    return HealthTrend(
        previous_appreciating=previous.appreciating_percent,
        previous_depreciating=previous.depreciating_percent,
        previous_stable=previous.stable_percent,
        current_appreciating=current.appreciating_percent,
        current_depreciating=current.depreciating_percent,
        current_stable=current.stable_percent,
    )


def describe_trend(trend: HealthTrend) -> str:
    changes = {
        "Appreciating": trend.appreciating_change,
        "Depreciating": trend.depreciating_change,
        "Stable": trend.stable_change,
    }
    label, delta = max(changes.items(), key=lambda kv: abs(kv[1]))
    if abs(delta) < 5:
        return "Portfolio composition is essentially unchanged since the last review."
    verb = "grew" if delta > 0 else "shrank"
    return f"{label} work {verb} by {format_percent(abs(delta))} points since the last review."


def trend_summary(trend: HealthTrend) -> str:
    return (
        f"Appreciating: {format_percent(trend.previous_appreciating)}% -> "
        f"{format_percent(trend.current_appreciating)}%, "
        f"Depreciating: {format_percent(trend.previous_depreciating)}% -> "
        f"{format_percent(trend.current_depreciating)}%"
    )


def highest_appreciating_index(problems: Sequence[SetupProblem]) -> int | None:
    """Index of the appreciating problem with the largest allocation."""
    best: int | None = None
    for i, p in enumerate(problems):
        if p.direction is not Direction.APPRECIATING:
            continue
        if best is None or p.time_allocation_percent > problems[best].time_allocation_percent:
            best = i
    return best


# ---------------------------------------------------------------------------
# Re-setup triggers
# ---------------------------------------------------------------------------


def default_resetup_triggers(now: datetime, annual_days: int = 365) -> tuple[SetupTrigger, ...]:
    return (
        SetupTrigger(
            trigger_type="role_change", description="Role change detected",
            condition="Promotion, new job, or new team", action="full_resetup",
        ),
        SetupTrigger(
            trigger_type="scope_change", description="Scope change detected",
            condition="Major project ends or new responsibility", action="full_resetup",
        ),
        SetupTrigger(
            trigger_type="direction_shift", description="Problem direction shift",
            condition="Problem reclassified in 2+ quarterly reviews", action="update_problem",
        ),
        SetupTrigger(
            trigger_type="time_drift", description="Time allocation drift",
            condition="20%+ shift in allocation vs setup", action="review_health",
        ),
        SetupTrigger(
            trigger_type="annual", description="Annual portfolio review",
            condition="12 months since last setup", action="full_resetup",
            due_at=now + timedelta(days=annual_days),
        ),
    )


class _TriggerLike(Protocol):
    trigger_type: str
    description: str
    condition: str
    is_met: bool
    due_at: datetime | None


def evaluate_triggers(
    triggers: Iterable[_TriggerLike], now: datetime, approaching_days: int = 30,
) -> list[TriggerStatus]:
    statuses = []
    horizon = now + timedelta(days=approaching_days)
    for t in triggers:
        overdue = t.due_at is not None and t.due_at <= now
        met = bool(t.is_met) or overdue
        approaching = not met and t.due_at is not None and t.due_at <= horizon
        statuses.append(TriggerStatus(
            trigger_type=t.trigger_type, description=t.description, condition=t.condition,
            is_met=met, is_approaching=approaching, due_at=t.due_at,
        ))
    return statuses


# ---------------------------------------------------------------------------
# Bets
# ---------------------------------------------------------------------------


def check_bet_evaluation(
    current: BetStatus, due_at: datetime, new_status: BetStatus, now: datetime,
) -> None:
    """Raise ``ValidationError`` unless *new_status* is legal for this bet right now."""
    if not current.can_transition_to(new_status):
        raise ValidationError(f"A {current.value} bet cannot be marked {new_status.value}")
    if new_status is BetStatus.EXPIRED and due_at > now:
        raise ValidationError("A bet that is not yet due can only be marked correct or wrong")


# ---------------------------------------------------------------------------
# Text splitting fallbacks
# ---------------------------------------------------------------------------

_COST_PATTERNS = [
    re.compile(r"cost[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
    re.compile(r"consequences?[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
    re.compile(r"impact[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
    re.compile(r"risk[:\s]+(.+)", re.IGNORECASE | re.DOTALL),
]
_SENTENCE_SPLIT = re.compile(r"[.!?]\s+")


def parse_avoided_decision(answer: str) -> tuple[str, str | None]:
    """Split an avoided-decision answer into (decision, cost of waiting)."""
    answer = answer.strip()
    for pattern in _COST_PATTERNS:
        m = pattern.search(answer)
        if m:
            decision = answer[:m.start()].strip().rstrip(".,;:-").strip()
            return decision or answer, m.group(1).strip()
    sentences = [s.strip() for s in _SENTENCE_SPLIT.split(answer) if s.strip()]
    if len(sentences) >= 2:
        return sentences[0], ". ".join(sentences[1:])
    return answer, None


_PROBLEM_SPLITS = [
    re.compile(r"(?:^|\s)\d+[.)]\s*"),
    re.compile(r"(?:^|\n)\s*[-•*]\s*"),
    re.compile(r",\s*(?=\w)"),
]


def fallback_split_problems(answer: str, limit: int = 3) -> list[str]:
    """Best-effort list of problem names when extraction by the model fails."""
    for pattern in _PROBLEM_SPLITS:
        parts = [p.strip() for p in pattern.split(answer) if p.strip()]
        if len(parts) >= 2:
            return parts[:limit]
    lines = [line.strip() for line in answer.splitlines() if line.strip()]
    if len(lines) >= 2:
        return lines[:limit]
    return [answer.strip()]
