"""Session accumulators: immutable snapshots of everything a session has collected.

Every model here is a frozen pydantic model.  Mutation goes through ``evolve()``
(a validated-free ``model_copy``), which returns a new value and leaves the old one
untouched, so a controller can always fall back to the last persisted pair.
Lists are stored as tuples for the same reason.
"""
from __future__ import annotations

import json
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator

from boardroom.enums import (
    BetStatus,
    BoardRoleType,
    Direction,
    EvidenceKind,
    EvidenceStrength,
    FlowKind,
)

MAX_SKIPS = 2
REFUSED_EXAMPLE = "[example refused]"
MAX_SETUP_PROBLEMS = 5
MIN_SETUP_PROBLEMS = 3
CORE_ROSTER_SIZE = 5
GROWTH_ROSTER_SIZE = 2


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)

    def evolve(self, **changes: Any):
        return self.model_copy(update=changes)


# ---------------------------------------------------------------------------
# Transcript
# ---------------------------------------------------------------------------


class QAEntry(_Frozen):
    question: str
    answer: str
    vague: bool = False
    concrete_example: str | None = None
    skipped: bool = False
    state: str = ""
    problem_index: int | None = None
    role_type: BoardRoleType | None = None
    persona_name: str | None = None

    @model_validator(mode="after")
    def _skipped_means_refused(self) -> QAEntry:
        if self.skipped and (not self.vague or self.answer != REFUSED_EXAMPLE):
            raise ValueError(f"A skipped entry must be vague with answer {REFUSED_EXAMPLE!r}")
        return self

    @classmethod
    def skipped_entry(cls, question: str, state: str, **extra: Any) -> QAEntry:
        return cls(
            question=question, answer=REFUSED_EXAMPLE, vague=True,
            skipped=True, state=state, **extra,
        )


class SessionAccumulator(_Frozen):
    """Fields shared by every flow."""

    abstraction_mode: bool = False
    skip_count: int = 0
    transcript: tuple[QAEntry, ...] = ()
    provider_failures: int = 0
    output_markdown: str | None = None
    # why the last answer was sent to a clarify state
    clarify_reason: str | None = None
    missing_elements: tuple[str, ...] = ()

    @property
    def can_skip(self) -> bool:
        return self.skip_count < MAX_SKIPS

    @property
    def last_entry(self) -> QAEntry | None:
        return self.transcript[-1] if self.transcript else None

    def with_entry(self, entry: QAEntry):
        return self.evolve(transcript=self.transcript + (entry,))

    def record_provider(self, ok: bool):
        """Reset the consecutive-failure counter on success, bump it on fallback."""
        return self.evolve(provider_failures=0 if ok else self.provider_failures + 1)


# ---------------------------------------------------------------------------
# Quick Audit
# ---------------------------------------------------------------------------

# Q3 asks these three sub-questions for each identified problem, in order.
SUB_QUESTION_FIELDS = ("ai_cheaper", "error_cost", "trust_required")


class IdentifiedProblem(_Frozen):
    name: str
    ai_cheaper: str | None = None
    error_cost: str | None = None
    trust_required: str | None = None
    direction: Direction | None = None
    direction_rationale: str | None = None


class QuickAccumulator(SessionAccumulator):
    role_context: str | None = None
    paid_problems: str | None = None
    problems: tuple[IdentifiedProblem, ...] = ()
    current_problem_index: int = 0
    current_sub_question: int = 0
    avoided_decision: str | None = None
    avoided_decision_cost: str | None = None
    comfort_work: str | None = None
    direction_table_markdown: str | None = None
    assessment: str | None = None
    bet_prediction: str | None = None
    bet_wrong_if: str | None = None
    created_bet_id: int | None = None

    @property
    def current_problem(self) -> IdentifiedProblem | None:
        if 0 <= self.current_problem_index < len(self.problems):
            return self.problems[self.current_problem_index]
        return None

    def with_problem(self, index: int, problem: IdentifiedProblem) -> QuickAccumulator:
        problems = list(self.problems)
        problems[index] = problem
        return self.evolve(problems=tuple(problems))


# ---------------------------------------------------------------------------
# Portfolio Setup
# ---------------------------------------------------------------------------


class SetupProblem(_Frozen):
    name: str = ""
    what_breaks: str = ""
    scarcity_signals: tuple[str, ...] = ()
    scarcity_unknown: bool = False
    scarcity_unknown_reason: str = ""
    ai_cheaper: str = ""
    error_cost: str = ""
    trust_required: str = ""
    direction: Direction | None = None
    direction_rationale: str = ""
    time_allocation_percent: float = 0

    def missing_fields(self) -> list[str]:
        """Human-readable messages for every required field still empty."""
        errors: list[str] = []
        if not self.name.strip():
            errors.append("Problem name is required")
        if not self.what_breaks.strip():
            errors.append("What breaks if not solved is required")
        signals = [s for s in self.scarcity_signals if s.strip()]
        unknown_ok = self.scarcity_unknown and bool(self.scarcity_unknown_reason.strip())
        if len(signals) < 2 and not unknown_ok:
            errors.append('Either 2 scarcity signals or "Unknown + reason" is required')
        if not self.ai_cheaper.strip():
            errors.append("AI cheaper evidence is required")
        if not self.error_cost.strip():
            errors.append("Error cost evidence is required")
        if not self.trust_required.strip():
            errors.append("Trust required evidence is required")
        if self.direction is None:
            errors.append("Direction classification is required")
        if not self.direction_rationale.strip():
            errors.append("Direction rationale is required")
        return errors

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()

    def scarcity_signals_json(self) -> str:
        if self.scarcity_unknown:
            return json.dumps({"unknown": True, "reason": self.scarcity_unknown_reason})
        return json.dumps(list(self.scarcity_signals))


class SetupBoardMember(_Frozen):
    role_type: BoardRoleType
    is_growth: bool = False
    is_active: bool = True
    anchored_problem_index: int | None = None
    anchored_demand: str | None = None
    persona_name: str | None = None
    persona_background: str | None = None
    persona_communication_style: str | None = None
    persona_signature_phrase: str | None = None


class PortfolioHealthSnapshot(_Frozen):
    appreciating_percent: float = 0
    depreciating_percent: float = 0
    stable_percent: float = 0
    risk_statement: str | None = None
    opportunity_statement: str | None = None

    @property
    def total(self) -> float:
        return self.appreciating_percent + self.depreciating_percent + self.stable_percent


class SetupTrigger(_Frozen):
    trigger_type: str
    description: str
    condition: str
    action: str
    due_at: datetime | None = None


class SetupAccumulator(SessionAccumulator):
    problems: tuple[SetupProblem, ...] = ()
    current_problem_index: int = 0
    validation_errors: tuple[str, ...] = ()
    time_allocation_total: float | None = None
    health: PortfolioHealthSnapshot | None = None
    board_members: tuple[SetupBoardMember, ...] = ()
    triggers: tuple[SetupTrigger, ...] = ()
    portfolio_version_id: int | None = None

    @property
    def has_appreciating(self) -> bool:
        return any(p.direction is Direction.APPRECIATING for p in self.problems)

    def with_problem(self, index: int, problem: SetupProblem) -> SetupAccumulator:
        problems = list(self.problems)
        if index == len(problems):
            problems.append(problem)
        else:
            problems[index] = problem
        return self.evolve(problems=tuple(problems))


# ---------------------------------------------------------------------------
# Quarterly Review
# ---------------------------------------------------------------------------


class EvidenceRecord(_Frozen):
    description: str
    kind: EvidenceKind = EvidenceKind.NONE
    strength: EvidenceStrength
    context: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _strength_from_kind(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("strength") is None:
            kind = EvidenceKind(data.get("kind") or EvidenceKind.NONE)
            data = {**data, "strength": kind.default_strength}
        return data


class BetEvaluation(_Frozen):
    bet_id: int
    status: BetStatus
    rationale: str = ""
    evidence: tuple[EvidenceRecord, ...] = ()


class HealthTrend(_Frozen):
    previous_appreciating: float = 0
    previous_depreciating: float = 0
    previous_stable: float = 0
    current_appreciating: float = 0
    current_depreciating: float = 0
    current_stable: float = 0
    description: str | None = None

    @property
    def appreciating_change(self) -> float:
        return self.current_appreciating - self.previous_appreciating

    @property
    def depreciating_change(self) -> float:
        return self.current_depreciating - self.previous_depreciating

    @property
    def stable_change(self) -> float:
        return self.current_stable - self.previous_stable


class TriggerStatus(_Frozen):
    trigger_type: str
    description: str
    condition: str = ""
    is_met: bool = False
    is_approaching: bool = False
    due_at: datetime | None = None


class BoardPhase(StrEnum):
    CORE = "core"
    GROWTH = "growth"


class PendingBoardQuestion(_Frozen):
    """The persona whose question is currently awaiting an answer."""

    role_type: BoardRoleType
    persona_name: str | None = None
    problem_index: int | None = None
    question: str


class BoardResponse(_Frozen):
    role_type: BoardRoleType
    persona_name: str | None = None
    problem_index: int | None = None
    question: str
    answer: str
    vague: bool = False
    concrete_example: str | None = None
    skipped: bool = False


class NewBet(_Frozen):
    prediction: str
    wrong_if: str
    duration_days: int = 90


class QuarterlyAccumulator(SessionAccumulator):
    prerequisites_passed: bool = False
    showed_recent_warning: bool = False
    days_since_last_report: int | None = None
    growth_roles_active: bool = False

    review_bet_id: int | None = None
    review_bet_prediction: str | None = None
    bet_evaluation: BetEvaluation | None = None

    commitments: str | None = None
    avoided_decision: str | None = None
    comfort_work: str | None = None
    portfolio_check: str | None = None
    protection: str | None = None
    opportunity: str | None = None

    current_health: PortfolioHealthSnapshot | None = None
    health_trend: HealthTrend | None = None
    trigger_statuses: tuple[TriggerStatus, ...] = ()
    any_trigger_met: bool = False

    new_bet: NewBet | None = None
    board_phase: BoardPhase | None = None
    pending_member_index: int = 0
    pending_question: PendingBoardQuestion | None = None
    core_responses: tuple[BoardResponse, ...] = ()
    growth_responses: tuple[BoardResponse, ...] = ()
    core_roster_size: int = CORE_ROSTER_SIZE
    growth_roster_size: int = GROWTH_ROSTER_SIZE

    created_bet_id: int | None = None

    @property
    def all_core_board_responded(self) -> bool:
        return len(self.core_responses) == self.core_roster_size

    @property
    def all_growth_board_responded(self) -> bool:
        if not self.growth_roles_active:
            return True
        return len(self.growth_responses) == self.growth_roster_size

    def phase_responses(self, phase: BoardPhase) -> tuple[BoardResponse, ...]:
        return self.core_responses if phase is BoardPhase.CORE else self.growth_responses

    def with_phase_responses(
        self, phase: BoardPhase, responses: tuple[BoardResponse, ...],
    ) -> QuarterlyAccumulator:
        if phase is BoardPhase.CORE:
            return self.evolve(core_responses=responses)
        return self.evolve(growth_responses=responses)


ACCUMULATORS: dict[FlowKind, type[SessionAccumulator]] = {
    FlowKind.QUICK: QuickAccumulator,
    FlowKind.SETUP: SetupAccumulator,
    FlowKind.QUARTERLY: QuarterlyAccumulator,
}


def load_accumulator(flow: FlowKind, raw: str | None) -> SessionAccumulator:
    cls = ACCUMULATORS[flow]
    if not raw:
        return cls()
    return cls.model_validate_json(raw)
