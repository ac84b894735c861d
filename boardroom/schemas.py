"""Pydantic request/response schemas for the Boardroom API."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from boardroom.enums import BetStatus, Direction, EvidenceKind, EvidenceStrength


class StartSessionRequest(BaseModel):
    abstraction_mode: bool | None = None


class SensitivityRequest(BaseModel):
    abstraction_mode: bool
    remember_choice: bool = False


class AnswerRequest(BaseModel):
    answer: str


class SessionSummary(BaseModel):
    id: int
    flow: str
    state: str
    is_completed: bool
    is_abandoned: bool
    skip_count: int
    started_at: str | None = None
    completed_at: str | None = None
    created_bet_id: int | None = None
    portfolio_version_id: int | None = None


# ---------------------------------------------------------------------------
# Portfolio Setup
# ---------------------------------------------------------------------------


class ProblemIn(BaseModel):
    name: str = ""
    what_breaks: str = ""
    scarcity_signals: list[str] = []
    scarcity_unknown: bool = False
    scarcity_unknown_reason: str = ""
    ai_cheaper: str = ""
    error_cost: str = ""
    trust_required: str = ""
    direction: Direction | None = None
    direction_rationale: str = ""
    time_allocation_percent: float = 0

    @field_validator("direction", mode="before")
    @classmethod
    def _blank_direction(cls, v: Any) -> Any:
        return None if v == "" else v


class AllocationsRequest(BaseModel):
    allocations: list[float]


class PersonaUpdate(BaseModel):
    name: str | None = None
    background: str | None = None
    communication_style: str | None = None
    signature_phrase: str | None = None


class DirectionSuggestionOut(BaseModel):
    direction: Direction
    rationale: str
    confidence: str


# ---------------------------------------------------------------------------
# Quarterly Review
# ---------------------------------------------------------------------------


class EvidenceIn(BaseModel):
    description: str
    kind: EvidenceKind = EvidenceKind.NONE
    strength: EvidenceStrength | None = None


class BetEvaluationRequest(BaseModel):
    status: BetStatus
    rationale: str = ""
    evidence: list[EvidenceIn] = []


class NewBetRequest(BaseModel):
    prediction: str
    wrong_if: str
    duration_days: int = Field(90, gt=0)


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------


class ProblemOut(BaseModel):
    id: int
    name: str
    what_breaks: str
    scarcity_signals: Any = []
    ai_cheaper: str
    error_cost: str
    trust_required: str
    direction: str
    direction_rationale: str
    time_allocation_percent: float


class HealthOut(BaseModel):
    appreciating_percent: float = 0
    depreciating_percent: float = 0
    stable_percent: float = 0
    risk_statement: str | None = None
    opportunity_statement: str | None = None


class PortfolioOut(BaseModel):
    problems: list[ProblemOut]
    health: HealthOut | None = None


class BoardMemberOut(BaseModel):
    id: int
    role_type: str
    role_name: str
    is_growth_role: bool
    is_active: bool
    anchored_problem_id: int | None = None
    anchored_demand: str | None = None
    persona_name: str
    persona_background: str
    persona_communication_style: str
    persona_signature_phrase: str | None = None


class BetOut(BaseModel):
    id: int
    prediction: str
    wrong_if: str
    duration_days: int
    status: str
    created_at: str | None = None
    due_at: str | None = None
    evaluated_at: str | None = None
    evaluation_notes: str | None = None
