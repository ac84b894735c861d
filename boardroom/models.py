from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class GovernanceSession(Base):
    __tablename__ = "governance_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    flow_kind: Mapped[str] = mapped_column(String(20), nullable=False)  # quick | setup | quarterly
    state: Mapped[str] = mapped_column(String(60), nullable=False)
    abstraction_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    skip_count: Mapped[int] = mapped_column(Integer, default=0)
    transcript_json: Mapped[str] = mapped_column(Text, default="[]")
    accumulator_json: Mapped[str] = mapped_column(Text, default="{}")
    is_completed: Mapped[bool] = mapped_column(Boolean, default=False)
    output_markdown: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_bet_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("bets.id"), nullable=True)
    evaluated_bet_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("bets.id"), nullable=True)
    portfolio_version_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("portfolio_versions.id"), nullable=True,
    )
    started_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    abandoned_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def is_abandoned(self) -> bool:
        return self.abandoned_at is not None


class Problem(Base):
    __tablename__ = "problems"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    what_breaks: Mapped[str] = mapped_column(Text, default="")
    scarcity_signals_json: Mapped[str] = mapped_column(Text, default="[]")
    ai_cheaper: Mapped[str] = mapped_column(Text, default="")
    error_cost: Mapped[str] = mapped_column(Text, default="")
    trust_required: Mapped[str] = mapped_column(Text, default="")
    direction: Mapped[str] = mapped_column(String(20), default="stable")
    direction_rationale: Mapped[str] = mapped_column(Text, default="")
    time_allocation_percent: Mapped[float] = mapped_column(Float, default=0)
    display_order: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    board_members: Mapped[list[BoardMember]] = relationship("BoardMember", back_populates="anchored_problem")


class BoardMember(Base):
    __tablename__ = "board_members"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    role_type: Mapped[str] = mapped_column(String(40), nullable=False)
    is_growth_role: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    anchored_problem_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("problems.id"), nullable=True)
    anchored_demand: Mapped[str | None] = mapped_column(Text, nullable=True)
    persona_name: Mapped[str] = mapped_column(String(200), default="")
    persona_background: Mapped[str] = mapped_column(Text, default="")
    persona_communication_style: Mapped[str] = mapped_column(Text, default="")
    persona_signature_phrase: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    anchored_problem: Mapped[Problem | None] = relationship("Problem", back_populates="board_members")


class Bet(Base):
    __tablename__ = "bets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prediction: Mapped[str] = mapped_column(Text, nullable=False)
    wrong_if: Mapped[str] = mapped_column(Text, nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, default=90)
    status: Mapped[str] = mapped_column(String(20), default="open")  # open | correct | wrong | expired
    source_session_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    evaluation_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    due_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    evaluated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class EvidenceItem(Base):
    __tablename__ = "evidence_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[int] = mapped_column(Integer, ForeignKey("governance_sessions.id"), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[str] = mapped_column(String(20), default="none")
    strength: Mapped[str] = mapped_column(String(20), default="none")
    context: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class ResetupTrigger(Base):
    __tablename__ = "resetup_triggers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trigger_type: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    condition: Mapped[str] = mapped_column(Text, default="")
    action: Mapped[str] = mapped_column(String(40), default="")
    is_met: Mapped[bool] = mapped_column(Boolean, default=False)
    due_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    met_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class PortfolioVersion(Base):
    __tablename__ = "portfolio_versions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    problems_snapshot_json: Mapped[str] = mapped_column(Text, default="[]")
    health_snapshot_json: Mapped[str] = mapped_column(Text, default="{}")
    board_anchoring_json: Mapped[str] = mapped_column(Text, default="{}")
    triggers_snapshot_json: Mapped[str] = mapped_column(Text, default="[]")
    trigger_reason: Mapped[str] = mapped_column(String(60), default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class PortfolioHealth(Base):
    __tablename__ = "portfolio_health"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    appreciating_percent: Mapped[float] = mapped_column(Float, default=0)
    depreciating_percent: Mapped[float] = mapped_column(Float, default=0)
    stable_percent: Mapped[float] = mapped_column(Float, default=0)
    risk_statement: Mapped[str | None] = mapped_column(Text, nullable=True)
    opportunity_statement: Mapped[str | None] = mapped_column(Text, nullable=True)
    version: Mapped[int] = mapped_column(Integer, default=1)
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class UserPreferences(Base):
    __tablename__ = "user_preferences"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    abstraction_mode_quick: Mapped[bool] = mapped_column(Boolean, default=False)
    abstraction_mode_setup: Mapped[bool] = mapped_column(Boolean, default=False)
    abstraction_mode_quarterly: Mapped[bool] = mapped_column(Boolean, default=False)
    remember_abstraction_choice: Mapped[bool] = mapped_column(Boolean, default=False)
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False)
