"""Persistence operations over the ORM models.

Each function takes an open SQLAlchemy ``Session`` and leaves committing to the
caller, so a flow controller can write a whole step in one transaction.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from boardroom.accumulators import (
    EvidenceRecord,
    PortfolioHealthSnapshot,
    SessionAccumulator,
    SetupBoardMember,
    SetupProblem,
    SetupTrigger,
)
from boardroom.enums import ROLE_ORDER, BetStatus, BoardRoleType, FlowKind
from boardroom.models import (
    Bet,
    BoardMember,
    EvidenceItem,
    GovernanceSession,
    PortfolioHealth,
    PortfolioVersion,
    Problem,
    ResetupTrigger,
    UserPreferences,
)
from boardroom.utils import utcnow

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Governance sessions
# ---------------------------------------------------------------------------


def create_session(db: Session, flow: FlowKind, state: str, acc: SessionAccumulator) -> GovernanceSession:
    now = utcnow()
    row = GovernanceSession(flow_kind=flow.value, state=state, started_at=now, updated_at=now)
    write_session_state(row, state, acc)
    db.add(row)
    db.flush()
    return row


def get_session_row(db: Session, session_id: int) -> GovernanceSession | None:
    return db.get(GovernanceSession, session_id)


def list_sessions(db: Session, flow: FlowKind | None = None, limit: int = 50) -> list[GovernanceSession]:
    stmt = select(GovernanceSession).order_by(GovernanceSession.id.desc()).limit(limit)
    if flow is not None:
        stmt = stmt.where(GovernanceSession.flow_kind == flow.value)
    return list(db.execute(stmt).scalars().all())


def session_to_dict(row: GovernanceSession) -> dict[str, Any]:
    return {
        "id": row.id,
        "flow": row.flow_kind,
        "state": row.state,
        "is_completed": bool(row.is_completed),
        "is_abandoned": row.is_abandoned,
        "skip_count": row.skip_count or 0,
        "started_at": row.started_at.isoformat() if row.started_at else None,
        "completed_at": row.completed_at.isoformat() if row.completed_at else None,
        "created_bet_id": row.created_bet_id,
        "portfolio_version_id": row.portfolio_version_id,
    }


def write_session_state(row: GovernanceSession, state: str, acc: SessionAccumulator) -> None:
    """Copy the state tag and accumulator (plus its mirrored columns) onto *row*."""
    row.state = state
    row.accumulator_json = acc.model_dump_json()
    row.transcript_json = json.dumps([e.model_dump(mode="json") for e in acc.transcript])
    row.skip_count = acc.skip_count
    row.abstraction_mode = acc.abstraction_mode
    row.output_markdown = acc.output_markdown
    row.updated_at = utcnow()


def complete_session(db: Session, row: GovernanceSession, **links: Any) -> None:
    row.is_completed = True
    row.completed_at = utcnow()
    for key in ("created_bet_id", "evaluated_bet_id", "portfolio_version_id"):
        if links.get(key) is not None:
            setattr(row, key, links[key])


def abandon_session(db: Session, row: GovernanceSession, state: str) -> None:
    row.state = state
    row.abandoned_at = utcnow()
    row.updated_at = row.abandoned_at


def last_completed_session(db: Session, flow: FlowKind) -> GovernanceSession | None:
    return db.execute(
        select(GovernanceSession)
        .where(GovernanceSession.flow_kind == flow.value, GovernanceSession.is_completed.is_(True))
        .order_by(GovernanceSession.completed_at.desc())
        .limit(1)
    ).scalar_one_or_none()


# ---------------------------------------------------------------------------
# Problems
# ---------------------------------------------------------------------------


def list_active_problems(db: Session) -> list[Problem]:
    return list(db.execute(
        select(Problem).where(Problem.deleted_at.is_(None)).order_by(Problem.display_order, Problem.id)
    ).scalars().all())


def replace_problems(db: Session, problems: Sequence[SetupProblem]) -> list[Problem]:
    """Soft-delete the current portfolio and insert *problems* in order."""
    now = utcnow()
    db.execute(update(Problem).where(Problem.deleted_at.is_(None)).values(deleted_at=now))
    rows = []
    for i, p in enumerate(problems):
        row = Problem(
            name=p.name,
            what_breaks=p.what_breaks,
            scarcity_signals_json=p.scarcity_signals_json(),
            ai_cheaper=p.ai_cheaper,
            error_cost=p.error_cost,
            trust_required=p.trust_required,
            direction=(p.direction.value if p.direction else "stable"),
            direction_rationale=p.direction_rationale,
            time_allocation_percent=p.time_allocation_percent,
            display_order=i,
        )
        db.add(row)
        rows.append(row)
    db.flush()
    return rows


def problem_to_dict(p: Problem) -> dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "what_breaks": p.what_breaks,
        "scarcity_signals": json.loads(p.scarcity_signals_json or "[]"),
        "ai_cheaper": p.ai_cheaper,
        "error_cost": p.error_cost,
        "trust_required": p.trust_required,
        "direction": p.direction,
        "direction_rationale": p.direction_rationale,
        "time_allocation_percent": p.time_allocation_percent,
    }


# ---------------------------------------------------------------------------
# Board
# ---------------------------------------------------------------------------


def _role_order(member: BoardMember) -> int:
    return ROLE_ORDER.get(BoardRoleType(member.role_type), len(ROLE_ORDER))


def list_active_board_members(db: Session, growth: bool | None = None) -> list[BoardMember]:
    stmt = select(BoardMember).where(BoardMember.is_active.is_(True))
    if growth is not None:
        stmt = stmt.where(BoardMember.is_growth_role.is_(growth))
    return sorted(db.execute(stmt).scalars().all(), key=_role_order)


def replace_board(
    db: Session, members: Sequence[SetupBoardMember], problem_rows: Sequence[Problem],
) -> list[BoardMember]:
    db.execute(update(BoardMember).where(BoardMember.is_active.is_(True)).values(is_active=False))
    rows = []
    for m in members:
        problem_id = None
        if m.anchored_problem_index is not None and 0 <= m.anchored_problem_index < len(problem_rows):
            problem_id = problem_rows[m.anchored_problem_index].id
        row = BoardMember(
            role_type=m.role_type.value,
            is_growth_role=m.is_growth,
            is_active=m.is_active,
            anchored_problem_id=problem_id,
            anchored_demand=m.anchored_demand,
            persona_name=m.persona_name or "",
            persona_background=m.persona_background or "",
            persona_communication_style=m.persona_communication_style or "",
            persona_signature_phrase=m.persona_signature_phrase,
        )
        db.add(row)
        rows.append(row)
    db.flush()
    return rows


def board_member_to_dict(m: BoardMember) -> dict[str, Any]:
    role = BoardRoleType(m.role_type)
    return {
        "id": m.id,
        "role_type": role.value,
        "role_name": role.display_name,
        "is_growth_role": m.is_growth_role,
        "is_active": m.is_active,
        "anchored_problem_id": m.anchored_problem_id,
        "anchored_demand": m.anchored_demand,
        "persona_name": m.persona_name,
        "persona_background": m.persona_background,
        "persona_communication_style": m.persona_communication_style,
        "persona_signature_phrase": m.persona_signature_phrase,
    }


# ---------------------------------------------------------------------------
# Bets
# ---------------------------------------------------------------------------


def create_bet(
    db: Session, prediction: str, wrong_if: str, duration_days: int = 90,
    source_session_id: int | None = None, now: datetime | None = None,
) -> Bet:
    now = now or utcnow()
    bet = Bet(
        prediction=prediction, wrong_if=wrong_if, duration_days=duration_days,
        status=BetStatus.OPEN.value, source_session_id=source_session_id,
        created_at=now, due_at=now + timedelta(days=duration_days),
    )
    db.add(bet)
    db.flush()
    return bet


def get_bet(db: Session, bet_id: int) -> Bet | None:
    return db.get(Bet, bet_id)


def list_bets(db: Session, status: BetStatus | None = None) -> list[Bet]:
    stmt = select(Bet).order_by(Bet.created_at.desc(), Bet.id.desc())
    if status is not None:
        stmt = stmt.where(Bet.status == status.value)
    return list(db.execute(stmt).scalars().all())


def bet_for_review(db: Session) -> Bet | None:
    """The most recent bet still awaiting evaluation (open or expired)."""
    return db.execute(
        select(Bet)
        .where(Bet.status.in_([BetStatus.OPEN.value, BetStatus.EXPIRED.value]))
        .order_by(Bet.created_at.desc(), Bet.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def expire_overdue_bets(db: Session, now: datetime | None = None) -> int:
    now = now or utcnow()
    result = db.execute(
        update(Bet)
        .where(Bet.status == BetStatus.OPEN.value, Bet.due_at <= now)
        .values(status=BetStatus.EXPIRED.value)
    )
    if result.rowcount:
        log.info("Expired %d overdue bet(s)", result.rowcount)
    return result.rowcount or 0


def set_bet_status(db: Session, bet: Bet, status: BetStatus, notes: str | None = None) -> None:
    bet.status = status.value
    if status.is_evaluated:
        bet.evaluated_at = utcnow()
    if notes:
        bet.evaluation_notes = notes


def bet_to_dict(b: Bet) -> dict[str, Any]:
    return {
        "id": b.id,
        "prediction": b.prediction,
        "wrong_if": b.wrong_if,
        "duration_days": b.duration_days,
        "status": b.status,
        "created_at": b.created_at.isoformat() if b.created_at else None,
        "due_at": b.due_at.isoformat() if b.due_at else None,
        "evaluated_at": b.evaluated_at.isoformat() if b.evaluated_at else None,
        "evaluation_notes": b.evaluation_notes,
    }


# ---------------------------------------------------------------------------
# Evidence
# ---------------------------------------------------------------------------


def add_evidence(
    db: Session, session_id: int, records: Sequence[EvidenceRecord], context: str | None = None,
) -> list[EvidenceItem]:
    rows = []
    for r in records:
        row = EvidenceItem(
            session_id=session_id, description=r.description, kind=r.kind.value,
            strength=r.strength.value, context=context or r.context,
        )
        db.add(row)
        rows.append(row)
    db.flush()
    return rows


def list_evidence(db: Session, session_id: int) -> list[EvidenceItem]:
    return list(db.execute(
        select(EvidenceItem).where(EvidenceItem.session_id == session_id).order_by(EvidenceItem.id)
    ).scalars().all())


# ---------------------------------------------------------------------------
# Re-setup triggers
# ---------------------------------------------------------------------------


def list_triggers(db: Session) -> list[ResetupTrigger]:
    return list(db.execute(select(ResetupTrigger).order_by(ResetupTrigger.id)).scalars().all())


def replace_triggers(db: Session, triggers: Sequence[SetupTrigger]) -> list[ResetupTrigger]:
    for old in list_triggers(db):
        db.delete(old)
    rows = [
        ResetupTrigger(
            trigger_type=t.trigger_type, description=t.description,
            condition=t.condition, action=t.action, due_at=t.due_at,
        )
        for t in triggers
    ]
    db.add_all(rows)
    db.flush()
    return rows


# ---------------------------------------------------------------------------
# Portfolio versions and health
# ---------------------------------------------------------------------------


def create_portfolio_version(
    db: Session,
    problem_rows: Sequence[Problem],
    health: PortfolioHealthSnapshot | None,
    anchoring: dict[str, Any],
    triggers: Sequence[SetupTrigger],
    trigger_reason: str,
) -> PortfolioVersion:
    latest = db.execute(select(func.max(PortfolioVersion.version_number))).scalar() or 0
    version = PortfolioVersion(
        version_number=latest + 1,
        problems_snapshot_json=json.dumps([problem_to_dict(p) for p in problem_rows]),
        health_snapshot_json=health.model_dump_json() if health else "{}",
        board_anchoring_json=json.dumps(anchoring),
        triggers_snapshot_json=json.dumps([t.model_dump(mode="json") for t in triggers]),
        trigger_reason=trigger_reason,
    )
    db.add(version)
    db.flush()
    return version


def current_health(db: Session) -> PortfolioHealth | None:
    return db.execute(
        select(PortfolioHealth).order_by(PortfolioHealth.id.desc()).limit(1)
    ).scalar_one_or_none()


def health_snapshot(row: PortfolioHealth | None) -> PortfolioHealthSnapshot | None:
    if row is None:
        return None
    return PortfolioHealthSnapshot(
        appreciating_percent=row.appreciating_percent,
        depreciating_percent=row.depreciating_percent,
        stable_percent=row.stable_percent,
        risk_statement=row.risk_statement,
        opportunity_statement=row.opportunity_statement,
    )


def upsert_health(db: Session, snapshot: PortfolioHealthSnapshot) -> PortfolioHealth:
    """Overwrite the single health row, bumping its version number."""
    row = current_health(db)
    if row is None:
        row = PortfolioHealth(version=1)
        db.add(row)
    else:
        row.version = (row.version or 0) + 1
    row.appreciating_percent = snapshot.appreciating_percent
    row.depreciating_percent = snapshot.depreciating_percent
    row.stable_percent = snapshot.stable_percent
    if snapshot.risk_statement is not None:
        row.risk_statement = snapshot.risk_statement
    if snapshot.opportunity_statement is not None:
        row.opportunity_statement = snapshot.opportunity_statement
    row.updated_at = utcnow()
    db.flush()
    return row


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


def get_preferences(db: Session) -> UserPreferences:
    prefs = db.get(UserPreferences, 1)
    if prefs is None:
        prefs = UserPreferences(id=1)
        db.add(prefs)
        db.flush()
    return prefs


def remembered_abstraction_mode(db: Session, flow: FlowKind) -> bool | None:
    prefs = get_preferences(db)
    if not prefs.remember_abstraction_choice:
        return None
    return bool(getattr(prefs, f"abstraction_mode_{flow.value}"))


def remember_abstraction_mode(db: Session, flow: FlowKind, mode: bool) -> None:
    prefs = get_preferences(db)
    setattr(prefs, f"abstraction_mode_{flow.value}", mode)
    prefs.remember_abstraction_choice = True


def mark_onboarding_complete(db: Session) -> None:
    get_preferences(db).onboarding_completed = True
