"""Shared wiring for the Boardroom API, MCP server and CLI."""
from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy.orm import Session

from boardroom import repositories
from boardroom.config import Settings, get_settings
from boardroom.engine import FlowController
from boardroom.enums import BetStatus, FlowKind
from boardroom.llm import LLMClient
from boardroom.portfolio_setup import PortfolioSetupFlow
from boardroom.quarterly import QuarterlyReviewFlow
from boardroom.quick import QuickAuditFlow
from boardroom.vagueness import VaguenessGate

log = logging.getLogger(__name__)

FLOW_CONTROLLERS: dict[FlowKind, type[FlowController]] = {
    FlowKind.QUICK: QuickAuditFlow,
    FlowKind.SETUP: PortfolioSetupFlow,
    FlowKind.QUARTERLY: QuarterlyReviewFlow,
}


def build_llm(settings: Settings | None = None) -> LLMClient | None:
    """The configured text-generation client, or ``None`` when it cannot be built.

    Without a client every flow still runs on its deterministic fallbacks; only
    the steps that have none (quick output, quarterly report, direction
    suggestions) fail with ``CollaboratorError``.
    """
    settings = settings or get_settings()
    try:
        return LLMClient.from_settings(settings)
    except (ImportError, ValueError) as exc:
        log.warning("Text generation unavailable: %s", exc)
    except Exception as exc:  # provider SDKs raise their own error types for missing keys
        log.warning("Text generation unavailable (%s): %s", type(exc).__name__, exc)
    return None


def build_controllers(
    session_factory: Callable[[], Session] | None = None,
    llm: LLMClient | None = None,
    settings: Settings | None = None,
) -> dict[FlowKind, FlowController]:
    settings = settings or get_settings()
    gate = VaguenessGate(llm)
    return {
        flow: cls(session_factory=session_factory, llm=llm, gate=gate, settings=settings)
        for flow, cls in FLOW_CONTROLLERS.items()
    }


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------


def list_sessions(db: Session, flow: FlowKind | None = None, limit: int = 50) -> list[dict[str, Any]]:
    return [repositories.session_to_dict(r) for r in repositories.list_sessions(db, flow, limit)]


def portfolio_view(db: Session) -> dict[str, Any]:
    health = repositories.health_snapshot(repositories.current_health(db))
    return {
        "problems": [repositories.problem_to_dict(p) for p in repositories.list_active_problems(db)],
        "health": health.model_dump(mode="json") if health else None,
    }


def board_view(db: Session) -> list[dict[str, Any]]:
    return [repositories.board_member_to_dict(m) for m in repositories.list_active_board_members(db)]


def bets_view(db: Session, status: str | None = None) -> list[dict[str, Any]]:
    parsed = BetStatus(status) if status else None
    return [repositories.bet_to_dict(b) for b in repositories.list_bets(db, parsed)]


def expire_bets(db: Session) -> int:
    count = repositories.expire_overdue_bets(db)
    db.commit()
    return count
