from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Callable, Generator

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from boardroom import services
from boardroom.config import get_settings
from boardroom.db import get_session, init_db
from boardroom.engine import FlowController, SessionSnapshot
from boardroom.enums import FlowKind
from boardroom.errors import CollaboratorError, GovernanceError, ValidationError
from boardroom.llm import LLMClient
from boardroom.portfolio_setup import PortfolioSetupFlow
from boardroom.quarterly import QuarterlyReviewFlow
from boardroom.quick import QuickAuditFlow
from boardroom.schemas import (
    AllocationsRequest,
    AnswerRequest,
    BetEvaluationRequest,
    BetOut,
    BoardMemberOut,
    DirectionSuggestionOut,
    NewBetRequest,
    PersonaUpdate,
    PortfolioOut,
    ProblemIn,
    SensitivityRequest,
    SessionSummary,
    StartSessionRequest,
)

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db(get_settings().database_path)
    yield


app = FastAPI(
    title="Boardroom",
    version="0.1.0",
    description=(
        "Career governance sessions: a 5-question Quick Audit, a Portfolio Setup wizard "
        "and a Quarterly Review interrogated by a simulated board. "
        "All endpoints return JSON. No authentication required."
    ),
    lifespan=lifespan,
    openapi_tags=[
        {"name": "Sessions", "description": "Start, resume, answer, skip and abandon sessions of any flow."},
        {"name": "Quick Audit", "description": "Quick Audit output generation."},
        {"name": "Portfolio Setup", "description": "Problem forms, time allocation, board and publishing."},
        {"name": "Quarterly Review", "description": "Prerequisites, bet evaluation, next bet and report."},
        {"name": "Portfolio", "description": "Read-only views of the published portfolio, board and bets."},
    ],
)


@app.exception_handler(GovernanceError)
async def governance_error_handler(request: Request, exc: GovernanceError) -> JSONResponse:
    content: dict = {"detail": exc.message}
    if isinstance(exc, CollaboratorError):
        content["retryable"] = exc.retryable
    return JSONResponse(status_code=exc.status_code, content=content)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def db_session() -> Generator[Session, None, None]:
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def session_factory() -> Callable[[], Session]:
    return get_session


@lru_cache(maxsize=1)
def _default_llm() -> LLMClient | None:
    return services.build_llm()


def llm_client() -> LLMClient | None:
    return _default_llm()


def controllers(
    factory: Callable[[], Session] = Depends(session_factory),
    llm: LLMClient | None = Depends(llm_client),
) -> dict[FlowKind, FlowController]:
    return services.build_controllers(factory, llm)


def quick_flow(flows: dict = Depends(controllers)) -> QuickAuditFlow:
    return flows[FlowKind.QUICK]


def setup_flow(flows: dict = Depends(controllers)) -> PortfolioSetupFlow:
    return flows[FlowKind.SETUP]


def quarterly_flow(flows: dict = Depends(controllers)) -> QuarterlyReviewFlow:
    return flows[FlowKind.QUARTERLY]


# ---------------------------------------------------------------------------
# Routes: Sessions (all flows)
# ---------------------------------------------------------------------------


class SessionListResponse(BaseModel):
    items: list[SessionSummary]
    total: int


@app.get("/api/sessions", response_model=SessionListResponse,
         tags=["Sessions"], summary="List recent sessions, newest first")
async def list_sessions(
    flow: FlowKind | None = Query(None, description="quick, setup or quarterly"),
    limit: int = Query(50, ge=1, le=500),
    session: Session = Depends(db_session),
):
    items = services.list_sessions(session, flow, limit)
    return {"items": items, "total": len(items)}


@app.post("/api/sessions/{flow}", response_model=SessionSnapshot, status_code=201,
          tags=["Sessions"], summary="Start a new session; it opens at the sensitivity gate")
async def start_session(flow: FlowKind, body: StartSessionRequest | None = None,
                        flows: dict = Depends(controllers)):
    return await flows[flow].start_session((body or StartSessionRequest()).abstraction_mode)


@app.get("/api/sessions/{flow}/{session_id}", response_model=SessionSnapshot,
         tags=["Sessions"], summary="Resume a session from its last persisted step")
async def load_session(flow: FlowKind, session_id: int, flows: dict = Depends(controllers)):
    return await flows[flow].load_session(session_id)


@app.post("/api/sessions/{flow}/{session_id}/sensitivity", response_model=SessionSnapshot,
          tags=["Sessions"], summary="Choose abstraction mode and pass the sensitivity gate")
async def set_sensitivity(flow: FlowKind, session_id: int, body: SensitivityRequest,
                          flows: dict = Depends(controllers)):
    return await flows[flow].set_sensitivity_gate(session_id, body.abstraction_mode, body.remember_choice)


@app.post("/api/sessions/{flow}/{session_id}/answer", response_model=SessionSnapshot,
          tags=["Sessions"], summary="Answer the current question (vague answers open a clarify step)")
async def answer(flow: FlowKind, session_id: int, body: AnswerRequest, flows: dict = Depends(controllers)):
    if flow is FlowKind.SETUP:
        raise ValidationError("Portfolio Setup takes problem forms; use the problem endpoints")
    return await flows[flow].process_answer(session_id, body.answer)


@app.post("/api/sessions/{flow}/{session_id}/skip", response_model=SessionSnapshot,
          tags=["Sessions"], summary="Skip the current clarify step (at most 2 per session)")
async def skip(flow: FlowKind, session_id: int, flows: dict = Depends(controllers)):
    return await flows[flow].skip_vagueness_gate(session_id)


@app.post("/api/sessions/{flow}/{session_id}/abandon", response_model=SessionSnapshot,
          tags=["Sessions"], summary="Abandon a session; idempotent")
async def abandon(flow: FlowKind, session_id: int, flows: dict = Depends(controllers)):
    return await flows[flow].abandon(session_id)


# ---------------------------------------------------------------------------
# Routes: Quick Audit
# ---------------------------------------------------------------------------


@app.post("/api/quick/{session_id}/output", response_model=SessionSnapshot,
          tags=["Quick Audit"], summary="Generate the audit output and create the 90-day bet")
async def quick_output(session_id: int, flow: QuickAuditFlow = Depends(quick_flow)):
    return await flow.generate_output(session_id)


# ---------------------------------------------------------------------------
# Routes: Portfolio Setup
# ---------------------------------------------------------------------------


@app.put("/api/setup/{session_id}/problem", response_model=SessionSnapshot,
         tags=["Portfolio Setup"], summary="Save a draft of the problem being collected")
async def save_problem(session_id: int, body: ProblemIn, flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.save_problem(session_id, body.model_dump())


@app.post("/api/setup/{session_id}/problem", response_model=SessionSnapshot,
          tags=["Portfolio Setup"], summary="Save and validate the problem, then advance")
async def submit_problem(session_id: int, body: ProblemIn, flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.process_answer(session_id, body.model_dump())


@app.post("/api/setup/{session_id}/problem/validate", response_model=SessionSnapshot,
          tags=["Portfolio Setup"], summary="Validate the saved problem and advance")
async def validate_problem(session_id: int, flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.validate_and_advance(session_id)


@app.post("/api/setup/{session_id}/problem/direction", response_model=DirectionSuggestionOut,
          tags=["Portfolio Setup"], summary="Suggest a direction from the saved evidence")
async def suggest_direction(session_id: int, flow: PortfolioSetupFlow = Depends(setup_flow)):
    evaluation = await flow.suggest_direction(session_id)
    return {
        "direction": evaluation.direction,
        "rationale": evaluation.rationale,
        "confidence": evaluation.confidence,
    }


@app.post("/api/setup/{session_id}/problems/add", response_model=SessionSnapshot,
          tags=["Portfolio Setup"], summary="Collect another problem (maximum 5)")
async def add_problem(session_id: int, flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.add_another_problem(session_id)


@app.post("/api/setup/{session_id}/time-allocation", response_model=SessionSnapshot,
          tags=["Portfolio Setup"], summary="Finish collecting problems (minimum 3)")
async def start_time_allocation(session_id: int, flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.proceed_to_time_allocation(session_id)


@app.put("/api/setup/{session_id}/time-allocation", response_model=SessionSnapshot,
         tags=["Portfolio Setup"], summary="Set time allocation percentages, one per problem")
async def update_time_allocation(session_id: int, body: AllocationsRequest,
                                 flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.update_time_allocations(session_id, body.allocations)


@app.post("/api/setup/{session_id}/time-allocation/confirm", response_model=SessionSnapshot,
          tags=["Portfolio Setup"], summary="Confirm allocations (90-110%) and compute portfolio health")
async def confirm_time_allocation(session_id: int, flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.proceed_from_time_allocation(session_id)


@app.post("/api/setup/{session_id}/board/core", response_model=SessionSnapshot,
          tags=["Portfolio Setup"], summary="Anchor the five core board roles")
async def core_roles(session_id: int, flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.create_core_roles(session_id)


@app.post("/api/setup/{session_id}/board/growth", response_model=SessionSnapshot,
          tags=["Portfolio Setup"], summary="Anchor growth roles when a problem is appreciating")
async def growth_roles(session_id: int, flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.create_growth_roles(session_id)


@app.post("/api/setup/{session_id}/board/personas", response_model=SessionSnapshot,
          tags=["Portfolio Setup"], summary="Generate personas and define re-setup triggers")
async def personas(session_id: int, flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.create_personas(session_id)


@app.put("/api/setup/{session_id}/board/personas/{member_index}", response_model=SessionSnapshot,
         tags=["Portfolio Setup"], summary="Edit a persona before publishing (null fields ignored)")
async def update_persona(session_id: int, member_index: int, body: PersonaUpdate,
                         flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.update_persona(session_id, member_index, **body.model_dump())


@app.post("/api/setup/{session_id}/publish", response_model=SessionSnapshot,
          tags=["Portfolio Setup"], summary="Publish portfolio, board and triggers")
async def publish(session_id: int, flow: PortfolioSetupFlow = Depends(setup_flow)):
    return await flow.publish_portfolio(session_id)


# ---------------------------------------------------------------------------
# Routes: Quarterly Review
# ---------------------------------------------------------------------------


@app.post("/api/quarterly/{session_id}/prerequisites", response_model=SessionSnapshot,
          tags=["Quarterly Review"], summary="Check that a portfolio, board and triggers exist")
async def prerequisites(session_id: int, flow: QuarterlyReviewFlow = Depends(quarterly_flow)):
    return await flow.check_prerequisites(session_id)


@app.post("/api/quarterly/{session_id}/recent-report/acknowledge", response_model=SessionSnapshot,
          tags=["Quarterly Review"], summary="Continue despite a report in the last 30 days")
async def acknowledge_recent(session_id: int, flow: QuarterlyReviewFlow = Depends(quarterly_flow)):
    return await flow.acknowledge_recent_report(session_id)


@app.post("/api/quarterly/{session_id}/bet-evaluation", response_model=SessionSnapshot,
          tags=["Quarterly Review"], summary="Evaluate the last bet with evidence")
async def evaluate_bet(session_id: int, body: BetEvaluationRequest,
                       flow: QuarterlyReviewFlow = Depends(quarterly_flow)):
    evidence = [e.model_dump() for e in body.evidence]
    return await flow.evaluate_bet(session_id, body.status, body.rationale, evidence)


@app.post("/api/quarterly/{session_id}/bet-evaluation/skip", response_model=SessionSnapshot,
          tags=["Quarterly Review"], summary="Continue when no bet awaits evaluation")
async def skip_bet_evaluation(session_id: int, flow: QuarterlyReviewFlow = Depends(quarterly_flow)):
    return await flow.skip_bet_evaluation(session_id)


@app.post("/api/quarterly/{session_id}/next-bet", response_model=SessionSnapshot,
          tags=["Quarterly Review"], summary="Stage the next bet and open the board")
async def next_bet(session_id: int, body: NewBetRequest, flow: QuarterlyReviewFlow = Depends(quarterly_flow)):
    return await flow.create_new_bet(session_id, body.prediction, body.wrong_if, body.duration_days)


@app.post("/api/quarterly/{session_id}/report", response_model=SessionSnapshot,
          tags=["Quarterly Review"], summary="Generate the quarterly report and finalize")
async def report(session_id: int, flow: QuarterlyReviewFlow = Depends(quarterly_flow)):
    return await flow.generate_report(session_id)


# ---------------------------------------------------------------------------
# Routes: Portfolio (read-only)
# ---------------------------------------------------------------------------


@app.get("/api/portfolio", response_model=PortfolioOut,
         tags=["Portfolio"], summary="Active problems and current portfolio health")
async def portfolio(session: Session = Depends(db_session)):
    return services.portfolio_view(session)


@app.get("/api/board", response_model=list[BoardMemberOut],
         tags=["Portfolio"], summary="Active board members in interrogation order")
async def board(session: Session = Depends(db_session)):
    return services.board_view(session)


@app.get("/api/bets", response_model=list[BetOut],
         tags=["Portfolio"], summary="Bets, newest first")
async def bets(
    status: str | None = Query(None, description="open, correct, wrong or expired"),
    session: Session = Depends(db_session),
):
    if status is not None and status not in {"open", "correct", "wrong", "expired"}:
        raise ValidationError(f"Unknown bet status: {status}")
    return services.bets_view(session, status)
