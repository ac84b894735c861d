from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager, contextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from boardroom import services
from boardroom.config import get_settings
from boardroom.db import get_session, init_db
from boardroom.engine import FlowController, SessionSnapshot
from boardroom.enums import FlowKind
from boardroom.errors import GovernanceError

log = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

_controllers: dict[FlowKind, FlowController] = {}


@asynccontextmanager
async def boardroom_lifespan(server: FastMCP) -> AsyncIterator[None]:
    settings = get_settings()
    init_db(settings.database_path)
    _controllers.update(services.build_controllers(llm=services.build_llm(settings), settings=settings))
    yield
    _controllers.clear()


mcp = FastMCP(
    "Boardroom",
    instructions=(
        "Boardroom runs career governance sessions. Start with start_session(flow) where flow "
        "is quick, setup or quarterly, then follow the returned state: answer questions with "
        "answer(), skip at most two clarify steps with skip(), and call the flow-specific "
        "tools when the state asks for them. Portfolio Setup must be published before a "
        "Quarterly Review can pass its prerequisites."
    ),
    lifespan=boardroom_lifespan,
    json_response=True,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


@contextmanager
def _session():
    session = get_session()
    try:
        yield session
    finally:
        session.close()


def _flow(flow: str) -> FlowController:
    if not _controllers:
        _controllers.update(services.build_controllers(llm=services.build_llm()))
    return _controllers[FlowKind(flow)]


async def _run(call: Awaitable[SessionSnapshot]) -> dict[str, Any]:
    try:
        snapshot = await call
    except GovernanceError as exc:
        return {"error": exc.message}
    return snapshot.model_dump(mode="json")


def _bad_flow(flow: str) -> dict[str, Any] | None:
    if flow not in {f.value for f in FlowKind}:
        return {"error": f"Unknown flow '{flow}' (use quick, setup or quarterly)"}
    return None


# ---------------------------------------------------------------------------
# Resource
# ---------------------------------------------------------------------------


@mcp.resource("boardroom://overview")
def boardroom_overview() -> str:
    """Overview of the three flows and their terminal actions."""
    return json.dumps({
        "flows": {
            "quick": "5 questions -> direction table, assessment and a 90-day bet. Finish with generate_quick_output().",
            "setup": "3-5 problem forms -> time allocation -> health -> board -> personas -> publish_portfolio().",
            "quarterly": (
                "check_prerequisites() -> evaluate_bet() -> 6 reflective questions -> create_new_bet() "
                "-> board interrogation via answer() -> generate_quarterly_report()."
            ),
        },
        "vagueness_gate": "Vague answers open a clarify step asking for one concrete example. Two skips per session.",
        "directions": ["appreciating", "depreciating", "stable"],
        "bet_statuses": ["open", "correct", "wrong", "expired"],
    }, indent=2)


# ---------------------------------------------------------------------------
# Tools: Sessions
# ---------------------------------------------------------------------------


@mcp.tool()
async def start_session(flow: str, abstraction_mode: bool | None = None) -> dict:
    """Start a quick, setup or quarterly session. It opens at the sensitivity gate."""
    return _bad_flow(flow) or await _run(_flow(flow).start_session(abstraction_mode))


@mcp.tool()
async def get_session_state(flow: str, session_id: int) -> dict:
    """Load a session's current state, question and accumulated answers."""
    return _bad_flow(flow) or await _run(_flow(flow).load_session(session_id))


@mcp.tool()
async def set_sensitivity(flow: str, session_id: int, abstraction_mode: bool, remember_choice: bool = False) -> dict:
    """Pass the sensitivity gate. abstraction_mode=True keeps names and employers out of outputs."""
    return _bad_flow(flow) or await _run(
        _flow(flow).set_sensitivity_gate(session_id, abstraction_mode, remember_choice)
    )


@mcp.tool()
async def answer(flow: str, session_id: int, answer: str) -> dict:
    """Answer the current question of a quick or quarterly session."""
    if flow == FlowKind.SETUP.value:
        return {"error": "Portfolio Setup takes problem forms; use submit_problem"}
    return _bad_flow(flow) or await _run(_flow(flow).process_answer(session_id, answer))


@mcp.tool()
async def skip(flow: str, session_id: int) -> dict:
    """Skip the current clarify step. Only two skips are allowed per session."""
    return _bad_flow(flow) or await _run(_flow(flow).skip_vagueness_gate(session_id))


@mcp.tool()
async def abandon(flow: str, session_id: int) -> dict:
    """Abandon a session. It can never be resumed."""
    return _bad_flow(flow) or await _run(_flow(flow).abandon(session_id))


@mcp.tool()
def list_sessions(flow: str | None = None, limit: int = 20) -> list[dict] | dict:
    """List recent sessions, newest first."""
    if flow is not None and (bad := _bad_flow(flow)):
        return bad
    with _session() as session:
        return services.list_sessions(session, FlowKind(flow) if flow else None, limit)


# ---------------------------------------------------------------------------
# Tools: Flow-specific
# ---------------------------------------------------------------------------


@mcp.tool()
async def generate_quick_output(session_id: int) -> dict:
    """Finish a Quick Audit: direction table, assessment and a 90-day bet."""
    return await _run(_flow("quick").generate_output(session_id))


@mcp.tool()
async def submit_problem(
    session_id: int,
    name: str,
    what_breaks: str,
    ai_cheaper: str,
    error_cost: str,
    trust_required: str,
    direction: str,
    direction_rationale: str,
    scarcity_signals: list[str] | None = None,
    scarcity_unknown_reason: str | None = None,
) -> dict:
    """Submit the Portfolio Setup problem being collected.

    Args:
        direction: appreciating, depreciating or stable.
        scarcity_signals: Two signals that this problem is scarce.
        scarcity_unknown_reason: Use instead of scarcity_signals when they are unknown.
    """
    problem = {
        "name": name, "what_breaks": what_breaks,
        "ai_cheaper": ai_cheaper, "error_cost": error_cost, "trust_required": trust_required,
        "direction": direction or None, "direction_rationale": direction_rationale,
        "scarcity_signals": scarcity_signals or [],
        "scarcity_unknown": bool(scarcity_unknown_reason),
        "scarcity_unknown_reason": scarcity_unknown_reason or "",
    }
    return await _run(_flow("setup").process_answer(session_id, problem))


@mcp.tool()
async def add_another_problem(session_id: int) -> dict:
    """Collect one more problem (maximum 5)."""
    return await _run(_flow("setup").add_another_problem(session_id))


@mcp.tool()
async def set_time_allocations(session_id: int, allocations: list[float]) -> dict:
    """Move to time allocation if needed, store one percentage per problem and confirm.

    The total must be between 90 and 110 percent.
    """
    flow = _flow("setup")
    loaded = await _run(flow.load_session(session_id))
    if "error" in loaded:
        return loaded
    if loaded["state"] == "portfolio_completeness":
        moved = await _run(flow.proceed_to_time_allocation(session_id))
        if "error" in moved:
            return moved
    updated = await _run(flow.update_time_allocations(session_id, allocations))
    if "error" in updated:
        return updated
    return await _run(flow.proceed_from_time_allocation(session_id))


@mcp.tool()
async def build_board(session_id: int) -> dict:
    """Anchor core and growth roles and generate personas."""
    flow = _flow("setup")
    for step in (flow.create_core_roles, flow.create_growth_roles):
        result = await _run(step(session_id))
        if "error" in result:
            return result
    return await _run(flow.create_personas(session_id))


@mcp.tool()
async def publish_portfolio(session_id: int) -> dict:
    """Publish the portfolio, board and re-setup triggers."""
    return await _run(_flow("setup").publish_portfolio(session_id))


@mcp.tool()
async def check_prerequisites(session_id: int) -> dict:
    """Quarterly gate 0: a published portfolio, board and triggers must exist."""
    return await _run(_flow("quarterly").check_prerequisites(session_id))


@mcp.tool()
async def acknowledge_recent_report(session_id: int) -> dict:
    """Continue a quarterly review despite a report in the last 30 days."""
    return await _run(_flow("quarterly").acknowledge_recent_report(session_id))


@mcp.tool()
async def evaluate_bet(session_id: int, status: str, rationale: str = "", evidence: list[dict] | None = None) -> dict:
    """Evaluate the bet under review.

    Args:
        status: correct, wrong or expired (expired only once the bet is past due).
        evidence: Items with description and kind (decision, artifact, calendar, proxy, none).
    """
    return await _run(_flow("quarterly").evaluate_bet(session_id, status, rationale, evidence or []))


@mcp.tool()
async def skip_bet_evaluation(session_id: int) -> dict:
    """Continue when there is no bet to evaluate."""
    return await _run(_flow("quarterly").skip_bet_evaluation(session_id))


@mcp.tool()
async def create_new_bet(session_id: int, prediction: str, wrong_if: str, duration_days: int = 90) -> dict:
    """Stage the next bet and open the board interrogation."""
    return await _run(_flow("quarterly").create_new_bet(session_id, prediction, wrong_if, duration_days))


@mcp.tool()
async def generate_quarterly_report(session_id: int) -> dict:
    """Finish a quarterly review once every board member has been answered."""
    return await _run(_flow("quarterly").generate_report(session_id))


# ---------------------------------------------------------------------------
# Tools: Portfolio
# ---------------------------------------------------------------------------


@mcp.tool()
def get_portfolio() -> dict:
    """Active problems with their directions and the current health composition."""
    with _session() as session:
        return services.portfolio_view(session)


@mcp.tool()
def get_board() -> list[dict]:
    """Active board members in interrogation order."""
    with _session() as session:
        return services.board_view(session)


@mcp.tool()
def list_bets(status: str | None = None) -> list[dict] | dict:
    """List bets, newest first. Filter by open, correct, wrong or expired."""
    with _session() as session:
        try:
            return services.bets_view(session, status)
        except ValueError:
            return {"error": f"Unknown bet status: {status}"}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main():
    """Run the Boardroom MCP server over stdio."""
    mcp.run()


if __name__ == "__main__":
    main()
