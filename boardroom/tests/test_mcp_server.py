from __future__ import annotations

from unittest.mock import patch

import pytest

from boardroom import mcp_server
from boardroom.services import build_controllers


@pytest.fixture()
def tools(session_factory, settings):
    """The MCP module wired to the test database without entering its lifespan."""
    flows = build_controllers(session_factory, None, settings)
    with patch.dict(mcp_server._controllers, flows, clear=True), \
            patch.object(mcp_server, "get_session", session_factory):
        yield mcp_server


def problem(name: str, direction: str) -> dict:
    return dict(
        name=name, what_breaks="Releases slip", ai_cheaper="Copilots draft it",
        error_cost="A quarter of revenue", trust_required="CFO confidence",
        direction=direction, direction_rationale="Judgment-heavy work",
        scarcity_signals=["Two people can do it", "Recruiters ask weekly"],
    )


class TestSessionTools:
    @pytest.mark.asyncio
    async def test_unknown_flow(self, tools):
        result = await tools.start_session("weekly")
        assert result == {"error": "Unknown flow 'weekly' (use quick, setup or quarterly)"}

    @pytest.mark.asyncio
    async def test_errors_become_dicts(self, tools):
        assert await tools.get_session_state("quick", 404) == {"error": "Session 404 not found"}

    @pytest.mark.asyncio
    async def test_quick_answer_and_skip(self, tools):
        started = await tools.start_session("quick")
        sid = started["id"]
        await tools.set_sensitivity("quick", sid, abstraction_mode=False)
        result = await tools.answer("quick", sid, "meh")
        assert result["state"] == "q1_clarify"
        result = await tools.skip("quick", sid)
        assert result["state"] == "q2_paid_problems"
        sessions = tools.list_sessions("quick")
        assert sessions[0]["skip_count"] == 1

    @pytest.mark.asyncio
    async def test_setup_rejects_free_text(self, tools):
        sid = (await tools.start_session("setup"))["id"]
        assert "error" in await tools.answer("setup", sid, "Pricing strategy work")

    @pytest.mark.asyncio
    async def test_output_without_provider(self, tools):
        sid = (await tools.start_session("quick"))["id"]
        result = await tools.generate_quick_output(sid)
        assert "needs generate_output" in result["error"]


class TestSetupTools:
    @pytest.mark.asyncio
    async def test_setup_to_quarterly_prerequisites(self, tools):
        sid = (await tools.start_session("setup"))["id"]
        await tools.set_sensitivity("setup", sid, abstraction_mode=False)
        for name, direction in (("Platform", "appreciating"), ("Reporting", "depreciating"), ("Hiring", "stable")):
            result = await tools.submit_problem(sid, **problem(name, direction))
            assert "error" not in result, result

        result = await tools.set_time_allocations(sid, [40, 30, 10])
        assert result["error"].endswith("Must be between 90% and 110% to proceed.")
        result = await tools.set_time_allocations(sid, [40, 30, 30])
        assert result["state"] == "create_core_roles"

        result = await tools.build_board(sid)
        assert result["state"] == "publish_portfolio"
        result = await tools.publish_portfolio(sid)
        assert result["state"] == "finalized"

        assert len(tools.get_board()) == 7
        assert tools.get_portfolio()["health"]["stable_percent"] == 30

        qid = (await tools.start_session("quarterly"))["id"]
        await tools.set_sensitivity("quarterly", qid, abstraction_mode=False)
        result = await tools.check_prerequisites(qid)
        assert result["state"] == "q1_last_bet_evaluation"

    @pytest.mark.asyncio
    async def test_unknown_scarcity(self, tools):
        sid = (await tools.start_session("setup"))["id"]
        await tools.set_sensitivity("setup", sid, abstraction_mode=False)
        form = {**problem("Platform", "stable"), "scarcity_signals": None,
                "scarcity_unknown_reason": "Brand new field"}
        result = await tools.submit_problem(sid, **form)
        assert result["state"] == "collect_problem_2"


def test_list_bets_rejects_unknown_status(tools):
    assert tools.list_bets("pending") == {"error": "Unknown bet status: pending"}
    assert tools.list_bets() == []
