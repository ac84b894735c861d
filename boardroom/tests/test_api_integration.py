"""HTTP-level tests for the FastAPI surface.

The lifespan hook (which opens the configured database) is not entered; the
session and controller dependencies are overridden onto the in-memory database.
"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from boardroom.advisor import QUICK_OUTPUT_PROMPT
from boardroom.app import app, controllers, db_session
from boardroom.services import build_controllers

QUICK_ANSWERS = [
    "I lead the payments platform team at Acme since March",
    "1. Pricing 2. Hiring 3. Roadmap",
    *[
        "Copilot drafts most of this since last quarter",
        "A wrong call cost us 20% of renewals in Q2",
        "Only the CFO and I see the numbers every Monday",
    ] * 3,
    "Asking for a raise, cost: six more months underpaid",
    "Rewriting the team wiki every Friday",
]

QUICK_OUTPUT = {
    "directionTableMarkdown": "| Problem | Direction |\n|---|---|\n| Pricing | Appreciating |",
    "assessment": "Pricing is your edge.",
    "avoidedDecision": "Asking for a raise",
    "avoidedDecisionCost": "Six months underpaid",
    "betPrediction": "Pricing reviews will need me less by June",
    "betWrongIf": "I still approve every discount",
    "fullOutputMarkdown": "# Quick Audit\n\nFull output",
}


@pytest.fixture()
def make_client(session_factory, settings):
    """TestClient whose controllers run on the test database and an optional scripted LLM."""
    def override_db_session():
        session = session_factory()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def factory(llm=None) -> TestClient:
        app.dependency_overrides[db_session] = override_db_session
        app.dependency_overrides[controllers] = lambda: build_controllers(session_factory, llm, settings)
        return TestClient(app, raise_server_exceptions=True)

    yield factory
    app.dependency_overrides.clear()


@pytest.fixture()
def client(make_client):
    return make_client()


def start(c: TestClient, flow: str) -> int:
    resp = c.post(f"/api/sessions/{flow}", json={})
    assert resp.status_code == 201
    sid = resp.json()["id"]
    resp = c.post(f"/api/sessions/{flow}/{sid}/sensitivity", json={"abstraction_mode": False})
    assert resp.status_code == 200
    return sid


def problem_form(name: str, direction: str, percent: float) -> dict:
    return {
        "name": name,
        "what_breaks": "Releases slip",
        "scarcity_signals": ["Two people can do it", "Recruiters ask weekly"],
        "ai_cheaper": "Copilots draft it",
        "error_cost": "A quarter of revenue",
        "trust_required": "CFO confidence",
        "direction": direction,
        "direction_rationale": "Judgment-heavy work",
        "time_allocation_percent": percent,
    }


class TestSessionEndpoints:
    def test_start_and_resume(self, client):
        resp = client.post("/api/sessions/quick", json={"abstraction_mode": True})
        assert resp.status_code == 201
        data = resp.json()
        assert data["state"] == "sensitivity_gate"
        assert data["flow"] == "quick"
        assert data["accumulator"]["abstraction_mode"] is True

        resp = client.get(f"/api/sessions/quick/{data['id']}")
        assert resp.status_code == 200
        assert resp.json()["state"] == "sensitivity_gate"

    def test_unknown_flow(self, client):
        assert client.post("/api/sessions/weekly", json={}).status_code == 422

    def test_missing_session(self, client):
        resp = client.get("/api/sessions/quick/9999")
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Session 9999 not found"}

    def test_session_of_another_flow_is_not_found(self, client):
        sid = start(client, "quick")
        assert client.get(f"/api/sessions/quarterly/{sid}").status_code == 404

    def test_answer_and_clarify(self, client):
        sid = start(client, "quick")
        resp = client.post(f"/api/sessions/quick/{sid}/answer", json={"answer": "ok"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["state"] == "q1_clarify"
        assert data["missing_elements"]

        resp = client.post(f"/api/sessions/quick/{sid}/skip")
        assert resp.json()["state"] == "q2_paid_problems"
        assert resp.json()["accumulator"]["skip_count"] == 1

    def test_empty_answer_is_rejected(self, client):
        sid = start(client, "quick")
        resp = client.post(f"/api/sessions/quick/{sid}/answer", json={"answer": "   "})
        assert resp.status_code == 422
        assert resp.json()["detail"] == "Answer must not be empty"

    def test_skip_without_clarify(self, client):
        sid = start(client, "quick")
        resp = client.post(f"/api/sessions/quick/{sid}/skip")
        assert resp.status_code == 422

    def test_setup_rejects_free_text(self, client):
        sid = start(client, "setup")
        resp = client.post(f"/api/sessions/setup/{sid}/answer", json={"answer": "Pricing"})
        assert resp.status_code == 422

    def test_abandon_closes_session(self, client):
        sid = start(client, "quick")
        resp = client.post(f"/api/sessions/quick/{sid}/abandon")
        assert resp.status_code == 200
        assert resp.json()["is_abandoned"] is True
        assert resp.json()["progress"] == 0

        resp = client.post(f"/api/sessions/quick/{sid}/answer", json={"answer": "Shipped the Atlas report"})
        assert resp.status_code == 409
        assert client.post(f"/api/sessions/quick/{sid}/abandon").status_code == 200

    def test_list_sessions(self, client):
        start(client, "quick")
        start(client, "setup")
        resp = client.get("/api/sessions", params={"flow": "setup"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 1
        assert data["items"][0]["flow"] == "setup"
        assert client.get("/api/sessions").json()["total"] == 2


class TestQuickAudit:
    def _answer_all(self, c: TestClient, sid: int) -> dict:
        for text in QUICK_ANSWERS:
            resp = c.post(f"/api/sessions/quick/{sid}/answer", json={"answer": text})
            assert resp.status_code == 200, resp.json()
        return resp.json()

    def test_output_without_provider_is_a_collaborator_error(self, client):
        sid = start(client, "quick")
        data = self._answer_all(client, sid)
        assert data["state"] == "generate_output"

        resp = client.post(f"/api/quick/{sid}/output")
        assert resp.status_code == 502
        assert resp.json()["retryable"] is False
        assert client.get(f"/api/sessions/quick/{sid}").json()["state"] == "generate_output"

    def test_output_creates_bet(self, make_client, scripted):
        c = make_client(scripted({QUICK_OUTPUT_PROMPT: QUICK_OUTPUT}))
        sid = start(c, "quick")
        self._answer_all(c, sid)

        resp = c.post(f"/api/quick/{sid}/output")
        assert resp.status_code == 200
        data = resp.json()
        assert data["state"] == "finalized"
        assert data["is_completed"] is True

        bets = c.get("/api/bets", params={"status": "open"}).json()
        assert len(bets) == 1
        assert bets[0]["prediction"] == QUICK_OUTPUT["betPrediction"]
        assert bets[0]["duration_days"] == 90


class TestPortfolioSetup:
    def test_full_setup_over_http(self, client):
        sid = start(client, "setup")
        forms = [
            problem_form("Platform strategy", "appreciating", 40),
            problem_form("Status reporting", "depreciating", 30),
            problem_form("Hiring loop", "stable", 30),
        ]
        for form in forms:
            resp = client.post(f"/api/setup/{sid}/problem", json=form)
            assert resp.status_code == 200, resp.json()
        assert resp.json()["state"] == "portfolio_completeness"

        assert client.post(f"/api/setup/{sid}/time-allocation").status_code == 200
        resp = client.put(f"/api/setup/{sid}/time-allocation", json={"allocations": [50, 25, 25]})
        assert resp.json()["accumulator"]["time_allocation_total"] == 100
        resp = client.post(f"/api/setup/{sid}/time-allocation/confirm")
        assert resp.json()["state"] == "create_core_roles"

        for step in ("core", "growth", "personas"):
            resp = client.post(f"/api/setup/{sid}/board/{step}")
            assert resp.status_code == 200, resp.json()
        assert resp.json()["state"] == "publish_portfolio"

        resp = client.put(f"/api/setup/{sid}/board/personas/0", json={"name": "Robin Vale"})
        assert resp.json()["accumulator"]["board_members"][0]["persona_name"] == "Robin Vale"

        resp = client.post(f"/api/setup/{sid}/publish")
        assert resp.status_code == 200
        assert resp.json()["state"] == "finalized"

        portfolio = client.get("/api/portfolio").json()
        assert [p["name"] for p in portfolio["problems"]] == ["Platform strategy", "Status reporting", "Hiring loop"]
        assert portfolio["health"]["appreciating_percent"] == 50
        assert portfolio["problems"][0]["scarcity_signals"] == ["Two people can do it", "Recruiters ask weekly"]

        board = client.get("/api/board").json()
        assert len(board) == 7
        assert board[0]["role_type"] == "accountability"
        assert board[0]["persona_name"] == "Robin Vale"

    def test_draft_and_validate(self, client):
        sid = start(client, "setup")
        draft = {**problem_form("Pricing", "", 0), "what_breaks": ""}
        resp = client.put(f"/api/setup/{sid}/problem", json=draft)
        assert resp.status_code == 200
        assert resp.json()["accumulator"]["problems"][0]["direction"] is None

        resp = client.post(f"/api/setup/{sid}/problem/validate")
        assert resp.status_code == 422
        assert "What breaks if not solved is required" in resp.json()["detail"]

    def test_direction_suggestion_needs_provider(self, client):
        sid = start(client, "setup")
        client.put(f"/api/setup/{sid}/problem", json=problem_form("Pricing", "", 0))
        resp = client.post(f"/api/setup/{sid}/problem/direction")
        assert resp.status_code == 502
        assert "retryable" in resp.json()

    def test_out_of_order_step(self, client):
        sid = start(client, "setup")
        resp = client.post(f"/api/setup/{sid}/publish")
        assert resp.status_code == 422
        assert "needs publish_portfolio" in resp.json()["detail"]


class TestQuarterlyReview:
    def test_prerequisites_without_portfolio(self, client):
        sid = start(client, "quarterly")
        resp = client.post(f"/api/quarterly/{sid}/prerequisites")
        assert resp.status_code == 422
        assert resp.json()["detail"].startswith("Prerequisites not met")

    def test_review_up_to_the_board(self, client, published):
        sid = start(client, "quarterly")
        assert client.post(f"/api/quarterly/{sid}/prerequisites").json()["state"] == "q1_last_bet_evaluation"
        resp = client.post(f"/api/quarterly/{sid}/bet-evaluation/skip")
        assert resp.json()["state"] == "q2_commitments_vs_actuals"

        answers = [
            "Promised 3 design reviews and delivered 2 by March",
            "Telling Priya the migration slips, cost: another quarter",
            "Polishing the team wiki every Friday",
            "Status reporting dropped to 20% of my week",
            "Copilots now draft pricing memos since q3",
            "Pricing reviews for the Atlas team could double revenue",
        ]
        for text in answers:
            resp = client.post(f"/api/sessions/quarterly/{sid}/answer", json={"answer": text})
            assert resp.status_code == 200, resp.json()
        assert resp.json()["state"] == "q10_next_bet"

        resp = client.post(f"/api/quarterly/{sid}/next-bet", json={"prediction": "Lead the launch", "wrong_if": ""})
        assert resp.status_code == 422
        resp = client.post(
            f"/api/quarterly/{sid}/next-bet",
            json={"prediction": "Lead the launch", "wrong_if": "No date by June", "duration_days": 0},
        )
        assert resp.status_code == 422
        resp = client.post(
            f"/api/quarterly/{sid}/next-bet", json={"prediction": "Lead the launch", "wrong_if": "No date by June"},
        )
        data = resp.json()
        assert data["state"] == "core_board_interrogation"
        assert data["question"] == "Show me proof on problem 0"

        resp = client.post(f"/api/quarterly/{sid}/report")
        assert resp.status_code == 422

    def test_bet_evaluation_body_is_validated(self, client, published):
        sid = start(client, "quarterly")
        client.post(f"/api/quarterly/{sid}/prerequisites")
        resp = client.post(f"/api/quarterly/{sid}/bet-evaluation", json={"status": "maybe"})
        assert resp.status_code == 422


class TestReadOnly:
    def test_empty_views(self, client):
        assert client.get("/api/portfolio").json() == {"problems": [], "health": None}
        assert client.get("/api/board").json() == []
        assert client.get("/api/bets").json() == []

    def test_invalid_bet_status(self, client):
        resp = client.get("/api/bets", params={"status": "pending"})
        assert resp.status_code == 422
        assert resp.json()["detail"] == "Unknown bet status: pending"
