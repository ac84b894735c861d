from __future__ import annotations

import json
from datetime import datetime, timedelta

import pydantic
import pytest

from boardroom import repositories
from boardroom.accumulators import (
    REFUSED_EXAMPLE,
    BetEvaluation,
    BoardPhase,
    BoardResponse,
    EvidenceRecord,
    HealthTrend,
    IdentifiedProblem,
    NewBet,
    PendingBoardQuestion,
    PortfolioHealthSnapshot,
    QAEntry,
    QuarterlyAccumulator,
    QuickAccumulator,
    SetupAccumulator,
    SetupBoardMember,
    SetupProblem,
    SetupTrigger,
    TriggerStatus,
    load_accumulator,
)
from boardroom.enums import BetStatus, BoardRoleType, Direction, EvidenceKind, EvidenceStrength, FlowKind
from boardroom.models import Bet, GovernanceSession


class TestQAEntry:
    def test_skipped_entry_is_vague_refusal(self):
        entry = QAEntry.skipped_entry("Give one concrete example", "q1_clarify")
        assert entry.skipped and entry.vague
        assert entry.answer == REFUSED_EXAMPLE

    def test_skipped_must_be_refusal(self):
        with pytest.raises(pydantic.ValidationError):
            QAEntry(question="q", answer="something", vague=True, skipped=True)

    def test_frozen(self):
        entry = QAEntry(question="q", answer="a")
        with pytest.raises(pydantic.ValidationError):
            entry.answer = "b"


class TestSessionAccumulator:
    def test_evolve_leaves_original_untouched(self):
        acc = QuickAccumulator()
        grown = acc.with_entry(QAEntry(question="q", answer="a"))
        assert acc.transcript == ()
        assert len(grown.transcript) == 1
        assert grown.last_entry.answer == "a"

    def test_skip_budget(self):
        assert QuickAccumulator().can_skip
        assert QuickAccumulator(skip_count=1).can_skip
        assert not QuickAccumulator(skip_count=2).can_skip

    def test_provider_failure_counter(self):
        acc = QuickAccumulator().record_provider(False).record_provider(False)
        assert acc.provider_failures == 2
        assert acc.record_provider(True).provider_failures == 0


class TestSetupProblem:
    def test_empty_problem_lists_every_field(self):
        errors = SetupProblem().missing_fields()
        assert len(errors) == 8
        assert "Problem name is required" in errors
        assert 'Either 2 scarcity signals or "Unknown + reason" is required' in errors

    def test_unknown_scarcity_needs_reason(self, problems):
        p = problems[0].evolve(scarcity_signals=(), scarcity_unknown=True, scarcity_unknown_reason="")
        assert not p.is_complete
        assert p.evolve(scarcity_unknown_reason="New field, no data").is_complete

    def test_blank_signals_do_not_count(self, problems):
        assert not problems[0].evolve(scarcity_signals=("one", "  ")).is_complete

    def test_scarcity_json(self, problems):
        assert json.loads(problems[0].scarcity_signals_json()) == list(problems[0].scarcity_signals)
        unknown = problems[0].evolve(scarcity_unknown=True, scarcity_unknown_reason="new")
        assert json.loads(unknown.scarcity_signals_json()) == {"unknown": True, "reason": "new"}

    def test_with_problem_appends_or_replaces(self, problems):
        acc = SetupAccumulator().with_problem(0, problems[0])
        acc = acc.with_problem(1, problems[1]).with_problem(0, problems[2])
        assert [p.name for p in acc.problems] == ["Hiring loop", "Status reporting"]


class TestEvidence:
    def test_strength_defaults_from_kind(self):
        assert EvidenceRecord(description="PR merged", kind="artifact").strength is EvidenceStrength.STRONG
        assert EvidenceRecord(description="1:1 notes", kind="calendar").strength is EvidenceStrength.MEDIUM
        assert EvidenceRecord(description="gut feel").strength is EvidenceStrength.NONE

    def test_explicit_strength_wins(self):
        record = EvidenceRecord(description="x", kind=EvidenceKind.PROXY, strength="weak")
        assert record.strength is EvidenceStrength.WEAK


class TestQuarterlyAccumulator:
    def test_growth_inactive_counts_as_responded(self):
        acc = QuarterlyAccumulator(growth_roles_active=False)
        assert acc.all_growth_board_responded
        assert not acc.all_core_board_responded


# ---------------------------------------------------------------------------
# Serialization round-trips
# ---------------------------------------------------------------------------

DUE = datetime(2026, 3, 31, 9, 30)
EVIDENCE = (
    EvidenceRecord(description="Launch announcement", kind=EvidenceKind.ARTIFACT, context="bet_evaluation:4"),
    EvidenceRecord(description="Planning meeting", kind=EvidenceKind.CALENDAR, strength=EvidenceStrength.WEAK),
)
CLARIFIED = QAEntry(
    question="Who asked the question?", answer="The board", vague=True,
    concrete_example="Dana asked on Monday", state="board_interrogation_clarify",
    problem_index=1, role_type=BoardRoleType.MARKET_REALITY, persona_name="Marcus",
)


def quick_accumulator() -> QuickAccumulator:
    return QuickAccumulator(
        abstraction_mode=True, skip_count=1, provider_failures=2,
        transcript=(CLARIFIED, QAEntry.skipped_entry("Give one concrete example", "q2_clarify")),
        clarify_reason="No names", missing_elements=("who", "when"),
        role_context="Staff engineer at Acme", paid_problems="Pricing, hiring",
        problems=(IdentifiedProblem(
            name="Pricing", ai_cheaper="Not yet", error_cost="Lost deals", trust_required="CFO access",
            direction=Direction.APPRECIATING, direction_rationale="Judgment heavy",
        ),),
        current_problem_index=1, current_sub_question=2,
        avoided_decision="Asking for a raise", avoided_decision_cost="Six months underpaid",
        bet_prediction="Promotion by June", bet_wrong_if="No offer letter", created_bet_id=7,
    )


def setup_accumulator(problems: list[SetupProblem]) -> SetupAccumulator:
    return SetupAccumulator(
        transcript=(CLARIFIED,),
        problems=tuple(problems) + (SetupProblem(
            name="Research", scarcity_unknown=True, scarcity_unknown_reason="New field",
        ),),
        current_problem_index=3, validation_errors=("Error cost evidence is required",),
        time_allocation_total=97.5,
        health=PortfolioHealthSnapshot(
            appreciating_percent=40, depreciating_percent=30, stable_percent=27.5,
            risk_statement="Reporting eats a third of the week", opportunity_statement="Grow pricing",
        ),
        board_members=(SetupBoardMember(
            role_type=BoardRoleType.PORTFOLIO_DEFENDER, is_growth=True, anchored_problem_index=0,
            anchored_demand="Protect the edge", persona_name="Ava", persona_background="Former CFO",
            persona_communication_style="Blunt", persona_signature_phrase="Show me the receipts",
        ),),
        triggers=(
            SetupTrigger(trigger_type="annual", description="Yearly", condition="365 days", action="Re-run", due_at=DUE),
            SetupTrigger(trigger_type="role_change", description="New role", condition="Title", action="Re-run"),
        ),
        portfolio_version_id=3,
    )


def quarterly_accumulator() -> QuarterlyAccumulator:
    response = BoardResponse(
        role_type=BoardRoleType.ACCOUNTABILITY, persona_name="Maya", problem_index=0,
        question="Where is the plan?", answer="I handled stuff", vague=True,
        concrete_example="Sent the plan to Dana on Monday",
    )
    return QuarterlyAccumulator(
        transcript=(CLARIFIED,), skip_count=2,
        prerequisites_passed=True, showed_recent_warning=True, days_since_last_report=12,
        growth_roles_active=True, review_bet_id=4, review_bet_prediction="Lead the launch",
        bet_evaluation=BetEvaluation(bet_id=4, status=BetStatus.EXPIRED, rationale="Sponsor left", evidence=EVIDENCE),
        commitments="Two of three", avoided_decision="Telling Priya", comfort_work="Wiki",
        portfolio_check="Reporting down", protection="Copilots", opportunity="Atlas pricing",
        current_health=PortfolioHealthSnapshot(appreciating_percent=40, depreciating_percent=30, stable_percent=30),
        health_trend=HealthTrend(
            previous_appreciating=30, previous_depreciating=40, previous_stable=30,
            current_appreciating=40, current_depreciating=30, current_stable=30,
            description="Appreciating work grew",
        ),
        trigger_statuses=(TriggerStatus(
            trigger_type="annual", description="Yearly", condition="365 days", is_approaching=True, due_at=DUE,
        ),),
        any_trigger_met=True,
        new_bet=NewBet(prediction="Ship pricing", wrong_if="No launch", duration_days=60),
        board_phase=BoardPhase.GROWTH, pending_member_index=1,
        pending_question=PendingBoardQuestion(
            role_type=BoardRoleType.OPPORTUNITY_SCOUT, persona_name="Leo", problem_index=0, question="What next?",
        ),
        core_responses=(response,) * 5, growth_responses=(response.evolve(skipped=True),),
        created_bet_id=9,
    )


class TestRoundTrip:
    @pytest.mark.parametrize("flow,build", [
        (FlowKind.QUICK, lambda problems: quick_accumulator()),
        (FlowKind.SETUP, setup_accumulator),
        (FlowKind.QUARTERLY, lambda problems: quarterly_accumulator()),
    ])
    def test_accumulators(self, flow, build, problems):
        acc = build(problems)
        loaded = load_accumulator(flow, acc.model_dump_json())
        assert loaded == acc
        assert type(loaded) is type(acc)

    def test_quarterly_nested_values_keep_their_types(self):
        loaded = load_accumulator(FlowKind.QUARTERLY, quarterly_accumulator().model_dump_json())
        assert loaded.board_phase is BoardPhase.GROWTH
        assert loaded.bet_evaluation.evidence[1].strength is EvidenceStrength.WEAK
        assert loaded.trigger_statuses[0].due_at == DUE
        assert loaded.health_trend.appreciating_change == 10
        assert loaded.all_core_board_responded and not loaded.all_growth_board_responded

    @pytest.mark.parametrize("value", [
        CLARIFIED,
        QAEntry.skipped_entry("Give one concrete example", "q1_clarify"),
        EVIDENCE[0],
        EVIDENCE[1],
        BetEvaluation(bet_id=2, status=BetStatus.CORRECT, evidence=EVIDENCE),
    ])
    def test_value_records(self, value):
        assert type(value).model_validate_json(value.model_dump_json()) == value

    def test_empty_raw_gives_fresh_accumulator(self):
        assert load_accumulator(FlowKind.SETUP, None) == SetupAccumulator()


class TestRepositorySerializers:
    def test_session_row_round_trip(self, db):
        acc = quarterly_accumulator()
        row = repositories.create_session(db, FlowKind.QUARTERLY, "generate_report", acc)
        repositories.complete_session(db, row, created_bet_id=None, portfolio_version_id=None)
        db.commit()

        stored = db.get(GovernanceSession, row.id)
        assert load_accumulator(FlowKind.QUARTERLY, stored.accumulator_json) == acc
        assert [QAEntry.model_validate(e) for e in json.loads(stored.transcript_json)] == list(acc.transcript)

        data = repositories.session_to_dict(stored)
        assert data["flow"] == "quarterly"
        assert data["state"] == "generate_report"
        assert data["skip_count"] == 2
        assert data["is_completed"] and not data["is_abandoned"]
        assert datetime.fromisoformat(data["started_at"]) == stored.started_at
        assert datetime.fromisoformat(data["completed_at"]) == stored.completed_at
        assert json.loads(json.dumps(data)) == data

    def test_bet_round_trip(self, db):
        bet = repositories.create_bet(db, "Ship pricing", "No launch", 30, now=DUE)
        repositories.set_bet_status(db, bet, BetStatus.WRONG, "Launch slipped")
        db.commit()

        data = repositories.bet_to_dict(db.get(Bet, bet.id))
        assert data["prediction"] == "Ship pricing"
        assert data["wrong_if"] == "No launch"
        assert data["duration_days"] == 30
        assert BetStatus(data["status"]) is BetStatus.WRONG
        assert datetime.fromisoformat(data["created_at"]) == DUE
        assert datetime.fromisoformat(data["due_at"]) == DUE + timedelta(days=30)
        assert data["evaluated_at"] is not None
        assert data["evaluation_notes"] == "Launch slipped"
        assert json.loads(json.dumps(data)) == data
