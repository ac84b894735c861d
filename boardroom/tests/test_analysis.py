from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from boardroom.accumulators import PortfolioHealthSnapshot, SetupProblem
from boardroom.analysis import (
    AllocationBand,
    allocation_message,
    check_bet_evaluation,
    classify_allocation,
    compose_health,
    compute_trend,
    default_resetup_triggers,
    describe_trend,
    evaluate_triggers,
    fallback_health_statements,
    fallback_split_problems,
    highest_appreciating_index,
    parse_avoided_decision,
    trend_summary,
)
from boardroom.enums import BetStatus, Direction
from boardroom.errors import ValidationError

NOW = datetime(2026, 1, 15, 12, 0, 0)


class TestAllocation:
    @pytest.mark.parametrize("total,band", [
        (100, AllocationBand.VALID),
        (95, AllocationBand.VALID),
        (105, AllocationBand.VALID),
        (94.9, AllocationBand.WARNING),
        (90, AllocationBand.WARNING),
        (110, AllocationBand.WARNING),
        (89.9, AllocationBand.ERROR),
        (110.1, AllocationBand.ERROR),
        (0, AllocationBand.ERROR),
    ])
    def test_bands(self, total, band):
        assert classify_allocation(total) is band
        assert band.permits_proceed is (band is not AllocationBand.ERROR)

    def test_messages(self):
        assert allocation_message(100) == "Time allocation is 100%. Looking good!"
        assert "outside the ideal range" in allocation_message(92.5)
        assert allocation_message(80) == "Time allocation is 80%. Must be between 90% and 110% to proceed."


class TestHealth:
    def test_compose_sums_by_direction(self, problems):
        health = compose_health(problems)
        assert health.appreciating_percent == 40
        assert health.depreciating_percent == 30
        assert health.stable_percent == 30
        assert health.total == 100

    def test_unclassified_counts_as_stable(self):
        health = compose_health([SetupProblem(name="x", time_allocation_percent=25)])
        assert health.stable_percent == 25

    def test_fallback_statements_mention_percentages(self):
        risk, opportunity = fallback_health_statements(PortfolioHealthSnapshot(
            appreciating_percent=20, depreciating_percent=50, stable_percent=30,
        ))
        assert risk.startswith("50%")
        assert opportunity.startswith("20%")

    def test_fallback_statements_without_appreciating(self):
        _, opportunity = fallback_health_statements(PortfolioHealthSnapshot(stable_percent=100))
        assert "Nothing is classified as appreciating" in opportunity

    def test_highest_appreciating_index(self, problems):
        problems = [
            problems[0].evolve(direction=Direction.STABLE),
            problems[1].evolve(direction=Direction.APPRECIATING, time_allocation_percent=20),
            problems[2].evolve(direction=Direction.APPRECIATING, time_allocation_percent=35),
        ]
        assert highest_appreciating_index(problems) == 2
        assert highest_appreciating_index(problems[:1]) is None


class TestTrend:
    def test_deltas_against_previous(self):
        previous = PortfolioHealthSnapshot(appreciating_percent=30, depreciating_percent=40, stable_percent=30)
        current = PortfolioHealthSnapshot(appreciating_percent=45, depreciating_percent=25, stable_percent=30)
        trend = compute_trend(previous, current)
        assert trend.appreciating_change == 15
        assert trend.depreciating_change == -15
        assert trend.stable_change == 0
        assert trend_summary(trend) == "Appreciating: 30% -> 45%, Depreciating: 40% -> 25%"

    def test_no_previous_means_zero_baseline(self):
        trend = compute_trend(None, PortfolioHealthSnapshot(appreciating_percent=50))
        assert trend.previous_appreciating == 0
        assert trend.appreciating_change == 50

    def test_describe(self):
        flat = compute_trend(
            PortfolioHealthSnapshot(appreciating_percent=40), PortfolioHealthSnapshot(appreciating_percent=42),
        )
        assert "essentially unchanged" in describe_trend(flat)
        shrank = compute_trend(
            PortfolioHealthSnapshot(depreciating_percent=60), PortfolioHealthSnapshot(depreciating_percent=20),
        )
        assert describe_trend(shrank) == "Depreciating work shrank by 40 points since the last review."


class TestTriggers:
    def test_defaults(self):
        triggers = default_resetup_triggers(NOW)
        assert [t.trigger_type for t in triggers] == [
            "role_change", "scope_change", "direction_shift", "time_drift", "annual",
        ]
        assert triggers[-1].due_at == NOW + timedelta(days=365)
        assert all(t.due_at is None for t in triggers[:-1])

    def test_met_approaching_and_quiet(self):
        class Row:
            def __init__(self, trigger_type, due_at=None, is_met=False):
                self.trigger_type = trigger_type
                self.description = trigger_type
                self.condition = ""
                self.due_at = due_at
                self.is_met = is_met

        statuses = evaluate_triggers([
            Row("flagged", is_met=True),
            Row("overdue", due_at=NOW - timedelta(days=1)),
            Row("soon", due_at=NOW + timedelta(days=10)),
            Row("later", due_at=NOW + timedelta(days=90)),
            Row("undated"),
        ], NOW, approaching_days=30)
        by_type = {s.trigger_type: s for s in statuses}
        assert by_type["flagged"].is_met
        assert by_type["overdue"].is_met and not by_type["overdue"].is_approaching
        assert by_type["soon"].is_approaching and not by_type["soon"].is_met
        assert not by_type["later"].is_met and not by_type["later"].is_approaching
        assert not by_type["undated"].is_met


class TestBetEvaluation:
    def test_open_bet_can_be_resolved(self):
        for status in (BetStatus.CORRECT, BetStatus.WRONG):
            check_bet_evaluation(BetStatus.OPEN, NOW + timedelta(days=10), status, NOW)

    def test_expired_only_once_due(self):
        with pytest.raises(ValidationError, match="not yet due"):
            check_bet_evaluation(BetStatus.OPEN, NOW + timedelta(days=1), BetStatus.EXPIRED, NOW)
        check_bet_evaluation(BetStatus.OPEN, NOW - timedelta(days=1), BetStatus.EXPIRED, NOW)

    @pytest.mark.parametrize("new", [BetStatus.CORRECT, BetStatus.WRONG, BetStatus.EXPIRED])
    def test_expired_bet_can_still_be_judged(self, new):
        check_bet_evaluation(BetStatus.EXPIRED, NOW - timedelta(days=5), new, NOW)

    @pytest.mark.parametrize("current,new", [
        (BetStatus.CORRECT, BetStatus.WRONG),
        (BetStatus.WRONG, BetStatus.EXPIRED),
        (BetStatus.EXPIRED, BetStatus.OPEN),
        (BetStatus.OPEN, BetStatus.OPEN),
    ])
    def test_illegal_transitions(self, current, new):
        with pytest.raises(ValidationError, match="cannot be marked"):
            check_bet_evaluation(current, NOW - timedelta(days=1), new, NOW)


class TestTextFallbacks:
    def test_avoided_decision_with_cost_marker(self):
        assert parse_avoided_decision("Asking for a raise, cost: six more months underpaid") == (
            "Asking for a raise", "six more months underpaid",
        )

    def test_avoided_decision_two_sentences(self):
        decision, cost = parse_avoided_decision("Quit the side project. It eats every weekend.")
        assert decision == "Quit the side project"
        assert cost == "It eats every weekend."

    def test_avoided_decision_single_sentence(self):
        assert parse_avoided_decision("Moving teams") == ("Moving teams", None)

    def test_split_numbered(self):
        assert fallback_split_problems("1. Pricing 2. Hiring 3. Roadmap 4. Extra") == [
            "Pricing", "Hiring", "Roadmap",
        ]

    def test_split_bullets(self):
        assert fallback_split_problems("- Pricing\n- Hiring") == ["Pricing", "Hiring"]

    def test_split_commas(self):
        assert fallback_split_problems("pricing, hiring, roadmap") == ["pricing", "hiring", "roadmap"]

    def test_single_answer(self):
        assert fallback_split_problems("  keeping the lights on  ") == ["keeping the lights on"]
