from __future__ import annotations

import pytest

from boardroom.enums import FlowKind
from boardroom.states import (
    BOARD_STATES,
    MACHINES,
    QuarterlyState,
    QuickState,
    SetupState,
    clarify_of,
    is_clarify,
    is_derived,
    is_question,
    is_terminal,
    next_state,
    parent_of,
    parse_state,
    progress_weight,
    requires_vagueness_check,
)

ALL_MACHINES = list(MACHINES.values())


@pytest.mark.parametrize("machine", ALL_MACHINES, ids=lambda m: m.flow.value)
class TestTransitions:
    def test_next_reaches_finalized_with_nondecreasing_weight(self, machine):
        state = machine.initial
        path = [state]
        for _ in range(len(machine.states)):
            if is_terminal(state):
                break
            state = next_state(state)
            path.append(state)
        assert state == machine.states("finalized")
        weights = [progress_weight(s) for s in path]
        assert weights == sorted(weights)
        assert weights[0] == 0 and weights[-1] == 100

    def test_terminals_map_to_themselves(self, machine):
        for terminal in machine.terminals:
            assert next_state(terminal) == terminal
            assert is_terminal(terminal)

    def test_abandoned_is_never_a_successor(self, machine):
        abandoned = machine.states("abandoned")
        assert progress_weight(abandoned) == 0
        for state in machine.states:
            if state != abandoned:
                assert next_state(state) != abandoned

    def test_every_state_has_a_successor_and_weight(self, machine):
        for state in machine.states:
            assert next_state(state) in machine.states
            assert 0 <= progress_weight(state) <= 100

    def test_clarify_and_parent_are_inverse_where_defined(self, machine):
        for question, clarify in machine.clarify.items():
            assert is_clarify(clarify)
            parent = parent_of(clarify)
            if parent is not None:
                assert clarify_of(parent) == clarify
                assert parent == question

    def test_clarify_carries_parent_weight(self, machine):
        for question, clarify in machine.clarify.items():
            if parent_of(clarify) is not None:
                assert progress_weight(clarify) == progress_weight(question)

    def test_gated_states_are_main_questions(self, machine):
        for state in machine.states:
            if requires_vagueness_check(state):
                assert is_question(state)
                assert not is_clarify(state)
                assert clarify_of(state) is not None

    def test_derived_states_are_not_questions(self, machine):
        for state in machine.states:
            if is_derived(state):
                assert not is_question(state)

    def test_parse_state_round_trip(self, machine):
        for state in machine.states:
            assert parse_state(machine.flow, state.value) is state


class TestQuickAudit:
    def test_clarify_advances_like_its_question(self):
        assert next_state(QuickState.Q3_CLARIFY) == next_state(QuickState.Q3_DIRECTION_LOOP)
        assert next_state(QuickState.Q5_CLARIFY) == QuickState.GENERATE_OUTPUT

    def test_all_five_questions_are_gated(self):
        gated = [s for s in QuickState if requires_vagueness_check(s)]
        assert len(gated) == 5


class TestPortfolioSetup:
    def test_no_gate_and_no_clarify(self):
        assert not any(requires_vagueness_check(s) for s in SetupState)
        assert not any(is_clarify(s) for s in SetupState)

    def test_optional_problems_rejoin_completeness(self):
        assert next_state(SetupState.COLLECT_PROBLEM_4) == SetupState.VALIDATE_PROBLEM_4
        assert next_state(SetupState.VALIDATE_PROBLEM_4) == SetupState.PORTFOLIO_COMPLETENESS
        assert next_state(SetupState.VALIDATE_PROBLEM_5) == SetupState.PORTFOLIO_COMPLETENESS

    def test_derived_states(self):
        assert is_derived(SetupState.CALCULATE_HEALTH)
        assert is_derived(SetupState.DEFINE_RESETUP_TRIGGERS)


class TestQuarterlyReview:
    def test_board_clarify_has_no_static_parent(self):
        assert parent_of(QuarterlyState.BOARD_INTERROGATION_CLARIFY) is None
        for state in BOARD_STATES:
            assert clarify_of(state) == QuarterlyState.BOARD_INTERROGATION_CLARIFY

    def test_board_clarify_moves_to_growth(self):
        assert next_state(QuarterlyState.BOARD_INTERROGATION_CLARIFY) == QuarterlyState.GROWTH_BOARD_INTERROGATION

    def test_bet_steps_are_questions_without_gate(self):
        for state in (QuarterlyState.Q1_LAST_BET_EVALUATION, QuarterlyState.Q10_NEXT_BET):
            assert is_question(state)
            assert not requires_vagueness_check(state)

    def test_analytic_states_are_derived(self):
        assert is_derived(QuarterlyState.Q6_PORTFOLIO_HEALTH_UPDATE)
        assert is_derived(QuarterlyState.Q9_TRIGGER_CHECK)

    def test_weights(self):
        assert progress_weight(QuarterlyState.Q10_NEXT_BET) == 62
        assert progress_weight(QuarterlyState.BOARD_INTERROGATION_CLARIFY) == 75
        assert progress_weight(QuarterlyState.GENERATE_REPORT) == 95


def test_machines_cover_every_flow():
    assert set(MACHINES) == set(FlowKind)
