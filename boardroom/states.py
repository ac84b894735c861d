"""State-machine definitions for the three governance flows.

Each flow is a closed ``StrEnum``.  Transition, predicate and mapping logic lives
in module-level tables wrapped by pure functions, so nothing here carries
instance state:

- ``next_state(s)``            -- total; terminals map to themselves
- ``is_question(s)``           -- state waits for the user's answer
- ``is_clarify(s)``            -- follow-up reached only after a vague answer
- ``clarify_of(q)``/``parent_of(c)`` -- partial, inverse where both defined
- ``requires_vagueness_check`` -- main question states guarded by the gate
- ``progress_weight(s)``       -- 0..100, non-decreasing along ``next`` paths
- ``is_derived(s)``            -- computed by the controller, never answered

The Quarterly board clarify state is shared by the core and growth phases, so
``parent_of`` returns ``None`` for it; the controller resolves the parent from the
accumulator's board phase.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Mapping, Union

from boardroom.enums import FlowKind


class QuickState(StrEnum):
    INITIAL = "initial"
    SENSITIVITY_GATE = "sensitivity_gate"
    Q1_ROLE_CONTEXT = "q1_role_context"
    Q1_CLARIFY = "q1_clarify"
    Q2_PAID_PROBLEMS = "q2_paid_problems"
    Q2_CLARIFY = "q2_clarify"
    Q3_DIRECTION_LOOP = "q3_direction_loop"
    Q3_CLARIFY = "q3_clarify"
    Q4_AVOIDED_DECISION = "q4_avoided_decision"
    Q4_CLARIFY = "q4_clarify"
    Q5_COMFORT_WORK = "q5_comfort_work"
    Q5_CLARIFY = "q5_clarify"
    GENERATE_OUTPUT = "generate_output"
    FINALIZED = "finalized"
    ABANDONED = "abandoned"


class SetupState(StrEnum):
    INITIAL = "initial"
    SENSITIVITY_GATE = "sensitivity_gate"
    COLLECT_PROBLEM_1 = "collect_problem_1"
    VALIDATE_PROBLEM_1 = "validate_problem_1"
    COLLECT_PROBLEM_2 = "collect_problem_2"
    VALIDATE_PROBLEM_2 = "validate_problem_2"
    COLLECT_PROBLEM_3 = "collect_problem_3"
    VALIDATE_PROBLEM_3 = "validate_problem_3"
    COLLECT_PROBLEM_4 = "collect_problem_4"
    VALIDATE_PROBLEM_4 = "validate_problem_4"
    COLLECT_PROBLEM_5 = "collect_problem_5"
    VALIDATE_PROBLEM_5 = "validate_problem_5"
    PORTFOLIO_COMPLETENESS = "portfolio_completeness"
    TIME_ALLOCATION = "time_allocation"
    CALCULATE_HEALTH = "calculate_health"
    CREATE_CORE_ROLES = "create_core_roles"
    CREATE_GROWTH_ROLES = "create_growth_roles"
    CREATE_PERSONAS = "create_personas"
    DEFINE_RESETUP_TRIGGERS = "define_resetup_triggers"
    PUBLISH_PORTFOLIO = "publish_portfolio"
    FINALIZED = "finalized"
    ABANDONED = "abandoned"


class QuarterlyState(StrEnum):
    INITIAL = "initial"
    SENSITIVITY_GATE = "sensitivity_gate"
    GATE0_PREREQUISITES = "gate0_prerequisites"
    RECENT_REPORT_WARNING = "recent_report_warning"
    Q1_LAST_BET_EVALUATION = "q1_last_bet_evaluation"
    Q2_COMMITMENTS_VS_ACTUALS = "q2_commitments_vs_actuals"
    Q2_CLARIFY = "q2_clarify"
    Q3_AVOIDED_DECISION = "q3_avoided_decision"
    Q3_CLARIFY = "q3_clarify"
    Q4_COMFORT_WORK = "q4_comfort_work"
    Q4_CLARIFY = "q4_clarify"
    Q5_PORTFOLIO_CHECK = "q5_portfolio_check"
    Q5_CLARIFY = "q5_clarify"
    Q6_PORTFOLIO_HEALTH_UPDATE = "q6_portfolio_health_update"
    Q7_PROTECTION_CHECK = "q7_protection_check"
    Q7_CLARIFY = "q7_clarify"
    Q8_OPPORTUNITY_CHECK = "q8_opportunity_check"
    Q8_CLARIFY = "q8_clarify"
    Q9_TRIGGER_CHECK = "q9_trigger_check"
    Q10_NEXT_BET = "q10_next_bet"
    CORE_BOARD_INTERROGATION = "core_board_interrogation"
    BOARD_INTERROGATION_CLARIFY = "board_interrogation_clarify"
    GROWTH_BOARD_INTERROGATION = "growth_board_interrogation"
    GENERATE_REPORT = "generate_report"
    FINALIZED = "finalized"
    ABANDONED = "abandoned"


FlowState = Union[QuickState, SetupState, QuarterlyState]


@dataclass(frozen=True)
class StateMachine:
    """Static description of one flow."""

    flow: FlowKind
    states: type[StrEnum]
    transitions: Mapping[StrEnum, StrEnum]
    weights: Mapping[StrEnum, int]
    questions: frozenset[StrEnum]
    clarify: Mapping[StrEnum, StrEnum]
    gated: frozenset[StrEnum]
    derived: frozenset[StrEnum] = frozenset()
    parents: Mapping[StrEnum, StrEnum] = field(init=False)

    def __post_init__(self) -> None:
        # A clarify state shared by several questions has no static parent.
        shared = {c for c in self.clarify.values()
                  if sum(1 for v in self.clarify.values() if v == c) > 1}
        parents = {c: q for q, c in self.clarify.items() if c not in shared}
        object.__setattr__(self, "parents", parents)

    @property
    def initial(self) -> StrEnum:
        return self.states("initial")

    @property
    def terminals(self) -> tuple[StrEnum, StrEnum]:
        return self.states("finalized"), self.states("abandoned")


# ---------------------------------------------------------------------------
# Quick Audit
# ---------------------------------------------------------------------------

_Q = QuickState

QUICK = StateMachine(
    flow=FlowKind.QUICK,
    states=QuickState,
    transitions={
        _Q.INITIAL: _Q.SENSITIVITY_GATE,
        _Q.SENSITIVITY_GATE: _Q.Q1_ROLE_CONTEXT,
        _Q.Q1_ROLE_CONTEXT: _Q.Q2_PAID_PROBLEMS,
        _Q.Q1_CLARIFY: _Q.Q2_PAID_PROBLEMS,
        _Q.Q2_PAID_PROBLEMS: _Q.Q3_DIRECTION_LOOP,
        _Q.Q2_CLARIFY: _Q.Q3_DIRECTION_LOOP,
        _Q.Q3_DIRECTION_LOOP: _Q.Q4_AVOIDED_DECISION,
        _Q.Q3_CLARIFY: _Q.Q4_AVOIDED_DECISION,
        _Q.Q4_AVOIDED_DECISION: _Q.Q5_COMFORT_WORK,
        _Q.Q4_CLARIFY: _Q.Q5_COMFORT_WORK,
        _Q.Q5_COMFORT_WORK: _Q.GENERATE_OUTPUT,
        _Q.Q5_CLARIFY: _Q.GENERATE_OUTPUT,
        _Q.GENERATE_OUTPUT: _Q.FINALIZED,
        _Q.FINALIZED: _Q.FINALIZED,
        _Q.ABANDONED: _Q.ABANDONED,
    },
    weights={
        _Q.INITIAL: 0,
        _Q.SENSITIVITY_GATE: 5,
        _Q.Q1_ROLE_CONTEXT: 15, _Q.Q1_CLARIFY: 15,
        _Q.Q2_PAID_PROBLEMS: 30, _Q.Q2_CLARIFY: 30,
        _Q.Q3_DIRECTION_LOOP: 50, _Q.Q3_CLARIFY: 50,
        _Q.Q4_AVOIDED_DECISION: 70, _Q.Q4_CLARIFY: 70,
        _Q.Q5_COMFORT_WORK: 85, _Q.Q5_CLARIFY: 85,
        _Q.GENERATE_OUTPUT: 95,
        _Q.FINALIZED: 100,
        _Q.ABANDONED: 0,
    },
    questions=frozenset({
        _Q.Q1_ROLE_CONTEXT, _Q.Q1_CLARIFY, _Q.Q2_PAID_PROBLEMS, _Q.Q2_CLARIFY,
        _Q.Q3_DIRECTION_LOOP, _Q.Q3_CLARIFY, _Q.Q4_AVOIDED_DECISION, _Q.Q4_CLARIFY,
        _Q.Q5_COMFORT_WORK, _Q.Q5_CLARIFY,
    }),
    clarify={
        _Q.Q1_ROLE_CONTEXT: _Q.Q1_CLARIFY,
        _Q.Q2_PAID_PROBLEMS: _Q.Q2_CLARIFY,
        _Q.Q3_DIRECTION_LOOP: _Q.Q3_CLARIFY,
        _Q.Q4_AVOIDED_DECISION: _Q.Q4_CLARIFY,
        _Q.Q5_COMFORT_WORK: _Q.Q5_CLARIFY,
    },
    gated=frozenset({
        _Q.Q1_ROLE_CONTEXT, _Q.Q2_PAID_PROBLEMS, _Q.Q3_DIRECTION_LOOP,
        _Q.Q4_AVOIDED_DECISION, _Q.Q5_COMFORT_WORK,
    }),
)

# ---------------------------------------------------------------------------
# Portfolio Setup
# ---------------------------------------------------------------------------

_S = SetupState

COLLECT_PROBLEM_STATES = (
    _S.COLLECT_PROBLEM_1, _S.COLLECT_PROBLEM_2, _S.COLLECT_PROBLEM_3,
    _S.COLLECT_PROBLEM_4, _S.COLLECT_PROBLEM_5,
)
VALIDATE_PROBLEM_STATES = (
    _S.VALIDATE_PROBLEM_1, _S.VALIDATE_PROBLEM_2, _S.VALIDATE_PROBLEM_3,
    _S.VALIDATE_PROBLEM_4, _S.VALIDATE_PROBLEM_5,
)

SETUP = StateMachine(
    flow=FlowKind.SETUP,
    states=SetupState,
    transitions={
        _S.INITIAL: _S.SENSITIVITY_GATE,
        _S.SENSITIVITY_GATE: _S.COLLECT_PROBLEM_1,
        _S.COLLECT_PROBLEM_1: _S.VALIDATE_PROBLEM_1,
        _S.VALIDATE_PROBLEM_1: _S.COLLECT_PROBLEM_2,
        _S.COLLECT_PROBLEM_2: _S.VALIDATE_PROBLEM_2,
        _S.VALIDATE_PROBLEM_2: _S.COLLECT_PROBLEM_3,
        _S.COLLECT_PROBLEM_3: _S.VALIDATE_PROBLEM_3,
        _S.VALIDATE_PROBLEM_3: _S.PORTFOLIO_COMPLETENESS,
        _S.COLLECT_PROBLEM_4: _S.VALIDATE_PROBLEM_4,
        _S.VALIDATE_PROBLEM_4: _S.PORTFOLIO_COMPLETENESS,
        _S.COLLECT_PROBLEM_5: _S.VALIDATE_PROBLEM_5,
        _S.VALIDATE_PROBLEM_5: _S.PORTFOLIO_COMPLETENESS,
        _S.PORTFOLIO_COMPLETENESS: _S.TIME_ALLOCATION,
        _S.TIME_ALLOCATION: _S.CALCULATE_HEALTH,
        _S.CALCULATE_HEALTH: _S.CREATE_CORE_ROLES,
        _S.CREATE_CORE_ROLES: _S.CREATE_GROWTH_ROLES,
        _S.CREATE_GROWTH_ROLES: _S.CREATE_PERSONAS,
        _S.CREATE_PERSONAS: _S.DEFINE_RESETUP_TRIGGERS,
        _S.DEFINE_RESETUP_TRIGGERS: _S.PUBLISH_PORTFOLIO,
        _S.PUBLISH_PORTFOLIO: _S.FINALIZED,
        _S.FINALIZED: _S.FINALIZED,
        _S.ABANDONED: _S.ABANDONED,
    },
    weights={
        _S.INITIAL: 0,
        _S.SENSITIVITY_GATE: 5,
        _S.COLLECT_PROBLEM_1: 10, _S.VALIDATE_PROBLEM_1: 10,
        _S.COLLECT_PROBLEM_2: 20, _S.VALIDATE_PROBLEM_2: 20,
        _S.COLLECT_PROBLEM_3: 30, _S.VALIDATE_PROBLEM_3: 30,
        _S.COLLECT_PROBLEM_4: 35, _S.VALIDATE_PROBLEM_4: 35,
        _S.COLLECT_PROBLEM_5: 40, _S.VALIDATE_PROBLEM_5: 40,
        _S.PORTFOLIO_COMPLETENESS: 45,
        _S.TIME_ALLOCATION: 55,
        _S.CALCULATE_HEALTH: 65,
        _S.CREATE_CORE_ROLES: 70,
        _S.CREATE_GROWTH_ROLES: 75,
        _S.CREATE_PERSONAS: 85,
        _S.DEFINE_RESETUP_TRIGGERS: 90,
        _S.PUBLISH_PORTFOLIO: 95,
        _S.FINALIZED: 100,
        _S.ABANDONED: 0,
    },
    questions=frozenset(COLLECT_PROBLEM_STATES),
    clarify={},
    gated=frozenset(),
    derived=frozenset({_S.CALCULATE_HEALTH, _S.DEFINE_RESETUP_TRIGGERS}),
)

# ---------------------------------------------------------------------------
# Quarterly Review
# ---------------------------------------------------------------------------

_R = QuarterlyState

BOARD_STATES = (_R.CORE_BOARD_INTERROGATION, _R.GROWTH_BOARD_INTERROGATION)

QUARTERLY = StateMachine(
    flow=FlowKind.QUARTERLY,
    states=QuarterlyState,
    transitions={
        _R.INITIAL: _R.SENSITIVITY_GATE,
        _R.SENSITIVITY_GATE: _R.GATE0_PREREQUISITES,
        _R.GATE0_PREREQUISITES: _R.RECENT_REPORT_WARNING,
        _R.RECENT_REPORT_WARNING: _R.Q1_LAST_BET_EVALUATION,
        _R.Q1_LAST_BET_EVALUATION: _R.Q2_COMMITMENTS_VS_ACTUALS,
        _R.Q2_COMMITMENTS_VS_ACTUALS: _R.Q3_AVOIDED_DECISION,
        _R.Q2_CLARIFY: _R.Q3_AVOIDED_DECISION,
        _R.Q3_AVOIDED_DECISION: _R.Q4_COMFORT_WORK,
        _R.Q3_CLARIFY: _R.Q4_COMFORT_WORK,
        _R.Q4_COMFORT_WORK: _R.Q5_PORTFOLIO_CHECK,
        _R.Q4_CLARIFY: _R.Q5_PORTFOLIO_CHECK,
        _R.Q5_PORTFOLIO_CHECK: _R.Q6_PORTFOLIO_HEALTH_UPDATE,
        _R.Q5_CLARIFY: _R.Q6_PORTFOLIO_HEALTH_UPDATE,
        _R.Q6_PORTFOLIO_HEALTH_UPDATE: _R.Q7_PROTECTION_CHECK,
        _R.Q7_PROTECTION_CHECK: _R.Q8_OPPORTUNITY_CHECK,
        _R.Q7_CLARIFY: _R.Q8_OPPORTUNITY_CHECK,
        _R.Q8_OPPORTUNITY_CHECK: _R.Q9_TRIGGER_CHECK,
        _R.Q8_CLARIFY: _R.Q9_TRIGGER_CHECK,
        _R.Q9_TRIGGER_CHECK: _R.Q10_NEXT_BET,
        _R.Q10_NEXT_BET: _R.CORE_BOARD_INTERROGATION,
        _R.CORE_BOARD_INTERROGATION: _R.GROWTH_BOARD_INTERROGATION,
        _R.BOARD_INTERROGATION_CLARIFY: _R.GROWTH_BOARD_INTERROGATION,
        _R.GROWTH_BOARD_INTERROGATION: _R.GENERATE_REPORT,
        _R.GENERATE_REPORT: _R.FINALIZED,
        _R.FINALIZED: _R.FINALIZED,
        _R.ABANDONED: _R.ABANDONED,
    },
    weights={
        _R.INITIAL: 0,
        _R.SENSITIVITY_GATE: 2,
        _R.GATE0_PREREQUISITES: 4,
        _R.RECENT_REPORT_WARNING: 5,
        _R.Q1_LAST_BET_EVALUATION: 8,
        _R.Q2_COMMITMENTS_VS_ACTUALS: 14, _R.Q2_CLARIFY: 14,
        _R.Q3_AVOIDED_DECISION: 20, _R.Q3_CLARIFY: 20,
        _R.Q4_COMFORT_WORK: 26, _R.Q4_CLARIFY: 26,
        _R.Q5_PORTFOLIO_CHECK: 32, _R.Q5_CLARIFY: 32,
        _R.Q6_PORTFOLIO_HEALTH_UPDATE: 38,
        _R.Q7_PROTECTION_CHECK: 44, _R.Q7_CLARIFY: 44,
        _R.Q8_OPPORTUNITY_CHECK: 50, _R.Q8_CLARIFY: 50,
        _R.Q9_TRIGGER_CHECK: 56,
        _R.Q10_NEXT_BET: 62,
        _R.CORE_BOARD_INTERROGATION: 75, _R.BOARD_INTERROGATION_CLARIFY: 75,
        _R.GROWTH_BOARD_INTERROGATION: 88,
        _R.GENERATE_REPORT: 95,
        _R.FINALIZED: 100,
        _R.ABANDONED: 0,
    },
    questions=frozenset({
        _R.Q1_LAST_BET_EVALUATION,
        _R.Q2_COMMITMENTS_VS_ACTUALS, _R.Q2_CLARIFY,
        _R.Q3_AVOIDED_DECISION, _R.Q3_CLARIFY,
        _R.Q4_COMFORT_WORK, _R.Q4_CLARIFY,
        _R.Q5_PORTFOLIO_CHECK, _R.Q5_CLARIFY,
        _R.Q7_PROTECTION_CHECK, _R.Q7_CLARIFY,
        _R.Q8_OPPORTUNITY_CHECK, _R.Q8_CLARIFY,
        _R.Q10_NEXT_BET,
        _R.CORE_BOARD_INTERROGATION, _R.GROWTH_BOARD_INTERROGATION,
        _R.BOARD_INTERROGATION_CLARIFY,
    }),
    clarify={
        _R.Q2_COMMITMENTS_VS_ACTUALS: _R.Q2_CLARIFY,
        _R.Q3_AVOIDED_DECISION: _R.Q3_CLARIFY,
        _R.Q4_COMFORT_WORK: _R.Q4_CLARIFY,
        _R.Q5_PORTFOLIO_CHECK: _R.Q5_CLARIFY,
        _R.Q7_PROTECTION_CHECK: _R.Q7_CLARIFY,
        _R.Q8_OPPORTUNITY_CHECK: _R.Q8_CLARIFY,
        _R.CORE_BOARD_INTERROGATION: _R.BOARD_INTERROGATION_CLARIFY,
        _R.GROWTH_BOARD_INTERROGATION: _R.BOARD_INTERROGATION_CLARIFY,
    },
    gated=frozenset({
        _R.Q2_COMMITMENTS_VS_ACTUALS, _R.Q3_AVOIDED_DECISION, _R.Q4_COMFORT_WORK,
        _R.Q5_PORTFOLIO_CHECK, _R.Q7_PROTECTION_CHECK, _R.Q8_OPPORTUNITY_CHECK,
        _R.CORE_BOARD_INTERROGATION, _R.GROWTH_BOARD_INTERROGATION,
    }),
    derived=frozenset({_R.Q6_PORTFOLIO_HEALTH_UPDATE, _R.Q9_TRIGGER_CHECK}),
)

MACHINES: dict[FlowKind, StateMachine] = {
    FlowKind.QUICK: QUICK,
    FlowKind.SETUP: SETUP,
    FlowKind.QUARTERLY: QUARTERLY,
}
_BY_TYPE: dict[type, StateMachine] = {m.states: m for m in MACHINES.values()}


# ---------------------------------------------------------------------------
# Pure functions over any flow's states
# ---------------------------------------------------------------------------


def machine_for(state: FlowState) -> StateMachine:
    try:
        return _BY_TYPE[type(state)]
    except KeyError:
        raise TypeError(f"Not a flow state: {state!r}") from None


def parse_state(flow: FlowKind, value: str) -> FlowState:
    """Turn a persisted state tag back into the flow's enum member."""
    return MACHINES[flow].states(value)  # type: ignore[return-value]


def next_state(state: FlowState) -> FlowState:
    return machine_for(state).transitions[state]  # type: ignore[return-value]


def is_terminal(state: FlowState) -> bool:
    return state in machine_for(state).terminals


def is_question(state: FlowState) -> bool:
    return state in machine_for(state).questions


def is_clarify(state: FlowState) -> bool:
    return state in machine_for(state).clarify.values()


def is_derived(state: FlowState) -> bool:
    return state in machine_for(state).derived


def clarify_of(state: FlowState) -> FlowState | None:
    return machine_for(state).clarify.get(state)  # type: ignore[return-value]


def parent_of(state: FlowState) -> FlowState | None:
    return machine_for(state).parents.get(state)  # type: ignore[return-value]


def requires_vagueness_check(state: FlowState) -> bool:
    return state in machine_for(state).gated


def progress_weight(state: FlowState) -> int:
    return machine_for(state).weights[state]
