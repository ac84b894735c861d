"""Quick Audit: five questions, one direction table, one 90-day bet."""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from boardroom import advisor, repositories
from boardroom.accumulators import SUB_QUESTION_FIELDS, IdentifiedProblem, QuickAccumulator
from boardroom.analysis import fallback_split_problems, parse_avoided_decision
from boardroom.engine import FlowController, SessionSnapshot
from boardroom.enums import Direction, FlowKind
from boardroom.models import GovernanceSession
from boardroom.states import QuickState

log = logging.getLogger(__name__)

QUESTIONS = {
    QuickState.Q1_ROLE_CONTEXT: "In 1-2 sentences, what is your current role and work context?",
    QuickState.Q2_PAID_PROBLEMS: "What are the 3 problems you are paid to solve? List them briefly.",
    QuickState.Q4_AVOIDED_DECISION: "What decision or conversation have you been avoiding? What's the cost of waiting?",
    QuickState.Q5_COMFORT_WORK: (
        "Where are you doing comfort work (tasks that feel productive but don't advance your goals)?"
    ),
}

SUB_QUESTIONS = (
    "Is AI getting cheaper at solving this? How so?",
    "What's the cost if you get this wrong?",
    "Is trust or special access required to solve this?",
)

DIRECTION_FALLBACK_RATIONALE = "Could not evaluate direction"


def render_output(acc: QuickAccumulator) -> str:
    """Markdown summary used when the model's own rendering is missing."""
    lines = ["# Quick Audit", "", "## Direction Table", ""]
    if acc.direction_table_markdown:
        lines.append(acc.direction_table_markdown)
    else:
        lines += ["| Problem | Direction | Why |", "|---|---|---|"]
        for p in acc.problems:
            direction = (p.direction or Direction.STABLE).display_name
            lines.append(f"| {p.name} | {direction} | {p.direction_rationale or ''} |")
    lines += ["", "## Assessment", "", acc.assessment or ""]
    lines += [
        "", "## Avoided Decision", "", acc.avoided_decision or "",
        "", f"**Cost of waiting:** {acc.avoided_decision_cost or 'not stated'}",
    ]
    if acc.bet_prediction:
        lines += [
            "", "## 90-Day Bet", "",
            f"**Prediction:** {acc.bet_prediction}",
            f"**Wrong if:** {acc.bet_wrong_if or ''}",
        ]
    return "\n".join(lines)


class QuickAuditFlow(FlowController):
    flow = FlowKind.QUICK

    def question_for(self, state: QuickState, acc: QuickAccumulator) -> str | None:
        if state is QuickState.Q3_DIRECTION_LOOP:
            problem = acc.current_problem
            name = problem.name if problem else "this problem"
            return f'For "{name}": {SUB_QUESTIONS[acc.current_sub_question]}'
        if state in QUESTIONS:
            return QUESTIONS[state]
        return super().question_for(state, acc)

    def _entry_extras(self, state: QuickState, acc: QuickAccumulator) -> dict[str, Any]:
        if state in (QuickState.Q3_DIRECTION_LOOP, QuickState.Q3_CLARIFY):
            return {"problem_index": acc.current_problem_index}
        return {}

    async def _extract(self, state: QuickState, acc: QuickAccumulator, answer: str) -> QuickAccumulator:
        if state is QuickState.Q1_ROLE_CONTEXT:
            return acc.evolve(role_context=answer)
        if state is QuickState.Q2_PAID_PROBLEMS:
            names, acc = await self._with_fallback(
                acc, "Problem extraction",
                lambda: advisor.extract_problems(self.llm, answer),
                lambda: fallback_split_problems(answer),
            )
            return acc.evolve(
                paid_problems=answer,
                problems=tuple(IdentifiedProblem(name=n) for n in names),
                current_problem_index=0,
                current_sub_question=0,
            )
        if state is QuickState.Q3_DIRECTION_LOOP:
            problem = acc.current_problem
            if problem is None:
                return acc
            field = SUB_QUESTION_FIELDS[acc.current_sub_question]
            return acc.with_problem(acc.current_problem_index, problem.evolve(**{field: answer}))
        if state is QuickState.Q4_AVOIDED_DECISION:
            decision, cost = parse_avoided_decision(answer)
            return acc.evolve(avoided_decision=decision, avoided_decision_cost=cost)
        if state is QuickState.Q5_COMFORT_WORK:
            return acc.evolve(comfort_work=answer)
        return acc

    async def _advance(self, state: QuickState, acc: QuickAccumulator) -> tuple[QuickState, QuickAccumulator]:
        if state is not QuickState.Q3_DIRECTION_LOOP:
            return await super()._advance(state, acc)
        if acc.current_sub_question + 1 < len(SUB_QUESTIONS):
            return state, acc.evolve(current_sub_question=acc.current_sub_question + 1)
        acc = await self._evaluate_current_problem(acc)
        index = acc.current_problem_index + 1
        acc = acc.evolve(current_problem_index=index, current_sub_question=0)
        if index < len(acc.problems):
            return state, acc
        return await super()._advance(state, acc)

    async def _evaluate_current_problem(self, acc: QuickAccumulator) -> QuickAccumulator:
        problem = acc.current_problem
        if problem is None:
            return acc
        evaluation, acc = await self._with_fallback(
            acc, "Direction evaluation",
            lambda: advisor.evaluate_direction(
                self.llm, problem.name, problem.ai_cheaper, problem.error_cost, problem.trust_required,
            ),
            lambda: advisor.DirectionEvaluation(Direction.STABLE, DIRECTION_FALLBACK_RATIONALE, "low"),
        )
        updated = problem.evolve(direction=evaluation.direction, direction_rationale=evaluation.rationale)
        return acc.with_problem(acc.current_problem_index, updated)

    async def generate_output(self, session_id: int) -> SessionSnapshot:
        """Produce the audit output, create the 90-day bet and finalize."""
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, QuickState.GENERATE_OUTPUT)
            output = await self._require(
                "Quick Audit output", lambda: advisor.generate_quick_output(self.llm, acc),
            )
            acc = acc.record_provider(True).evolve(
                direction_table_markdown=output.direction_table_markdown or None,
                assessment=output.assessment,
                avoided_decision=output.avoided_decision or acc.avoided_decision,
                avoided_decision_cost=output.avoided_decision_cost or acc.avoided_decision_cost,
                bet_prediction=output.bet_prediction or None,
                bet_wrong_if=output.bet_wrong_if or None,
            )
            acc = acc.evolve(output_markdown=output.full_output_markdown or render_output(acc))

            def writer(db: Session, row: GovernanceSession, acc: QuickAccumulator) -> QuickAccumulator:
                if not acc.bet_prediction:
                    log.warning("Quick Audit %d produced no bet prediction", row.id)
                    return acc
                bet = repositories.create_bet(
                    db, acc.bet_prediction, acc.bet_wrong_if or "",
                    self.settings.bet_duration_days, source_session_id=row.id,
                )
                return acc.evolve(created_bet_id=bet.id)

            return await self._store(session_id, QuickState.FINALIZED, acc, writer)
