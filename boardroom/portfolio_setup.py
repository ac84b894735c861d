"""Portfolio Setup: 3-5 problems, time allocation, health, board and triggers.

Answers here are structured problem forms rather than free text, so nothing in
this flow goes through the Vagueness Gate.  A problem is saved into the
accumulator while its collect state is open and only advances once every
required field is filled.
"""
from __future__ import annotations

import logging
from typing import Any, Sequence

from sqlalchemy.orm import Session

from boardroom import advisor, repositories
from boardroom.accumulators import (
    MAX_SETUP_PROBLEMS,
    MIN_SETUP_PROBLEMS,
    SetupAccumulator,
    SetupBoardMember,
    SetupProblem,
)
from boardroom.analysis import (
    allocation_message,
    classify_allocation,
    compose_health,
    default_resetup_triggers,
    fallback_health_statements,
    highest_appreciating_index,
    total_allocation,
)
from boardroom.engine import FlowController, SessionSnapshot
from boardroom.enums import CORE_ROLES, GROWTH_ROLES, BoardRoleType, FlowKind
from boardroom.errors import ValidationError
from boardroom.models import GovernanceSession
from boardroom.states import COLLECT_PROBLEM_STATES, VALIDATE_PROBLEM_STATES, SetupState
from boardroom.utils import format_percent, utcnow

log = logging.getLogger(__name__)

S = SetupState

PROBLEM_PROMPT = (
    "Problem {n}: What is a problem you are paid to solve? Describe what breaks if it goes "
    "unsolved, two scarcity signals (or why they are unknown), the evidence on AI cost, "
    "error cost and trust required, and its direction."
)

INITIAL_SETUP_REASON = "initial_setup"


def _collect_index(state: SetupState) -> int | None:
    try:
        return COLLECT_PROBLEM_STATES.index(state)
    except ValueError:
        return None


def _as_problem(problem: SetupProblem | dict[str, Any]) -> SetupProblem:
    if isinstance(problem, SetupProblem):
        return problem
    try:
        return SetupProblem.model_validate(problem)
    except ValueError as exc:
        raise ValidationError(f"Invalid problem: {exc}") from exc


def render_summary(acc: SetupAccumulator) -> str:
    lines = ["# Portfolio Setup Complete", "", "## Problems", ""]
    for i, p in enumerate(acc.problems, 1):
        direction = p.direction.display_name if p.direction else "Unclassified"
        lines.append(f"{i}. **{p.name}** - {direction}, {format_percent(p.time_allocation_percent)}% of time")
        if p.direction_rationale:
            lines.append(f"   {p.direction_rationale}")
    health = acc.health
    if health is not None:
        lines += [
            "", "## Portfolio Health", "",
            f"- Appreciating: {format_percent(health.appreciating_percent)}%",
            f"- Depreciating: {format_percent(health.depreciating_percent)}%",
            f"- Stable: {format_percent(health.stable_percent)}%",
        ]
        if health.risk_statement:
            lines += ["", f"**Risk:** {health.risk_statement}"]
        if health.opportunity_statement:
            lines += ["", f"**Opportunity:** {health.opportunity_statement}"]
    lines += ["", "## Your Board", ""]
    for m in acc.board_members:
        anchor = ""
        if m.anchored_problem_index is not None and m.anchored_problem_index < len(acc.problems):
            anchor = f" (anchored to {acc.problems[m.anchored_problem_index].name})"
        lines.append(f"- **{m.role_type.display_name}**: {m.persona_name or 'Unnamed'}{anchor}")
    lines += ["", "## Re-setup Triggers", ""]
    lines += [f"- {t.description}: {t.condition}" for t in acc.triggers]
    return "\n".join(lines)


class PortfolioSetupFlow(FlowController):
    flow = FlowKind.SETUP

    def question_for(self, state: SetupState, acc: SetupAccumulator) -> str | None:
        index = _collect_index(state)
        if index is not None:
            return PROBLEM_PROMPT.format(n=index + 1)
        return super().question_for(state, acc)

    async def _derive(self, state: SetupState, acc: SetupAccumulator) -> tuple[SetupState, SetupAccumulator]:
        if state is S.CALCULATE_HEALTH:
            health = compose_health(acc.problems)
            (risk, opportunity), acc = await self._with_fallback(
                acc, "Health statements",
                lambda: advisor.generate_health_statements(self.llm, acc.problems, health),
                lambda: fallback_health_statements(health),
            )
            acc = acc.evolve(health=health.evolve(risk_statement=risk, opportunity_statement=opportunity))
            return S.CREATE_CORE_ROLES, acc
        if state is S.DEFINE_RESETUP_TRIGGERS:
            triggers = default_resetup_triggers(utcnow(), self.settings.annual_trigger_days)
            return S.PUBLISH_PORTFOLIO, acc.evolve(triggers=triggers)
        return await super()._derive(state, acc)

    def _open_collect(self, session_id: int) -> tuple[SetupState, SetupAccumulator, int]:
        state, acc = self._open(session_id)
        index = _collect_index(state)
        if index is None:
            raise ValidationError(f"Session is in {state.value}; no problem is being collected")
        return state, acc, index

    # ------------------------------------------------------------------
    # Problems
    # ------------------------------------------------------------------

    async def save_problem(self, session_id: int, problem: SetupProblem | dict[str, Any]) -> SessionSnapshot:
        """Store the draft for the problem being collected without validating it."""
        async with self._guard(session_id):
            state, acc, index = self._open_collect(session_id)
            acc = acc.with_problem(index, _as_problem(problem)).evolve(current_problem_index=index)
            return await self._store(session_id, state, acc)

    async def validate_and_advance(self, session_id: int) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc, index = self._open_collect(session_id)
            return await self._validate(session_id, state, acc, index)

    async def _validate(
        self, session_id: int, state: SetupState, acc: SetupAccumulator, index: int,
    ) -> SessionSnapshot:
        if index >= len(acc.problems):
            raise ValidationError("Problem is incomplete: no problem has been saved")
        errors = acc.problems[index].missing_fields()
        if errors:
            raise ValidationError("Problem is incomplete: " + "; ".join(errors))
        acc = acc.evolve(validation_errors=())
        return await self._store(session_id, self.machine.transitions[VALIDATE_PROBLEM_STATES[index]], acc)

    async def process_answer(self, session_id: int, answer: SetupProblem | dict[str, Any]) -> SessionSnapshot:
        """Save and validate in one step."""
        async with self._guard(session_id):
            state, acc, index = self._open_collect(session_id)
            acc = acc.with_problem(index, _as_problem(answer)).evolve(current_problem_index=index)
            return await self._validate(session_id, state, acc, index)

    async def suggest_direction(self, session_id: int) -> advisor.DirectionEvaluation:
        """Ask for a direction from the saved evidence; the session is not changed."""
        _, acc, index = self._open_collect(session_id)
        if index >= len(acc.problems):
            raise ValidationError("Save the problem before asking for a direction")
        p = acc.problems[index]
        if not (p.ai_cheaper.strip() and p.error_cost.strip() and p.trust_required.strip()):
            raise ValidationError("All three evidence answers are needed to suggest a direction")
        return await self._require(
            "Direction suggestion",
            lambda: advisor.evaluate_direction(self.llm, p.name, p.ai_cheaper, p.error_cost, p.trust_required),
        )

    async def add_another_problem(self, session_id: int) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, S.PORTFOLIO_COMPLETENESS)
            count = len(acc.problems)
            if count >= MAX_SETUP_PROBLEMS:
                raise ValidationError(f"Maximum {MAX_SETUP_PROBLEMS} problems reached")
            acc = acc.evolve(current_problem_index=count)
            return await self._store(session_id, COLLECT_PROBLEM_STATES[count], acc)

    async def proceed_to_time_allocation(self, session_id: int) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, S.PORTFOLIO_COMPLETENESS)
            if len(acc.problems) < MIN_SETUP_PROBLEMS:
                raise ValidationError(f"At least {MIN_SETUP_PROBLEMS} problems required")
            acc = acc.evolve(time_allocation_total=total_allocation(acc.problems))
            return await self._store(session_id, S.TIME_ALLOCATION, acc)

    # ------------------------------------------------------------------
    # Time allocation
    # ------------------------------------------------------------------

    async def update_time_allocations(self, session_id: int, allocations: Sequence[float]) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, S.TIME_ALLOCATION)
            if len(allocations) != len(acc.problems):
                raise ValidationError("Allocation count must match problem count")
            if any(a < 0 for a in allocations):
                raise ValidationError("Allocations cannot be negative")
            problems = tuple(
                p.evolve(time_allocation_percent=float(a)) for p, a in zip(acc.problems, allocations)
            )
            acc = acc.evolve(problems=problems, time_allocation_total=total_allocation(problems))
            return await self._store(session_id, state, acc)

    async def proceed_from_time_allocation(self, session_id: int) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, S.TIME_ALLOCATION)
            total = total_allocation(acc.problems)
            if not classify_allocation(total).permits_proceed:
                raise ValidationError(allocation_message(total))
            acc = acc.evolve(time_allocation_total=total)
            return await self._store(session_id, S.CALCULATE_HEALTH, acc)

    # ------------------------------------------------------------------
    # Board
    # ------------------------------------------------------------------

    async def _anchor(
        self, acc: SetupAccumulator, roles: Sequence[BoardRoleType], default_index: int,
    ) -> tuple[list[SetupBoardMember], SetupAccumulator]:
        anchorings, acc = await self._with_fallback(
            acc, "Board anchoring",
            lambda: advisor.generate_board_anchoring(self.llm, acc.problems, roles),
            list,
        )
        by_role = {a.role_type: a for a in anchorings}
        members = []
        for role in roles:
            a = by_role.get(role)
            members.append(SetupBoardMember(
                role_type=role,
                is_growth=role.is_growth,
                anchored_problem_index=a.problem_index if a else default_index,
                anchored_demand=a.demand if a else role.signature_question,
            ))
        return members, acc

    async def create_core_roles(self, session_id: int) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, S.CREATE_CORE_ROLES)
            members, acc = await self._anchor(acc, CORE_ROLES, 0)
            return await self._store(session_id, S.CREATE_GROWTH_ROLES, acc.evolve(board_members=tuple(members)))

    async def create_growth_roles(self, session_id: int) -> SessionSnapshot:
        """Growth roles exist only when some problem is appreciating."""
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, S.CREATE_GROWTH_ROLES)
            core = tuple(m for m in acc.board_members if not m.is_growth)
            index = highest_appreciating_index(acc.problems)
            if index is None:
                log.info("No appreciating problem in session %d; no growth roles", session_id)
                return await self._store(session_id, S.CREATE_PERSONAS, acc.evolve(board_members=core))
            members, acc = await self._anchor(acc, GROWTH_ROLES, index)
            return await self._store(
                session_id, S.CREATE_PERSONAS, acc.evolve(board_members=core + tuple(members)),
            )

    async def create_personas(self, session_id: int) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, S.CREATE_PERSONAS)
            members = []
            for m in acc.board_members:
                problem_name = None
                if m.anchored_problem_index is not None and m.anchored_problem_index < len(acc.problems):
                    problem_name = acc.problems[m.anchored_problem_index].name
                persona, acc = await self._with_fallback(
                    acc, f"{m.role_type.display_name} persona",
                    lambda m=m, problem_name=problem_name: advisor.generate_persona(
                        self.llm, m.role_type, problem_name, m.anchored_demand,
                    ),
                    lambda m=m: advisor.DEFAULT_PERSONAS[m.role_type],
                )
                members.append(m.evolve(
                    persona_name=persona.name,
                    persona_background=persona.background,
                    persona_communication_style=persona.communication_style,
                    persona_signature_phrase=persona.signature_phrase,
                ))
            acc = acc.evolve(board_members=tuple(members))
            return await self._store(session_id, S.DEFINE_RESETUP_TRIGGERS, acc)

    async def update_persona(
        self,
        session_id: int,
        member_index: int,
        name: str | None = None,
        background: str | None = None,
        communication_style: str | None = None,
        signature_phrase: str | None = None,
    ) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, S.PUBLISH_PORTFOLIO)
            if not 0 <= member_index < len(acc.board_members):
                raise ValidationError("Invalid member index")
            changes = {
                "persona_name": name,
                "persona_background": background,
                "persona_communication_style": communication_style,
                "persona_signature_phrase": signature_phrase,
            }
            member = acc.board_members[member_index].evolve(**{k: v for k, v in changes.items() if v is not None})
            members = list(acc.board_members)
            members[member_index] = member
            return await self._store(session_id, state, acc.evolve(board_members=tuple(members)))

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish_portfolio(self, session_id: int) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, S.PUBLISH_PORTFOLIO)
            core = [m for m in acc.board_members if not m.is_growth and m.is_active]
            if len(core) != len(CORE_ROLES):
                raise ValidationError(f"The board needs {len(CORE_ROLES)} active core roles")
            acc = acc.evolve(output_markdown=render_summary(acc))

            def writer(db: Session, row: GovernanceSession, acc: SetupAccumulator) -> SetupAccumulator:
                problem_rows = repositories.replace_problems(db, acc.problems)
                repositories.replace_board(db, acc.board_members, problem_rows)
                repositories.replace_triggers(db, acc.triggers)
                health = acc.health or compose_health(acc.problems)
                repositories.upsert_health(db, health)
                anchoring = {
                    m.role_type.value: {"problemIndex": m.anchored_problem_index, "demand": m.anchored_demand}
                    for m in acc.board_members
                }
                version = repositories.create_portfolio_version(
                    db, problem_rows, health, anchoring, acc.triggers, INITIAL_SETUP_REASON,
                )
                repositories.mark_onboarding_complete(db)
                log.info("Published portfolio version %d from session %d", version.version_number, row.id)
                return acc.evolve(portfolio_version_id=version.id)

            return await self._store(session_id, S.FINALIZED, acc, writer)
