"""Board Interrogation Loop.

Each phase (core, then growth) walks its roster in fixed role order.  Every
persona asks exactly one question anchored to its problem; the answer goes
through the Vagueness Gate like any other question.  Which persona is pending
and which phase is running are accumulator fields, because the shared board
clarify state cannot tell core from growth on its own.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from boardroom import advisor, repositories
from boardroom.accumulators import (
    BoardPhase,
    BoardResponse,
    PendingBoardQuestion,
    QuarterlyAccumulator,
)
from boardroom.enums import BoardRoleType
from boardroom.llm import LLMClient

log = logging.getLogger(__name__)


@dataclass
class RosterEntry:
    role_type: BoardRoleType
    persona_name: str | None = None
    problem_index: int | None = None
    anchored_demand: str | None = None

    def fallback_question(self) -> str:
        """The anchored demand, else the role's signature question."""
        return self.anchored_demand or self.role_type.signature_question


def load_roster(db: Session, phase: BoardPhase) -> list[RosterEntry]:
    problems = repositories.list_active_problems(db)
    index_by_id = {p.id: i for i, p in enumerate(problems)}
    members = repositories.list_active_board_members(db, growth=(phase is BoardPhase.GROWTH))
    return [
        RosterEntry(
            role_type=BoardRoleType(m.role_type),
            persona_name=m.persona_name or None,
            problem_index=index_by_id.get(m.anchored_problem_id),
            anchored_demand=m.anchored_demand,
        )
        for m in members
    ]


class BoardInterrogation:
    """One phase of interrogation over an ordered roster."""

    def __init__(self, phase: BoardPhase, roster: list[RosterEntry]):
        self.phase = phase
        self.roster = roster

    def begin(self, acc: QuarterlyAccumulator) -> QuarterlyAccumulator:
        size_field = "core_roster_size" if self.phase is BoardPhase.CORE else "growth_roster_size"
        acc = acc.with_phase_responses(self.phase, ())
        return acc.evolve(
            board_phase=self.phase, pending_member_index=0, pending_question=None,
            **{size_field: len(self.roster)},
        )

    def current(self, acc: QuarterlyAccumulator) -> RosterEntry | None:
        if 0 <= acc.pending_member_index < len(self.roster):
            return self.roster[acc.pending_member_index]
        return None

    def is_complete(self, acc: QuarterlyAccumulator) -> bool:
        return len(acc.phase_responses(self.phase)) >= len(self.roster)

    def pose(self, acc: QuarterlyAccumulator, entry: RosterEntry, question: str) -> QuarterlyAccumulator:
        return acc.evolve(pending_question=PendingBoardQuestion(
            role_type=entry.role_type,
            persona_name=entry.persona_name,
            problem_index=entry.problem_index,
            question=question,
        ))

    def record_response(self, acc: QuarterlyAccumulator, answer: str, vague: bool) -> QuarterlyAccumulator:
        pending = acc.pending_question
        if pending is None:
            return acc
        response = BoardResponse(
            role_type=pending.role_type,
            persona_name=pending.persona_name,
            problem_index=pending.problem_index,
            question=pending.question,
            answer=answer,
            vague=vague,
        )
        return acc.with_phase_responses(self.phase, acc.phase_responses(self.phase) + (response,))

    def attach_example(self, acc: QuarterlyAccumulator, example: str | None) -> QuarterlyAccumulator:
        """Resolve the clarify step on the latest response; ``None`` marks it skipped."""
        responses = acc.phase_responses(self.phase)
        if not responses:
            return acc
        last = responses[-1]
        last = last.evolve(skipped=True) if example is None else last.evolve(concrete_example=example)
        return acc.with_phase_responses(self.phase, responses[:-1] + (last,))

    def advance(self, acc: QuarterlyAccumulator) -> QuarterlyAccumulator:
        return acc.evolve(pending_member_index=acc.pending_member_index + 1, pending_question=None)


async def generate_question(llm: LLMClient, entry: RosterEntry, acc: QuarterlyAccumulator) -> str:
    return await advisor.generate_board_question(
        llm, entry.role_type, entry.persona_name, entry.anchored_demand, acc,
    )
