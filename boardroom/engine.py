"""Flow controller base: the session lifecycle every flow shares.

A controller never keeps session data in memory between calls.  Each operation
loads the last persisted (state, accumulator) pair, computes the next pair, and
writes it back in one transaction before returning a :class:`SessionSnapshot`.
Collaborator calls happen between the read and the write, with no database
session held open, so an ``abandon()`` that lands meanwhile wins: the write
re-reads the row and refuses to touch an abandoned session.

One step per session runs at a time.  A second operation on a session whose step
is still outstanding fails fast with ``SessionBusyError``; other sessions are
unaffected.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Generator, TypeVar

from pydantic import BaseModel
from sqlalchemy.orm import Session

from boardroom import repositories
from boardroom.accumulators import MAX_SKIPS, QAEntry, SessionAccumulator, load_accumulator
from boardroom.config import Settings, get_settings
from boardroom.db import get_session
from boardroom.enums import FlowKind
from boardroom.errors import (
    CollaboratorError,
    SessionBusyError,
    SessionClosedError,
    SessionNotFoundError,
    ValidationError,
)
from boardroom.llm import LLMCallError, LLMClient
from boardroom.models import GovernanceSession
from boardroom.states import (
    MACHINES,
    FlowState,
    StateMachine,
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
from boardroom.vagueness import CLARIFY_PROMPT, VaguenessGate, VaguenessResult

log = logging.getLogger(__name__)

T = TypeVar("T")

MAX_SKIPS_MESSAGE = f"Maximum skips reached ({MAX_SKIPS}). You must provide a concrete example."

# session id -> writer lock; one outstanding step per session
_session_locks: dict[int, asyncio.Lock] = {}

Writer = Callable[[Session, GovernanceSession, Any], Any]


class SessionSnapshot(BaseModel):
    id: int
    flow: FlowKind
    state: str
    progress: int
    question: str | None = None
    can_skip: bool = True
    is_completed: bool = False
    is_abandoned: bool = False
    clarify_reason: str | None = None
    missing_elements: list[str] = []
    output_markdown: str | None = None
    accumulator: dict[str, Any] = {}


@dataclass
class Loaded:
    state: FlowState
    acc: Any
    is_completed: bool
    is_abandoned: bool


class FlowController:
    """Shared skeleton; subclasses fill in questions, extraction and advancing."""

    flow: FlowKind

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        llm: LLMClient | None = None,
        gate: VaguenessGate | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory or get_session
        self.llm = llm
        self.gate = gate or VaguenessGate(llm)
        self.settings = settings if settings is not None else get_settings()

    @property
    def machine(self) -> StateMachine:
        return MACHINES[self.flow]

    def state(self, value: str) -> FlowState:
        return parse_state(self.flow, value)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def question_for(self, state: FlowState, acc: Any) -> str | None:
        """Text of the question asked in *state*, or ``None`` for non-question states."""
        if is_clarify(state):
            return CLARIFY_PROMPT
        return None

    def _entry_extras(self, state: FlowState, acc: Any) -> dict[str, Any]:
        return {}

    async def _extract(self, state: FlowState, acc: Any, answer: str) -> Any:
        """Fold a main-question answer into the accumulator."""
        return acc

    def _after_clarify(self, state: FlowState, acc: Any, example: str | None) -> Any:
        """Called after a clarify state is resolved; *example* is ``None`` when skipped."""
        return acc

    def _parent(self, state: FlowState, acc: Any) -> FlowState:
        parent = parent_of(state)
        if parent is None:
            raise ValidationError(f"No parent question for {state.value}")
        return parent

    async def _advance(self, state: FlowState, acc: Any) -> tuple[FlowState, Any]:
        """Leave question *state* as if it had been answered concretely."""
        return next_state(state), acc

    async def _derive(self, state: FlowState, acc: Any) -> tuple[FlowState, Any]:
        """Run the computation owned by a derived state and return the successor."""
        raise NotImplementedError(state)

    # ------------------------------------------------------------------
    # Database plumbing
    # ------------------------------------------------------------------

    @contextmanager
    def _db(self) -> Generator[Session, None, None]:
        db = self.session_factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _row(self, db: Session, session_id: int) -> GovernanceSession:
        row = repositories.get_session_row(db, session_id)
        if row is None or row.flow_kind != self.flow.value:
            raise SessionNotFoundError(session_id)
        return row

    def _load(self, session_id: int) -> Loaded:
        with self._db() as db:
            row = self._row(db, session_id)
            return Loaded(
                state=self.state(row.state),
                acc=load_accumulator(self.flow, row.accumulator_json),
                is_completed=row.is_completed,
                is_abandoned=row.is_abandoned,
            )

    def _open(self, session_id: int) -> tuple[FlowState, Any]:
        """Load a session that is still accepting steps."""
        loaded = self._load(session_id)
        if loaded.is_abandoned or is_terminal(loaded.state):
            raise SessionClosedError(f"Session {session_id} is {loaded.state.value}")
        return loaded.state, loaded.acc

    @staticmethod
    def _expect(state: FlowState, *allowed: FlowState) -> None:
        if state not in allowed:
            names = ", ".join(s.value for s in allowed)
            raise ValidationError(f"Session is in {state.value}; this action needs {names}")

    @asynccontextmanager
    async def _guard(self, session_id: int) -> AsyncIterator[None]:
        lock = _session_locks.setdefault(session_id, asyncio.Lock())
        if lock.locked():
            raise SessionBusyError(session_id)
        try:
            async with lock:
                yield
        finally:
            if not lock.locked() and _session_locks.get(session_id) is lock:
                del _session_locks[session_id]

    def _persist(
        self, session_id: int, state: FlowState, acc: Any, writer: Writer | None = None,
    ) -> SessionSnapshot:
        with self._db() as db:
            row = self._row(db, session_id)
            if row.is_abandoned:
                log.info("Session %d was abandoned mid-step; discarding %s", session_id, state.value)
                raise SessionClosedError(f"Session {session_id} was abandoned")
            if writer is not None:
                acc = writer(db, row, acc)
            repositories.write_session_state(row, state.value, acc)
            if state == self.machine.states("finalized"):
                repositories.complete_session(
                    db, row,
                    created_bet_id=getattr(acc, "created_bet_id", None),
                    evaluated_bet_id=getattr(getattr(acc, "bet_evaluation", None), "bet_id", None),
                    portfolio_version_id=getattr(acc, "portfolio_version_id", None),
                )
            db.commit()
            log.debug("Session %d -> %s", session_id, state.value)
            return self._snapshot(row, state, acc)

    async def _store(
        self, session_id: int, state: FlowState, acc: Any, writer: Writer | None = None,
    ) -> SessionSnapshot:
        """Run any derived states reached, then persist the resulting pair."""
        while is_derived(state):
            state, acc = await self._derive(state, acc)
        return self._persist(session_id, state, acc, writer)

    def _snapshot(self, row: GovernanceSession, state: FlowState, acc: SessionAccumulator) -> SessionSnapshot:
        return SessionSnapshot(
            id=row.id,
            flow=self.flow,
            state=state.value,
            progress=progress_weight(state),
            question=self.question_for(state, acc) if is_question(state) else None,
            can_skip=acc.can_skip,
            is_completed=row.is_completed,
            is_abandoned=row.is_abandoned,
            clarify_reason=acc.clarify_reason,
            missing_elements=list(acc.missing_elements),
            output_markdown=acc.output_markdown,
            accumulator=acc.model_dump(mode="json"),
        )

    # ------------------------------------------------------------------
    # Collaborator helpers
    # ------------------------------------------------------------------

    async def _check_vagueness(self, question: str, answer: str, acc: Any) -> tuple[VaguenessResult, Any]:
        use_model = acc.provider_failures < self.settings.provider_failure_threshold
        result = await self.gate.classify(question, answer, use_model=use_model)
        if result.method == "model":
            acc = acc.record_provider(True)
        elif result.provider_failed:
            acc = acc.record_provider(False)
        return result, acc

    async def _with_fallback(
        self, acc: Any, what: str, call: Callable[[], Awaitable[T]], fallback: Callable[[], T],
    ) -> tuple[T, Any]:
        """Run a collaborator call, degrading to *fallback* on failure."""
        if self.llm is None:
            return fallback(), acc.record_provider(False)
        try:
            value = await call()
        except LLMCallError as exc:
            log.warning("%s failed, using fallback: %s", what, exc)
            return fallback(), acc.record_provider(False)
        return value, acc.record_provider(True)

    async def _require(self, what: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run a collaborator call that has no fallback."""
        if self.llm is None:
            raise CollaboratorError(f"{what} needs a text-generation provider")
        try:
            return await call()
        except LLMCallError as exc:
            log.warning("%s failed: %s", what, exc)
            raise CollaboratorError(f"{what} failed: {exc}", retryable=exc.retryable) from exc

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def start_session(self, abstraction_mode: bool | None = None) -> SessionSnapshot:
        initial = self.machine.initial
        with self._db() as db:
            if abstraction_mode is None:
                abstraction_mode = bool(repositories.remembered_abstraction_mode(db, self.flow))
            acc = load_accumulator(self.flow, None).evolve(abstraction_mode=abstraction_mode)
            row = repositories.create_session(db, self.flow, initial.value, acc)
            db.commit()
            state = next_state(initial)
            repositories.write_session_state(row, state.value, acc)
            db.commit()
            log.info("Started %s session %d", self.flow.display_name, row.id)
            return self._snapshot(row, state, acc)

    async def load_session(self, session_id: int) -> SessionSnapshot:
        loaded = self._load(session_id)
        if is_derived(loaded.state) and not loaded.is_abandoned:
            async with self._guard(session_id):
                return await self._store(session_id, loaded.state, loaded.acc)
        with self._db() as db:
            row = self._row(db, session_id)
            return self._snapshot(row, loaded.state, loaded.acc)

    async def set_sensitivity_gate(
        self, session_id: int, abstraction_mode: bool, remember_choice: bool = False,
    ) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, self.machine.states("sensitivity_gate"))
            acc = acc.evolve(abstraction_mode=abstraction_mode)

            def writer(db: Session, row: GovernanceSession, acc: Any) -> Any:
                if remember_choice:
                    repositories.remember_abstraction_mode(db, self.flow, abstraction_mode)
                return acc

            return await self._store(session_id, next_state(state), acc, writer)

    async def process_answer(self, session_id: int, answer: str) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            if not is_question(state):
                raise ValidationError(f"Session is in {state.value}, which does not take an answer")
            answer = (answer or "").strip()
            if not answer:
                raise ValidationError("Answer must not be empty")
            question = self.question_for(state, acc) or ""
            extras = self._entry_extras(state, acc)

            if is_clarify(state):
                entry = QAEntry(
                    question=question, answer=answer, concrete_example=answer,
                    state=state.value, **extras,
                )
                acc = acc.with_entry(entry).evolve(clarify_reason=None, missing_elements=())
                acc = self._after_clarify(state, acc, answer)
                state, acc = await self._advance(self._parent(state, acc), acc)
                return await self._store(session_id, state, acc)

            vague = None
            if requires_vagueness_check(state):
                vague, acc = await self._check_vagueness(question, answer, acc)
            is_vague = bool(vague and vague.is_vague)
            entry = QAEntry(question=question, answer=answer, vague=is_vague, state=state.value, **extras)
            acc = acc.with_entry(entry)
            acc = await self._extract(state, acc, answer)
            if is_vague:
                acc = acc.evolve(clarify_reason=vague.reason, missing_elements=tuple(vague.missing_elements))
                return await self._store(session_id, clarify_of(state), acc)
            state, acc = await self._advance(state, acc)
            return await self._store(session_id, state, acc)

    async def skip_vagueness_gate(self, session_id: int) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            if not is_clarify(state):
                raise ValidationError("There is no vagueness gate to skip")
            if not acc.can_skip:
                raise ValidationError(MAX_SKIPS_MESSAGE)
            entry = QAEntry.skipped_entry(
                self.question_for(state, acc) or CLARIFY_PROMPT, state.value,
                **self._entry_extras(state, acc),
            )
            acc = acc.with_entry(entry).evolve(
                skip_count=acc.skip_count + 1, clarify_reason=None, missing_elements=(),
            )
            acc = self._after_clarify(state, acc, None)
            state, acc = await self._advance(self._parent(state, acc), acc)
            return await self._store(session_id, state, acc)

    async def abandon(self, session_id: int) -> SessionSnapshot:
        """One-way exit; a no-op for sessions that are already closed."""
        abandoned = self.machine.states("abandoned")
        with self._db() as db:
            row = self._row(db, session_id)
            acc = load_accumulator(self.flow, row.accumulator_json)
            if not row.is_abandoned and not row.is_completed:
                repositories.abandon_session(db, row, abandoned.value)
                db.commit()
                log.info("Abandoned %s session %d", self.flow.display_name, session_id)
            return self._snapshot(row, self.state(row.state), acc)
