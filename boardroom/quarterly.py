"""Quarterly Review: ten questions, two board phases, one report.

Order of business: prerequisites (portfolio, board and triggers exist), an
optional recent-report warning, last bet evaluation, six reflective questions
with two automatic analysis steps in between (health trend at q6, trigger check
at q9), the next bet, then core and growth board interrogation and the report.
Without growth roles the protection/opportunity questions (q7, q8) and the growth
phase are skipped.
"""
from __future__ import annotations

import logging
from typing import Any, Sequence

from sqlalchemy.orm import Session

from boardroom import advisor, repositories
from boardroom.accumulators import (
    BetEvaluation,
    BoardPhase,
    EvidenceRecord,
    NewBet,
    QAEntry,
    QuarterlyAccumulator,
)
from boardroom.analysis import (
    check_bet_evaluation,
    compose_health,
    compute_trend,
    describe_trend,
    evaluate_triggers,
    trend_summary,
)
from boardroom.board import BoardInterrogation, generate_question, load_roster
from boardroom.engine import FlowController, SessionSnapshot
from boardroom.enums import BetStatus, FlowKind
from boardroom.errors import ValidationError
from boardroom.models import GovernanceSession
from boardroom.states import BOARD_STATES, QuarterlyState
from boardroom.utils import utcnow

log = logging.getLogger(__name__)

Q = QuarterlyState

QUESTIONS = {
    Q.Q2_COMMITMENTS_VS_ACTUALS: (
        "What commitments did you make last quarter and how did they compare to your actual "
        "actions? Provide evidence where possible."
    ),
    Q.Q3_AVOIDED_DECISION: (
        "What decision or conversation have you been avoiding this quarter? "
        "What is the cost of continuing to wait?"
    ),
    Q.Q4_COMFORT_WORK: (
        "Where have you been doing comfort work this quarter - tasks that feel productive "
        "but do not advance your goals?"
    ),
    Q.Q5_PORTFOLIO_CHECK: (
        "Review your portfolio problems. Have any directions shifted? "
        "Should any time allocations change?"
    ),
    Q.Q7_PROTECTION_CHECK: (
        "Your appreciating problems are your strengths. "
        "What threats could cause you to lose these advantages?"
    ),
    Q.Q8_OPPORTUNITY_CHECK: (
        "What adjacent opportunities exist near your appreciating problems? "
        "What would 2x their value?"
    ),
    Q.Q10_NEXT_BET: (
        "What is your bet for the next 90 days? State a specific prediction and what "
        "observable evidence would prove it wrong."
    ),
}

# main question -> accumulator field holding its answer
ANSWER_FIELDS = {
    Q.Q2_COMMITMENTS_VS_ACTUALS: "commitments",
    Q.Q3_AVOIDED_DECISION: "avoided_decision",
    Q.Q4_COMFORT_WORK: "comfort_work",
    Q.Q5_PORTFOLIO_CHECK: "portfolio_check",
    Q.Q7_PROTECTION_CHECK: "protection",
    Q.Q8_OPPORTUNITY_CHECK: "opportunity",
}

PHASE_STATES = {
    BoardPhase.CORE: Q.CORE_BOARD_INTERROGATION,
    BoardPhase.GROWTH: Q.GROWTH_BOARD_INTERROGATION,
}

NO_BET_QUESTION = "Bet Evaluation"
NO_BET_ANSWER = "[No open bet to evaluate]"


def bet_question(prediction: str | None) -> str:
    return f'Evaluate your last bet: "{prediction or ""}"'


class QuarterlyReviewFlow(FlowController):
    flow = FlowKind.QUARTERLY

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def question_for(self, state: QuarterlyState, acc: QuarterlyAccumulator) -> str | None:
        if state is Q.Q1_LAST_BET_EVALUATION:
            if acc.review_bet_id is None:
                return NO_BET_QUESTION
            return bet_question(acc.review_bet_prediction)
        if state in BOARD_STATES:
            return acc.pending_question.question if acc.pending_question else None
        if state in QUESTIONS:
            return QUESTIONS[state]
        return super().question_for(state, acc)

    def _entry_extras(self, state: QuarterlyState, acc: QuarterlyAccumulator) -> dict[str, Any]:
        if state in BOARD_STATES or state is Q.BOARD_INTERROGATION_CLARIFY:
            pending = acc.pending_question
            if pending is not None:
                return {
                    "role_type": pending.role_type,
                    "persona_name": pending.persona_name,
                    "problem_index": pending.problem_index,
                }
        return {}

    def _parent(self, state: QuarterlyState, acc: QuarterlyAccumulator) -> QuarterlyState:
        if state is Q.BOARD_INTERROGATION_CLARIFY:
            if acc.board_phase is None:
                raise ValidationError("No board phase in progress")
            return PHASE_STATES[acc.board_phase]
        return super()._parent(state, acc)

    def _board(self, phase: BoardPhase) -> BoardInterrogation:
        with self._db() as db:
            return BoardInterrogation(phase, load_roster(db, phase))

    async def _extract(self, state: QuarterlyState, acc: QuarterlyAccumulator, answer: str) -> QuarterlyAccumulator:
        if state in ANSWER_FIELDS:
            return acc.evolve(**{ANSWER_FIELDS[state]: answer})
        if state in BOARD_STATES and acc.board_phase is not None:
            vague = bool(acc.last_entry and acc.last_entry.vague)
            return self._board(acc.board_phase).record_response(acc, answer, vague)
        return acc

    def _after_clarify(
        self, state: QuarterlyState, acc: QuarterlyAccumulator, example: str | None,
    ) -> QuarterlyAccumulator:
        if state is Q.BOARD_INTERROGATION_CLARIFY and acc.board_phase is not None:
            return self._board(acc.board_phase).attach_example(acc, example)
        return acc

    async def _advance(
        self, state: QuarterlyState, acc: QuarterlyAccumulator,
    ) -> tuple[QuarterlyState, QuarterlyAccumulator]:
        if state in BOARD_STATES and acc.board_phase is not None:
            board = self._board(acc.board_phase)
            acc = board.advance(acc)
            entry = board.current(acc)
            if entry is not None and not board.is_complete(acc):
                return state, await self._pose(board, entry, acc)
            return await self._after_phase(acc.board_phase, acc)
        return await super()._advance(state, acc)

    async def _derive(
        self, state: QuarterlyState, acc: QuarterlyAccumulator,
    ) -> tuple[QuarterlyState, QuarterlyAccumulator]:
        if state is Q.Q6_PORTFOLIO_HEALTH_UPDATE:
            return await self._health_trend(acc)
        if state is Q.Q9_TRIGGER_CHECK:
            return self._trigger_check(acc)
        return await super()._derive(state, acc)

    # ------------------------------------------------------------------
    # Board phases
    # ------------------------------------------------------------------

    async def _pose(self, board: BoardInterrogation, entry, acc: QuarterlyAccumulator) -> QuarterlyAccumulator:
        question, acc = await self._with_fallback(
            acc, f"{entry.role_type.display_name} question",
            lambda: generate_question(self.llm, entry, acc),
            entry.fallback_question,
        )
        return board.pose(acc, entry, question)

    async def _start_phase(
        self, phase: BoardPhase, acc: QuarterlyAccumulator,
    ) -> tuple[QuarterlyState, QuarterlyAccumulator]:
        board = self._board(phase)
        acc = board.begin(acc)
        entry = board.current(acc)
        if entry is None:
            return await self._after_phase(phase, acc)
        return PHASE_STATES[phase], await self._pose(board, entry, acc)

    async def _after_phase(
        self, phase: BoardPhase, acc: QuarterlyAccumulator,
    ) -> tuple[QuarterlyState, QuarterlyAccumulator]:
        if phase is BoardPhase.CORE and acc.growth_roles_active:
            return await self._start_phase(BoardPhase.GROWTH, acc)
        return Q.GENERATE_REPORT, acc.evolve(pending_question=None)

    # ------------------------------------------------------------------
    # Derived steps
    # ------------------------------------------------------------------

    async def _health_trend(self, acc: QuarterlyAccumulator) -> tuple[QuarterlyState, QuarterlyAccumulator]:
        with self._db() as db:
            current = compose_health(repositories.list_active_problems(db))
            previous = repositories.health_snapshot(repositories.current_health(db))
        trend = compute_trend(previous, current)
        description, acc = await self._with_fallback(
            acc, "Trend description",
            lambda: advisor.generate_trend_description(self.llm, trend),
            lambda: describe_trend(trend),
        )
        trend = trend.evolve(description=description)
        entry = QAEntry(
            question="Portfolio Health Trend", answer=trend_summary(trend),
            state=Q.Q6_PORTFOLIO_HEALTH_UPDATE.value,
        )
        acc = acc.with_entry(entry).evolve(current_health=current, health_trend=trend)
        nxt = Q.Q7_PROTECTION_CHECK if acc.growth_roles_active else Q.Q9_TRIGGER_CHECK
        return nxt, acc

    def _trigger_check(self, acc: QuarterlyAccumulator) -> tuple[QuarterlyState, QuarterlyAccumulator]:
        with self._db() as db:
            statuses = evaluate_triggers(
                repositories.list_triggers(db), utcnow(), self.settings.trigger_approaching_days,
            )
        met = [s for s in statuses if s.is_met]
        entry = QAEntry(
            question="Re-setup Trigger Status",
            answer=f"Warning: {len(met)} trigger(s) met" if met else "No triggers met",
            state=Q.Q9_TRIGGER_CHECK.value,
        )
        acc = acc.with_entry(entry).evolve(trigger_statuses=tuple(statuses), any_trigger_met=bool(met))
        return Q.Q10_NEXT_BET, acc

    # ------------------------------------------------------------------
    # Flow-specific operations
    # ------------------------------------------------------------------

    async def check_prerequisites(self, session_id: int) -> SessionSnapshot:
        """Gate 0: a portfolio, a board and re-setup triggers must exist."""
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, Q.GATE0_PREREQUISITES)
            now = utcnow()
            with self._db() as db:
                missing = []
                if not repositories.list_active_problems(db):
                    missing.append("No portfolio.")
                if not repositories.list_active_board_members(db):
                    missing.append("No board.")
                if not repositories.list_triggers(db):
                    missing.append("No triggers.")
                growth_active = bool(repositories.list_active_board_members(db, growth=True))
                last = repositories.last_completed_session(db, FlowKind.QUARTERLY)
                days = (now - last.completed_at).days if last and last.completed_at else None
            if missing:
                raise ValidationError("Prerequisites not met: " + " ".join(missing) + " ")

            recent = days is not None and days < self.settings.recent_report_warning_days
            acc = acc.evolve(
                prerequisites_passed=True, growth_roles_active=growth_active,
                days_since_last_report=days, showed_recent_warning=recent,
            )
            nxt = Q.RECENT_REPORT_WARNING if recent else Q.Q1_LAST_BET_EVALUATION

            def writer(db: Session, row: GovernanceSession, acc: QuarterlyAccumulator) -> QuarterlyAccumulator:
                repositories.expire_overdue_bets(db, now)
                bet = repositories.bet_for_review(db)
                if bet is None:
                    return acc
                return acc.evolve(review_bet_id=bet.id, review_bet_prediction=bet.prediction)

            return await self._store(session_id, nxt, acc, writer)

    async def acknowledge_recent_report(self, session_id: int) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, Q.RECENT_REPORT_WARNING)
            return await self._store(session_id, Q.Q1_LAST_BET_EVALUATION, acc)

    async def evaluate_bet(
        self,
        session_id: int,
        status: BetStatus | str,
        rationale: str = "",
        evidence: Sequence[EvidenceRecord | dict[str, Any]] = (),
    ) -> SessionSnapshot:
        """Q1: record the verdict on the bet under review, with its receipts."""
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, Q.Q1_LAST_BET_EVALUATION)
            if acc.review_bet_id is None:
                raise ValidationError("There is no bet awaiting evaluation")
            try:
                status = BetStatus(status)
                records = tuple(
                    e if isinstance(e, EvidenceRecord) else EvidenceRecord.model_validate(e) for e in evidence
                )
            except ValueError as exc:
                raise ValidationError(f"Invalid bet evaluation: {exc}") from exc
            context = f"bet_evaluation:{acc.review_bet_id}"

            def writer(db: Session, row: GovernanceSession, acc: QuarterlyAccumulator) -> QuarterlyAccumulator:
                bet = repositories.get_bet(db, acc.review_bet_id)
                if bet is None:
                    raise ValidationError(f"Bet {acc.review_bet_id} no longer exists")
                check_bet_evaluation(BetStatus(bet.status), bet.due_at, status, utcnow())
                repositories.set_bet_status(db, bet, status, rationale or None)
                repositories.add_evidence(db, row.id, records, context)
                return acc

            entry = QAEntry(
                question=bet_question(acc.review_bet_prediction),
                answer=f"{status.value.capitalize()}: {rationale}" if rationale else status.value.capitalize(),
                state=state.value,
            )
            acc = acc.with_entry(entry).evolve(bet_evaluation=BetEvaluation(
                bet_id=acc.review_bet_id, status=status, rationale=rationale,
                evidence=tuple(r.evolve(context=context) for r in records),
            ))
            return await self._store(session_id, Q.Q2_COMMITMENTS_VS_ACTUALS, acc, writer)

    async def skip_bet_evaluation(self, session_id: int) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, Q.Q1_LAST_BET_EVALUATION)
            if acc.review_bet_id is not None:
                raise ValidationError("A bet is awaiting evaluation and cannot be skipped")
            entry = QAEntry(question=NO_BET_QUESTION, answer=NO_BET_ANSWER, state=state.value)
            return await self._store(session_id, Q.Q2_COMMITMENTS_VS_ACTUALS, acc.with_entry(entry))

    async def process_answer(self, session_id: int, answer: str) -> SessionSnapshot:
        loaded = self._load(session_id)
        if loaded.state is Q.Q1_LAST_BET_EVALUATION:
            raise ValidationError("Use evaluate_bet or skip_bet_evaluation for the bet review")
        if loaded.state is Q.Q10_NEXT_BET:
            raise ValidationError("Use create_new_bet for the next bet")
        return await super().process_answer(session_id, answer)

    async def create_new_bet(
        self, session_id: int, prediction: str, wrong_if: str, duration_days: int | None = None,
    ) -> SessionSnapshot:
        """Q10: stage the next bet and open the core board phase."""
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, Q.Q10_NEXT_BET)
            prediction, wrong_if = (prediction or "").strip(), (wrong_if or "").strip()
            duration_days = duration_days or self.settings.bet_duration_days
            if not prediction:
                raise ValidationError("Prediction is required")
            if not wrong_if:
                raise ValidationError("Wrong-if condition is required")
            if duration_days <= 0:
                raise ValidationError("Bet duration must be positive")
            entry = QAEntry(
                question="Create new bet with wrong-if condition",
                answer=f"Prediction: {prediction} | Wrong if: {wrong_if}",
                state=state.value,
            )
            acc = acc.with_entry(entry).evolve(
                new_bet=NewBet(prediction=prediction, wrong_if=wrong_if, duration_days=duration_days),
            )
            nxt, acc = await self._start_phase(BoardPhase.CORE, acc)
            return await self._store(session_id, nxt, acc)

    async def generate_report(self, session_id: int) -> SessionSnapshot:
        async with self._guard(session_id):
            state, acc = self._open(session_id)
            self._expect(state, Q.GENERATE_REPORT)
            if not (acc.all_core_board_responded and acc.all_growth_board_responded):
                raise ValidationError("Board interrogation is not complete")
            report = await self._require(
                "Quarterly report", lambda: advisor.generate_quarterly_report(self.llm, acc),
            )
            acc = acc.record_provider(True).evolve(output_markdown=report)

            def writer(db: Session, row: GovernanceSession, acc: QuarterlyAccumulator) -> QuarterlyAccumulator:
                health = acc.current_health or compose_health(repositories.list_active_problems(db))
                repositories.upsert_health(db, health)
                if acc.new_bet is None:
                    return acc
                bet = repositories.create_bet(
                    db, acc.new_bet.prediction, acc.new_bet.wrong_if,
                    acc.new_bet.duration_days, source_session_id=row.id,
                )
                return acc.evolve(created_bet_id=bet.id)

            return await self._store(session_id, Q.FINALIZED, acc, writer)
