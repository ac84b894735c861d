"""Prompted calls to the text-generation collaborator.

Every function here either returns a parsed, typed result or raises
:class:`~boardroom.llm.LLMCallError`.  Fallbacks are the flow controllers' job:
they know whether a step can degrade gracefully or must surface the failure.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from boardroom.accumulators import (
    HealthTrend,
    PortfolioHealthSnapshot,
    QuarterlyAccumulator,
    QuickAccumulator,
    SetupProblem,
)
from boardroom.enums import BoardRoleType, Direction
from boardroom.llm import LLMCallError, LLMClient
from boardroom.utils import format_percent

log = logging.getLogger(__name__)


@dataclass
class DirectionEvaluation:
    direction: Direction
    rationale: str
    confidence: str = "medium"


@dataclass
class QuickOutput:
    direction_table_markdown: str
    assessment: str
    avoided_decision: str
    avoided_decision_cost: str
    bet_prediction: str
    bet_wrong_if: str
    full_output_markdown: str


@dataclass
class RoleAnchoring:
    role_type: BoardRoleType
    problem_index: int
    demand: str


@dataclass
class Persona:
    name: str
    background: str
    communication_style: str
    signature_phrase: str | None = None


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

DIRECTION_PROMPT = """\
You are a career strategist classifying whether a problem someone is paid to solve is
gaining or losing market value.

Use the three evidence answers:
- Is AI getting cheaper at solving this? (cheaper AI pushes toward depreciating)
- What is the cost of getting it wrong? (high error cost supports appreciating)
- Is trust or special access required? (required trust supports appreciating)

Return ONLY a JSON object:
{"direction": "appreciating" | "depreciating" | "stable",
 "rationale": "One sentence referencing the user's specific answers",
 "confidence": "high" | "medium" | "low"}"""

EXTRACT_PROBLEMS_PROMPT = """\
Extract the problems the user says they are paid to solve.

Extract up to 3 distinct problems, clean up wording but keep the meaning, and make each
a concise phrase of 2-8 words.

Return ONLY a JSON object: {"problems": ["Problem 1", "Problem 2", "Problem 3"]}"""

QUICK_OUTPUT_PROMPT = """\
You are an honest career advisor closing a 15-minute career audit.

Produce:
- a markdown direction table with columns Problem | AI cheaper? | Error cost? |
  Trust required? | Direction
- a two-sentence honest assessment
- the avoided decision and its cost
- one 90-day bet: a falsifiable prediction and a "wrong if" condition with observable evidence
- the complete formatted output as markdown

Return ONLY a JSON object:
{"directionTableMarkdown": "...", "assessment": "...", "avoidedDecision": "...",
 "avoidedDecisionCost": "...", "betPrediction": "In 90 days, ...",
 "betWrongIf": "Wrong if ...", "fullOutputMarkdown": "..."}"""

HEALTH_STATEMENTS_PROMPT = """\
You are a career portfolio analyst. Given a portfolio's problems and its time split
across appreciating, depreciating and stable work, name the main risk and the main
opportunity, one sentence each.

Return ONLY a JSON object:
{"riskStatement": "...", "opportunityStatement": "..."}"""

ANCHORING_PROMPT = """\
You are assigning each member of a personal board of directors to the portfolio problem
they will hold the user accountable on.

For every role listed, choose the problem index (0-based) that best fits the role's
function and write one specific demand the member will press on.

Return ONLY a JSON object:
{"anchorings": [{"roleType": "accountability", "problemIndex": 0, "demand": "..."}]}"""

PERSONA_PROMPT = """\
You are creating a realistic persona for a member of someone's personal board of
directors. The persona should feel like a seasoned professional whose voice matches the
role's interaction style.

Return ONLY a JSON object:
{"name": "First Last", "background": "Brief professional background",
 "communicationStyle": "How they communicate", "signaturePhrase": "Their usual opening"}"""

BOARD_QUESTION_PROMPT = """\
You are writing the one question a board member asks during a quarterly career review.

The question is 10-30 words, direct and specific, reflects the member's role function and
anchored demand, sounds like the persona, and pushes for concrete evidence or plans.

Return ONLY the question text."""

TREND_PROMPT = """\
You are a career advisor describing a change in portfolio composition between two
quarters. Write one sentence of 15-30 words that names the most significant change and
references the percentages. If little changed, say so.

Return ONLY the sentence."""

REPORT_PROMPT = """\
You are writing a quarterly career governance report in markdown, 400-600 words,
starting with a "# Quarterly Report" heading. Sections: Executive Summary, Bet
Evaluation, Commitments vs Actuals, Risk Areas, Portfolio Health, Board Insights,
Trigger Status, New Bet, Action Items (3-5 specific next steps). Be direct and reference
the session's specific evidence."""


# ---------------------------------------------------------------------------
# Quick Audit
# ---------------------------------------------------------------------------


async def evaluate_direction(
    llm: LLMClient,
    problem_name: str,
    ai_cheaper: str | None,
    error_cost: str | None,
    trust_required: str | None,
) -> DirectionEvaluation:
    user = (
        f"PROBLEM: {problem_name}\n"
        f"AI CHEAPER: {ai_cheaper or '(no answer)'}\n"
        f"ERROR COST: {error_cost or '(no answer)'}\n"
        f"TRUST REQUIRED: {trust_required or '(no answer)'}"
    )
    data = await llm.call(DIRECTION_PROMPT, user, max_tokens=512)
    return DirectionEvaluation(
        direction=Direction.parse(data.get("direction")),
        rationale=str(data.get("rationale") or ""),
        confidence=str(data.get("confidence") or "medium"),
    )


async def extract_problems(llm: LLMClient, answer: str) -> list[str]:
    data = await llm.call(
        EXTRACT_PROBLEMS_PROMPT, f'Extract the problems from this answer:\n\n"{answer}"', max_tokens=256,
    )
    raw = data.get("problems") or []
    if not isinstance(raw, list):
        raise LLMCallError(f"LLM returned problems as {type(raw).__name__}, expected a list", retryable=False)
    problems = [str(p).strip() for p in raw if str(p).strip()]
    if not problems:
        raise LLMCallError("LLM returned no problems", retryable=False)
    return problems[:3]


def _quick_dossier(acc: QuickAccumulator) -> str:
    lines = [f"ROLE CONTEXT: {acc.role_context or ''}", "", "PROBLEMS:"]
    for p in acc.problems:
        lines.append(f"- {p.name}")
        lines.append(f"  AI cheaper: {p.ai_cheaper or ''}")
        lines.append(f"  Error cost: {p.error_cost or ''}")
        lines.append(f"  Trust required: {p.trust_required or ''}")
        direction = p.direction.value if p.direction else "stable"
        lines.append(f"  Direction: {direction} ({p.direction_rationale or ''})")
    lines += [
        "",
        f"AVOIDED DECISION: {acc.avoided_decision or ''}",
        f"COST OF WAITING: {acc.avoided_decision_cost or ''}",
        f"COMFORT WORK: {acc.comfort_work or ''}",
    ]
    if acc.abstraction_mode:
        lines.append("\nABSTRACTION MODE: do not repeat names of people or companies.")
    return "\n".join(lines)


async def generate_quick_output(llm: LLMClient, acc: QuickAccumulator) -> QuickOutput:
    data = await llm.call(QUICK_OUTPUT_PROMPT, _quick_dossier(acc), max_tokens=2048)
    return QuickOutput(
        direction_table_markdown=str(data.get("directionTableMarkdown") or ""),
        assessment=str(data.get("assessment") or ""),
        avoided_decision=str(data.get("avoidedDecision") or ""),
        avoided_decision_cost=str(data.get("avoidedDecisionCost") or ""),
        bet_prediction=str(data.get("betPrediction") or ""),
        bet_wrong_if=str(data.get("betWrongIf") or ""),
        full_output_markdown=str(data.get("fullOutputMarkdown") or ""),
    )


# ---------------------------------------------------------------------------
# Portfolio Setup
# ---------------------------------------------------------------------------


def _problem_lines(problems: Sequence[SetupProblem]) -> list[str]:
    lines = []
    for i, p in enumerate(problems):
        direction = p.direction.value if p.direction else "stable"
        lines.append(f"[{i}] {p.name} - {direction}, {format_percent(p.time_allocation_percent)}% of time")
        lines.append(f"    breaks if unsolved: {p.what_breaks}")
    return lines


async def generate_health_statements(
    llm: LLMClient, problems: Sequence[SetupProblem], health: PortfolioHealthSnapshot,
) -> tuple[str, str]:
    user = "\n".join(_problem_lines(problems) + [
        "",
        f"Appreciating: {format_percent(health.appreciating_percent)}%",
        f"Depreciating: {format_percent(health.depreciating_percent)}%",
        f"Stable: {format_percent(health.stable_percent)}%",
    ])
    data = await llm.call(HEALTH_STATEMENTS_PROMPT, user, max_tokens=512)
    risk = str(data.get("riskStatement") or "").strip()
    opportunity = str(data.get("opportunityStatement") or "").strip()
    if not risk or not opportunity:
        raise LLMCallError("LLM returned empty health statements", retryable=False)
    return risk, opportunity


async def generate_board_anchoring(
    llm: LLMClient, problems: Sequence[SetupProblem], roles: Sequence[BoardRoleType],
) -> list[RoleAnchoring]:
    user = "\n".join(
        ["PROBLEMS:"] + _problem_lines(problems) + ["", "ROLES:"]
        + [f"- {r.value}: {r.function}" for r in roles]
    )
    data = await llm.call(ANCHORING_PROMPT, user, max_tokens=1024)
    out: list[RoleAnchoring] = []
    for item in data.get("anchorings") or []:
        if not isinstance(item, dict):
            continue
        try:
            role = BoardRoleType(str(item.get("roleType")))
            index = int(item.get("problemIndex"))
        except (TypeError, ValueError):
            continue
        if role not in roles or not 0 <= index < len(problems):
            continue
        out.append(RoleAnchoring(role, index, str(item.get("demand") or role.signature_question)))
    return out


DEFAULT_PERSONAS: dict[BoardRoleType, Persona] = {
    BoardRoleType.ACCOUNTABILITY: Persona(
        "Maya Chen",
        "Former executive coach with 15 years in high-performance environments. "
        "Known for holding leaders to their word.",
        "Direct and evidence-focused. Asks for proof before accepting claims.",
    ),
    BoardRoleType.MARKET_REALITY: Persona(
        "Marcus Webb",
        "Tech industry veteran who has seen multiple disruption cycles.",
        "Skeptical but fair. Backs up challenges with data and examples.",
    ),
    BoardRoleType.AVOIDANCE: Persona(
        "Sarah Blackwell",
        "Organizational psychologist specializing in leadership blind spots.",
        "Persistent and uncomfortable. Does not let you off the hook easily.",
    ),
    BoardRoleType.LONG_TERM_POSITIONING: Persona(
        "David Park",
        "Strategy consultant who has guided dozens of career pivots.",
        "Forward-looking and strategic. Always connects today to tomorrow.",
    ),
    BoardRoleType.DEVILS_ADVOCATE: Persona(
        "Alexandra Reyes",
        "Former debate champion turned executive advisor.",
        "Contrarian. Challenges your assumptions constructively.",
    ),
    BoardRoleType.PORTFOLIO_DEFENDER: Persona(
        "James Morrison",
        "Applies an investor's mindset to careers: protect and compound advantages.",
        "Protective and growth-focused. Helps you see what you have to lose.",
    ),
    BoardRoleType.OPPORTUNITY_SCOUT: Persona(
        "Priya Sharma",
        "Serial career changer who found success in adjacent opportunities.",
        "Exploratory and curious. Sees connections you might miss.",
    ),
}


async def generate_persona(
    llm: LLMClient, role: BoardRoleType, problem_name: str | None, demand: str | None,
) -> Persona:
    user = (
        f"ROLE: {role.display_name}\n"
        f"FUNCTION: {role.function}\n"
        f"INTERACTION STYLE: {role.interaction_style}\n"
        f"ANCHORED PROBLEM: {problem_name or '(none)'}\n"
        f"DEMAND: {demand or role.signature_question}"
    )
    data = await llm.call(PERSONA_PROMPT, user, max_tokens=512)
    name = str(data.get("name") or "").strip()
    if not name:
        raise LLMCallError("LLM returned a persona without a name", retryable=False)
    return Persona(
        name=name,
        background=str(data.get("background") or ""),
        communication_style=str(data.get("communicationStyle") or role.interaction_style),
        signature_phrase=data.get("signaturePhrase") or None,
    )


# ---------------------------------------------------------------------------
# Quarterly Review
# ---------------------------------------------------------------------------


def _truncate(text: str | None, limit: int = 200) -> str:
    text = text or ""
    return text if len(text) <= limit else text[:limit] + "..."


def quarterly_context(acc: QuarterlyAccumulator) -> str:
    lines = []
    if acc.bet_evaluation is not None:
        lines.append(f"- Last bet: {acc.bet_evaluation.status.value}")
    for label, value in (
        ("Commitments", acc.commitments),
        ("Avoided decision", acc.avoided_decision),
        ("Comfort work", acc.comfort_work),
        ("Portfolio check", acc.portfolio_check),
    ):
        if value:
            lines.append(f"- {label}: {_truncate(value)}")
    if acc.new_bet is not None:
        lines.append(f"- New bet: {_truncate(acc.new_bet.prediction)}")
    return "\n".join(lines) or "- (no answers yet)"


async def generate_board_question(
    llm: LLMClient,
    role: BoardRoleType,
    persona_name: str | None,
    anchored_demand: str | None,
    acc: QuarterlyAccumulator,
) -> str:
    user = (
        f"ROLE: {role.display_name}\n"
        f"FUNCTION: {role.function}\n"
        f"PERSONA: {persona_name or role.display_name}\n"
        f"ANCHORED DEMAND: {anchored_demand or role.signature_question}\n"
        f"SESSION CONTEXT:\n{quarterly_context(acc)}"
    )
    result = await llm.generate(BOARD_QUESTION_PROMPT, user, max_tokens=128)
    question = result.text.strip().strip('"').strip()
    if not question:
        raise LLMCallError("LLM returned an empty board question", retryable=False)
    return question


def _signed(value: float) -> str:
    return ("+" if value > 0 else "") + format_percent(value)


async def generate_trend_description(llm: LLMClient, trend: HealthTrend) -> str:
    user = (
        f"Previous: appreciating {format_percent(trend.previous_appreciating)}%, "
        f"depreciating {format_percent(trend.previous_depreciating)}%\n"
        f"Current: appreciating {format_percent(trend.current_appreciating)}%, "
        f"depreciating {format_percent(trend.current_depreciating)}%\n"
        f"Changes: appreciating {_signed(trend.appreciating_change)}%, "
        f"depreciating {_signed(trend.depreciating_change)}%"
    )
    result = await llm.generate(TREND_PROMPT, user, max_tokens=128)
    return result.text.strip()


def _report_dossier(acc: QuarterlyAccumulator, extra: dict[str, Any]) -> str:
    lines = ["## Bet Evaluation"]
    if acc.bet_evaluation is not None:
        ev = acc.bet_evaluation
        lines.append(f'- Prediction: "{acc.review_bet_prediction or ""}"')
        lines.append(f"- Result: {ev.status.value.upper()}")
        if ev.rationale:
            lines.append(f"- Rationale: {ev.rationale}")
        for e in ev.evidence:
            lines.append(f"  - {e.description} ({e.kind.value}, {e.strength.value})")
    else:
        lines.append("- No bet to evaluate")
    lines += [
        "", "## Commitments vs Actuals", acc.commitments or "",
        "", "## Avoided Decision", acc.avoided_decision or "",
        "", "## Comfort Work", acc.comfort_work or "",
        "", "## Portfolio Check", acc.portfolio_check or "",
    ]
    if acc.health_trend is not None:
        t = acc.health_trend
        lines += [
            "", "## Portfolio Health",
            f"- Appreciating: {format_percent(t.previous_appreciating)}% -> {format_percent(t.current_appreciating)}%",
            f"- Depreciating: {format_percent(t.previous_depreciating)}% -> {format_percent(t.current_depreciating)}%",
            f"- Stable: {format_percent(t.previous_stable)}% -> {format_percent(t.current_stable)}%",
        ]
        if t.description:
            lines.append(f"- Trend: {t.description}")
    if acc.growth_roles_active:
        lines += ["", "## Protection", acc.protection or "", "", "## Opportunity", acc.opportunity or ""]
    lines += ["", "## Board Interrogation"]
    for r in acc.core_responses + acc.growth_responses:
        lines.append(f"- {r.persona_name or r.role_type.display_name} ({r.role_type.display_name}): {r.question}")
        lines.append(f"  Answer: {r.answer}")
        if r.concrete_example:
            lines.append(f"  Example: {r.concrete_example}")
    lines += ["", "## Triggers"]
    met = [s for s in acc.trigger_statuses if s.is_met]
    lines += [f"- MET: {s.description}" for s in met] or ["- None met"]
    if acc.new_bet is not None:
        lines += [
            "", "## New Bet",
            f"- Prediction: {acc.new_bet.prediction}",
            f"- Wrong if: {acc.new_bet.wrong_if}",
            f"- Duration: {acc.new_bet.duration_days} days",
        ]
    for key, value in extra.items():
        lines.append(f"\n{key.upper()}: {value}")
    if acc.abstraction_mode:
        lines.append("\nABSTRACTION MODE: do not repeat names of people or companies.")
    return "\n".join(lines)


async def generate_quarterly_report(
    llm: LLMClient, acc: QuarterlyAccumulator, extra: dict[str, Any] | None = None,
) -> str:
    result = await llm.generate(REPORT_PROMPT, _report_dossier(acc, extra or {}), max_tokens=2048)
    report = result.text.strip()
    if not report:
        raise LLMCallError("LLM returned an empty report", retryable=False)
    return report
