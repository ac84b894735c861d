"""Vagueness Gate: decides whether a free-text answer needs a concrete example.

Checks run in strict priority order and stop at the first verdict:

1. ``none`` / ``n/a`` is an explicit, acceptable answer.
2. Fewer than three tokens is always vague.
3. Concrete indicators (dates, relative dates, proper nouns, metrics, specific
   completion/contact verbs with an object) mean not vague.
4. Vague lexicon without any concrete indicator means vague.
5. Otherwise the text-generation collaborator decides.  Any failure there fails
   open: the answer is accepted so a provider outage never blocks the user.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from boardroom.llm import LLMCallError, LLMClient, parse_json_response

log = logging.getLogger(__name__)

CLARIFY_PROMPT = "Give one concrete example (who/what/when/result)."

VAGUENESS_SYSTEM_PROMPT = """\
You are an expert at detecting vague answers in career coaching conversations.

Decide whether the answer is VAGUE or CONCRETE.

An answer is VAGUE only if it lacks a named instance (project, meeting, decision,
deliverable or person), relies on generic qualifiers ("stuff", "things", "helped",
"various", "worked on"), and has no timeline, stakeholder or observable outcome.

An answer is CONCRETE if it includes any specific project, meeting or deliverable,
a named person, team or organization, a date or time reference, a measurable
outcome, or a specific decision that was made.

Err on the side of CONCRETE when uncertain.

Return ONLY a JSON object:
{"isVague": true|false, "reason": "<brief explanation>", "missingElements": ["..."]}"""

TOO_BRIEF_REASON = "Answer is too brief to contain concrete details"
TOO_BRIEF_MISSING = ("specific example", "named instance", "observable outcome")
VAGUE_LANGUAGE_REASON = "Uses vague language without concrete specifics"
VAGUE_LANGUAGE_MISSING = (
    "specific project or deliverable",
    "named person or team",
    "timeline or date",
    "measurable outcome",
)

_EXPLICIT_NONE = {"none", "n/a"}

_CONCRETE_PATTERNS = [
    re.compile(r"\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b"),
    re.compile(r"\b(january|february|march|april|may|june|july|august|september|october|november|december)\b"),
    re.compile(r"\b(last|this|next)\s+(week|month|quarter|year)\b"),
    re.compile(r"\b\d{1,2}[/\-]\d{1,2}\b"),
    re.compile(r"\b(q[1-4]|h[12])\b"),
    re.compile(r"\b(yesterday|today|tomorrow)\b"),
    re.compile(r"\d+%|\$\d+|\b\d+\s*(people|users|customers|hours|days|meetings)\b"),
    re.compile(r"\b(completed|delivered|shipped|launched|presented|submitted)\s+\w+"),
    re.compile(r"\b(met with|talked to|emailed|called|messaged)\s+\w+"),
    re.compile(r"\bthe\s+\w+\s+(project|team|meeting|report|document|proposal|presentation)\b"),
]

_VAGUE_LEXICON = re.compile(
    r"\b(stuff|things|various|several|some|a lot|many|lots of|kind of|sort of|basically"
    r"|essentially|generally|usually|sometimes|often|pretty much|more or less|helped"
    r"|improved|worked on|dealt with|handled|took care of|etc|and so on|and stuff)\b"
)

# First-person pronoun forms are capitalized but name nothing.
_PRONOUN_I = {"i", "i'm", "i've", "i'll", "i'd"}


@dataclass
class VaguenessResult:
    is_vague: bool
    reason: str
    missing_elements: list[str] = field(default_factory=list)
    method: str = "heuristic"
    provider_failed: bool = False


def is_explicit_none(answer: str) -> bool:
    return answer.strip().lower() in _EXPLICIT_NONE


def token_count(answer: str) -> int:
    return len(answer.split())


def has_proper_noun(answer: str) -> bool:
    """A capitalized token that does not follow a sentence boundary."""
    words = answer.split()
    for prev, word in zip(words, words[1:]):
        word = word.lstrip("\"'(")
        if not word or not word[0].isalpha() or not word[0].isupper():
            continue
        if prev.endswith((".", "?", "!")):
            continue
        if word.rstrip(".,;:!?\"')").lower() in _PRONOUN_I:
            continue
        return True
    return False


def has_concrete_indicators(answer: str) -> bool:
    lower = answer.lower()
    if any(p.search(lower) for p in _CONCRETE_PATTERNS):
        return True
    return has_proper_noun(answer)


def has_vague_indicators(answer: str) -> bool:
    return _VAGUE_LEXICON.search(answer.lower()) is not None


def heuristic_verdict(answer: str) -> VaguenessResult | None:
    """Steps 1-4 of the gate; ``None`` when only the model can decide."""
    if is_explicit_none(answer):
        return VaguenessResult(False, "Explicitly stated none/n/a", method="trivial")
    if token_count(answer) < 3:
        return VaguenessResult(True, TOO_BRIEF_REASON, list(TOO_BRIEF_MISSING), method="trivial")
    if has_concrete_indicators(answer):
        return VaguenessResult(False, "Contains concrete indicators")
    if has_vague_indicators(answer):
        return VaguenessResult(True, VAGUE_LANGUAGE_REASON, list(VAGUE_LANGUAGE_MISSING))
    return None


def build_user_prompt(question: str, answer: str) -> str:
    return (
        f'Question asked: "{question}"\n\n'
        f'User\'s answer: "{answer}"\n\n'
        "Analyze if this answer is VAGUE or CONCRETE based on the criteria. Return only JSON."
    )


class VaguenessGate:
    """Classifies answers; shared by every flow and the board loop."""

    def __init__(self, llm: LLMClient | None = None, max_tokens: int = 512):
        self.llm = llm
        self.max_tokens = max_tokens

    async def classify(self, question: str, answer: str, use_model: bool = True) -> VaguenessResult:
        verdict = heuristic_verdict(answer)
        if verdict is not None:
            return verdict
        if self.llm is None or not use_model:
            return VaguenessResult(
                False, "Could not verify (text generation unavailable)",
                method="fallback", provider_failed=self.llm is None,
            )
        try:
            result = await self.llm.generate(
                VAGUENESS_SYSTEM_PROMPT, build_user_prompt(question, answer), self.max_tokens,
            )
            data = parse_json_response(result.text)
        except LLMCallError as exc:
            log.warning("Vagueness check failed open: %s", exc)
            return VaguenessResult(
                False, f"Could not verify (AI error: {exc})",
                method="fallback", provider_failed=True,
            )
        missing = data.get("missingElements") or []
        return VaguenessResult(
            is_vague=bool(data.get("isVague", False)),
            reason=str(data.get("reason") or ""),
            missing_elements=[str(m) for m in missing] if isinstance(missing, list) else [],
            method="model",
        )
