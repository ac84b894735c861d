"""Small value types shared by every flow: directions, evidence, bets, board roles."""
from __future__ import annotations

from enum import StrEnum


class FlowKind(StrEnum):
    QUICK = "quick"
    SETUP = "setup"
    QUARTERLY = "quarterly"

    @property
    def display_name(self) -> str:
        return {
            FlowKind.QUICK: "Quick Audit",
            FlowKind.SETUP: "Portfolio Setup",
            FlowKind.QUARTERLY: "Quarterly Review",
        }[self]


class Direction(StrEnum):
    """Whether a problem the user is paid to solve is gaining or losing value."""

    APPRECIATING = "appreciating"
    DEPRECIATING = "depreciating"
    STABLE = "stable"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, value: str | None) -> Direction:
        """Lenient parse; anything unrecognised is ``stable``."""
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            return cls.STABLE


class EvidenceStrength(StrEnum):
    STRONG = "strong"
    MEDIUM = "medium"
    WEAK = "weak"
    NONE = "none"


class EvidenceKind(StrEnum):
    """Kinds of receipts that back up a claim."""

    DECISION = "decision"
    ARTIFACT = "artifact"
    CALENDAR = "calendar"
    PROXY = "proxy"
    NONE = "none"

    @property
    def default_strength(self) -> EvidenceStrength:
        return _DEFAULT_STRENGTH[self]


_DEFAULT_STRENGTH = {
    EvidenceKind.DECISION: EvidenceStrength.STRONG,
    EvidenceKind.ARTIFACT: EvidenceStrength.STRONG,
    EvidenceKind.CALENDAR: EvidenceStrength.MEDIUM,
    EvidenceKind.PROXY: EvidenceStrength.MEDIUM,
    EvidenceKind.NONE: EvidenceStrength.NONE,
}


class BetStatus(StrEnum):
    OPEN = "open"
    CORRECT = "correct"
    WRONG = "wrong"
    EXPIRED = "expired"

    @property
    def is_evaluated(self) -> bool:
        return self in (BetStatus.CORRECT, BetStatus.WRONG)

    def can_transition_to(self, new: BetStatus) -> bool:
        # correct/wrong are final; nothing goes back to open
        return new is not BetStatus.OPEN and not self.is_evaluated


class BoardRoleType(StrEnum):
    ACCOUNTABILITY = "accountability"
    MARKET_REALITY = "market_reality"
    AVOIDANCE = "avoidance"
    LONG_TERM_POSITIONING = "long_term_positioning"
    DEVILS_ADVOCATE = "devils_advocate"
    PORTFOLIO_DEFENDER = "portfolio_defender"
    OPPORTUNITY_SCOUT = "opportunity_scout"

    @property
    def is_growth(self) -> bool:
        return self in GROWTH_ROLES

    @property
    def display_name(self) -> str:
        return _ROLE_INFO[self][0]

    @property
    def function(self) -> str:
        return _ROLE_INFO[self][1]

    @property
    def interaction_style(self) -> str:
        return _ROLE_INFO[self][2]

    @property
    def signature_question(self) -> str:
        return _ROLE_INFO[self][3]


# role -> (display name, function, interaction style, signature question)
_ROLE_INFO: dict[BoardRoleType, tuple[str, str, str, str]] = {
    BoardRoleType.ACCOUNTABILITY: (
        "Accountability", "Demands receipts for stated commitments",
        "Direct, evidence-focused", "Show me the proof.",
    ),
    BoardRoleType.MARKET_REALITY: (
        "Market Reality", "Challenges direction classifications",
        "Skeptical, data-driven", "Is this actually true?",
    ),
    BoardRoleType.AVOIDANCE: (
        "Avoidance", "Probes avoided decisions",
        "Persistent, uncomfortable", "Have you actually done this?",
    ),
    BoardRoleType.LONG_TERM_POSITIONING: (
        "Long-term Positioning", "Asks 5-year strategic questions",
        "Forward-looking, strategic", "What are you doing to own more of this?",
    ),
    BoardRoleType.DEVILS_ADVOCATE: (
        "Devil's Advocate", "Argues against the user's path",
        "Contrarian, challenging", "What if you're wrong about this?",
    ),
    BoardRoleType.PORTFOLIO_DEFENDER: (
        "Portfolio Defender", "Protects and compounds strengths",
        "Protective, growth-focused", "What would cause you to lose this edge?",
    ),
    BoardRoleType.OPPORTUNITY_SCOUT: (
        "Opportunity Scout", "Identifies adjacent opportunities",
        "Exploratory, curious", "What adjacent skill would 2x this value?",
    ),
}

# Roster order is fixed: the board always interrogates in this sequence.
CORE_ROLES: tuple[BoardRoleType, ...] = (
    BoardRoleType.ACCOUNTABILITY,
    BoardRoleType.MARKET_REALITY,
    BoardRoleType.AVOIDANCE,
    BoardRoleType.LONG_TERM_POSITIONING,
    BoardRoleType.DEVILS_ADVOCATE,
)
GROWTH_ROLES: tuple[BoardRoleType, ...] = (
    BoardRoleType.PORTFOLIO_DEFENDER,
    BoardRoleType.OPPORTUNITY_SCOUT,
)
ROLE_ORDER = {role: i for i, role in enumerate(CORE_ROLES + GROWTH_ROLES)}
