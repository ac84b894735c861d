"""Shared fixtures: in-memory database, settings and a scripted text generator."""
from __future__ import annotations

import json
from typing import Any, Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from boardroom import engine as engine_module
from boardroom import repositories
from boardroom.accumulators import PortfolioHealthSnapshot, SetupBoardMember, SetupProblem
from boardroom.analysis import default_resetup_triggers
from boardroom.config import Settings
from boardroom.enums import CORE_ROLES, GROWTH_ROLES, Direction
from boardroom.llm import GenerationResult, LLMCallError, parse_json_response
from boardroom.models import Base
from boardroom.services import build_controllers
from boardroom.utils import utcnow


class ScriptedLLM:
    """Stands in for ``LLMClient``; answers keyed by system prompt.

    A scripted value may be a string (returned as text), a dict (returned as
    JSON), an exception (raised) or a callable taking the user message.  An
    unscripted prompt fails like an unavailable provider.
    """

    def __init__(self, responses: dict[str, Any] | None = None):
        self.responses = dict(responses or {})
        self.calls: list[tuple[str, str]] = []

    def calls_for(self, system: str) -> list[str]:
        return [user for s, user in self.calls if s == system]

    async def generate(self, system: str, user: str, max_tokens: int = 2048, *, json_mode: bool = False):
        self.calls.append((system, user))
        if system not in self.responses:
            raise LLMCallError("no scripted response", retryable=False)
        value = self.responses[system]
        if callable(value) and not isinstance(value, type):
            value = value(user)
        if isinstance(value, Exception):
            raise value
        text = value if isinstance(value, str) else json.dumps(value)
        return GenerationResult(text=text, tokens_used=len(text.split()), model="scripted")

    async def call(self, system: str, user: str, max_tokens: int = 2048) -> dict[str, Any]:
        result = await self.generate(system, user, max_tokens, json_mode=True)
        return parse_json_response(result.text)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_db():
    """In-memory SQLite shared across connections via StaticPool."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return engine, TestSession


@pytest.fixture()
def session_factory(test_db):
    return test_db[1]


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def settings(tmp_path) -> Settings:
    return Settings(home=tmp_path, database_path=tmp_path / "boardroom.db", llm_backoff_seconds=0)


@pytest.fixture(autouse=True)
def _clear_session_locks():
    engine_module._session_locks.clear()
    yield
    engine_module._session_locks.clear()


@pytest.fixture()
def make_flows(session_factory, settings) -> Callable[..., dict]:
    """Build the three controllers around an optional scripted LLM."""
    def factory(llm: ScriptedLLM | None = None) -> dict:
        return build_controllers(session_factory, llm, settings)
    return factory


@pytest.fixture()
def scripted() -> type[ScriptedLLM]:
    return ScriptedLLM


# ---------------------------------------------------------------------------
# Published portfolio
# ---------------------------------------------------------------------------


def sample_problems(appreciating: bool = True) -> list[SetupProblem]:
    first = Direction.APPRECIATING if appreciating else Direction.STABLE
    base = dict(
        what_breaks="Releases slip and customers churn",
        scarcity_signals=("Only two people can do it", "Recruiters ask about it weekly"),
        ai_cheaper="Copilots draft it but cannot own it",
        error_cost="A bad call costs a quarter of revenue",
        trust_required="Needs the CFO's confidence",
        direction_rationale="Judgment-heavy work that tools amplify",
    )
    return [
        SetupProblem(name="Platform strategy", direction=first, time_allocation_percent=40, **base),
        SetupProblem(name="Status reporting", direction=Direction.DEPRECIATING, time_allocation_percent=30, **base),
        SetupProblem(name="Hiring loop", direction=Direction.STABLE, time_allocation_percent=30, **base),
    ]


def publish_portfolio(session_factory, *, appreciating: bool = True, growth: bool = True) -> None:
    """Write problems, board, triggers and health the way a finished setup would."""
    problems = sample_problems(appreciating)
    with session_factory() as db:
        rows = repositories.replace_problems(db, problems)
        members = [
            SetupBoardMember(
                role_type=role, anchored_problem_index=i % len(problems),
                anchored_demand=f"Show me proof on problem {i % len(problems)}", persona_name=f"Core {i}",
            )
            for i, role in enumerate(CORE_ROLES)
        ]
        if growth:
            members += [
                SetupBoardMember(
                    role_type=role, is_growth=True, anchored_problem_index=0,
                    anchored_demand="Protect the edge", persona_name=f"Growth {i}",
                )
                for i, role in enumerate(GROWTH_ROLES)
            ]
        repositories.replace_board(db, members, rows)
        repositories.replace_triggers(db, default_resetup_triggers(utcnow()))
        repositories.upsert_health(db, PortfolioHealthSnapshot(
            appreciating_percent=30, depreciating_percent=40, stable_percent=30,
        ))
        db.commit()


@pytest.fixture()
def published(session_factory):
    publish_portfolio(session_factory)
    return session_factory


@pytest.fixture()
def publish(session_factory) -> Callable[..., None]:
    return lambda **kwargs: publish_portfolio(session_factory, **kwargs)


@pytest.fixture()
def problems() -> list[SetupProblem]:
    return sample_problems()
