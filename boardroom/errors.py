"""Error taxonomy for the governance engine.

Collaborator failures live in :mod:`boardroom.llm` (``LLMCallError``).  Everything
raised by a flow controller derives from :class:`GovernanceError`, which the HTTP
surface maps to a status code and the MCP surface to an ``{"error": ...}`` dict.
"""
from __future__ import annotations


class GovernanceError(Exception):
    """Base class for errors surfaced by a flow controller."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GovernanceError):
    """Local, non-retryable rejection; the session is left untouched."""

    status_code = 422


class SessionNotFoundError(GovernanceError):
    status_code = 404

    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class SessionClosedError(GovernanceError):
    """The session is finalized or abandoned and accepts no further steps."""

    status_code = 409


class SessionBusyError(GovernanceError):
    """Another step for the same session is still outstanding."""

    status_code = 409

    def __init__(self, session_id: int):
        super().__init__(f"Session {session_id} is busy with another step")
        self.session_id = session_id


class CollaboratorError(GovernanceError):
    """A text-generation call failed and the step has no fallback."""

    status_code = 502

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable
