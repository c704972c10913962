"""Uniform success/error wrapper returned by every collaborator call.

Nothing above this layer trusts thrown exceptions: backends return a
ResultEnvelope, and ``guarded_call`` converts anything a backend raises
into a transient failure envelope so poll loops never die.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

# Literal error value backends use for an expired credential.
TOKEN_EXPIRED = "Token expirado"


class ErrorKind(str, Enum):
    """Failure categories the engine branches on."""

    TRANSIENT = "transient"
    AUTH_EXPIRED = "auth_expired"
    INVALID_INPUT = "invalid_input"


@dataclass(frozen=True)
class ResultEnvelope:
    """Result of a collaborator or engine operation.

    Attributes:
        success: Whether the operation succeeded.
        data: Payload on success (shape depends on the operation).
        error: Human-readable error on failure.
        kind: Failure category, None on success.
        from_cache: True when served from the local cache.
        previously_failed: True when short-circuited by the failure set.
    """

    success: bool
    data: Any = None
    error: str | None = None
    kind: ErrorKind | None = None
    from_cache: bool = False
    previously_failed: bool = False

    @property
    def auth_expired(self) -> bool:
        """True when this failure is the expired-credential sentinel."""
        return not self.success and (
            self.kind == ErrorKind.AUTH_EXPIRED or self.error == TOKEN_EXPIRED
        )

    @classmethod
    def ok(cls, data: Any = None, *, from_cache: bool = False) -> "ResultEnvelope":
        """Build a success envelope."""
        return cls(success=True, data=data, from_cache=from_cache)

    @classmethod
    def fail(
        cls,
        error: str,
        kind: ErrorKind | None = None,
        **flags: Any,
    ) -> "ResultEnvelope":
        """Build a failure envelope.

        The kind is inferred from the sentinel when not given, so a backend
        that only returns ``"Token expirado"`` is still classified correctly.
        """
        if kind is None:
            kind = ErrorKind.AUTH_EXPIRED if error == TOKEN_EXPIRED else ErrorKind.TRANSIENT
        return cls(success=False, error=error, kind=kind, **flags)

    @classmethod
    def invalid(cls, error: str) -> "ResultEnvelope":
        """Build an invalid-input failure (rejected before any network call)."""
        return cls(success=False, error=error, kind=ErrorKind.INVALID_INPUT)

    @classmethod
    def coerce(cls, value: Any) -> "ResultEnvelope":
        """Normalize a backend return value into a ResultEnvelope.

        Accepts an envelope as-is, or a ``{"success", "data"|"error"}`` dict
        as produced by thin request wrappers.

        Args:
            value: Whatever the collaborator returned.

        Returns:
            A ResultEnvelope. Unrecognized shapes become transient failures.
        """
        if isinstance(value, ResultEnvelope):
            return value
        if isinstance(value, dict) and "success" in value:
            if value["success"]:
                return cls.ok(value.get("data"))
            return cls.fail(str(value.get("error") or "Error desconocido"))
        return cls.fail(f"Unexpected collaborator result: {type(value).__name__}")


@dataclass
class CallStats:
    """Counters for guarded collaborator calls, surfaced in debug_info."""

    calls: int = 0
    failures: int = 0
    exceptions: int = 0
    by_operation: dict[str, int] = field(default_factory=dict)

    def record(self, operation: str, envelope: ResultEnvelope, raised: bool) -> None:
        self.calls += 1
        self.by_operation[operation] = self.by_operation.get(operation, 0) + 1
        if not envelope.success:
            self.failures += 1
        if raised:
            self.exceptions += 1


async def guarded_call(
    operation: str,
    fn: Callable[..., Awaitable[Any]],
    *args: Any,
    stats: CallStats | None = None,
) -> ResultEnvelope:
    """Await a collaborator and never let it raise.

    Args:
        operation: Name used in logs and stats (e.g. "fetch_conversation").
        fn: Async collaborator callable.
        *args: Positional arguments for the collaborator.
        stats: Optional counters to update.

    Returns:
        The collaborator's envelope, or a transient failure if it raised.
    """
    raised = False
    try:
        envelope = ResultEnvelope.coerce(await fn(*args))
    except Exception as e:
        logger.exception("Collaborator %s raised", operation)
        envelope = ResultEnvelope.fail(str(e) or type(e).__name__, ErrorKind.TRANSIENT)
        raised = True
    if stats is not None:
        stats.record(operation, envelope, raised)
    return envelope
