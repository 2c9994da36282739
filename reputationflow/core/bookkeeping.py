"""Best-effort side effects that must never fail the surrounding request."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

from .logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class BestEffortResult(Generic[T]):
    step: str
    ok: bool
    value: T | None = None
    error: str | None = None


def run_best_effort(step: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> BestEffortResult[T]:
    """Run ``func`` and capture any exception as a logged, unpropagated result."""
    try:
        value = func(*args, **kwargs)
    except Exception as exc:
        logger.warning("bookkeeping_failed", step=step, error=str(exc), error_type=type(exc).__name__)
        return BestEffortResult(step=step, ok=False, error=str(exc))
    return BestEffortResult(step=step, ok=True, value=value)


__all__ = ["BestEffortResult", "run_best_effort"]
