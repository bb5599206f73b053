from __future__ import annotations

import functools
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Optional, Tuple, Type, TypeVar

from .error_codes import CorrelationTimeout, error_code_for
from .logging_utils import _sync_event

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_DELAY_SECONDS = 2.0


def with_retry(
    step: Callable[[], T],
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``step`` up to ``max_attempts`` times with a fixed delay between tries.

    The first successful result is returned. Exceptions outside ``retry_on``
    propagate immediately; once attempts are exhausted the final attempt's
    exception is re-raised as-is.
    """

    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return step()
        except retry_on as exc:
            will_retry = attempt < attempts
            _sync_event(
                "retry",
                step=label,
                attempt=attempt,
                max_attempts=attempts,
                error_code=error_code_for(exc),
                error=str(exc),
                will_retry=will_retry,
                delay_seconds=delay_seconds if will_retry else None,
            )
            if not will_retry:
                raise
            if delay_seconds > 0:
                sleep(delay_seconds)

    raise RuntimeError("with_retry exhausted without returning a result")


def retrying(
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator form of :func:`with_retry`."""

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return with_retry(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                delay_seconds=delay_seconds,
                retry_on=retry_on,
                label=label or func.__name__,
                sleep=sleep,
            )

        return wrapper

    return decorator


class StepPolicy(str, Enum):
    REQUIRED = "required"
    DEGRADE = "degrade"


@dataclass(frozen=True)
class StepOutcome(Generic[T]):
    """Result of a policy-governed step.

    ``degraded`` is set when a ``DEGRADE`` step gave up and ``value`` holds the
    caller's default; ``error`` is the exception that caused it.
    """

    value: T
    degraded: bool = False
    error: Optional[BaseException] = None


def run_step(
    step: Callable[[], T],
    *,
    policy: StepPolicy,
    default: T,
    degrade_on: Tuple[Type[BaseException], ...] = (CorrelationTimeout,),
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    delay_seconds: float = DEFAULT_DELAY_SECONDS,
    label: Optional[str] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> StepOutcome[T]:
    """Run ``step`` under ``policy``.

    Only ``degrade_on`` errors are retried. For ``REQUIRED`` steps the final
    error propagates; for ``DEGRADE`` steps it is folded into a degraded
    :class:`StepOutcome` carrying ``default``. Other exceptions always
    propagate.
    """

    try:
        value = with_retry(
            step,
            max_attempts=max_attempts,
            delay_seconds=delay_seconds,
            retry_on=degrade_on,
            label=label,
            sleep=sleep,
        )
    except degrade_on as exc:
        if policy is not StepPolicy.DEGRADE:
            raise
        _sync_event(
            "degrade",
            step=label,
            error_code=error_code_for(exc),
            error=str(exc),
        )
        return StepOutcome(value=default, degraded=True, error=exc)
    return StepOutcome(value=value)


__all__ = [
    "with_retry",
    "retrying",
    "StepPolicy",
    "StepOutcome",
    "run_step",
    "DEFAULT_MAX_ATTEMPTS",
    "DEFAULT_DELAY_SECONDS",
]
