"""Retry policy evaluation for endpoint invocations."""

from __future__ import annotations

import random
from dataclasses import dataclass

from .types import BackoffKind, ErrorKind, RetryPolicy

# Failure kinds that are transient regardless of the configured status codes
TRANSIENT_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.CONNECTION_ERROR})


@dataclass(frozen=True)
class AttemptOutcome:
    """What happened on a single failed attempt."""

    error_kind: ErrorKind
    status_code: int | None = None
    message: str | None = None


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_ms: int = 0


class RetryPolicyEvaluator:
    """
    Decides whether a failed attempt should be retried and after which delay.

    `attempt` is the 1-based number of the attempt that just failed.
    """

    def __init__(self, policy: RetryPolicy, rng: random.Random | None = None) -> None:
        self._policy = policy
        self._rng = rng or random.Random()

    def decide(self, attempt: int, outcome: AttemptOutcome) -> RetryDecision:
        if attempt >= self._policy.max_attempts:
            return RetryDecision(retry=False)
        if not self.is_transient(outcome):
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, delay_ms=self.delay_for(attempt))

    def is_transient(self, outcome: AttemptOutcome) -> bool:
        if outcome.status_code is not None:
            return outcome.status_code in self._policy.retry_on_status_codes
        return outcome.error_kind in TRANSIENT_KINDS

    def delay_for(self, attempt: int) -> int:
        policy = self._policy
        if policy.backoff == BackoffKind.FIXED:
            delay = policy.initial_delay_ms
        else:
            delay = policy.initial_delay_ms * 2 ** (attempt - 1)
        delay = min(delay, policy.max_delay_ms)
        if policy.jitter:
            delay = int(self._rng.uniform(delay / 2, delay))
        return delay
