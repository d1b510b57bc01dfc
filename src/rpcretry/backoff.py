"""Jittered exponential backoff between attempts."""

from __future__ import annotations

import random

from rpcretry.errors import ConfigurationError, StatusCode

DEFAULT_INITIAL_DELAY_SECONDS = 0.01
DEFAULT_MAXIMUM_DELAY_SECONDS = 300.0
DEFAULT_MULTIPLIER = 2.0
DEFAULT_JITTER = 0.5


def _invalid(message: str, hint: str) -> ConfigurationError:
    return ConfigurationError(message, code=StatusCode.INVALID_ARGUMENT, hint=hint)


class ExponentialBackoffPolicy:
    """Exponential backoff with a bounded random window around each delay.

    Attempts are numbered from 0: the first retry waits roughly
    ``initial_delay``, the next ``initial_delay * multiplier`` and so on, up to
    ``maximum_delay``. Each delay is drawn uniformly from
    ``[nominal * (1 - jitter), nominal * (1 + jitter)]`` and clamped to
    ``[0, maximum_delay]``.
    """

    def __init__(
        self,
        initial_delay: float = DEFAULT_INITIAL_DELAY_SECONDS,
        maximum_delay: float = DEFAULT_MAXIMUM_DELAY_SECONDS,
        *,
        multiplier: float = DEFAULT_MULTIPLIER,
        jitter: float = DEFAULT_JITTER,
        rng: random.Random | None = None,
    ) -> None:
        if initial_delay < 0 or maximum_delay < 0:
            raise _invalid(
                f"Invalid backoff delays: initial={initial_delay} maximum={maximum_delay}",
                "Use non-negative delays.",
            )
        if initial_delay > maximum_delay:
            raise _invalid(
                f"Initial backoff delay {initial_delay} exceeds maximum {maximum_delay}",
                "Lower the initial delay or raise the maximum delay.",
            )
        if multiplier < 1.0:
            raise _invalid(
                f"Invalid backoff multiplier: {multiplier}",
                "Use a multiplier of at least 1.0.",
            )
        if not 0.0 <= jitter <= 1.0:
            raise _invalid(f"Invalid backoff jitter: {jitter}", "Use a value between 0 and 1.")
        self.initial_delay = float(initial_delay)
        self.maximum_delay = float(maximum_delay)
        self.multiplier = float(multiplier)
        self.jitter = float(jitter)
        self._rng = rng or random.Random()
        self._attempt = 0

    @property
    def attempt(self) -> int:
        return self._attempt

    def clone(self) -> ExponentialBackoffPolicy:
        """Fresh counter and a private random stream seeded from this policy's."""
        return ExponentialBackoffPolicy(
            self.initial_delay,
            self.maximum_delay,
            multiplier=self.multiplier,
            jitter=self.jitter,
            rng=random.Random(self._rng.getrandbits(64)),
        )

    def nominal_delay(self, attempt: int) -> float:
        if self.initial_delay == 0.0:
            return 0.0
        if attempt <= 0:
            return min(self.maximum_delay, self.initial_delay)
        try:
            grown = self.initial_delay * (self.multiplier**attempt)
        except OverflowError:
            return self.maximum_delay
        return min(self.maximum_delay, grown)

    def next_delay(self, attempt: int | None = None) -> float:
        """Return the delay before the next attempt, in seconds.

        Without ``attempt`` the policy's own counter is used and advanced.
        """
        if attempt is None:
            attempt = self._attempt
            self._attempt += 1
        nominal = self.nominal_delay(attempt)
        if self.jitter == 0.0 or nominal == 0.0:
            return nominal
        low = nominal * (1.0 - self.jitter)
        high = nominal * (1.0 + self.jitter)
        delay = self._rng.uniform(low, high)
        return max(0.0, min(self.maximum_delay, delay))

    def __repr__(self) -> str:
        return (
            f"ExponentialBackoffPolicy(initial_delay={self.initial_delay}, "
            f"maximum_delay={self.maximum_delay}, multiplier={self.multiplier}, "
            f"jitter={self.jitter})"
        )
