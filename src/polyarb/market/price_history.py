"""Rolling per-token price history for mean-reversion detection.

Each token keeps at most MAX_HISTORY_SIZE samples inside a HISTORY_WINDOW_SECS
sliding window. Stale samples are purged whenever a new one is recorded, and
tokens that stop receiving samples are forgotten once per window.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

MAX_HISTORY_SIZE = 60
HISTORY_WINDOW_SECS = 30 * 60
MIN_SAMPLES_FOR_ZSCORE = 10
MIN_SAMPLES_FOR_TREND = 5
MIN_STD_DEV = 0.001
TREND_DEADBAND = 0.02


@dataclass
class PriceSample:
    price: float
    timestamp: float


@dataclass
class PriceStats:
    """Summary over the current window. All None (count 0) when empty."""

    count: int = 0
    mean: Optional[float] = None
    min: Optional[float] = None
    max: Optional[float] = None
    std_dev: Optional[float] = None


def _mean_std(prices: list[float]) -> tuple[float, float]:
    """Mean and population standard deviation."""
    mean = sum(prices) / len(prices)
    variance = sum((p - mean) ** 2 for p in prices) / len(prices)
    return mean, math.sqrt(variance)


class PriceHistory:
    """Per-token rolling window of (price, timestamp) samples.

    Args:
        max_size: Samples kept per token (most recent win).
        window_secs: Sliding window length in seconds.
        clock: Time source returning epoch seconds.
    """

    def __init__(
        self,
        max_size: int = MAX_HISTORY_SIZE,
        window_secs: float = HISTORY_WINDOW_SECS,
        clock: Callable[[], float] = time.time,
    ):
        self.max_size = max_size
        self.window_secs = window_secs
        self._clock = clock
        self._history: dict[str, list[PriceSample]] = {}
        self._last_sweep = clock()

    def record(self, token_id: str, price: float) -> None:
        """Append a sample, then purge expired samples and cap the size.

        Identical samples are not de-duplicated.
        """
        samples = self._history.setdefault(token_id, [])
        samples.append(PriceSample(price=price, timestamp=self._clock()))
        self._clean_old_records(token_id)
        self._sweep_stale_tokens()

    def get_history(self, token_id: str) -> list[PriceSample]:
        return list(self._history.get(token_id, []))

    def z_score(self, token_id: str, price: float) -> Optional[float]:
        """Standard deviations between ``price`` and the window mean.

        Returns None with fewer than 10 samples, and 0.0 for a near-constant
        series (stdDev < 0.001).
        """
        samples = self._history.get(token_id)
        if not samples or len(samples) < MIN_SAMPLES_FOR_ZSCORE:
            return None

        mean, std_dev = _mean_std([s.price for s in samples])
        if std_dev < MIN_STD_DEV:
            return 0.0
        return (price - mean) / std_dev

    def is_significant_deviation(
        self, token_id: str, price: float, threshold: float = 2.0,
    ) -> bool:
        z = self.z_score(token_id, price)
        if z is None:
            return False
        return abs(z) >= threshold

    def mean(self, token_id: str) -> Optional[float]:
        samples = self._history.get(token_id)
        if not samples:
            return None
        return sum(s.price for s in samples) / len(samples)

    def trend(self, token_id: str) -> int:
        """+1 rising, -1 falling, 0 flat (or fewer than 5 samples).

        Compares the mean of the first two against the last two of the five
        most recent samples.
        """
        samples = self._history.get(token_id)
        if not samples or len(samples) < MIN_SAMPLES_FOR_TREND:
            return 0

        recent = [s.price for s in samples[-MIN_SAMPLES_FOR_TREND:]]
        first_half = sum(recent[:2]) / 2
        second_half = sum(recent[-2:]) / 2
        diff = second_half - first_half

        if diff > TREND_DEADBAND:
            return 1
        if diff < -TREND_DEADBAND:
            return -1
        return 0

    def stats(self, token_id: str) -> PriceStats:
        samples = self._history.get(token_id)
        if not samples:
            return PriceStats()

        prices = [s.price for s in samples]
        mean, std_dev = _mean_std(prices)
        return PriceStats(
            count=len(prices),
            mean=mean,
            min=min(prices),
            max=max(prices),
            std_dev=std_dev,
        )

    def _clean_old_records(self, token_id: str) -> None:
        cutoff = self._clock() - self.window_secs
        samples = [s for s in self._history.get(token_id, []) if s.timestamp > cutoff]
        self._history[token_id] = samples[-self.max_size:]

    def _sweep_stale_tokens(self) -> None:
        """Forget tokens with no sample inside the window (once per window)."""
        now = self._clock()
        if now - self._last_sweep < self.window_secs:
            return
        cutoff = now - self.window_secs
        self._history = {
            token_id: samples for token_id, samples in self._history.items()
            if samples and samples[-1].timestamp > cutoff
        }
        self._last_sweep = now
