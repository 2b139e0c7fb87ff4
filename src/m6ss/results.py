from __future__ import annotations

from typing import Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import InvalidQueryError


class Results(BaseModel):
    """Average synchronization time and the cdf of the number of steps X until synchronization.

    A step has the length of a slotframe; ``cdf_values[k - 1]`` holds P(X <= k).
    """

    model_config = ConfigDict(frozen=True)

    average_time_s: float = Field(..., ge=0.0)
    cdf_values: tuple[float, ...] = ()

    @field_validator("cdf_values")
    @classmethod
    def _validate_cdf_values(cls, v: tuple[float, ...]) -> tuple[float, ...]:
        previous = 0.0
        for step, p in enumerate(v, start=1):
            if not 0.0 <= p <= 1.0:
                raise ValueError(f"cdf value out of range at step {step}: {p}")
            if p < previous:
                raise ValueError(f"cdf must be non-decreasing (step {step}: {p} < {previous})")
            previous = p
        return v

    @property
    def max_step(self) -> int:
        return len(self.cdf_values)

    def cdf(self, steps: int) -> float:
        """Return P(X <= steps); 1 beyond the last recorded step."""
        if steps < 1:
            raise InvalidQueryError(f"steps must be greater than zero (got {steps})")
        if steps > len(self.cdf_values):
            return 1.0
        return self.cdf_values[steps - 1]

    @classmethod
    def from_step_probabilities(cls, average_time_s: float, probabilities: Iterable[float]) -> "Results":
        """Build results from P(X = k) for k = 1, 2, ..."""
        values = []
        total = 0.0
        for p in probabilities:
            total += p
            values.append(min(max(total, 0.0), 1.0))
        return cls(average_time_s=average_time_s, cdf_values=tuple(values))

    @classmethod
    def from_step_counts(cls, average_time_s: float, counts: Mapping[int, int], num_runs: int) -> "Results":
        """Build results from the number of runs that synchronized at each step."""
        values = []
        synchronized = 0
        for k in range(1, max(counts, default=0) + 1):
            synchronized += counts.get(k, 0)
            values.append(min(synchronized / num_runs, 1.0))
        return cls(average_time_s=average_time_s, cdf_values=tuple(values))
