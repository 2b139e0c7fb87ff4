from __future__ import annotations

from pydantic import BaseModel, Field

from .config import ScheduleParameters
from .results import Results


class Comparison(BaseModel):
    """Differences between the model and the simulator for the same parameters."""

    relative_error_avg: float = Field(..., ge=0.0)
    max_absolute_error_cdf: float = Field(..., ge=0.0)

    @staticmethod
    def _relative(a: float, b: float) -> float:
        if b == 0:
            return 0.0 if a == 0 else float("inf")
        return abs(a - b) / b

    @classmethod
    def from_results(cls, model: Results, simulator: Results) -> "Comparison":
        max_abs = 0.0
        k = 1
        while model.cdf(k) < 1.0 or simulator.cdf(k) < 1.0:
            max_abs = max(max_abs, abs(model.cdf(k) - simulator.cdf(k)))
            k += 1
        return cls(
            relative_error_avg=cls._relative(model.average_time_s, simulator.average_time_s),
            max_absolute_error_cdf=max_abs,
        )

    def exceeds(self, max_allowed_error: float) -> bool:
        return self.relative_error_avg > max_allowed_error or self.max_absolute_error_cdf > max_allowed_error


class ParameterSummary(BaseModel):
    num_channels: int
    channels: list[int]
    slots_per_frame: int
    beacon_send_probability: float
    average_reception_probability: float
    reception_probability: dict[int, float]
    scan_duration_ns: int
    switch_delay_ns: int
    beacon_duration_ns: int
    scan_ratio: float
    scan_case: int = Field(..., ge=1, le=3)

    @classmethod
    def from_parameters(cls, parameters: ScheduleParameters, scan_case: int) -> "ParameterSummary":
        return cls(
            num_channels=parameters.num_channels,
            channels=list(parameters.channels),
            slots_per_frame=parameters.slots_per_frame,
            beacon_send_probability=parameters.beacon_send_probability,
            average_reception_probability=parameters.average_reception_probability,
            reception_probability=dict(sorted(parameters.reception_probability.items())),
            scan_duration_ns=parameters.scan_duration_ns,
            switch_delay_ns=parameters.switch_delay_ns,
            beacon_duration_ns=parameters.beacon_duration_ns,
            scan_ratio=parameters.scan_ratio,
            scan_case=scan_case,
        )


class EngineSummary(BaseModel):
    average_time_s: float = Field(..., ge=0.0)
    max_step: int = Field(..., ge=0)
    cdf: list[float] = Field(default_factory=list)

    @classmethod
    def from_results(cls, results: Results) -> "EngineSummary":
        return cls(average_time_s=results.average_time_s, max_step=results.max_step, cdf=list(results.cdf_values))


class EstimateReport(BaseModel):
    generated_at: str
    num_runs: int = Field(..., ge=1)
    parameters: ParameterSummary
    simulator: EngineSummary
    model: EngineSummary
    comparison: Comparison
    notes: list[str] = Field(default_factory=list)
