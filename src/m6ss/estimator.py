from __future__ import annotations

import logging
from datetime import datetime, timezone

import numpy as np

from . import model, simulator
from .config import ScheduleParameters
from .report import Comparison, EngineSummary, EstimateReport, ParameterSummary


logger = logging.getLogger(__name__)


def estimate(
    parameters: ScheduleParameters,
    num_runs: int,
    rng: np.random.Generator | None = None,
) -> EstimateReport:
    """Run the simulator and the model on the same parameters and compare them."""
    case = model.scan_case(parameters)
    notes: list[str] = []
    if parameters.switch_delay_ns:
        notes.append("The model ignores the channel switch delay; only the simulator accounts for it.")

    logger.info("simulating %d synchronization attempts", num_runs)
    sim_results = simulator.run(parameters, num_runs, rng)
    logger.info("calculating the model (case %d)", case)
    model_results = model.calculate(parameters)

    return EstimateReport(
        generated_at=datetime.now(timezone.utc).isoformat(),
        num_runs=num_runs,
        parameters=ParameterSummary.from_parameters(parameters, case),
        simulator=EngineSummary.from_results(sim_results),
        model=EngineSummary.from_results(model_results),
        comparison=Comparison.from_results(model_results, sim_results),
        notes=notes,
    )
