"""
Informal validation of the model against the simulator.

For a large number of random parameter sets per case of the model, the model
is compared with a large simulator sample. Each case is also compared with
the same parameters under the scan period found optimal by the analysis
(C slotframes). Every comparison is stored through a ``ValidationSession``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from math import gcd
from pathlib import Path

import numpy as np

from . import model, simulator
from .config import MAX_CHANNEL, MIN_CHANNEL, SLOT_DURATION_NS, ScheduleParameters, ValidationSettings
from .errors import InvalidQueryError
from .report import Comparison
from .results import Results


logger = logging.getLogger(__name__)


class ScanRegime(str, Enum):
    short = "short"
    integer = "integer"
    fractional = "fractional"


class ValidationOutcome(int, Enum):
    INVALID = -1
    VALID_NOT_OPTIMAL = 0
    VALID = 1


def compare(model_results: Results, sim_results: Results) -> Comparison:
    return Comparison.from_results(model_results, sim_results)


def sample_scan_ratio(rng: np.random.Generator, regime: ScanRegime) -> float:
    """Random ratio n of the scan period to the slotframe duration."""
    if regime == ScanRegime.short:
        return float(rng.uniform(0.1, 1.0))
    if regime == ScanRegime.integer:
        return float(rng.integers(1, 100, endpoint=True))
    # Half of the values are an integer plus a power of two fraction, so that some scan
    # periods end exactly on a slotframe boundary; such fractions are exact in binary.
    if rng.random() < 0.5:
        return float(rng.integers(1, 100, endpoint=True)) + 2.0 ** -int(rng.integers(1, 4, endpoint=True))
    return float(rng.uniform(1.0, 100.0))


def random_reception_probabilities(
    rng: np.random.Generator,
    channels: list[int],
    target_average: float,
) -> dict[int, float]:
    """Reception probabilities in [0.1, 1] whose average is ``target_average``."""
    c = len(channels)
    target_sum = target_average * c
    total = 0.0
    values: list[float] = []
    for j in range(c):
        if j == c - 1:
            value = target_sum - total
        else:
            low = max(0.1, target_sum - total - c + (j + 1))
            high = min(1.0, target_sum - total - (c - (j + 1)) * 0.1)
            value = float(rng.uniform(low, high))
        value = min(max(value, 0.0), 1.0)
        values.append(value)
        total += value
    rng.shuffle(values)
    return dict(zip(channels, values))


def random_parameters(rng: np.random.Generator, regime: ScanRegime) -> ScheduleParameters:
    c = int(rng.integers(1, 16, endpoint=True))
    while True:
        s = int(rng.integers(1, 10_000, endpoint=True))
        if gcd(s, c) == 1:
            break
    channels = [int(ch) for ch in rng.choice(np.arange(MIN_CHANNEL, MAX_CHANNEL + 1), size=c, replace=False)]
    n = sample_scan_ratio(rng, regime)
    return ScheduleParameters(
        channels=channels,
        slots_per_frame=s,
        beacon_send_probability=float(rng.uniform(0.1, 1.0)),
        reception_probability=random_reception_probabilities(rng, channels, float(rng.uniform(0.1, 1.0))),
        scan_duration_ns=round(n * s * SLOT_DURATION_NS),
        switch_delay_ns=0,
        beacon_duration_ns=int(rng.integers(1504, 4256, endpoint=True)) * 1000,
    )


@dataclass(frozen=True)
class CaseResult:
    parameters: ScheduleParameters
    comparison: Comparison
    optimal_scan_period_valid: bool


def validate_case(parameters: ScheduleParameters, num_samples: int, rng: np.random.Generator) -> CaseResult:
    sim_results = simulator.run(parameters, num_samples, rng)
    model_results = model.calculate(parameters)
    optimal = model.calculate(parameters.with_scan_duration(parameters.channel_rotation_ns))
    # equal within microsecond precision counts as optimal
    optimal_valid = model_results.average_time_s >= optimal.average_time_s or round(
        model_results.average_time_s * 1e6
    ) == round(optimal.average_time_s * 1e6)
    return CaseResult(
        parameters=parameters,
        comparison=compare(model_results, sim_results),
        optimal_scan_period_valid=optimal_valid,
    )


class ValidationSession:
    """SQLite store of the comparisons, written in transactions of ``batch_size`` inserts.

    A session is safe to share between worker threads.
    """

    def __init__(self, path: str | Path, batch_size: int = 100) -> None:
        if batch_size < 1:
            raise InvalidQueryError(f"batch_size must be greater than zero (got {batch_size})")
        self.path = Path(path)
        self.batch_size = batch_size
        self.insert_count = 0
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def open(self) -> "ValidationSession":
        if self._conn is not None:
            raise RuntimeError(f"session already open: {self.path}")
        conn = sqlite3.connect(str(self.path), check_same_thread=False)
        try:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS statistics ("
                "c INTEGER, chs TEXT, s INTEGER, pEB REAL, averagePsr REAL, Psr TEXT, "
                "tSCAN INTEGER, relativeErrorInAVG REAL, maxAbsoluteErrorInCDF REAL)"
            )
            conn.execute("PRAGMA cache_size=10000")
            conn.commit()
        except sqlite3.Error:
            conn.close()
            raise
        self._conn = conn
        self.insert_count = 0
        return self

    def insert(self, parameters: ScheduleParameters, comparison: Comparison) -> None:
        with self._lock:
            if self._conn is None:
                raise RuntimeError("session is not open")
            psr = ",".join(f"{ch}:{p:g}" for ch, p in sorted(parameters.reception_probability.items()))
            self._conn.execute(
                "INSERT INTO statistics VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    parameters.num_channels,
                    json.dumps(list(parameters.channels), separators=(",", ":")),
                    parameters.slots_per_frame,
                    parameters.beacon_send_probability,
                    parameters.average_reception_probability,
                    "{" + psr + "}",
                    parameters.scan_duration_ns,
                    comparison.relative_error_avg,
                    comparison.max_absolute_error_cdf,
                ),
            )
            self.insert_count += 1
            if self.insert_count % self.batch_size == 0:
                self._conn.commit()

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            try:
                self._conn.commit()
            finally:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> "ValidationSession":
        return self.open()

    def __exit__(self, *exc_info) -> None:  # noqa: ANN002
        self.close()


def _split(total: int, parts: int) -> list[int]:
    return [total // parts + (1 if total % parts >= i else 0) for i in range(1, parts + 1)]


def _validate_regime(
    regime: ScanRegime,
    settings: ValidationSettings,
    num_threads: int,
    session: ValidationSession | None,
    seeds: list[np.random.SeedSequence],
) -> ValidationOutcome:
    failed = threading.Event()
    not_optimal = threading.Event()

    def worker(num_cases: int, seed: np.random.SeedSequence) -> None:
        rng = np.random.default_rng(seed)
        for _ in range(num_cases):
            if failed.is_set():
                return
            case = validate_case(random_parameters(rng, regime), settings.num_sim_samples_per_case, rng)
            if session is not None:
                session.insert(case.parameters, case.comparison)
            if case.comparison.exceeds(settings.max_allowed_error):
                logger.warning(
                    "%s case exceeds the allowed error: relative avg error %.6f, max cdf error %.6f\n%r",
                    regime.value,
                    case.comparison.relative_error_avg,
                    case.comparison.max_absolute_error_cdf,
                    case.parameters,
                )
                failed.set()
                return
            if not case.optimal_scan_period_valid:
                not_optimal.set()

    logger.info("validating %d %s cases on %d thread(s)", settings.num_random_cases, regime.value, num_threads)
    with ThreadPoolExecutor(max_workers=num_threads) as pool:
        futures = [
            pool.submit(worker, num_cases, seed)
            for num_cases, seed in zip(_split(settings.num_random_cases, num_threads), seeds)
        ]
        for future in futures:
            future.result()

    if failed.is_set():
        return ValidationOutcome.INVALID
    if not_optimal.is_set():
        return ValidationOutcome.VALID_NOT_OPTIMAL
    return ValidationOutcome.VALID


def validate(
    settings: ValidationSettings,
    num_threads: int = 1,
    session: ValidationSession | None = None,
    seed: int | None = None,
) -> ValidationOutcome:
    """Compare the model with the simulator for every scan regime.

    Returns INVALID as soon as one comparison exceeds ``settings.max_allowed_error``,
    VALID_NOT_OPTIMAL if some scan period beat the C-slotframe scan period, VALID otherwise.
    """
    if num_threads < 1:
        raise InvalidQueryError(f"num_threads must be greater than zero (got {num_threads})")

    root = np.random.SeedSequence(seed)
    outcomes = []
    for regime in ScanRegime:
        outcome = _validate_regime(regime, settings, num_threads, session, root.spawn(num_threads))
        logger.info("%s cases: %s", regime.value, outcome.name)
        if outcome == ValidationOutcome.INVALID:
            return outcome
        outcomes.append(outcome)
    return min(outcomes)
