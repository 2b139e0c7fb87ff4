import sqlite3
from pathlib import Path

import numpy as np
import pytest

from m6ss import validation
from m6ss.config import SLOT_DURATION_NS, ScheduleParameters, ValidationSettings
from m6ss.errors import InvalidQueryError
from m6ss.model import scan_case
from m6ss.report import Comparison
from m6ss.results import Results
from m6ss.validation import (
    ScanRegime,
    ValidationOutcome,
    ValidationSession,
    compare,
    random_parameters,
    random_reception_probabilities,
    validate,
)


def _full_coverage() -> ScheduleParameters:
    return ScheduleParameters(
        channels=[11, 13, 14, 12],
        slots_per_frame=101,
        beacon_send_probability=1.0,
        reception_probability={11: 1.0, 13: 1.0, 14: 1.0, 12: 1.0},
        scan_duration_ns=4 * 101 * SLOT_DURATION_NS,
        switch_delay_ns=0,
        beacon_duration_ns=4_256_000,
    )


def test_compare_identical_results() -> None:
    r = Results.from_step_probabilities(2.0, [0.5, 0.5])
    c = compare(r, r)
    assert c.relative_error_avg == 0.0
    assert c.max_absolute_error_cdf == 0.0


def test_compare_differences() -> None:
    model = Results.from_step_probabilities(2.2, [0.5, 0.3, 0.2])
    sim = Results.from_step_probabilities(2.0, [0.4, 0.6])
    c = compare(model, sim)
    # relative to the simulator average
    assert c.relative_error_avg == pytest.approx(0.1)
    # step 2: 0.8 vs 1.0
    assert c.max_absolute_error_cdf == pytest.approx(0.2)
    assert c.exceeds(0.15)
    assert not c.exceeds(0.25)


@pytest.mark.parametrize(
    ("regime", "case"),
    [(ScanRegime.short, 1), (ScanRegime.integer, 2), (ScanRegime.fractional, 3)],
)
def test_random_parameters_follow_regime(regime: ScanRegime, case: int) -> None:
    rng = np.random.default_rng(123)
    for _ in range(20):
        params = random_parameters(rng, regime)
        assert scan_case(params) == case
        assert 1 <= params.num_channels <= 16
        assert 0.1 <= params.beacon_send_probability <= 1.0
        assert params.switch_delay_ns == 0
        assert 1_504_000 <= params.beacon_duration_ns <= 4_256_000


def test_random_reception_probabilities_reach_target_average() -> None:
    rng = np.random.default_rng(9)
    channels = list(range(11, 27))
    for target in (0.1, 0.35, 0.8, 1.0):
        p_sr = random_reception_probabilities(rng, channels, target)
        assert set(p_sr) == set(channels)
        assert sum(p_sr.values()) / len(channels) == pytest.approx(target, abs=1e-9)
        assert all(0.1 - 1e-9 <= p <= 1.0 for p in p_sr.values())


def test_session_batches_inserts(tmp_path: Path) -> None:
    db = tmp_path / "validation.db"
    comparison = Comparison(relative_error_avg=0.001, max_absolute_error_cdf=0.002)
    with ValidationSession(db, batch_size=2) as session:
        for _ in range(3):
            session.insert(_full_coverage(), comparison)
        assert session.insert_count == 3
    assert not session.is_open

    conn = sqlite3.connect(str(db))
    try:
        rows = conn.execute(
            "SELECT c, chs, s, pEB, averagePsr, Psr, tSCAN, relativeErrorInAVG FROM statistics"
        ).fetchall()
    finally:
        conn.close()
    assert len(rows) == 3
    c, chs, s, p_eb, avg_psr, psr, t_scan, rel = rows[0]
    assert (c, chs, s) == (4, "[11,13,14,12]", 101)
    assert p_eb == pytest.approx(1.0)
    assert avg_psr == pytest.approx(1.0)
    assert psr == "{11:1,12:1,13:1,14:1}"
    assert t_scan == 4 * 101 * SLOT_DURATION_NS
    assert rel == pytest.approx(0.001)


def test_session_insert_requires_open(tmp_path: Path) -> None:
    session = ValidationSession(tmp_path / "validation.db")
    with pytest.raises(RuntimeError, match="not open"):
        session.insert(_full_coverage(), Comparison(relative_error_avg=0.0, max_absolute_error_cdf=0.0))


def test_validate_rejects_invalid_thread_count() -> None:
    with pytest.raises(InvalidQueryError, match="num_threads"):
        validate(ValidationSettings(), num_threads=0)


def test_validate_passes_on_optimal_scan_period(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(validation, "random_parameters", lambda rng, regime: _full_coverage())
    settings = ValidationSettings(num_random_cases=3, num_sim_samples_per_case=5_000, max_allowed_error=0.5)
    with ValidationSession(tmp_path / "validation.db") as session:
        outcome = validate(settings, num_threads=2, session=session, seed=1)
        assert session.insert_count == 9
    assert outcome == ValidationOutcome.VALID


def test_validate_stops_at_first_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(validation, "random_parameters", lambda rng, regime: _full_coverage())
    settings = ValidationSettings(num_random_cases=5, num_sim_samples_per_case=1_000, max_allowed_error=1e-12)
    assert validate(settings, num_threads=1, seed=1) == ValidationOutcome.INVALID
