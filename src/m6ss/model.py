"""
Analytic model of the initial synchronization time in the minimal 6TiSCH configuration.

Let X be the number of steps (slotframes) until a joining node receives an EB
on the minimal cell. The model computes P(X = k) and the average
synchronization time in three cases, depending on the ratio n of the scan
period to the slotframe duration:

1. n < 1: the node listens on a new random channel in every step;
2. n is an integer: every scan period covers exactly n steps;
3. otherwise: scan periods end inside a step, so the position of the EB
   transmission within the slotframe decides whether the last step of a scan
   period is covered. The continuous EB position is tracked as a time
   interval and split into a covered and a not-covered branch at every such
   boundary.

The channel switch delay is not part of the model.
"""

from __future__ import annotations

import logging
from typing import Callable

from .config import ScheduleParameters
from .errors import ConvergenceError
from .interval import ClosedInterval, TimeInterval, intersection
from .results import Results


logger = logging.getLogger(__name__)

TRUNCATION_THRESHOLD = 1e-9
DEFAULT_MAX_STEPS = 10_000_000
DEFAULT_MAX_FRAMES = 10_000_000


class _Hopping:
    """Per-step reception probabilities for an initial offset y of the minimal cell channels.

    The minimal cell of the i-th slotframe (i = 1..C) is scheduled on
    ``channels[((i - 1) * s) % C]``; with offset y, step k sees the channel of
    slotframe ``(y + k - 1) % C + 1``.
    """

    def __init__(self, parameters: ScheduleParameters) -> None:
        c = parameters.num_channels
        s = parameters.slots_per_frame
        p_eb = parameters.beacon_send_probability
        self.num_channels = c
        self.channels = [parameters.channels[(i * s) % c] for i in range(c)]
        receive = [p_eb * parameters.reception_probability[ch] for ch in self.channels]
        self._p_step = [p / c for p in receive]
        self._p_miss = [1.0 - p for p in receive]

    def _index(self, k: int, y: int) -> int:
        return (y + k - 1) % self.num_channels

    def p_step(self, k: int, y: int) -> float:
        """P(the node listens on the channel of step k and receives the EB)."""
        return self._p_step[self._index(k, y)]

    def p_miss(self, k: int, y: int) -> float:
        """P(no EB is received in step k although the node listens on its channel)."""
        return self._p_miss[self._index(k, y)]

    @property
    def degenerate(self) -> bool:
        return not any(self._p_step)


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def _series(
    step_probability: Callable[[int], float],
    slotframe_ns: int,
    beacon_ns: int,
    max_steps: int,
) -> tuple[float, list[float]]:
    """Sum Psync(k) * [(k - 1) * Tsf + Tsf / 2 + Teb] until the cdf reaches 1 - 1e-9.

    ``step_probability`` is called once per step, in increasing order of k.
    """
    expected_ns = 0.0
    cumulative = 0.0
    probabilities: list[float] = []
    k = 1
    while cumulative < 1.0 - TRUNCATION_THRESHOLD:
        if k > max_steps:
            raise ConvergenceError(f"cdf reached only {cumulative:.12f} after {max_steps} steps")
        p = step_probability(k)
        cumulative += p
        expected_ns += p * ((k - 1) * slotframe_ns + slotframe_ns / 2.0 + beacon_ns)
        probabilities.append(p)
        k += 1
    return expected_ns, probabilities


def _short_scan(hopping: _Hopping, parameters: ScheduleParameters, max_steps: int) -> tuple[float, list[float]]:
    c = hopping.num_channels
    survival = [1.0] * c

    def step_probability(k: int) -> float:
        p = 0.0
        for y in range(c):
            p_step = hopping.p_step(k, y)
            p += survival[y] * p_step / c
            survival[y] *= 1.0 - p_step
        return p

    return _series(step_probability, parameters.slotframe_duration_ns, parameters.beacon_duration_ns, max_steps)


def _aligned_scan(hopping: _Hopping, parameters: ScheduleParameters, max_steps: int) -> tuple[float, list[float]]:
    c = hopping.num_channels
    n = parameters.scan_duration_ns // parameters.slotframe_duration_ns
    # product of (1 - P(sync in period)) over completed scan periods, per offset
    survival = [1.0] * c
    period_sum = [0.0] * c

    def step_probability(k: int) -> float:
        first = ((k - 1) // n) * n + 1
        # earlier visits of the same channel within this scan period
        visits = (k - first) // c
        p = 0.0
        for y in range(c):
            p_step = hopping.p_miss(k, y) ** visits * hopping.p_step(k, y)
            p += survival[y] * p_step / c
            period_sum[y] += p_step
            if k % n == 0:
                survival[y] *= 1.0 - period_sum[y]
                period_sum[y] = 0.0
        return p

    return _series(step_probability, parameters.slotframe_duration_ns, parameters.beacon_duration_ns, max_steps)


class _StepProbabilities:
    """P(X = k) accumulated from several branches; index 0 is unused."""

    def __init__(self) -> None:
        self.values = [0.0]

    def add(self, k: int, p: float) -> None:
        if k >= len(self.values):
            self.values.extend([0.0] * (k + 1 - len(self.values)))
        self.values[k] += p


def _unaligned_scan(hopping: _Hopping, parameters: ScheduleParameters, max_frames: int) -> tuple[float, list[float]]:
    c = hopping.num_channels
    tsf = parameters.slotframe_duration_ns
    t_scan = parameters.scan_duration_ns
    t_eb = parameters.beacon_duration_ns
    steps = _StepProbabilities()

    def boundary(i: int) -> int:
        """Position within the slotframe where the i-th scan period ends."""
        return i * t_scan % tsf

    def starts_unaligned(i: int) -> bool:
        return boundary(i - 1) != 0

    expected_ns = 0.0
    frames = 0
    for y in range(c):
        expected_y = 0.0
        # (probability that the node is still not synchronized, scan period, EB position interval)
        stack: list[tuple[float, int, TimeInterval]] = [(1.0, 1, ClosedInterval(0, tsf))]
        while stack:
            q, i, interval = stack.pop()
            if q < TRUNCATION_THRESHOLD or interval.length == 0:
                continue
            frames += 1
            if frames > max_frames:
                raise ConvergenceError(f"model did not converge within {max_frames} scan periods")

            r = boundary(i)
            ends_unaligned = r != 0
            left = ClosedInterval(0, r)
            right = ClosedInterval(r, tsf)
            covered = intersection(interval, left) if ends_unaligned else interval

            if starts_unaligned(i):
                k_first = _ceil_div((i - 1) * t_scan, tsf)
                first_covered = interval.is_subset_of(ClosedInterval(boundary(i - 1), tsf))
            else:
                k_first = (i - 1) * t_scan // tsf + 1
                first_covered = True
            k_last = _ceil_div(i * t_scan, tsf)
            # steps of this scan period up to k that cover the EB position: k - k_first + covered_offset
            covered_offset = 1 if first_covered else 0

            p_first = hopping.p_step(k_first, y) if first_covered else 0.0
            expected_y += q * p_first * ((k_first - 1) * tsf + interval.midpoint + t_eb)
            steps.add(k_first, q * p_first / c)

            p_inner_sum = 0.0
            for k in range(k_first + 1, k_last):
                p = hopping.p_miss(k, y) ** ((k - k_first + covered_offset - 1) // c) * hopping.p_step(k, y)
                p_inner_sum += p
                expected_y += q * p * ((k - 1) * tsf + interval.midpoint + t_eb)
                steps.add(k, q * p / c)

            p_last_covered = covered.length / interval.length if ends_unaligned else 1.0
            earlier_visits = (k_last - 1 - k_first + covered_offset) // c
            p_last = hopping.p_miss(k_last, y) ** earlier_visits * hopping.p_step(k_last, y)
            sync_last = q * p_last_covered * p_last
            if not covered.is_empty:
                expected_y += sync_last * ((k_last - 1) * tsf + covered.midpoint + t_eb)
            steps.add(k_last, sync_last / c)

            stack.append((q * p_last_covered * (1.0 - (p_first + p_last + p_inner_sum)), i + 1, covered))
            if ends_unaligned:
                not_covered = intersection(interval, right)
                q_not_covered = q * (not_covered.length / interval.length) * (1.0 - (p_first + p_inner_sum))
                stack.append((q_not_covered, i + 1, not_covered))

        expected_ns += expected_y / c

    logger.debug("case 3 processed %d scan periods", frames)
    return expected_ns, steps.values[1:]


def scan_case(parameters: ScheduleParameters) -> int:
    """Which of the three cases of the model applies to ``parameters``."""
    tsf = parameters.slotframe_duration_ns
    if parameters.scan_duration_ns < tsf:
        return 1
    if parameters.scan_duration_ns % tsf == 0:
        return 2
    return 3


def calculate(
    parameters: ScheduleParameters,
    max_steps: int = DEFAULT_MAX_STEPS,
    max_frames: int = DEFAULT_MAX_FRAMES,
) -> Results:
    """Average synchronization time and cdf of the number of steps, computed by the model."""
    hopping = _Hopping(parameters)
    if hopping.degenerate:
        raise ConvergenceError("no EB can ever be received: pEB * pSR is zero on every channel")
    if parameters.switch_delay_ns:
        logger.debug("switch delay of %d ns is not part of the model", parameters.switch_delay_ns)

    case = scan_case(parameters)
    logger.debug("case %d: scan period of %.6f slotframes", case, parameters.scan_ratio)
    if case == 1:
        expected_ns, probabilities = _short_scan(hopping, parameters, max_steps)
    elif case == 2:
        expected_ns, probabilities = _aligned_scan(hopping, parameters, max_steps)
    else:
        expected_ns, probabilities = _unaligned_scan(hopping, parameters, max_frames)

    logger.debug("model recorded %d steps", len(probabilities))
    return Results.from_step_probabilities(expected_ns / 1e9, probabilities)
