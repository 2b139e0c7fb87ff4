"""
Monte-Carlo simulator of the initial synchronization of a joining node.

The joining node starts scanning at a random instant of the first channel
rotation, listens on a random channel for ``scan_duration_ns`` and then picks
a new random channel, losing ``switch_delay_ns`` whenever the channel
actually changes. An EB is sent on the minimal cell (slot offset 0, channel
offset 0) of every slotframe with probability ``beacon_send_probability`` and
is received with the reception probability of its channel if the node is
listening on that channel at the transmission instant.

All runs are advanced together, one minimal cell per iteration, over the
runs that have not synchronized yet.
"""

from __future__ import annotations

import logging

import numpy as np

from .config import SLOT_DURATION_NS, TX_OFFSET_NS, ScheduleParameters
from .errors import ConvergenceError, InvalidQueryError
from .results import Results


logger = logging.getLogger(__name__)

DEFAULT_MAX_FRAMES = 1_000_000


def _first_minimal_cell(start: np.ndarray, slots_per_frame: int) -> np.ndarray:
    """ASN of the first minimal cell whose transmission has not started before ``start``."""
    start_asn = start // SLOT_DURATION_NS
    offset = start_asn % slots_per_frame
    in_time = (offset == 0) & (start <= start_asn * SLOT_DURATION_NS + TX_OFFSET_NS)
    return np.where(in_time, start_asn, start_asn + slots_per_frame - offset)


def run(
    parameters: ScheduleParameters,
    num_runs: int,
    rng: np.random.Generator | None = None,
    max_frames: int = DEFAULT_MAX_FRAMES,
) -> Results:
    """Execute the synchronization procedure ``num_runs`` times.

    ``rng`` is owned by the caller; concurrent calls must not share one.
    With ``num_runs == 1`` the average time is the time of a single attempt.
    """
    if num_runs <= 0:
        raise InvalidQueryError(f"num_runs must be greater than 0 (got {num_runs})")
    if rng is None:
        rng = np.random.default_rng()

    n_channels = parameters.num_channels
    s = parameters.slots_per_frame
    tsf = parameters.slotframe_duration_ns
    t_scan = parameters.scan_duration_ns
    t_switch = parameters.switch_delay_ns
    t_eb = parameters.beacon_duration_ns

    # indexed by position in the hopping sequence
    p_success = np.array(
        [parameters.beacon_send_probability * parameters.reception_probability[ch] for ch in parameters.channels]
    )
    if not p_success.any():
        raise ConvergenceError("no EB can ever be received: pEB * pSR is zero on every channel")

    start = rng.integers(0, parameters.channel_rotation_ns, size=num_runs, endpoint=True, dtype=np.int64)
    asn = _first_minimal_cell(start, s)

    scanned = rng.integers(0, n_channels, size=num_runs)
    last_selection = start.copy()
    next_selection = start + t_switch + t_scan
    switched = np.ones(num_runs, dtype=bool)

    total_ns = 0.0
    found_steps: list[np.ndarray] = []
    frames = 0

    while asn.size:
        if frames >= max_frames:
            raise ConvergenceError(f"{asn.size} of {num_runs} runs did not synchronize within {max_frames} slotframes")

        tx = asn * SLOT_DURATION_NS + TX_OFFSET_NS

        if n_channels > 1:
            # select channels up to the scan period that covers tx
            pending = next_selection <= tx
            while pending.any():
                sel = np.flatnonzero(pending)
                new = rng.integers(0, n_channels, size=sel.size)
                changed = new != scanned[sel]
                scanned[sel] = new
                switched[sel] = changed
                last_selection[sel] = next_selection[sel]
                next_selection[sel] += t_scan + np.where(changed, t_switch, 0)
                pending[sel] = next_selection[sel] <= tx[sel]

        listening = ~switched | (tx >= last_selection + t_switch)
        hit = listening & (scanned == asn % n_channels) & (rng.random(asn.size) < p_success[scanned])

        if hit.any():
            delay = tx[hit] - start[hit]
            total_ns += float((delay + t_eb).sum(dtype=np.float64))
            found_steps.append(np.maximum(1, -(-delay // tsf)))

            keep = ~hit
            start = start[keep]
            asn = asn[keep]
            scanned = scanned[keep]
            last_selection = last_selection[keep]
            next_selection = next_selection[keep]
            switched = switched[keep]

        asn = asn + s
        frames += 1

    counts = np.bincount(np.concatenate(found_steps))
    logger.debug("simulated %d runs over %d slotframes (max step %d)", num_runs, frames, counts.size - 1)

    return Results.from_step_counts(
        total_ns / num_runs / 1e9,
        {k: int(c) for k, c in enumerate(counts) if k > 0 and c > 0},
        num_runs,
    )
