"""Running sums of generator weights.

One WeightCounter is owned by each worker for the duration of a run; at run
end all worker counters are folded into a run-level counter.  Sums are kept
in ``numpy.longdouble`` (80-bit extended precision on x86) to limit rounding
over very long event streams; the per-event products are formed in float64
and added one event at a time, also when a whole chunk is booked.

Sum vectors are sized lazily on first use and only ever grow (zero-filled),
so merging counters is order independent even when some workers never saw
an event with LHE weights.
"""

from __future__ import annotations

import numpy as np

SUM_DTYPE = np.longdouble


def _empty() -> np.ndarray:
    return np.zeros(0, dtype=SUM_DTYPE)


def _grown(vec: np.ndarray, size: int) -> np.ndarray:
    """Return ``vec`` zero-extended to at least ``size`` entries."""
    if len(vec) >= size:
        return vec
    out = np.zeros(size, dtype=SUM_DTYPE)
    out[:len(vec)] = vec
    return out


def _add_into(vec: np.ndarray, increment: np.ndarray) -> np.ndarray:
    vec = _grown(vec, len(increment))
    vec[:len(increment)] += increment.astype(SUM_DTYPE)
    return vec


def _sequential_sum(start, increments: np.ndarray):
    """``start + increments[0] + increments[1] + ...``, added strictly in order.

    Rounds exactly as adding the increments one event at a time.
    """
    head = np.asarray(start, dtype=SUM_DTYPE)[None, ...]
    stacked = np.concatenate([head, increments.astype(SUM_DTYPE)])
    return np.add.accumulate(stacked, axis=0)[-1]


class WeightCounter:
    """Event count plus sums of weights and weighted LHE variations."""

    def __init__(self):
        self.num = 0
        self.sumw = SUM_DTYPE(0)
        self.sumw2 = SUM_DTYPE(0)
        self.sum_scale = _empty()
        self.sum_pdf = _empty()
        self.sum_named = _empty()

    def clear(self) -> None:
        self.num = 0
        self.sumw = SUM_DTYPE(0)
        self.sumw2 = SUM_DTYPE(0)
        self.sum_scale = _empty()
        self.sum_pdf = _empty()
        self.sum_named = _empty()

    # -- per event ----------------------------------------------------------

    def record_nominal_only(self, w: float) -> None:
        """Book an event without LHE weight information."""
        w = np.float64(w)
        self.num += 1
        self.sumw += w
        self.sumw2 += w * w

    def record_full(self, w0: float, scale, pdf, named) -> None:
        """Book an event and its relative weights (as produced by the matcher)."""
        self.record_nominal_only(w0)
        w0 = np.float64(w0)
        if len(scale):
            self.sum_scale = _add_into(self.sum_scale, w0 * np.asarray(scale, dtype=np.float64))
        if len(pdf):
            self.sum_pdf = _add_into(self.sum_pdf, w0 * np.asarray(pdf, dtype=np.float64))
        if len(named):
            self.sum_named = _add_into(self.sum_named, w0 * np.asarray(named, dtype=np.float64))

    # -- per chunk ----------------------------------------------------------

    def record_chunk(self, w0, scale=None, pdf=None, named=None) -> None:
        """Book a whole chunk at once.

        ``w0`` has one entry per event; the optional matrices have shape
        ``(n_events, n_columns)``.  Passing no matrices books the chunk as
        nominal-only.  The result is bit-identical to calling
        ``record_full`` event by event.
        """
        w0 = np.asarray(w0, dtype=np.float64)
        self.num += len(w0)
        if len(w0) == 0:
            return
        self.sumw = _sequential_sum(self.sumw, w0)
        self.sumw2 = _sequential_sum(self.sumw2, w0 * w0)
        for attr, matrix in (("sum_scale", scale), ("sum_pdf", pdf), ("sum_named", named)):
            if matrix is None or matrix.shape[1] == 0:
                continue
            k = matrix.shape[1]
            vec = _grown(getattr(self, attr), k)
            vec[:k] = _sequential_sum(vec[:k], w0[:, None] * np.asarray(matrix, dtype=np.float64))
            setattr(self, attr, vec)

    # -- merging ------------------------------------------------------------

    def merge(self, other: "WeightCounter") -> None:
        self.num += other.num
        self.sumw += other.sumw
        self.sumw2 += other.sumw2
        self.sum_scale = _add_into(self.sum_scale, other.sum_scale)
        self.sum_pdf = _add_into(self.sum_pdf, other.sum_pdf)
        self.sum_named = _add_into(self.sum_named, other.sum_named)

    def copy(self) -> "WeightCounter":
        out = WeightCounter()
        out.merge(self)
        return out

    def __iadd__(self, other: "WeightCounter") -> "WeightCounter":
        self.merge(other)
        return self

    def __add__(self, other: "WeightCounter") -> "WeightCounter":
        out = self.copy()
        out.merge(other)
        return out

    def __eq__(self, other) -> bool:
        if not isinstance(other, WeightCounter):
            return NotImplemented
        return (
            self.num == other.num
            and self.sumw == other.sumw
            and self.sumw2 == other.sumw2
            and np.array_equal(self.sum_scale, other.sum_scale)
            and np.array_equal(self.sum_pdf, other.sum_pdf)
            and np.array_equal(self.sum_named, other.sum_named)
        )

    __hash__ = None

    def __repr__(self) -> str:
        return (
            f"WeightCounter(num={self.num}, sumw={float(self.sumw):.6g}, "
            f"n_scale={len(self.sum_scale)}, n_pdf={len(self.sum_pdf)}, n_named={len(self.sum_named)})"
        )
