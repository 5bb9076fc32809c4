"""Matching of per-event LHE weights onto the run's frozen weight columns.

Every output column starts at 1.0 and is overwritten with
``weight / originalXWGTUP`` when the event carries a weight with exactly that
id.  Unmatched event weights are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, NamedTuple, Sequence

import awkward as ak
import numpy as np

from lheweights.weight_choice import DynamicWeightChoice

logger = logging.getLogger(__name__)


class RawWeightEntry(NamedTuple):
    """One ``(id, value)`` weight as stored with the event."""
    id: str
    value: float


@dataclass
class EventWeights:
    """Relative weights of one event, one vector per weight family."""
    scale: np.ndarray
    pdf: np.ndarray
    named: np.ndarray


def _column_lookup(target_ids: Sequence[str]) -> dict[str, int]:
    # First position wins for a repeated target id.
    lookup: dict[str, int] = {}
    for i, wid in enumerate(target_ids):
        lookup.setdefault(wid, i)
    return lookup


def match_event_weights(
    entries: Iterable[RawWeightEntry],
    choice: DynamicWeightChoice,
    lhe_nominal: float,
    named_ids: Sequence[str],
    *,
    trace: bool = False,
) -> EventWeights:
    """Map one event's raw weights onto the scale, PDF and named columns."""
    targets = (choice.scale_weight_ids, choice.pdf_weight_ids, tuple(named_ids))
    lookups = [_column_lookup(t) for t in targets]
    out = [np.ones(len(t), dtype=np.float64) for t in targets]
    w0 = np.float64(lhe_nominal)

    with np.errstate(divide="ignore", invalid="ignore"):
        for wid, value in entries:
            rel = np.float64(value) / w0
            if trace:
                logger.debug("Weight  %+9.5f   rel %+9.5f   for id %s", value, rel, wid)
            for lookup, vec in zip(lookups, out):
                col = lookup.get(wid)
                if col is not None:
                    vec[col] = rel

    return EventWeights(scale=out[0], pdf=out[1], named=out[2])


def relative_weight_matrix(ids, values, lhe_nominal, target_ids: Sequence[str]) -> np.ndarray:
    """Columnar version of the matching for a chunk of events.

    Parameters
    ----------
    ids, values : awkward arrays of shape ``n_events * var``
        Weight ids (strings) and weight values of each event.
    lhe_nominal : array of shape ``n_events``
        Nominal LHE weight of each event.
    target_ids : sequence of str
        Column ids, in output order.

    Returns
    -------
    numpy.ndarray of shape ``(n_events, len(target_ids))``
    """
    n_events = len(values)
    out = np.ones((n_events, len(target_ids)), dtype=np.float64)
    if n_events == 0 or not target_ids:
        return out

    counts = ak.to_numpy(ak.num(values, axis=1))
    flat_vals = ak.to_numpy(ak.flatten(values, axis=1)).astype(np.float64)
    flat_ids = ak.to_list(ak.flatten(ids, axis=1))
    rows = np.repeat(np.arange(n_events), counts)

    lookup = _column_lookup(target_ids)
    cols = np.fromiter((lookup.get(wid, -1) for wid in flat_ids), dtype=np.int64, count=len(flat_ids))
    hit = cols >= 0
    if not np.any(hit):
        return out

    w0 = np.asarray(lhe_nominal, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        out[rows[hit], cols[hit]] = flat_vals[hit] / w0[rows[hit]]
    return out


def match_chunk_weights(chunk, choice: DynamicWeightChoice, named_ids: Sequence[str]):
    """Return ``(scale, pdf, named)`` relative-weight matrices for a chunk.

    ``chunk`` needs the fields ``originalXWGTUP`` and ``weights`` (records
    with ``id`` and ``wgt``).
    """
    weights = chunk["weights"]
    ids, values = weights["id"], weights["wgt"]
    w0 = ak.to_numpy(chunk["originalXWGTUP"])
    return (
        relative_weight_matrix(ids, values, w0, choice.scale_weight_ids),
        relative_weight_matrix(ids, values, w0, choice.pdf_weight_ids),
        relative_weight_matrix(ids, values, w0, tuple(named_ids)),
    )
