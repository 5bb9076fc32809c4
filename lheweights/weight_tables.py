"""Event weight tables and run summaries, plus their ROOT / JSON output.

Output layout follows NanoAOD:

- ``Events``: ``genWeight``, ``LHEScaleWeight`` and ``LHEPdfWeight``
  (jagged float32), ``LHEWeight_originalXWGTUP`` and one
  ``LHEWeight_<label>`` per named weight.
- ``Runs`` (one entry per run): ``genEventCount``, ``genEventSumw``,
  ``genEventSumw2``, ``LHEScaleSumw``, ``LHEPdfSumw`` (jagged float64) and
  ``LHESumw_<label>`` per named weight.

Runs entries are mergeable: ``read_runs_summary`` collapses any number of
entries (from any number of files) into a single summary, counts and sums
added and the jagged sums added element-wise.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Sequence

import awkward as ak
import numpy as np
import uproot
from coffea import processor

from lheweights.counters import WeightCounter
from lheweights.weight_config import (
    GEN_WEIGHT_TABLE, LHE_NAMED_TABLE, LHE_NOMINAL_COLUMN, LHE_PDF_TABLE, LHE_SCALE_TABLE,
    RUN_COUNT, RUN_NAMED_SUMW_PREFIX, RUN_PDF_SUMW, RUN_SCALE_SUMW, RUN_SUMW, RUN_SUMW2,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Per-event tables
# ---------------------------------------------------------------------------

@dataclass
class EventWeightTables:
    """Per-event weight columns for a block of events.

    ``lhe_nominal`` is None (and ``named`` has no columns) when the events
    carried no LHE information.
    """
    gen_weight: np.ndarray
    scale: np.ndarray
    pdf: np.ndarray
    lhe_nominal: np.ndarray | None = None
    named: np.ndarray | None = None
    named_labels: tuple[str, ...] = ()
    scale_doc: str = ""
    pdf_doc: str = ""

    def __len__(self) -> int:
        return len(self.gen_weight)

    @property
    def has_lhe(self) -> bool:
        return self.lhe_nominal is not None

    @classmethod
    def nominal_only(cls, gen_weight) -> "EventWeightTables":
        gen_weight = np.asarray(gen_weight, dtype=np.float64)
        n = len(gen_weight)
        return cls(
            gen_weight=gen_weight,
            scale=np.ones((n, 0)),
            pdf=np.ones((n, 0)),
        )

    @classmethod
    def concatenate(cls, tables: Sequence["EventWeightTables"]) -> "EventWeightTables":
        """Stack tables of the same run (same column layout) in order."""
        if not tables:
            return cls.nominal_only(np.zeros(0))
        first = tables[0]
        for t in tables[1:]:
            if t.has_lhe != first.has_lhe or t.named_labels != first.named_labels:
                raise ValueError("Cannot concatenate weight tables with different column layouts")
            if t.scale.shape[1] != first.scale.shape[1] or t.pdf.shape[1] != first.pdf.shape[1]:
                raise ValueError("Cannot concatenate weight tables with different column layouts")
        return cls(
            gen_weight=np.concatenate([t.gen_weight for t in tables]),
            scale=np.concatenate([t.scale for t in tables]),
            pdf=np.concatenate([t.pdf for t in tables]),
            lhe_nominal=np.concatenate([t.lhe_nominal for t in tables]) if first.has_lhe else None,
            named=np.concatenate([t.named for t in tables]) if first.has_lhe else None,
            named_labels=first.named_labels,
            scale_doc=first.scale_doc,
            pdf_doc=first.pdf_doc,
        )

    def branch_types(self) -> dict:
        types = {
            GEN_WEIGHT_TABLE: np.dtype("float32"),
            LHE_SCALE_TABLE: "var * float32",
            LHE_PDF_TABLE: "var * float32",
        }
        if self.has_lhe:
            types[f"{LHE_NAMED_TABLE}_{LHE_NOMINAL_COLUMN}"] = np.dtype("float32")
            for label in self.named_labels:
                types[f"{LHE_NAMED_TABLE}_{label}"] = np.dtype("float32")
        return types

    def branch_data(self) -> dict:
        data = {
            GEN_WEIGHT_TABLE: self.gen_weight.astype(np.float32),
            LHE_SCALE_TABLE: _jagged(self.scale, np.float32),
            LHE_PDF_TABLE: _jagged(self.pdf, np.float32),
        }
        if self.has_lhe:
            data[f"{LHE_NAMED_TABLE}_{LHE_NOMINAL_COLUMN}"] = self.lhe_nominal.astype(np.float32)
            for i, label in enumerate(self.named_labels):
                data[f"{LHE_NAMED_TABLE}_{label}"] = self.named[:, i].astype(np.float32)
        return data


def _jagged(matrix: np.ndarray, dtype) -> ak.Array:
    """``(n, k)`` matrix -> ``n * var * dtype`` awkward array."""
    n, k = matrix.shape
    return ak.unflatten(matrix.astype(dtype).ravel(), np.full(n, k, dtype=np.int64))


# ---------------------------------------------------------------------------
# Run summaries
# ---------------------------------------------------------------------------

@dataclass
class RunSummary:
    """Exported sums for one run (or for several merged runs)."""
    event_count: int = 0
    sumw: float = 0.0
    sumw2: float = 0.0
    scale_sumw: list[float] = field(default_factory=list)
    pdf_sumw: list[float] = field(default_factory=list)
    named_sumw: dict[str, float] = field(default_factory=dict)

    @classmethod
    def from_counter(cls, counter: WeightCounter, named_labels: Sequence[str]) -> "RunSummary":
        named = {}
        # Empty when the run had no LHE information.
        if len(counter.sum_named):
            sums = counter.sum_named
            named = {
                label: float(sums[i]) if i < len(sums) else 0.0
                for i, label in enumerate(named_labels)
            }
        return cls(
            event_count=int(counter.num),
            sumw=float(counter.sumw),
            sumw2=float(counter.sumw2),
            scale_sumw=[float(x) for x in counter.sum_scale],
            pdf_sumw=[float(x) for x in counter.sum_pdf],
            named_sumw=named,
        )

    def _counter(self) -> WeightCounter:
        counter = WeightCounter()
        counter.num = self.event_count
        counter.sumw += self.sumw
        counter.sumw2 += self.sumw2
        counter.sum_scale = np.asarray(self.scale_sumw, dtype=counter.sum_scale.dtype)
        counter.sum_pdf = np.asarray(self.pdf_sumw, dtype=counter.sum_pdf.dtype)
        return counter

    def __add__(self, other: "RunSummary") -> "RunSummary":
        merged = RunSummary.from_counter(self._counter() + other._counter(), ())
        named = dict(self.named_sumw)
        for label, value in other.named_sumw.items():
            named[label] = named.get(label, 0.0) + value
        merged.named_sumw = named
        return merged

    def to_dict(self) -> dict:
        """Flat, JSON-serializable view keyed by the Runs branch names."""
        out = {
            RUN_COUNT: self.event_count,
            RUN_SUMW: self.sumw,
            RUN_SUMW2: self.sumw2,
            RUN_SCALE_SUMW: list(self.scale_sumw),
            RUN_PDF_SUMW: list(self.pdf_sumw),
        }
        for label, value in self.named_sumw.items():
            out[f"{RUN_NAMED_SUMW_PREFIX}{label}"] = value
        return out

    def branch_types(self) -> dict:
        types = {
            RUN_COUNT: np.dtype("int64"),
            RUN_SUMW: np.dtype("float64"),
            RUN_SUMW2: np.dtype("float64"),
            RUN_SCALE_SUMW: "var * float64",
            RUN_PDF_SUMW: "var * float64",
        }
        for label in self.named_sumw:
            types[f"{RUN_NAMED_SUMW_PREFIX}{label}"] = np.dtype("float64")
        return types

    def branch_data(self) -> dict:
        data = {
            RUN_COUNT: np.array([self.event_count], dtype=np.int64),
            RUN_SUMW: np.array([self.sumw], dtype=np.float64),
            RUN_SUMW2: np.array([self.sumw2], dtype=np.float64),
            RUN_SCALE_SUMW: _jagged(np.asarray(self.scale_sumw, dtype=np.float64).reshape(1, -1), np.float64),
            RUN_PDF_SUMW: _jagged(np.asarray(self.pdf_sumw, dtype=np.float64).reshape(1, -1), np.float64),
        }
        for label, value in self.named_sumw.items():
            data[f"{RUN_NAMED_SUMW_PREFIX}{label}"] = np.array([value], dtype=np.float64)
        return data


# ---------------------------------------------------------------------------
# ROOT / JSON output
# ---------------------------------------------------------------------------

class WeightFileWriter:
    """Incremental writer for one run's output file.

    Events are appended chunk by chunk with ``extend``, so only the chunk at
    hand is held in memory; the one-entry Runs tree is written by
    ``write_runs`` once the run is over.  A file left by a failed run is
    removed.  Use as a context manager::

        with WeightFileWriter(path) as writer:
            summary = producer.stream(headers, chunks, writer.write_events)
            writer.write_runs(summary)
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.n_events = 0
        self._file = None
        self._events = None
        self._events_types = None

    def __enter__(self) -> "WeightFileWriter":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = uproot.recreate(str(self.path))
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        if exc_type is not None and self.path.exists():
            logger.warning("Removing partial output %s", self.path)
            self.path.unlink()
        return False

    def write_events(self, tables: EventWeightTables) -> None:
        """Append a block of events; every block of a run has the same columns."""
        types = tables.branch_types()
        if self._events is None:
            # Explicit mktree keeps TTree output (dict assignment may write RNTuple).
            self._events = self._file.mktree("Events", types)
            self._events_types = types
        elif types != self._events_types:
            raise ValueError("Cannot append weight tables with a different column layout")
        if len(tables):
            self._events.extend(tables.branch_data())
            self.n_events += len(tables)

    def write_runs(self, summary: RunSummary) -> None:
        if self._events is None:
            self.write_events(EventWeightTables.nominal_only(np.zeros(0)))
        runs = self._file.mktree("Runs", summary.branch_types())
        runs.extend(summary.branch_data())

    def close(self) -> None:
        if self._file is None:
            return
        self._file.close()
        self._file = None
        logger.info("Wrote %d events to %s", self.n_events, self.path)


def write_weight_file(path: str | Path, tables: EventWeightTables, summary: RunSummary) -> Path:
    """Write one run's Events and Runs trees to a new ROOT file."""
    with WeightFileWriter(path) as writer:
        writer.write_events(tables)
        writer.write_runs(summary)
    return writer.path


def _resolve_branch(keys, name: str) -> str | None:
    """NanoAOD files may carry a trailing underscore on Runs branch names."""
    for candidate in (name, name + "_"):
        if candidate in keys:
            return candidate
    return None


def _summaries_in_file(path: str) -> list[RunSummary]:
    with uproot.open(path) as fin:
        if "Runs" not in fin:
            logger.warning("No Runs tree in %s", path)
            return []
        runs = fin["Runs"]
        keys = set(runs.keys())
        names = {
            key: _resolve_branch(keys, key)
            for key in (RUN_COUNT, RUN_SUMW, RUN_SUMW2, RUN_SCALE_SUMW, RUN_PDF_SUMW)
        }
        named_branches = sorted(k for k in keys if k.startswith(RUN_NAMED_SUMW_PREFIX))
        wanted = [b for b in names.values() if b is not None] + named_branches
        arrays = runs.arrays(wanted, library="ak")

    def column(key, default):
        branch = names[key]
        return ak.to_list(arrays[branch]) if branch is not None else [default] * len(arrays)

    counts = column(RUN_COUNT, 0)
    sumw = column(RUN_SUMW, 0.0)
    sumw2 = column(RUN_SUMW2, 0.0)
    scale = column(RUN_SCALE_SUMW, [])
    pdf = column(RUN_PDF_SUMW, [])
    summaries = []
    for i in range(len(arrays)):
        summaries.append(RunSummary(
            event_count=int(counts[i]),
            sumw=float(sumw[i]),
            sumw2=float(sumw2[i]),
            scale_sumw=list(scale[i]),
            pdf_sumw=list(pdf[i]),
            named_sumw={
                b[len(RUN_NAMED_SUMW_PREFIX):]: float(arrays[b][i]) for b in named_branches
            },
        ))
    return summaries


def read_runs_summary(paths: str | Path | Iterable[str | Path]) -> RunSummary:
    """Merge every Runs entry of one or more files into a single RunSummary."""
    if isinstance(paths, (str, Path)):
        paths = [paths]
    summaries: list[RunSummary] = []
    for p in paths:
        try:
            summaries.extend(_summaries_in_file(str(p)))
        except OSError as e:
            raise RuntimeError(f"Failed to read Runs from {p}: {e}") from e
    return processor.accumulate(summaries, RunSummary())


def save_run_summary(summary: RunSummary, outdir: str | Path, name: str = "run_summary.json") -> Path:
    """Write ``summary.to_dict()`` as JSON into *outdir*; returns the path."""
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)
    path = outdir / name
    path.write_text(json.dumps(summary.to_dict(), indent=2) + "\n", encoding="utf-8")
    logger.info("Saved run summary to %s", path)
    return path
