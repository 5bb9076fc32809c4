"""Run-level orchestration of the LHE weight producer.

Per run:
    1) ``begin_run``: resolve the DynamicWeightChoice once from the run header
       and clear every worker counter.
    2) ``process_event`` / ``process_chunk``: each worker books its events
       into the counter it owns; the counter is passed in explicitly.
    3) ``end_run``: fold all worker counters into a fresh run counter and
       export the RunSummary.

``stream`` (and ``run`` on top of it) drives a whole run with one
single-thread executor per worker, so every counter is only ever touched by
its own thread and no locking is needed on the per-event path.  Only a
bounded number of chunks is in flight at any time.
"""

from __future__ import annotations

import logging
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Iterable, Sequence

import awkward as ak
import numpy as np
from coffea import processor

from lheweights.counters import WeightCounter
from lheweights.errors import ConfigurationError
from lheweights.event_weights import RawWeightEntry, match_chunk_weights, match_event_weights
from lheweights.latch import OneShotLatch
from lheweights.weight_choice import DynamicWeightChoice, resolve_weight_choice
from lheweights.weight_config import WeightConfig
from lheweights.weight_tables import EventWeightTables, RunSummary

logger = logging.getLogger(__name__)


class GenWeightsProducer:
    """Generator / LHE weight tables and run sums for a stream of runs.

    Parameters
    - `config`: WeightConfig (preferred PDFs, named weights, debug flag).
    - `n_workers`: number of worker counters (and threads used by `run`).

    With ``config.debug`` set, a verbose trace of the header parsing and of
    one event's weights is logged at DEBUG level, once per process.
    """

    def __init__(self, config: WeightConfig, n_workers: int = 1):
        if n_workers < 1:
            raise ConfigurationError("n_workers must be a positive integer")
        self.config = config
        self._run_trace = OneShotLatch(config.debug)
        self._event_trace = OneShotLatch(config.debug)
        self._missing_lhe_warning = OneShotLatch()
        self._workers = [WeightCounter() for _ in range(n_workers)]
        self._choice: DynamicWeightChoice | None = None

    @property
    def choice(self) -> DynamicWeightChoice | None:
        """The current run's weight choice (None outside a run)."""
        return self._choice

    @property
    def worker_counters(self) -> list[WeightCounter]:
        return list(self._workers)

    # -- run boundaries -----------------------------------------------------

    def begin_run(self, headers: Iterable[tuple[str, Sequence[str]]] | None) -> DynamicWeightChoice:
        """Freeze this run's weight columns and reset the worker counters."""
        self._choice = resolve_weight_choice(
            headers, self.config.preferred_pdfs, trace=self._run_trace.claim()
        )
        for counter in self._workers:
            counter.clear()
        logger.info(
            "Run weight choice: %d scale weights, %d PDF weights, %d named weights",
            len(self._choice.scale_weight_ids),
            len(self._choice.pdf_weight_ids),
            len(self.config.named_weight_ids),
        )
        for doc in (self._choice.scale_weights_doc, self._choice.pdf_weights_doc):
            if doc:
                logger.info("%s", doc)
        return self._choice

    def end_run(self) -> RunSummary:
        """Fold every worker counter into one run counter and export it."""
        run_counter = processor.accumulate(self._workers, WeightCounter())
        self._choice = None
        return RunSummary.from_counter(run_counter, self.config.named_weight_labels)

    def _require_choice(self) -> DynamicWeightChoice:
        if self._choice is None:
            raise RuntimeError("begin_run() must be called before processing events")
        return self._choice

    def _warn_missing_lhe(self) -> None:
        if self._missing_lhe_warning.claim():
            logger.warning("No LHE weights for these events, so the LHE weight tables will be empty")

    # -- per event / per chunk ----------------------------------------------

    def process_event(
        self,
        counter: WeightCounter,
        gen_weight: float,
        weights: Iterable[RawWeightEntry] | None = None,
        lhe_nominal: float | None = None,
    ) -> EventWeightTables:
        """Book one event into ``counter`` and return its one-row tables.

        ``weights`` is None when the event has no LHE information; relative
        weights are taken with respect to ``lhe_nominal`` (defaults to the
        generator weight).
        """
        choice = self._require_choice()
        if weights is None:
            counter.record_nominal_only(gen_weight)
            self._warn_missing_lhe()
            return EventWeightTables.nominal_only([gen_weight])

        if lhe_nominal is None:
            lhe_nominal = gen_weight
        named_ids = self.config.named_weight_ids
        ew = match_event_weights(
            weights, choice, lhe_nominal, named_ids, trace=self._event_trace.claim()
        )
        counter.record_full(gen_weight, ew.scale, ew.pdf, ew.named)
        return EventWeightTables(
            gen_weight=np.array([gen_weight], dtype=np.float64),
            scale=ew.scale.reshape(1, -1),
            pdf=ew.pdf.reshape(1, -1),
            lhe_nominal=np.array([lhe_nominal], dtype=np.float64),
            named=ew.named.reshape(1, -1),
            named_labels=self.config.named_weight_labels,
            scale_doc=choice.scale_weights_doc,
            pdf_doc=choice.pdf_weights_doc,
        )

    def process_chunk(self, counter: WeightCounter, chunk: ak.Array) -> EventWeightTables:
        """Book a chunk of events into ``counter`` and return its tables.

        ``chunk`` is a record array with ``genWeight`` and, when LHE
        information is available, ``originalXWGTUP`` and ``weights``.
        """
        choice = self._require_choice()
        gen_weight = ak.to_numpy(chunk["genWeight"]).astype(np.float64)
        if "weights" not in chunk.fields:
            counter.record_chunk(gen_weight)
            if len(chunk):
                self._warn_missing_lhe()
            return EventWeightTables.nominal_only(gen_weight)

        named_ids = self.config.named_weight_ids
        if len(chunk) and self._event_trace.claim():
            first = chunk[0]
            match_event_weights(
                (RawWeightEntry(w["id"], w["wgt"]) for w in first["weights"]),
                choice, first["originalXWGTUP"], named_ids, trace=True,
            )

        scale, pdf, named = match_chunk_weights(chunk, choice, named_ids)
        counter.record_chunk(gen_weight, scale, pdf, named)
        return EventWeightTables(
            gen_weight=gen_weight,
            scale=scale,
            pdf=pdf,
            lhe_nominal=ak.to_numpy(chunk["originalXWGTUP"]).astype(np.float64),
            named=named,
            named_labels=self.config.named_weight_labels,
            scale_doc=choice.scale_weights_doc,
            pdf_doc=choice.pdf_weights_doc,
        )

    # -- whole run ----------------------------------------------------------

    def stream(
        self,
        headers: Iterable[tuple[str, Sequence[str]]] | None,
        chunks: Iterable[ak.Array],
        sink: Callable[[EventWeightTables], None],
        max_pending: int | None = None,
    ) -> RunSummary:
        """Process one full run, handing each chunk's tables to ``sink``.

        Chunk ``i`` goes to worker ``i % n_workers``.  At most
        ``max_pending`` chunks (default ``2 * n_workers``) are read ahead of
        the sink; ``sink`` sees the tables in chunk order, on the calling
        thread.  Returns the run summary.
        """
        n_workers = len(self._workers)
        if max_pending is None:
            max_pending = 2 * n_workers
        if max_pending < 1:
            raise ConfigurationError("max_pending must be a positive integer")

        self.begin_run(headers)
        pools = [
            ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"lheweights-{w}")
            for w in range(n_workers)
        ]
        pending: deque[Future] = deque()
        n_chunks = 0
        try:
            for chunk in chunks:
                w = n_chunks % n_workers
                pending.append(pools[w].submit(self.process_chunk, self._workers[w], chunk))
                n_chunks += 1
                while len(pending) >= max_pending:
                    # Re-raises a worker failure.
                    sink(pending.popleft().result())
            while pending:
                sink(pending.popleft().result())
        finally:
            for pool in pools:
                pool.shutdown(wait=True, cancel_futures=True)

        summary = self.end_run()
        logger.info(
            "Processed %d events in %d chunks: sumw = %.6g",
            summary.event_count, n_chunks, summary.sumw,
        )
        return summary

    def run(
        self,
        headers: Iterable[tuple[str, Sequence[str]]] | None,
        chunks: Iterable[ak.Array],
    ) -> tuple[EventWeightTables, RunSummary]:
        """Process one full run and keep its tables in memory.

        Returns the concatenated event tables (in chunk order) and the run
        summary.  Use ``stream`` to write tables out as they are produced.
        """
        tables: list[EventWeightTables] = []
        summary = self.stream(headers, chunks, tables.append)
        return EventWeightTables.concatenate(tables), summary
