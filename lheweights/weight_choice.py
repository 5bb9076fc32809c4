"""Per-run choice of LHE weight columns.

Built once at the start of a run from the run header, then shared read-only
by every worker processing that run's events.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from lheweights.weight_config import INITRWGT_TAG, PDF_DOC_PREFIX
from lheweights.weight_groups import PDFSetCandidate, parse_weight_groups

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DynamicWeightChoice:
    """Frozen column layout of the LHE weight tables for one run.

    Empty id tuples mean the run carries no reweighting information; that is
    a normal state, not an error.
    """
    scale_weight_ids: tuple[str, ...] = ()
    scale_weights_doc: str = ""
    pdf_weight_ids: tuple[str, ...] = ()
    pdf_weights_doc: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.scale_weight_ids and not self.pdf_weight_ids


def select_pdf_set(
    pdf_sets: Sequence[PDFSetCandidate],
    preferred_lha_ids: Iterable[int],
) -> PDFSetCandidate | None:
    """Return the first PDF family, in preference order, that is declared.

    A family matches a preferred LHA ID when its range starts at that ID.
    """
    for lha_id in preferred_lha_ids:
        for pdf_set in pdf_sets:
            if pdf_set.lha_first == lha_id:
                return pdf_set
    return None


def resolve_weight_choice(
    headers: Iterable[tuple[str, Sequence[str]]] | None,
    preferred_lha_ids: Iterable[int],
    *,
    trace: bool = False,
) -> DynamicWeightChoice:
    """Build the run's DynamicWeightChoice from its header sections.

    ``headers`` is an iterable of ``(tag, lines)`` pairs, or None when the run
    has no LHE run information at all.  Only ``initrwgt`` sections are
    scanned.
    """
    if headers is None:
        if trace:
            logger.debug("No LHE run information, LHE weight tables will be empty")
        return DynamicWeightChoice()

    sections = []
    for tag, lines in headers:
        if tag != INITRWGT_TAG:
            if trace:
                logger.debug("Skipping LHE header with tag %s", tag)
            continue
        if trace:
            logger.debug("Found LHE header with tag %s", tag)
        sections.append(lines)

    if not sections:
        return DynamicWeightChoice()

    groups = parse_weight_groups(sections, trace=trace)

    pdf_ids: tuple[str, ...] = ()
    pdf_doc = ""
    chosen = select_pdf_set(groups.pdf_sets, preferred_lha_ids)
    if chosen is not None:
        pdf_ids = tuple(chosen.ids)
        pdf_doc = f"{PDF_DOC_PREFIX}{chosen.lha_first} - {chosen.lha_last}"
        if trace:
            logger.debug("Using PDF set with LHA IDs %d - %d", chosen.lha_first, chosen.lha_last)
    elif groups.pdf_sets:
        logger.info(
            "None of the preferred PDF sets found in the run header (declared: %s)",
            ", ".join(f"{ps.lha_first}-{ps.lha_last}" for ps in groups.pdf_sets),
        )

    return DynamicWeightChoice(
        scale_weight_ids=tuple(groups.scale_weight_ids()),
        scale_weights_doc=groups.scale_weights_doc(),
        pdf_weight_ids=pdf_ids,
        pdf_weights_doc=pdf_doc,
    )
