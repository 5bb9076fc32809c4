"""Weight-group parsing for the LHE ``initrwgt`` header block.

The generator declares every alternative weight it writes per event inside
``<weightgroup>`` elements, one ``<weight>`` per line::

    <weightgroup combine="envelope" name="scale_variation">
    <weight id="1001"> muR=0.10000E+01 muF=0.10000E+01 </weight>
    ...
    </weightgroup>
    <weightgroup combine="hessian" name="PDF_variation">
    <weight id="2001"> PDF set = 91400 </weight>
    ...

Only this narrow, line-oriented grammar is understood.  The scanner is a
small state machine (idle / in a scale group / in a PDF group / in some other
group); every line is classified independently, so a malformed line can only
ever cost that one weight.

A group opening while another one is still open is taken as an implicit
close of the first group followed by the start of the new one.
"""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

from lheweights.weight_config import PDF_GROUP_NAME, SCALE_DOC_PREFIX, SCALE_GROUP_NAME

logger = logging.getLogger(__name__)

_GROUP_OPEN_RE = re.compile(r'<weightgroup\s+combine="(.*)"\s+name="(.*)"\s*>')
_GROUP_CLOSE_RE = re.compile(r"</weightgroup>")
_SCALE_WEIGHT_RE = re.compile(r'<weight\s+id="(\d+)">\s*(muR=(\S+)\s+muF=(\S+)(\s+.*)?)</weight>')
_PDF_WEIGHT_RE = re.compile(r'<weight\s+id="(\d+)">\s*PDF set\s*=\s*(\d+)\s*</weight>')

_MAX_LHA_ID = 0xFFFFFFFF
# Plain decimal literal with optional exponent (no "_", "inf" or "nan").
_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def _parse_scale(text: str) -> np.float32:
    if not _NUMBER_RE.fullmatch(text):
        raise ValueError(f"not a number: {text!r}")
    return np.float32(float(text))


# ---------------------------------------------------------------------------
# Candidates
# ---------------------------------------------------------------------------

@dataclass
class ScaleVariationCandidate:
    """One declared renormalization/factorization scale variation."""
    id: str
    label: str
    muR: np.float32
    muF: np.float32

    @classmethod
    def from_text(cls, wid: str, label: str, mur: str, muf: str) -> "ScaleVariationCandidate":
        """Build from the raw regex captures; raises ValueError on a bad number."""
        return cls(wid, label, _parse_scale(mur), _parse_scale(muf))

    def sort_key(self):
        return (self.muR, self.muF, self.id)


@dataclass
class PDFSetCandidate:
    """A run of PDF-set members with consecutive LHA IDs."""
    ids: list[str]
    lha_first: int
    lha_last: int

    @classmethod
    def start(cls, wid: str, lha_id: int) -> "PDFSetCandidate":
        return cls([wid], lha_id, lha_id)

    @property
    def lha_range(self) -> tuple[int, int]:
        return (self.lha_first, self.lha_last)

    def maybe_add(self, wid: str, lha_id: int) -> bool:
        """Append ``wid`` if ``lha_id`` directly follows the last member."""
        if lha_id != self.lha_last + 1:
            return False
        self.lha_last += 1
        self.ids.append(wid)
        return True


@dataclass
class WeightGroups:
    """Result of scanning one or more ``initrwgt`` sections."""
    scale_variations: list[ScaleVariationCandidate] = field(default_factory=list)
    pdf_sets: list[PDFSetCandidate] = field(default_factory=list)

    def scale_weight_ids(self) -> list[str]:
        return [sv.id for sv in self.scale_variations]

    def scale_weights_doc(self) -> str:
        """``[index] is <label>`` for every scale variation, in column order."""
        if not self.scale_variations:
            return ""
        entries = "; ".join(
            f"[{i}] is {sv.label}" for i, sv in enumerate(self.scale_variations)
        )
        return SCALE_DOC_PREFIX + entries


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------

class _State(enum.Enum):
    IDLE = "idle"
    IN_SCALE = "scale"
    IN_PDF = "pdf"
    IN_IGNORED = "ignored"


def _state_for_group(name: str) -> _State:
    if name == SCALE_GROUP_NAME:
        return _State.IN_SCALE
    if name == PDF_GROUP_NAME:
        return _State.IN_PDF
    return _State.IN_IGNORED


class _WeightGroupScanner:
    """Line-at-a-time state machine filling a WeightGroups instance."""

    def __init__(self, groups: WeightGroups, trace: bool = False):
        self.groups = groups
        self.trace = trace
        self.state = _State.IDLE

    def feed(self, line: str) -> None:
        if self.trace:
            logger.debug("%s| %s", self.state.value, line.rstrip("\n"))
        if self.state is _State.IDLE:
            self._open_group(line)
        elif self.state is _State.IN_SCALE:
            self._in_scale(line)
        elif self.state is _State.IN_PDF:
            self._in_pdf(line)
        else:
            self._in_ignored(line)

    # -- transitions --------------------------------------------------------

    def _open_group(self, line: str) -> bool:
        m = _GROUP_OPEN_RE.search(line)
        if not m:
            return False
        self.state = _state_for_group(m.group(2))
        if self.trace:
            logger.debug(">>> Beginning of a weight group for %s", m.group(2))
        return True

    def _close_group(self, line: str) -> bool:
        if not _GROUP_CLOSE_RE.search(line):
            return False
        self.state = _State.IDLE
        if self.trace:
            logger.debug(">>> End of a weight group")
        return True

    def _reopen_group(self, line: str) -> bool:
        if not _GROUP_OPEN_RE.search(line):
            return False
        if self.trace:
            logger.debug(">>> New weight group before the end of the previous one; closing it")
        return self._open_group(line)

    def _in_scale(self, line: str) -> None:
        m = _SCALE_WEIGHT_RE.search(line)
        if m:
            wid, label, mur, muf = m.group(1), m.group(2), m.group(3), m.group(4)
            try:
                candidate = ScaleVariationCandidate.from_text(wid, label, mur, muf)
            except ValueError:
                logger.warning(
                    "Dropping scale weight id %s: cannot parse muR=%r muF=%r", wid, mur, muf
                )
                return
            if self.trace:
                logger.debug("    >>> Scale weight %s for %s , %s , %s", wid, mur, muf, m.group(5))
            self.groups.scale_variations.append(candidate)
            return
        if self._close_group(line):
            return
        self._reopen_group(line)

    def _in_pdf(self, line: str) -> None:
        m = _PDF_WEIGHT_RE.search(line)
        if m:
            wid, lha_text = m.group(1), m.group(2)
            lha_id = int(lha_text)
            if lha_id > _MAX_LHA_ID:
                logger.warning("Dropping PDF weight id %s: LHA ID %s out of range", wid, lha_text)
                return
            if self.trace:
                logger.debug("    >>> PDF weight %s for %s = %d", wid, lha_text, lha_id)
            pdf_sets = self.groups.pdf_sets
            if not pdf_sets or not pdf_sets[-1].maybe_add(wid, lha_id):
                pdf_sets.append(PDFSetCandidate.start(wid, lha_id))
            return
        if self._close_group(line):
            return
        self._reopen_group(line)

    def _in_ignored(self, line: str) -> None:
        if self._close_group(line):
            return
        self._reopen_group(line)


def _drop_repeated_ids(candidates: list[ScaleVariationCandidate]) -> list[ScaleVariationCandidate]:
    """Keep the first declaration of each scale weight id."""
    seen: set[str] = set()
    unique = []
    for sv in candidates:
        if sv.id in seen:
            logger.warning("Ignoring repeated declaration of scale weight id %s", sv.id)
            continue
        seen.add(sv.id)
        unique.append(sv)
    return unique


def parse_weight_groups(sections: Iterable[Iterable[str]], *, trace: bool = False) -> WeightGroups:
    """Scan ``initrwgt`` sections and classify the declared weights.

    ``sections`` is an iterable of line sequences, one per header section.
    Each section starts in the idle state; running off the end of a section
    inside a group is fine.  Scale variations are returned sorted by
    ``(muR, muF, id)``, which fixes the scale column order for the run.
    PDF sets keep declaration order.
    """
    groups = WeightGroups()
    for lines in sections:
        scanner = _WeightGroupScanner(groups, trace=trace)
        for line in lines:
            scanner.feed(line)

    groups.scale_variations = _drop_repeated_ids(groups.scale_variations)
    groups.scale_variations.sort(key=ScaleVariationCandidate.sort_key)

    if trace:
        logger.debug("Found %d scale variations:", len(groups.scale_variations))
        for sv in groups.scale_variations:
            logger.debug(
                "    id %s: scales ren = % .2f  fact = % .2f  text = %s",
                sv.id, sv.muR, sv.muF, sv.label,
            )
        logger.debug("Found %d PDF set errors:", len(groups.pdf_sets))
        for ps in groups.pdf_sets:
            logger.debug(
                "lhaIDs %6d - %6d (%3d weights: %s, ... )",
                ps.lha_first, ps.lha_last, len(ps.ids), ps.ids[0],
            )
    return groups
