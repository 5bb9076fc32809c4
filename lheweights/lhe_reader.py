"""Minimal line-oriented reader for Les Houches Event (LHE) files.

Only what the weight producer needs is extracted:

- the sections inside ``<header>`` (``initrwgt`` among them), as
  ``(tag, lines)`` pairs;
- per event, the nominal weight ``XWGTUP`` (third field of the first line
  after ``<event>``) and the ``<wgt id="...">value</wgt>`` entries.

Plain and gzip-compressed (``.gz``) files are supported.
"""

from __future__ import annotations

import gzip
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator

import awkward as ak
import numpy as np

from lheweights.errors import LHEFormatError
from lheweights.event_weights import RawWeightEntry

logger = logging.getLogger(__name__)

_OPEN_TAG_RE = re.compile(r"^\s*<([A-Za-z_][\w.:-]*)(?:\s[^>]*)?>(.*)$")
_WGT_RE = re.compile(r"""<wgt\s+id\s*=\s*['"]([^'"]+)['"]\s*>\s*(\S+)\s*</wgt>""")


@dataclass
class HeaderSection:
    """One element directly inside ``<header>``."""
    tag: str
    lines: list[str] = field(default_factory=list)


@dataclass
class LHEEvent:
    xwgtup: float
    weights: list[RawWeightEntry] = field(default_factory=list)


def _open_text(path):
    path = str(path)
    if path.endswith(".gz"):
        return gzip.open(path, "rt", encoding="utf-8")
    return open(path, "r", encoding="utf-8")


def read_lhe_headers(path: str | Path) -> list[HeaderSection]:
    """Return the sections of the ``<header>`` block (empty if there is none)."""
    sections: list[HeaderSection] = []
    current: HeaderSection | None = None
    close_tag = ""
    in_header = False
    in_comment = False

    with _open_text(path) as fin:
        for raw in fin:
            line = raw.rstrip("\r\n")
            if not in_header:
                if line.strip().startswith("<header"):
                    in_header = True
                elif line.strip().startswith(("<init", "<event")):
                    break
                continue

            if current is not None:
                idx = line.find(close_tag)
                if idx < 0:
                    current.lines.append(line)
                    continue
                if line[:idx].strip():
                    current.lines.append(line[:idx])
                sections.append(current)
                current = None
                continue

            stripped = line.strip()
            if in_comment:
                in_comment = "-->" not in stripped
                continue
            if stripped.startswith("<!--"):
                in_comment = "-->" not in stripped
                continue
            if stripped.startswith("</header"):
                break
            m = _OPEN_TAG_RE.match(line)
            if not m or stripped.endswith("/>"):
                continue

            tag, rest = m.group(1), m.group(2)
            close_tag = f"</{tag}>"
            idx = rest.find(close_tag)
            if idx >= 0:
                sections.append(HeaderSection(tag, [rest[:idx]] if rest[:idx].strip() else []))
            else:
                current = HeaderSection(tag, [rest] if rest.strip() else [])

    if current is not None:
        logger.warning("Unterminated <%s> section in the header of %s", current.tag, path)
        sections.append(current)
    return sections


def iter_lhe_events(path: str | Path) -> Iterator[LHEEvent]:
    """Yield every event of the file in order."""
    n_events = 0
    with _open_text(path) as fin:
        lines = iter(fin)
        for line in lines:
            stripped = line.strip()
            if stripped.startswith("</LesHouchesEvents"):
                break
            if not stripped.startswith("<event"):
                continue

            n_events += 1
            info = next(lines, "").split()
            if len(info) < 3:
                raise LHEFormatError(f"Event {n_events}: missing event information line in {path}")
            try:
                event = LHEEvent(xwgtup=float(info[2]))
            except ValueError as e:
                raise LHEFormatError(f"Event {n_events}: malformed XWGTUP {info[2]!r} in {path}") from e

            for line in lines:
                if line.strip().startswith("</event"):
                    break
                m = _WGT_RE.search(line)
                if not m:
                    continue
                try:
                    event.weights.append(RawWeightEntry(m.group(1), float(m.group(2))))
                except ValueError as e:
                    raise LHEFormatError(f"Event {n_events}: Malformed line: {line.strip()}") from e
            yield event


def events_to_chunk(events: list[LHEEvent]) -> ak.Array:
    """Pack events into a record array.

    Fields: ``genWeight``, ``originalXWGTUP`` (both XWGTUP for plain LHE
    input) and ``weights`` (``var * {id: string, wgt: float64}``).
    """
    xwgtup = np.array([ev.xwgtup for ev in events], dtype=np.float64)
    counts = np.array([len(ev.weights) for ev in events], dtype=np.int64)
    ids = np.array([w.id for ev in events for w in ev.weights], dtype=str)
    values = np.array([w.value for ev in events for w in ev.weights], dtype=np.float64)
    weights = ak.zip({
        "id": ak.unflatten(ak.from_numpy(ids), counts),
        "wgt": ak.unflatten(values, counts),
    })
    return ak.zip(
        {"genWeight": xwgtup, "originalXWGTUP": xwgtup, "weights": weights},
        depth_limit=1,
    )


def iter_lhe_chunks(path: str | Path, chunksize: int) -> Iterator[ak.Array]:
    """Yield the file's events in chunks of at most ``chunksize``."""
    if chunksize < 1:
        raise ValueError("chunksize must be a positive integer")
    buffer: list[LHEEvent] = []
    for event in iter_lhe_events(path):
        buffer.append(event)
        if len(buffer) >= chunksize:
            yield events_to_chunk(buffer)
            buffer = []
    if buffer:
        yield events_to_chunk(buffer)
