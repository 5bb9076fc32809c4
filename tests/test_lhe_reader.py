"""Tests for lheweights.lhe_reader: header sections and event weights from LHE files."""

import gzip
import shutil
from pathlib import Path

import awkward as ak
import numpy as np
import pytest

from lheweights.errors import LHEFormatError
from lheweights.lhe_reader import (
    events_to_chunk,
    iter_lhe_chunks,
    iter_lhe_events,
    read_lhe_headers,
)

FIXTURES = Path(__file__).parent / "fixtures"
SAMPLE_LHE = FIXTURES / "sample.lhe"

MINIMAL_EVENT = """<event>
 2 1 {xwgtup} 9.1e+01 7.5e-03 1.2e-01
 21 -1 0 0 501 502 0.0 0.0 300.0 300.0 0.0 0.0 -1.0
{body}</event>
"""


def _write(tmp_path, text, name="test.lhe"):
    path = tmp_path / name
    path.write_text(text)
    return path


def _lhe(header="", events=""):
    return f'<LesHouchesEvents version="3.0">\n{header}<init>\n</init>\n{events}</LesHouchesEvents>\n'


# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------

class TestReadHeaders:
    def test_sample_sections(self):
        sections = read_lhe_headers(SAMPLE_LHE)
        assert [s.tag for s in sections] == ["MGVersion", "initrwgt"]
        initrwgt = sections[1]
        assert initrwgt.lines[0].startswith('<weightgroup combine="envelope" name="scale_variation">')
        assert initrwgt.lines[-1] == "</weightgroup>"
        assert len(initrwgt.lines) == 13

    def test_comment_block_skipped(self):
        sections = read_lhe_headers(SAMPLE_LHE)
        assert all("MadGraph5" not in line for s in sections for line in s.lines)

    def test_single_line_section(self, tmp_path):
        path = _write(tmp_path, _lhe("<header>\n<MGVersion>3.5.0</MGVersion>\n</header>\n"))
        sections = read_lhe_headers(path)
        assert len(sections) == 1
        assert sections[0].tag == "MGVersion"
        assert sections[0].lines == ["3.5.0"]

    def test_self_closing_tags_ignored(self, tmp_path):
        path = _write(tmp_path, _lhe("<header>\n<generator name='x'/>\n</header>\n"))
        assert read_lhe_headers(path) == []

    def test_no_header(self, tmp_path):
        path = _write(tmp_path, _lhe(events=MINIMAL_EVENT.format(xwgtup=1.0, body="")))
        assert read_lhe_headers(path) == []

    def test_unterminated_section_kept(self, tmp_path, caplog):
        path = _write(tmp_path, '<LesHouchesEvents version="3.0">\n<header>\n<initrwgt>\n<weightgroup>\n')
        sections = read_lhe_headers(path)
        assert [s.tag for s in sections] == ["initrwgt"]
        assert sections[0].lines == ["<weightgroup>"]
        assert any("Unterminated" in r.getMessage() for r in caplog.records)

    def test_gzip_input(self, tmp_path):
        gz_path = tmp_path / "sample.lhe.gz"
        with open(SAMPLE_LHE, "rb") as fin, gzip.open(gz_path, "wb") as fout:
            shutil.copyfileobj(fin, fout)
        assert [s.tag for s in read_lhe_headers(gz_path)] == ["MGVersion", "initrwgt"]
        assert len(list(iter_lhe_events(gz_path))) == 3


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

class TestIterEvents:
    def test_sample_events(self):
        events = list(iter_lhe_events(SAMPLE_LHE))
        assert [ev.xwgtup for ev in events] == [2.0, -2.0, 4.0]
        assert [w.id for w in events[0].weights] == ["1001", "1002", "1003", "2001", "2002", "3001"]
        assert events[0].weights[4].value == pytest.approx(2.2)
        assert len(events[1].weights) == 2
        assert events[2].weights == []

    def test_double_quoted_ids(self, tmp_path):
        body = '<rwgt>\n<wgt id="rwgt_1">0.5</wgt>\n</rwgt>\n'
        path = _write(tmp_path, _lhe(events=MINIMAL_EVENT.format(xwgtup=1.0, body=body)))
        (event,) = iter_lhe_events(path)
        assert event.weights[0].id == "rwgt_1"
        assert event.weights[0].value == 0.5

    def test_malformed_weight_value(self, tmp_path):
        body = "<rwgt>\n<wgt id='1001'> 1.0.0 </wgt>\n</rwgt>\n"
        path = _write(tmp_path, _lhe(events=MINIMAL_EVENT.format(xwgtup=1.0, body=body)))
        with pytest.raises(LHEFormatError, match="Event 1: Malformed line"):
            list(iter_lhe_events(path))

    def test_malformed_xwgtup(self, tmp_path):
        path = _write(tmp_path, _lhe(events=MINIMAL_EVENT.format(xwgtup="abc", body="")))
        with pytest.raises(LHEFormatError, match="malformed XWGTUP"):
            list(iter_lhe_events(path))

    def test_truncated_event_info(self, tmp_path):
        path = _write(tmp_path, _lhe(events="<event>\n 2 1\n</event>\n"))
        with pytest.raises(LHEFormatError, match="missing event information"):
            list(iter_lhe_events(path))

    def test_empty_file(self, tmp_path):
        path = _write(tmp_path, _lhe())
        assert list(iter_lhe_events(path)) == []


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------

class TestChunks:
    def test_events_to_chunk_layout(self):
        events = list(iter_lhe_events(SAMPLE_LHE))
        chunk = events_to_chunk(events)
        assert set(chunk.fields) == {"genWeight", "originalXWGTUP", "weights"}
        np.testing.assert_array_equal(ak.to_numpy(chunk["genWeight"]), [2.0, -2.0, 4.0])
        assert ak.to_list(ak.num(chunk["weights"], axis=1)) == [6, 2, 0]
        assert ak.to_list(chunk["weights"]["id"][1]) == ["1001", "1002"]
        assert ak.to_list(chunk["weights"]["wgt"][1]) == [-2.0, -1.0]

    @pytest.mark.parametrize("chunksize, sizes", [(1, [1, 1, 1]), (2, [2, 1]), (3, [3]), (10, [3])])
    def test_chunk_sizes(self, chunksize, sizes):
        assert [len(c) for c in iter_lhe_chunks(SAMPLE_LHE, chunksize)] == sizes

    def test_invalid_chunksize(self):
        with pytest.raises(ValueError):
            next(iter_lhe_chunks(SAMPLE_LHE, 0))
