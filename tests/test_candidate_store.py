import numpy as np
import pytest

from ntag.errors import SchemaViolationError
from ntag.physics.candidate_store import CandidateStore
from ntag.physics.candidates import Candidate
from ntag.physics.tof import CorrectedHitSeries, SortedHitSeries

def _series(n=5):
    t = np.arange(float(n))
    return SortedHitSeries.from_corrected(
        CorrectedHitSeries(t=t, t_raw=t + 1.0, q=np.ones(n), cable=np.arange(1, n + 1), signal=None)
    )

def _cand(cid, ints, floats):
    return Candidate(candidate_id=cid, hits=_series(), start=0, stop=3, int_vars=dict(ints), float_vars=dict(floats))


def test_columns_follow_candidate_order():
    st = CandidateStore()
    st.append(_cand(0, {"N10": 7}, {"ReconCT": 1.5}))
    st.append(_cand(1, {"N10": 9}, {"ReconCT": 2.5}))
    assert st.names() == ["N10", "ReconCT"]
    assert list(st.int_column("N10")) == [7, 9]
    assert st.column("ReconCT").dtype == np.float64
    ints, floats = st.event_arrays()
    assert len(ints["N10"]) == len(floats["ReconCT"]) == 2


def test_unseen_name_is_a_schema_violation():
    st = CandidateStore()
    st.append(_cand(0, {"N10": 7}, {"ReconCT": 1.5}))
    with pytest.raises(SchemaViolationError, match="unexpected"):
        st.append(_cand(1, {"N10": 7}, {"ReconCT": 1.5, "extra": 0.0}))


def test_missing_name_is_a_schema_violation():
    st = CandidateStore()
    st.append(_cand(0, {"N10": 7, "N200": 9}, {}))
    with pytest.raises(SchemaViolationError, match="missing"):
        st.append(_cand(1, {"N10": 7}, {}))


def test_out_of_order_id():
    st = CandidateStore()
    with pytest.raises(SchemaViolationError):
        st.append(_cand(1, {"N10": 7}, {}))


def test_clear_keeps_schema():
    st = CandidateStore()
    st.append(_cand(0, {"N10": 7}, {"ReconCT": 1.5}))
    st.clear()
    assert len(st) == 0
    assert st.names() == ["N10", "ReconCT"]
    with pytest.raises(SchemaViolationError):
        st.append(_cand(0, {"N10": 7}, {}))


def test_shared_name_reads_float_column():
    st = CandidateStore()
    st.append(_cand(0, {"N10": 7}, {"N10": 6.5}))
    assert st.names() == ["N10"]
    assert st.column("N10")[0] == 6.5
    assert st.int_column("N10")[0] == 7


def test_commit_builds_event_pointer():
    st = CandidateStore()
    st.append(_cand(0, {"N10": 7}, {"ReconCT": 1.0}))
    st.append(_cand(1, {"N10": 8}, {"ReconCT": 2.0}))
    assert st.commit_event(10) == 2
    assert st.commit_event(11) == 0
    st.append(_cand(0, {"N10": 9}, {"ReconCT": 3.0}))
    assert st.commit_event(12) == 1

    event_id, ptr, ints, floats = st.run_arrays()
    assert list(event_id) == [10, 11, 12]
    assert list(ptr) == [0, 2, 2, 3]
    assert list(ints["N10"]) == [7, 8, 9]
    assert np.allclose(floats["ReconCT"], [1.0, 2.0, 3.0])
    assert st.n_events == 3

    st.reset_run()
    assert st.n_events == 0


def test_candidate_slices_recover_raw_times():
    c = _cand(0, {}, {})
    assert np.allclose(c.t_res, [0.0, 1.0, 2.0])
    assert np.allclose(c.t_raw, [1.0, 2.0, 3.0])
    assert c.signal is None
