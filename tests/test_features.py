import numpy as np
import pytest

from ntag.config.schemas import SearchCfg
from ntag.errors import InputShapeError
from ntag.filters.peak_search import PeakSearch
from ntag.geometry.pmt import PMTGeometry
from ntag.physics.candidates import Candidate
from ntag.physics.features import CandidateFeatureExtractor, beta_values, time_rms, time_skew
from ntag.physics.hits import HitBuffer
from ntag.physics.tof import ToFCorrector
from ntag.physics.vertex import Vertex

def _ring(n=12, r=100.0):
    phi = 2 * np.pi * np.arange(n) / n
    return PMTGeometry.from_array(np.stack([r * np.cos(phi), r * np.sin(phi), np.zeros(n)], axis=1))

def _one_peak(t, cable, q=None, signal=None):
    geom = _ring()
    buf = HitBuffer()
    kw = {}
    if signal is not None:
        kw = dict(signal_t=np.asarray(t)[signal], signal_cable=np.asarray(cable)[signal])
    buf.append(t, np.ones(len(t)) if q is None else q, cable, **kw)
    series = ToFCorrector(geom, use_tof=False).correct(buf, Vertex(0, 0, 0), sort=True)
    peaks, _ = PeakSearch(SearchCfg(early_time_cutoff_ns=-1.0)).run(series.t)
    assert len(peaks) == 1
    ex = CandidateFeatureExtractor(geom, fit_features=["energy"])
    return ex, ex.make_candidate(0, series, peaks[0]), series


def test_time_statistics():
    assert time_rms([0.0, 1.0, 2.0, 3.0]) == pytest.approx(np.sqrt(1.25))
    assert time_skew([1.0, 2.0, 3.0]) == pytest.approx(0.0)
    assert time_skew([4.0, 4.0, 4.0]) == 0.0
    assert time_skew([0.0, 0.0, 0.0, 3.0]) > 0


def test_beta_values_limits():
    same = np.array([[1.0, 0, 0], [1.0, 0, 0]])
    assert np.allclose(beta_values(same), 1.0)
    opposite = np.array([[1.0, 0, 0], [-1.0, 0, 0]])
    assert np.allclose(beta_values(opposite), [-1, 1, -1, 1, -1])
    assert np.allclose(beta_values(same[:1]), 0.0)


def test_extracted_features():
    t = [0.0, 1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 9.0, 50.0]
    cable = [1, 2, 3, 4, 5, 6, 7, 8, 9]
    q = [1.0, 2.0, 1.0, 1.0, 1.0, 1.0, 1.0, 3.0, 1.0]
    ex, cand, _ = _one_peak(t, cable, q)
    ex.extract(cand, Vertex(0, 0, 0), {"energy": 12.5})

    assert cand.n_hits == 8
    assert cand.int_vars["N10"] == 8
    # centred on 0 + 10/2: [-20, 30) and [-95, 105)
    assert cand.int_vars["N50"] == 8
    assert cand.int_vars["N200"] == 9
    assert "NSigHits" not in cand.int_vars

    fv = cand.float_vars
    assert fv["FirstHitT"] == 0.0
    assert fv["ReconCT"] == pytest.approx(np.mean(t[:8]))
    assert fv["sumQ"] == pytest.approx(11.0)
    assert fv["spread"] == pytest.approx(9.0)
    assert fv["trmsold"] == pytest.approx(np.std(t[:8]))
    assert fv["energy"] == 12.5
    assert set(f"beta{l}" for l in range(1, 6)) <= set(fv)
    assert np.allclose(cand.t_raw, t[:8])


def test_signal_hit_count():
    t = [0.0, 1.0, 2.0, 3.0, 4.0, 5.0, 6.0]
    cable = [1, 2, 3, 4, 5, 6, 7]
    ex, cand, _ = _one_peak(t, cable, signal=np.array([1, 1, 0, 0, 1, 0, 0], dtype=bool))
    ex.extract(cand, Vertex(0, 0, 0), {"energy": 1.0})
    assert cand.int_vars["NSigHits"] == 3


def test_missing_fit_scalar_is_an_error():
    ex, cand, _ = _one_peak(list(np.arange(7.0)), list(range(1, 8)))
    with pytest.raises(InputShapeError):
        ex.extract(cand, Vertex(0, 0, 0), {})


def test_empty_window_is_an_error():
    ex, cand, series = _one_peak(list(np.arange(7.0)), list(range(1, 8)))
    empty = Candidate(candidate_id=1, hits=series, start=3, stop=3)
    with pytest.raises(InputShapeError):
        ex.extract(empty, Vertex(0, 0, 0), {"energy": 1.0})


def test_float_feature_wins_on_shared_name():
    ex, cand, _ = _one_peak(list(np.arange(7.0)), list(range(1, 8)))
    cand.int_vars["N10"] = 7
    cand.float_vars["N10"] = 6.5
    assert cand.features()["N10"] == 6.5


@pytest.mark.parametrize("name", ["N10", "N50", "NSigHits", "CaptureType"])
def test_fit_scalar_cannot_reuse_an_int_feature_name(name):
    with pytest.raises(InputShapeError, match="shadow"):
        CandidateFeatureExtractor(_ring(), fit_features=["energy", name])
