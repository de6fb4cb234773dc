import numpy as np
import pytest

from ntag.errors import SensorIdError
from ntag.geometry.pmt import PMTGeometry
from ntag.physics.hits import HitBuffer
from ntag.physics.tof import ToFCorrector, SortedHitSeries, tof_ns, C_WATER_CM_PER_NS
from ntag.physics.vertex import Vertex

C = C_WATER_CM_PER_NS

def _geom():
    # PMTs 1, 2, 3 ns of light travel from the origin along +x, +y, +z
    return PMTGeometry.from_array([[C, 0, 0], [0, 2 * C, 0], [0, 0, 3 * C]])

def _buffer(t, cable):
    buf = HitBuffer()
    buf.append(t, np.ones(len(t)), cable)
    return buf


def test_tof_ns_is_distance_over_speed():
    d = tof_ns(Vertex(0, 0, 0), _geom().xyz)
    assert np.allclose(d, [1.0, 2.0, 3.0])


def test_unsorted_correction_keeps_buffer_order():
    buf = _buffer([10.0, 10.0, 10.0], [3, 1, 2])
    corr = ToFCorrector(_geom()).correct(buf, Vertex(0, 0, 0), sort=False)
    assert np.allclose(corr.t, [7.0, 9.0, 8.0])
    assert np.allclose(corr.t_raw, [10.0, 10.0, 10.0])
    assert list(corr.cable) == [3, 1, 2]
    # the buffer is never modified
    assert np.allclose(buf.t, [10.0, 10.0, 10.0])


def test_sorted_series_round_trip():
    rng = np.random.default_rng(11)
    n = 200
    buf = _buffer(rng.uniform(0, 50, n).round(1), rng.integers(1, 4, n))
    corr = ToFCorrector(_geom()).correct(buf, Vertex(0, 0, 0), sort=False)
    s = ToFCorrector(_geom()).correct(buf, Vertex(0, 0, 0), sort=True)
    assert isinstance(s, SortedHitSeries)
    assert np.all(np.diff(s.t) >= 0)
    for k in range(n):
        j = s.reverse_index[k]
        assert corr.t[j] == s.t[k]
        assert corr.cable[j] == s.cable[k]
    assert np.array_equal(s.raw_times(0, n), buf.t[s.reverse_index])


def test_sort_is_stable_on_ties():
    buf = _buffer([5.0, 5.0, 1.0, 5.0], [1, 1, 1, 1])
    s = ToFCorrector(_geom()).correct(buf, Vertex(0, 0, 0), sort=True)
    assert list(s.reverse_index) == [2, 0, 1, 3]


def test_use_tof_false_keeps_raw_times():
    buf = _buffer([3.0, 1.0, 2.0], [1, 2, 3])
    s = ToFCorrector(_geom(), use_tof=False).correct(buf, Vertex(0, 0, 0), sort=True)
    assert np.allclose(s.t, [1.0, 2.0, 3.0])


@pytest.mark.parametrize("bad", [0, 4])
def test_unknown_sensor_id(bad):
    buf = _buffer([1.0, 2.0], [1, bad])
    with pytest.raises(SensorIdError, match="sensor id out of range"):
        ToFCorrector(_geom()).correct(buf, Vertex(0, 0, 0))


def test_signal_flags_follow_the_sort():
    buf = HitBuffer()
    buf.append([3.0, 1.0], [1.0, 1.0], [1, 1], signal_t=[3.0], signal_cable=[1])
    s = ToFCorrector(_geom(), use_tof=False).correct(buf, Vertex(0, 0, 0), sort=True)
    assert list(s.signal) == [False, True]
