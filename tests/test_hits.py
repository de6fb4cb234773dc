import numpy as np
import pytest

from ntag.errors import InputShapeError
from ntag.physics.hits import Hit, HitBuffer


def test_append_rejects_mismatched_lengths():
    buf = HitBuffer()
    with pytest.raises(InputShapeError):
        buf.append([1.0, 2.0], [1.0], [1, 2])
    with pytest.raises(InputShapeError):
        buf.append([1.0], [1.0], [1], in_gate=[True, False])


def test_gate_and_max_cable():
    buf = HitBuffer(max_cable=10)
    n = buf.append([1.0, 2.0, 3.0, 4.0], [1, 1, 1, 1], [1, 2, 11, 3], in_gate=[True, False, True, True])
    assert n == 2
    assert list(buf.cable) == [1, 3]
    assert buf.n_total == 2


def test_dead_time_reduction():
    buf = HitBuffer(dead_time_ns=10.0)
    buf.append([0.0, 5.0, 20.0, 6.0], [1, 1, 1, 1], [1, 1, 1, 2])
    assert np.allclose(buf.t, [0.0, 20.0, 6.0])
    assert buf.n_removed == 1
    assert buf.n_total == 4


def test_signal_matching_by_cable_and_time():
    buf = HitBuffer(signal_match_tol_ns=1e-3)
    buf.append([1.0, 2.0, 3.0], [1, 1, 1], [1, 1, 2], signal_t=[2.0005, 3.0], signal_cable=[1, 1])
    assert buf.has_signal
    assert list(buf.signal) == [False, True, False]
    assert buf.n_signal_found == 1
    assert [h.signal for h in buf] == [False, True, False]


def test_no_truth_means_absent_flags():
    buf = HitBuffer()
    buf.append([1.0], [1.0], [1])
    assert buf.signal is None
    assert next(iter(buf)).signal is None


def test_cannot_mix_truth_and_no_truth():
    buf = HitBuffer()
    buf.append([1.0], [1.0], [1])
    with pytest.raises(InputShapeError):
        buf.append([2.0], [1.0], [1], signal_t=[2.0], signal_cable=[1])


def test_truth_state_survives_a_fully_gated_chunk():
    buf = HitBuffer()
    kept = buf.append([1.0, 2.0], [1.0, 1.0], [1, 2], in_gate=[False, False],
                      signal_t=[1.0], signal_cable=[1])
    assert kept == 0 and len(buf) == 0
    with pytest.raises(InputShapeError, match="Cannot mix"):
        buf.append([3.0, 4.0], [1.0, 1.0], [1, 2])
    # clear forgets the truth state
    buf.clear()
    buf.append([3.0], [1.0], [1])
    assert not buf.has_signal
    with pytest.raises(InputShapeError, match="Cannot mix"):
        buf.append_hit(Hit(5.0, 1.0, 2, True))


def test_stitch_aligns_second_window():
    buf = HitBuffer()
    buf.append([0.0, 1.0, 2.0], [1.0, 2.0, 3.0], [1, 2, 3])
    # the incoming hit (q=3, cable=3) repeats the last buffered hit
    buf.append([-5.0, -3.0, 0.0], [9.0, 3.0, 4.0], [9, 3, 4], stitch=True)
    assert np.allclose(buf.t, [0.0, 1.0, 2.0, -5.0, 2.0, 5.0])


def test_append_hit_and_clear():
    buf = HitBuffer()
    buf.append_hit(Hit(1.5, 2.0, 7))
    buf.append_hit(Hit(2.5, 1.0, 8))
    assert len(buf) == 2 and buf.signal is None
    buf.clear()
    assert len(buf) == 0 and buf.n_total == 0
    assert buf.t.dtype == np.float64
