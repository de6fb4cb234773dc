import numpy as np
import pandas as pd
import pytest

from ntag.errors import InputShapeError, SensorIdError
from ntag.geometry.pmt import PMTGeometry
from ntag.io.pmt_table import load_pmt_table


def test_lookup_is_one_based():
    g = PMTGeometry.from_array([[1, 0, 0], [0, 2, 0], [0, 0, 3]])
    assert g.n_pmts == 3
    assert np.allclose(g.position(2), [0, 2, 0])
    assert np.allclose(g.positions([3, 1]), [[0, 0, 3], [1, 0, 0]])
    with pytest.raises(SensorIdError):
        g.position(4)
    with pytest.raises(IndexError):
        g.positions([0])


def test_table_is_read_only():
    g = PMTGeometry.from_array(np.zeros((2, 3)))
    with pytest.raises(ValueError):
        g.xyz[0, 0] = 1.0


@pytest.mark.parametrize("bad", [np.zeros((0, 3)), np.zeros((4, 2)), np.zeros(3)])
def test_bad_tables(bad):
    with pytest.raises(InputShapeError):
        PMTGeometry.from_array(bad)


def test_directions():
    g = PMTGeometry.from_array([[10, 0, 0], [0, 0, -5]])
    d = g.directions_from(np.zeros(3), [1, 2])
    assert np.allclose(d, [[1, 0, 0], [0, 0, -1]])
    with pytest.raises(InputShapeError):
        g.directions_from(np.array([10.0, 0, 0]), [1])


def test_load_npz_and_csv(tmp_path):
    xyz = np.array([[1.0, 2, 3], [4, 5, 6], [7, 8, 9]])
    p = tmp_path / "pmts.npz"
    np.savez(p, x=xyz[:, 0], y=xyz[:, 1], z=xyz[:, 2], cable=np.array([3, 1, 2]))
    g = load_pmt_table(p)
    # row with cable 3 lands at index 2
    assert np.allclose(g.position(3), [1, 2, 3])
    assert np.allclose(g.position(1), [4, 5, 6])

    c = tmp_path / "pmts.csv"
    pd.DataFrame({"X": xyz[:, 0], "Y": xyz[:, 1], "Z": xyz[:, 2]}).to_csv(c, index=False)
    g = load_pmt_table(c)
    assert np.allclose(g.xyz, xyz)

    with pytest.raises(FileNotFoundError):
        load_pmt_table(tmp_path / "nope.npz")
