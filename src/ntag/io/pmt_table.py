from __future__ import annotations
from pathlib import Path
import numpy as np
import pandas as pd

from ntag.errors import InputShapeError
from ntag.geometry.pmt import PMTGeometry

def load_npz_pmt_table(path: str | Path) -> PMTGeometry:
    p = Path(path)
    with np.load(p, allow_pickle=False) as z:
        keys = set(z.files)

        # Naming conventions seen in exported geometry files
        # 1) combined table:     xyz[:, 0:3]
        # 2) separate columns:   x / y / z
        # 3) SK-style:           xyzpm
        xyz = None
        for k in ("xyz", "xyzpm", "pmt_xyz"):
            if k in keys:
                xyz = z[k].astype(np.float64)
                break

        if xyz is None and {"x", "y", "z"} <= keys:
            xyz = np.stack([z["x"], z["y"], z["z"]], axis=1).astype(np.float64)

        if xyz is None:
            raise KeyError(
                f"Could not find PMT positions in {p.name}. "
                f"Expected 'xyz', 'xyzpm', 'pmt_xyz' or x/y/z. Found keys: {sorted(keys)}"
            )

        # Optional explicit cable column: reorder so row k-1 is cable k
        if "cable" in keys:
            xyz = _reorder_by_cable(z["cable"], xyz, p)

    return PMTGeometry.from_array(xyz)

def load_csv_pmt_table(path: str | Path) -> PMTGeometry:
    """CSV with columns x, y, z (optionally cable); units cm."""
    p = Path(path)
    df = pd.read_csv(p)
    cols = {c.lower(): c for c in df.columns}
    missing = [c for c in ("x", "y", "z") if c not in cols]
    if missing:
        raise KeyError(f"{p.name}: missing PMT position columns {missing}")
    xyz = df[[cols["x"], cols["y"], cols["z"]]].to_numpy(dtype=np.float64)
    if "cable" in cols:
        xyz = _reorder_by_cable(df[cols["cable"]].to_numpy(), xyz, p)
    return PMTGeometry.from_array(xyz)

def _reorder_by_cable(cable, xyz: np.ndarray, p: Path) -> np.ndarray:
    cable = np.asarray(cable, dtype=np.int64)
    n = len(cable)
    if sorted(cable.tolist()) != list(range(1, n + 1)):
        raise InputShapeError(f"{p.name}: cable column must be a permutation of 1..{n}")
    out = np.empty_like(xyz)
    out[cable - 1] = xyz
    return out

def load_pmt_table(path: str | Path) -> PMTGeometry:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"PMT table not found: {p}")
    suffix = p.suffix.lower()
    if suffix == ".npz":
        return load_npz_pmt_table(p)
    if suffix == ".csv":
        return load_csv_pmt_table(p)
    raise ValueError(f"Unrecognized PMT table format: {p.name} (expected .npz or .csv)")
