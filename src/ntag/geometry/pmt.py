from __future__ import annotations
from dataclasses import dataclass
import numpy as np

from ntag.errors import InputShapeError, SensorIdError

@dataclass(frozen=True)
class PMTGeometry:
    """
    Read-only sensor position table.

    Cable ids are 1-based: cable k sits at xyz[k-1]. The table is shared by
    every event of a run (and every worker process); nothing in the search
    ever writes to it.
    """
    xyz: np.ndarray  # (N, 3) [cm]

    @classmethod
    def from_array(cls, xyz) -> "PMTGeometry":
        arr = np.asarray(xyz, dtype=np.float64)
        if arr.ndim != 2 or arr.shape[1] != 3:
            raise InputShapeError(f"PMT table must have shape (N, 3), got {arr.shape}")
        if arr.shape[0] == 0:
            raise InputShapeError("PMT table is empty")
        arr = arr.copy()
        arr.setflags(write=False)
        return cls(arr)

    @property
    def n_pmts(self) -> int:
        return int(self.xyz.shape[0])

    def _check(self, cables: np.ndarray) -> None:
        if cables.size == 0:
            return
        lo, hi = int(cables.min()), int(cables.max())
        if lo < 1 or hi > self.n_pmts:
            bad = lo if lo < 1 else hi
            raise SensorIdError(f"sensor id out of range: {bad} (valid 1..{self.n_pmts})")

    def position(self, cable: int) -> np.ndarray:
        self._check(np.asarray([cable]))
        return self.xyz[int(cable) - 1]

    def positions(self, cables) -> np.ndarray:
        """Vectorized lookup: (n,) cable ids -> (n, 3) positions."""
        c = np.asarray(cables, dtype=np.int64)
        self._check(c)
        return self.xyz[c - 1]

    def directions_from(self, vertex: np.ndarray, cables) -> np.ndarray:
        """Unit vectors from `vertex` to each cable's PMT, shape (n, 3)."""
        d = self.positions(cables) - np.asarray(vertex, dtype=np.float64)
        norm = np.linalg.norm(d, axis=1)
        if np.any(norm == 0):
            raise InputShapeError("Vertex coincides with a PMT position")
        return d / norm[:, None]
