# src/ntag/physics/tof.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, overload, Literal
import numpy as np

from ntag.geometry.pmt import PMTGeometry
from .hits import HitBuffer
from .vertex import Vertex

# Speed of light in water [cm/ns]
C_WATER_CM_PER_NS = 21.5833


def tof_ns(vertex: Vertex, pmt_xyz: np.ndarray, c_cm_per_ns: float = C_WATER_CM_PER_NS) -> np.ndarray:
    """
    Light travel time [ns] from `vertex` to each PMT position in (n, 3) `pmt_xyz`.
    """
    d = np.linalg.norm(np.asarray(pmt_xyz, dtype=np.float64) - vertex.as_array(), axis=1)
    return d / c_cm_per_ns


@dataclass(frozen=True)
class CorrectedHitSeries:
    """
    Hits with ToF subtracted, in original buffer order.

    t_raw is the untouched buffer time; t is t_raw - ToF(vertex, cable).
    """
    t: np.ndarray
    t_raw: np.ndarray
    q: np.ndarray
    cable: np.ndarray
    signal: Optional[np.ndarray]

    def __len__(self) -> int:
        return int(self.t.size)


@dataclass(frozen=True)
class SortedHitSeries:
    """
    Corrected hits reordered ascending in corrected time (stable on ties).

    reverse_index[k] is the buffer position of the k-th sorted hit, so
    t_raw_unsorted[reverse_index[k]] is the raw time of sorted hit k.
    """
    t: np.ndarray
    q: np.ndarray
    cable: np.ndarray
    signal: Optional[np.ndarray]
    reverse_index: np.ndarray
    t_raw_unsorted: np.ndarray

    def __len__(self) -> int:
        return int(self.t.size)

    def raw_times(self, start: int, stop: int) -> np.ndarray:
        return self.t_raw_unsorted[self.reverse_index[start:stop]]

    @classmethod
    def from_corrected(cls, corr: CorrectedHitSeries) -> "SortedHitSeries":
        order = np.argsort(corr.t, kind="stable")
        return cls(
            t=corr.t[order],
            q=corr.q[order],
            cable=corr.cable[order],
            signal=None if corr.signal is None else corr.signal[order],
            reverse_index=order,
            t_raw_unsorted=corr.t_raw,
        )


class ToFCorrector:
    """
    Subtract per-hit light travel time from a prompt vertex.

    Never mutates the HitBuffer: every call returns fresh arrays. With
    use_tof=False the corrected times equal the raw ones (sorting still
    applies), matching a search on raw hit times.
    """

    def __init__(self, geometry: PMTGeometry, c_cm_per_ns: float = C_WATER_CM_PER_NS, use_tof: bool = True):
        self.geometry = geometry
        self.c = float(c_cm_per_ns)
        self.use_tof = use_tof

    @overload
    def correct(self, hits: HitBuffer, vertex: Vertex, sort: Literal[False] = ...) -> CorrectedHitSeries: ...
    @overload
    def correct(self, hits: HitBuffer, vertex: Vertex, sort: Literal[True]) -> SortedHitSeries: ...

    def correct(self, hits, vertex, sort=False):
        hits.validate()
        t_raw = hits.t.copy()
        if self.use_tof:
            # raises SensorIdError for unknown cables
            t = t_raw - tof_ns(vertex, self.geometry.positions(hits.cable), self.c)
        else:
            self.geometry.positions(hits.cable)
            t = t_raw.copy()
        corr = CorrectedHitSeries(
            t=t,
            t_raw=t_raw,
            q=hits.q.copy(),
            cable=hits.cable.copy(),
            signal=None if hits.signal is None else hits.signal.copy(),
        )
        if not sort:
            return corr
        return SortedHitSeries.from_corrected(corr)
