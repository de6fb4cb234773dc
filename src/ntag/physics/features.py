from __future__ import annotations
from typing import Dict, Iterable, Mapping, Optional, Sequence

import numpy as np
from numpy.polynomial import legendre
from scipy import stats

from ntag.errors import InputShapeError
from ntag.filters.peak_search import Peak, count_centered
from ntag.geometry.pmt import PMTGeometry
from .candidates import Candidate
from .tof import SortedHitSeries
from .vertex import Vertex

BETA_ORDERS = (1, 2, 3, 4, 5)

def time_rms(t: np.ndarray) -> float:
    """Population RMS of hit times about their mean."""
    t = np.asarray(t, dtype=np.float64)
    return float(np.sqrt(np.mean((t - t.mean()) ** 2)))

def time_skew(t: np.ndarray) -> float:
    """Population skewness m3 / m2^1.5; 0 for a window with no time spread."""
    t = np.asarray(t, dtype=np.float64)
    if t.size < 2 or np.ptp(t) == 0:
        return 0.0
    return float(stats.skew(t, bias=True))

def beta_values(directions: np.ndarray, orders: Sequence[int] = BETA_ORDERS) -> np.ndarray:
    """
    Isotropy parameters beta_l: mean of P_l(cos theta_ij) over all hit pairs i < j,
    where theta_ij is the angle between the vertex->PMT directions of hits i and j.

    A single-hit window has no pairs; its betas are 0.
    """
    u = np.asarray(directions, dtype=np.float64)
    n = u.shape[0]
    if n < 2:
        return np.zeros(len(orders))
    iu = np.triu_indices(n, k=1)
    cos = np.clip((u @ u.T)[iu], -1.0, 1.0)
    out = np.empty(len(orders))
    for k, order in enumerate(orders):
        coef = np.zeros(order + 1)
        coef[order] = 1.0
        out[k] = legendre.legval(cos, coef).mean()
    return out


class CandidateFeatureExtractor:
    """
    Build a Candidate from an emitted peak and fill its feature namespaces.

    int features : N10 (window multiplicity), one centred count per entry of
                   `wide_windows_ns` (default N50, N200), NSigHits when the
                   hits carry MC signal flags.
    float features: ReconCT, FirstHitT, sumQ, spread, trmsold, tskew,
                   beta1..beta5, and every name in `fit_features` copied from
                   the event's external fit scalars.
    """

    def __init__(
        self,
        geometry: PMTGeometry,
        *,
        cluster_window_ns: float = 10.0,
        wide_windows_ns: Optional[Mapping[str, float]] = None,
        fit_features: Iterable[str] = (),
    ):
        self.geometry = geometry
        self.cluster_window_ns = float(cluster_window_ns)
        self.wide_windows_ns = dict(wide_windows_ns if wide_windows_ns is not None else {"N50": 50.0, "N200": 200.0})
        self.fit_features = list(fit_features)
        clash = sorted(set(self.fit_features) & self.int_feature_names())
        if clash:
            raise InputShapeError(f"Fit scalars {clash} would shadow integer features")

    def int_feature_names(self) -> set:
        # CaptureType is added later by truth labelling
        return {"N10", "NSigHits", "CaptureType", *self.wide_windows_ns}

    def make_candidate(self, candidate_id: int, series: SortedHitSeries, peak: Peak) -> Candidate:
        return Candidate(candidate_id=candidate_id, hits=series, start=peak.anchor_index, stop=peak.stop)

    def extract(
        self,
        cand: Candidate,
        vertex: Vertex,
        fit: Optional[Mapping[str, float]] = None,
    ) -> Candidate:
        n = cand.n_hits
        if n <= 0:
            raise InputShapeError(f"Candidate {cand.candidate_id}: empty hit window")

        t_res = cand.t_res
        q = cand.q
        anchor_t = float(t_res[0])

        iv: Dict[str, int] = {"N10": int(n)}
        center = anchor_t + 0.5 * self.cluster_window_ns
        for name, width in self.wide_windows_ns.items():
            iv[name] = count_centered(cand.hits.t, center, width)
        sig = cand.signal
        if sig is not None:
            iv["NSigHits"] = int(np.count_nonzero(sig))

        fv: Dict[str, float] = {
            "ReconCT": float(t_res.mean()),
            "FirstHitT": anchor_t,
            "sumQ": float(q.sum()),
            "spread": float(np.ptp(t_res)),
            "trmsold": time_rms(t_res),
            "tskew": time_skew(t_res),
        }
        dirs = self.geometry.directions_from(vertex.as_array(), cand.cable)
        for order, b in zip(BETA_ORDERS, beta_values(dirs)):
            fv[f"beta{order}"] = float(b)

        fit = fit or {}
        missing = [k for k in self.fit_features if k not in fit]
        if missing:
            raise InputShapeError(f"Candidate {cand.candidate_id}: missing fit scalars {missing}")
        for k in self.fit_features:
            fv[k] = float(fit[k])

        cand.int_vars.update(iv)
        cand.float_vars.update(fv)
        return cand
