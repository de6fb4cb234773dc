# src/ntag/filters/peak_search.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from ntag.config.schemas import SearchCfg

@dataclass(frozen=True, slots=True)
class Peak:
    """
    One emitted capture-candidate window.

    The window is the sorted hits [anchor_index, anchor_index + n_cluster),
    i.e. every hit in [anchor_time, anchor_time + cluster_window).
    """
    anchor_index: int
    anchor_time: float
    n_cluster: int
    n_wide: int

    @property
    def stop(self) -> int:
        return self.anchor_index + self.n_cluster

@dataclass
class PeakSearchDiagnostics:
    n_input: int = 0
    n_retained: int = 0          # hits at or past the early cutoff
    n_anchor_hits: int = 0       # hits whose N_cluster is within [n_low, n_high]
    n_rejected_wide: int = 0     # finalized anchors dropped by the wide-window cap
    n_late: int = 0              # emitted peaks past the (advisory) late cutoff
    first_hit_time: Optional[float] = None
    max_wide_count: int = 0
    max_wide_time: Optional[float] = None
    reasons: dict = field(default_factory=dict)

    def inc(self, reason: str) -> None:
        self.reasons[reason] = self.reasons.get(reason, 0) + 1


# --- window counts on an ascending time array ---
def count_from_start(t: np.ndarray, start: int, width: float) -> int:
    """Hits in [t[start], t[start] + width), counted forward from index `start`."""
    stop = int(np.searchsorted(t, t[start] + width, side="left"))
    return stop - start

def count_centered(t: np.ndarray, center: float, width: float) -> int:
    """Hits in [center - width/2, center + width/2)."""
    lo = np.searchsorted(t, center - 0.5 * width, side="left")
    hi = np.searchsorted(t, center + 0.5 * width, side="left")
    return int(hi - lo)


class PeakSearch:
    """
    Single-pass sliding-window search for hit clusters on ToF-corrected,
    time-sorted hits.

    A hit is an anchor candidate when its forward cluster count lies in
    [n_low, n_high]. Within a run of anchors closer than
    min_peak_separation_ns only the one with the strictly largest count is
    kept (earliest wins ties). A run's best anchor is emitted once a later
    anchor candidate lies more than the separation past it, provided its
    centred wide-window count is below n_wide_max and it lies past the early
    cutoff. The anchor still tracked when the scan ends is emitted whenever
    its count reaches n_low.

    Tracking state is explicit: `active` is None (no anchor yet) or the best
    Peak of the current run; `run_best` is its count, reset to 0 after a
    run is finalized so the next anchor candidate always opens a new run.
    """

    def __init__(self, cfg: SearchCfg | None = None):
        self.cfg = cfg if cfg is not None else SearchCfg()

    def run(self, t: np.ndarray) -> tuple[List[Peak], PeakSearchDiagnostics]:
        cfg = self.cfg
        t = np.asarray(t, dtype=np.float64)
        diag = PeakSearchDiagnostics(n_input=int(t.size))
        peaks: List[Peak] = []

        early = cfg.early_time_cutoff_ns
        half_cluster = 0.5 * cfg.cluster_window_ns

        active: Optional[Peak] = None
        run_best = 0

        for i in range(t.size):
            ti = float(t[i])
            if ti < early:
                continue
            diag.n_retained += 1
            if diag.first_hit_time is None:
                diag.first_hit_time = ti

            n_cluster = count_from_start(t, i, cfg.cluster_window_ns)
            if n_cluster < cfg.n_low or n_cluster > cfg.n_high:
                continue
            diag.n_anchor_hits += 1

            n_wide = count_centered(t, ti + half_cluster, cfg.wide_window_ns)
            if ti > early and n_wide > diag.max_wide_count:
                diag.max_wide_count = n_wide
                diag.max_wide_time = ti

            if active is not None and ti - active.anchor_time > cfg.min_peak_separation_ns:
                self._finalize(active, peaks, diag)
                run_best = 0

            if n_cluster <= run_best:
                diag.inc("not_run_maximum")
                continue

            active = Peak(anchor_index=i, anchor_time=ti, n_cluster=n_cluster, n_wide=n_wide)
            run_best = n_cluster

        if active is not None and run_best >= cfg.n_low:
            self._emit(active, peaks, diag)

        return peaks, diag

    def _finalize(self, peak: Peak, peaks: List[Peak], diag: PeakSearchDiagnostics) -> None:
        if peak.n_wide >= self.cfg.n_wide_max:
            diag.n_rejected_wide += 1
            diag.inc("wide_window_cap")
            return
        if peak.anchor_time <= self.cfg.early_time_cutoff_ns:
            diag.inc("at_early_cutoff")
            return
        self._emit(peak, peaks, diag)

    def _emit(self, peak: Peak, peaks: List[Peak], diag: PeakSearchDiagnostics) -> None:
        if peak.anchor_time > self.cfg.late_time_cutoff_ns:
            diag.n_late += 1
        peaks.append(peak)


def search_peaks(t: np.ndarray, cfg: SearchCfg | None = None) -> tuple[List[Peak], PeakSearchDiagnostics]:
    return PeakSearch(cfg).run(t)
