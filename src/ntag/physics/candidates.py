# src/ntag/physics/candidates.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from .tof import SortedHitSeries

@dataclass(slots=True)
class Candidate:
    """
    Neutron capture candidate: one emitted peak window plus its features.

    The hit slice is not copied: the candidate keeps the event's sorted
    series and the index range [start, stop) into it. Features live in two
    disjoint typed namespaces; `features()` merges them with float values
    taking precedence on a shared name.
    """
    candidate_id: int
    hits: SortedHitSeries
    start: int
    stop: int
    int_vars: Dict[str, int] = field(default_factory=dict)
    float_vars: Dict[str, float] = field(default_factory=dict)

    @property
    def n_hits(self) -> int:
        return self.stop - self.start

    # --- hit slice views (sorted in corrected time) ---
    @property
    def t_res(self) -> np.ndarray:
        return self.hits.t[self.start:self.stop]

    @property
    def t_raw(self) -> np.ndarray:
        return self.hits.raw_times(self.start, self.stop)

    @property
    def q(self) -> np.ndarray:
        return self.hits.q[self.start:self.stop]

    @property
    def cable(self) -> np.ndarray:
        return self.hits.cable[self.start:self.stop]

    @property
    def signal(self) -> Optional[np.ndarray]:
        if self.hits.signal is None:
            return None
        return self.hits.signal[self.start:self.stop]

    def features(self) -> Dict[str, float]:
        """All features as floats; a float feature wins over an int one of the same name."""
        merged: Dict[str, float] = {k: float(v) for k, v in self.int_vars.items()}
        merged.update({k: float(v) for k, v in self.float_vars.items()})
        return merged

    def summary(self) -> str:
        ct = self.float_vars.get("ReconCT")
        ct_txt = f"{ct * 1e-3:9.3f}" if ct is not None else "        -"
        return f"{self.candidate_id:<4d}{ct_txt} us  N10={self.int_vars.get('N10', self.n_hits):<4d}"
