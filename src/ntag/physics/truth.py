from __future__ import annotations
from typing import Iterable

import numpy as np

from .candidates import Candidate
from .events import TruthInfo

# CaptureType codes
BKG, H_CAPTURE, GD_CAPTURE = 0, 1, 2

def label_candidates(
    candidates: Iterable[Candidate],
    truth: TruthInfo,
    *,
    match_window_ns: float = 40.0,
    gd_energy_threshold_mev: float = 6.0,
    trigger_offset_ns: float = 1000.0,
) -> None:
    """
    Attach MC labels to already-extracted candidates.

    True capture times are on the global simulation clock; subtracting
    `trigger_offset_ns` puts them on the hit-time clock of ReconCT. The
    closest true capture within `match_window_ns` is the match:
      CaptureType = 2 (Gd) if its gamma energy exceeds the threshold, else 1 (H);
      CaptureType = 0 and TrueCT = NaN when nothing matches.
    """
    cap_t = np.asarray(truth.capture_t_ns, dtype=np.float64) - trigger_offset_ns
    cap_e = np.asarray(truth.capture_gamma_mev, dtype=np.float64)

    for cand in candidates:
        ct = cand.float_vars["ReconCT"]
        capture_type, true_ct = BKG, float("nan")
        if cap_t.size:
            dt = np.abs(cap_t - ct)
            j = int(np.argmin(dt))
            if dt[j] < match_window_ns:
                capture_type = GD_CAPTURE if cap_e[j] > gd_energy_threshold_mev else H_CAPTURE
                true_ct = float(cap_t[j])
        cand.int_vars["CaptureType"] = capture_type
        cand.float_vars["TrueCT"] = true_ct
