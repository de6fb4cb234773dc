# src/ntag/io/canonicalize.py
from __future__ import annotations
from typing import Dict, Iterable, List, Optional

import pandas as pd

_CANON_KEYS = {
    # canonical_key: tuple of fallback source keys
    "event_id": ("event_id", "event", "evt", "nev", "EventNumber"),
    "t_ns":     ("t_ns", "t", "time", "time_ns", "T"),
    "q_pe":     ("q_pe", "q", "charge", "Q"),
    "cable":    ("cable", "cableid", "pmt", "pmt_id", "sensor_id"),
    "in_gate":  ("in_gate", "ingate", "gate"),
    "signal":   ("signal", "is_signal", "sig"),
    # per-event fitted vertex (repeated on every hit row of the event)
    "vx":       ("vx", "vertex_x", "fit_x"),
    "vy":       ("vy", "vertex_y", "fit_y"),
    "vz":       ("vz", "vertex_z", "fit_z"),
}

REQUIRED = ("event_id", "t_ns", "q_pe", "cable")


def _first(columns: Iterable[str], names: Iterable[str]) -> Optional[str]:
    cols = set(columns)
    for k in names:
        if k in cols:
            return k
    return None


def canonical_column_map(columns: Iterable[str]) -> Dict[str, str]:
    """source column -> canonical name, for every canonical key found in `columns`."""
    columns = list(columns)
    out: Dict[str, str] = {}
    for canon, names in _CANON_KEYS.items():
        src = _first(columns, names)
        if src is not None:
            out[src] = canon
    return out


def canonicalize_hit_table(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename a per-hit table to the canonical columns
        event_id, t_ns, q_pe, cable [, in_gate, signal, vx, vy, vz]
    and coerce their dtypes. Columns without a canonical counterpart are
    kept untouched (fit scalars travel that way).
    Raises KeyError naming the first required column that cannot be found.
    """
    out = df.rename(columns=canonical_column_map(df.columns))
    missing: List[str] = [k for k in REQUIRED if k not in out.columns]
    if missing:
        raise KeyError(f"Hit table lacks required column(s) {missing}; have {list(df.columns)}")
    out["event_id"] = out["event_id"].astype("int64")
    out["t_ns"] = out["t_ns"].astype("float64")
    out["q_pe"] = out["q_pe"].astype("float64")
    out["cable"] = out["cable"].astype("int64")
    for k in ("in_gate", "signal"):
        if k in out.columns:
            out[k] = out[k].astype(bool)
    return out
