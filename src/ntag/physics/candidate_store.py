# src/ntag/physics/candidate_store.py
from __future__ import annotations
from typing import Dict, List, Optional, Tuple

import numpy as np

from ntag.errors import SchemaViolationError
from .candidates import Candidate


def _schema_diff(kind: str, expected: Tuple[str, ...], got) -> str:
    missing = [k for k in expected if k not in got]
    extra = sorted(k for k in got if k not in expected)
    return f"{kind} features: missing {missing}, unexpected {extra}"


class CandidateStore:
    """
    Columnar accumulator of candidate features.

    Event level: one array per feature name, appended in candidate-id order.
    The set of names (separately for the int and float namespaces) is fixed
    by the first candidate ever appended and survives clear(), so every
    event of a run shares one output schema.

    Run level: commit_event() moves the event columns into run chunks and
    records the per-event candidate count (CSR pointer for the output file).
    """

    def __init__(self) -> None:
        self.int_names: Optional[Tuple[str, ...]] = None
        self.float_names: Optional[Tuple[str, ...]] = None
        self.candidates: List[Candidate] = []
        self._int_cols: Dict[str, List[int]] = {}
        self._float_cols: Dict[str, List[float]] = {}

        self._run_event_ids: List[int] = []
        self._run_counts: List[int] = []
        self._run_int: Dict[str, List[np.ndarray]] = {}
        self._run_float: Dict[str, List[np.ndarray]] = {}

    # ---- event level ----

    def __len__(self) -> int:
        return len(self.candidates)

    @property
    def schema_fixed(self) -> bool:
        return self.int_names is not None

    def _fix_schema(self, cand: Candidate) -> None:
        self.int_names = tuple(cand.int_vars)
        self.float_names = tuple(cand.float_vars)
        self._int_cols = {k: [] for k in self.int_names}
        self._float_cols = {k: [] for k in self.float_names}

    def append(self, cand: Candidate) -> None:
        if cand.candidate_id != len(self.candidates):
            raise SchemaViolationError(
                f"Candidate id {cand.candidate_id} appended out of order (expected {len(self.candidates)})"
            )
        if not self.schema_fixed:
            self._fix_schema(cand)
        if set(cand.int_vars) != set(self.int_names):
            raise SchemaViolationError(_schema_diff("int", self.int_names, cand.int_vars))
        if set(cand.float_vars) != set(self.float_names):
            raise SchemaViolationError(_schema_diff("float", self.float_names, cand.float_vars))

        for k in self.int_names:
            self._int_cols[k].append(int(cand.int_vars[k]))
        for k in self.float_names:
            self._float_cols[k].append(float(cand.float_vars[k]))
        self.candidates.append(cand)

    def names(self) -> List[str]:
        """All feature names, int namespace first; a shared name appears once."""
        if not self.schema_fixed:
            return []
        out = list(self.int_names)
        out += [k for k in self.float_names if k not in self.int_names]
        return out

    def int_column(self, name: str) -> np.ndarray:
        if name not in self._int_cols:
            raise KeyError(f"No int feature {name!r}")
        return np.asarray(self._int_cols[name], dtype=np.int64)

    def float_column(self, name: str) -> np.ndarray:
        if name not in self._float_cols:
            raise KeyError(f"No float feature {name!r}")
        return np.asarray(self._float_cols[name], dtype=np.float64)

    def column(self, name: str) -> np.ndarray:
        """Feature column by name; the float namespace wins on a shared name."""
        if name in self._float_cols:
            return self.float_column(name)
        return self.int_column(name)

    def event_arrays(self) -> Tuple[Dict[str, np.ndarray], Dict[str, np.ndarray]]:
        ints = {k: self.int_column(k) for k in self._int_cols}
        floats = {k: self.float_column(k) for k in self._float_cols}
        return ints, floats

    def clear(self) -> None:
        """Truncate the event columns; the feature schema is kept."""
        self.candidates = []
        for col in self._int_cols.values():
            col.clear()
        for col in self._float_cols.values():
            col.clear()

    # ---- run level ----

    def commit_event(self, event_id: int) -> int:
        """Move this event's columns into the run accumulation, then clear(). Returns the candidate count."""
        n = len(self.candidates)
        self._run_event_ids.append(int(event_id))
        self._run_counts.append(n)
        if n:
            ints, floats = self.event_arrays()
            for k, arr in ints.items():
                self._run_int.setdefault(k, []).append(arr)
            for k, arr in floats.items():
                self._run_float.setdefault(k, []).append(arr)
        self.clear()
        return n

    @property
    def n_events(self) -> int:
        return len(self._run_event_ids)

    def run_arrays(self):
        """
        Returns
        -------
        event_id : (E,) int64
        event_ptr : (E+1,) int64, candidates of event e are rows [ptr[e], ptr[e+1])
        ints, floats : dict name -> (N,) columns over all committed events
        """
        event_id = np.asarray(self._run_event_ids, dtype=np.int64)
        event_ptr = np.zeros(len(self._run_counts) + 1, dtype=np.int64)
        if self._run_counts:
            event_ptr[1:] = np.cumsum(self._run_counts)
        ints = {k: np.concatenate(v) for k, v in self._run_int.items()}
        floats = {k: np.concatenate(v) for k, v in self._run_float.items()}
        return event_id, event_ptr, ints, floats

    def reset_run(self) -> None:
        self.clear()
        self._run_event_ids.clear()
        self._run_counts.clear()
        self._run_int.clear()
        self._run_float.clear()
