"""
ntag.io.adapters

Readers that turn external trigger-window sources into TriggerEvent objects
(ntag.physics.events) for the per-event processing chain.

Design goals
------------
- Keep I/O concerns isolated from the search and feature code.
- Normalize on ingest: times -> ns, charges -> p.e., cable ids 1-based.
- Stream events one at a time; nothing downstream needs the whole file.
- Remain side-effect free: yield Python objects; HDF5 output is handled downstream.

Entry points
------------
- class HDF5Adapter : ragged CSR layout written by io.ntag_store.write_events_ragged.
- class TableAdapter: one row per hit (CSV / Parquet), grouped by event id.
- class ROOTAdapter : flat ROOT tree with jagged per-event hit branches (uproot).
- function make_adapter(cfg): factory from the [io.adapter] TOML section.

Config (example)
----------------
[io]
input_path = "data/run42.h5"

[io.adapter]
type = "hdf5"                 # "hdf5" | "table" | "root"
group = "/input"              # hdf5 only
time_units = "ns"             # "ns" | "us" (table / root)
fit_columns = ["energy", "goodness"]   # table / root: per-event fit scalars
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Iterator, Literal, Optional, Sequence

import h5py
import numpy as np
import pandas as pd

# Optional imports (guarded)
try:
    import uproot  # type: ignore
except Exception:  # pragma: no cover
    uproot = None  # type: ignore

from ntag.io.canonicalize import canonicalize_hit_table
from ntag.physics.events import TriggerEvent, TruthInfo

_TIME_SCALE = {"ns": 1.0, "us": 1000.0}


def _time_scale(units: str) -> float:
    try:
        return _TIME_SCALE[units]
    except KeyError:
        raise ValueError(f"Unsupported time_units={units!r}; expected one of {sorted(_TIME_SCALE)}") from None


def _vertex_or_none(row: np.ndarray) -> Optional[np.ndarray]:
    row = np.asarray(row, dtype=np.float64)
    return None if not np.all(np.isfinite(row)) else row.copy()


# ---------------------------------------------------------------------------
# Base adapter API
# ---------------------------------------------------------------------------

class BaseAdapter:
    """
    Abstract adapter interface.

    Yields TriggerEvent objects normalized to ns / p.e.
    """

    def iter_events(self, path: str) -> Iterator[TriggerEvent]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# HDF5 ragged adapter
# ---------------------------------------------------------------------------

class HDF5Adapter(BaseAdapter):
    """
    Read trigger windows stored as ragged CSR arrays:

      {group}/hits/event_ptr (E+1,) ; t_ns, q_pe, cable (M,) ; optional in_gate (M,)
      {group}/events/event_id (E,) ; optional vertex (E,3) ; optional fit/<name> (E,)
      {group}/truth/...  optional MC block (signal hits, true captures, true vertex)
    """

    def __init__(self, group: str = "/input") -> None:
        self.group = group.rstrip("/") or "/"

    def _g(self, f: h5py.File, sub: str):
        key = f"{self.group}/{sub}" if self.group != "/" else sub
        return f[key] if key in f else None

    def iter_events(self, path: str) -> Iterator[TriggerEvent]:
        with h5py.File(str(path), "r") as f:
            g_hits = self._g(f, "hits")
            g_ev = self._g(f, "events")
            if g_hits is None or g_ev is None:
                raise KeyError(f"{path}: no '{self.group}/hits' and '{self.group}/events' groups")

            ptr = np.asarray(g_hits["event_ptr"], dtype=np.int64)
            t = np.asarray(g_hits["t_ns"], dtype=np.float64)
            q = np.asarray(g_hits["q_pe"], dtype=np.float64)
            cable = np.asarray(g_hits["cable"], dtype=np.int64)
            gate = np.asarray(g_hits["in_gate"], dtype=bool) if "in_gate" in g_hits else None

            event_id = np.asarray(g_ev["event_id"], dtype=np.int64)
            vertex = np.asarray(g_ev["vertex"], dtype=np.float64) if "vertex" in g_ev else None
            fit = {}
            if "fit" in g_ev:
                fit = {name: np.asarray(ds, dtype=np.float64) for name, ds in g_ev["fit"].items()}

            truth = self._read_truth(self._g(f, "truth"))

        for e in range(len(event_id)):
            a, b = int(ptr[e]), int(ptr[e + 1])
            yield TriggerEvent(
                event_id=int(event_id[e]),
                t=t[a:b],
                q=q[a:b],
                cable=cable[a:b],
                in_gate=None if gate is None else gate[a:b],
                vertex=None if vertex is None else _vertex_or_none(vertex[e]),
                fit={k: float(v[e]) for k, v in fit.items() if np.isfinite(v[e])},
                truth=None if truth is None else truth(e),
            )

    @staticmethod
    def _read_truth(g):
        if g is None:
            return None
        sig_ptr = np.asarray(g["signal_ptr"], dtype=np.int64)
        sig_t = np.asarray(g["signal_t_ns"], dtype=np.float64)
        sig_c = np.asarray(g["signal_cable"], dtype=np.int64)
        has_sig = np.asarray(g["has_signal"], dtype=bool) if "has_signal" in g else np.ones(len(sig_ptr) - 1, bool)
        cap_ptr = np.asarray(g["capture_ptr"], dtype=np.int64)
        cap_t = np.asarray(g["capture_t_ns"], dtype=np.float64)
        cap_e = np.asarray(g["capture_gamma_mev"], dtype=np.float64)
        vtx = np.asarray(g["vertex"], dtype=np.float64) if "vertex" in g else None

        def at(e: int) -> TruthInfo:
            s0, s1 = int(sig_ptr[e]), int(sig_ptr[e + 1])
            c0, c1 = int(cap_ptr[e]), int(cap_ptr[e + 1])
            return TruthInfo(
                signal_t=sig_t[s0:s1] if has_sig[e] else None,
                signal_cable=sig_c[s0:s1] if has_sig[e] else None,
                capture_t_ns=cap_t[c0:c1],
                capture_gamma_mev=cap_e[c0:c1],
                vertex=None if vtx is None else _vertex_or_none(vtx[e]),
            )
        return at


# ---------------------------------------------------------------------------
# Table adapter (CSV / Parquet)
# ---------------------------------------------------------------------------

class TableAdapter(BaseAdapter):
    """
    One row per hit. Column names are canonicalized (ntag.io.canonicalize):
    event_id, t_ns, q_pe, cable are required; in_gate, signal and the fitted
    vertex (vx, vy, vz) are optional. Every name in `fit_columns` is read
    from the first row of each event.

    A boolean `signal` column is turned into truth signal hits, so the
    HitBuffer flags exactly those rows.
    """

    def __init__(
        self,
        time_units: Literal["ns", "us"] = "ns",
        fit_columns: Sequence[str] = (),
    ) -> None:
        self.time_scale = _time_scale(time_units)
        self.fit_columns = list(fit_columns)

    def _read_table(self, path: str) -> pd.DataFrame:
        p = Path(path)
        suf = p.suffix.lower()
        if suf in (".csv", ".txt"):
            return pd.read_csv(p)
        if suf in (".parquet", ".pq"):
            return pd.read_parquet(p)
        raise ValueError(f"Unrecognized TableAdapter input: {p.name} (expected .csv/.parquet)")

    def iter_events(self, path: str) -> Iterator[TriggerEvent]:
        df = canonicalize_hit_table(self._read_table(path))
        missing = [c for c in self.fit_columns if c not in df.columns]
        if missing:
            raise KeyError(f"{Path(path).name}: fit column(s) {missing} not in table")
        has_vertex = all(c in df.columns for c in ("vx", "vy", "vz"))

        # sort=False keeps first-appearance order of the events in the file
        for eid, g in df.groupby("event_id", sort=False):
            t = g["t_ns"].to_numpy(dtype=np.float64) * self.time_scale
            cable = g["cable"].to_numpy(dtype=np.int64)
            truth = None
            if "signal" in g.columns:
                sig = g["signal"].to_numpy(dtype=bool)
                truth = TruthInfo(signal_t=t[sig], signal_cable=cable[sig])
            first = g.iloc[0]
            vertex = None
            if has_vertex:
                vertex = _vertex_or_none(np.array([first["vx"], first["vy"], first["vz"]], dtype=np.float64))
            yield TriggerEvent(
                event_id=int(eid),
                t=t,
                q=g["q_pe"].to_numpy(dtype=np.float64),
                cable=cable,
                in_gate=g["in_gate"].to_numpy(dtype=bool) if "in_gate" in g.columns else None,
                vertex=vertex,
                fit={k: float(first[k]) for k in self.fit_columns},
                truth=truth,
            )


# ---------------------------------------------------------------------------
# ROOT adapter
# ---------------------------------------------------------------------------

class ROOTAdapter(BaseAdapter):
    """
    Read a flat ROOT tree with one entry per trigger window.

    Hit branches are jagged (one value per hit); vertex and fit branches are
    scalars per entry. Branch names are configurable through `branches`
    (canonical name -> branch name).
    """

    _DEFAULT_BRANCHES = {
        "event_id": "nev",
        "t": "T",
        "q": "Q",
        "cable": "Cable",
        "vx": "vx", "vy": "vy", "vz": "vz",
    }

    def __init__(
        self,
        tree: str = "data",
        branches: Optional[Dict[str, str]] = None,
        time_units: Literal["ns", "us"] = "ns",
        fit_columns: Sequence[str] = (),
        step_size: str = "100 MB",
    ) -> None:
        if uproot is None:  # pragma: no cover
            raise RuntimeError("uproot is required for ROOTAdapter but is not installed.")
        self.tree_key = tree
        self.keys = {**self._DEFAULT_BRANCHES, **(branches or {})}
        self.time_scale = _time_scale(time_units)
        self.fit_columns = list(fit_columns)
        self.step_size = step_size

    def iter_events(self, path: str) -> Iterator[TriggerEvent]:
        with uproot.open(path) as f:
            try:
                tree = f[self.tree_key]
            except Exception:
                first_key = next(iter(f.keys()))
                tree = f[first_key]

            wanted = [v for v in self.keys.values() if v in tree.keys()] + self.fit_columns
            for k in ("t", "q", "cable"):
                if self.keys[k] not in tree.keys():
                    raise KeyError(f"{path}: hit branch {self.keys[k]!r} not found in tree")
            has_vertex = all(self.keys[k] in tree.keys() for k in ("vx", "vy", "vz"))

            entry = 0
            # Iterate in chunks for streaming
            for arrays in tree.iterate(wanted, step_size=self.step_size, library="np"):
                n = len(arrays[self.keys["t"]])
                for i in range(n):
                    eid = int(arrays[self.keys["event_id"]][i]) if self.keys["event_id"] in arrays else entry
                    vertex = None
                    if has_vertex:
                        vertex = _vertex_or_none(
                            np.array([arrays[self.keys[k]][i] for k in ("vx", "vy", "vz")], dtype=np.float64)
                        )
                    yield TriggerEvent(
                        event_id=eid,
                        t=np.asarray(arrays[self.keys["t"]][i], dtype=np.float64) * self.time_scale,
                        q=np.asarray(arrays[self.keys["q"]][i], dtype=np.float64),
                        cable=np.asarray(arrays[self.keys["cable"]][i], dtype=np.int64),
                        vertex=vertex,
                        fit={k: float(arrays[k][i]) for k in self.fit_columns},
                    )
                    entry += 1


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def make_adapter(cfg: Dict[str, Any]) -> BaseAdapter:
    """
    Create an adapter from a config dict (from TOML/CLI).

    Expected keys under [io.adapter]:
      type: "hdf5" | "table" | "root"
      group: str                         (hdf5-only)
      time_units: "ns" | "us"            (table / root)
      fit_columns: list[str]             (table / root)
      tree: str, branches: dict          (root-only)
    """
    typ = (cfg.get("type") or "hdf5").lower()

    if typ == "hdf5":
        return HDF5Adapter(group=cfg.get("group", "/input"))

    if typ == "table":
        return TableAdapter(
            time_units=cfg.get("time_units", "ns"),
            fit_columns=cfg.get("fit_columns", ()),
        )

    if typ == "root":
        return ROOTAdapter(
            tree=cfg.get("tree", "data"),
            branches=cfg.get("branches"),
            time_units=cfg.get("time_units", "ns"),
            fit_columns=cfg.get("fit_columns", ()),
        )

    raise ValueError(f"Unknown adapter type: {typ}")
