from __future__ import annotations
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import h5py
import numpy as np
from datetime import datetime, timezone
from ntag.config.schemas import Config
from ntag.config.load import snapshot_config_toml, json_dumps
from ntag.physics.candidate_store import CandidateStore
from ntag.physics.candidates import Candidate
from ntag.physics.events import TriggerEvent

FORMAT_VERSION = "1.0"
SOFTWARE = "ntag 0.1.0"


def write_init(path: str, cfg_path: Optional[str], cfg: Config) -> h5py.File:
    f = h5py.File(path, "w")
    # Root attrs
    f.attrs["format_version"] = FORMAT_VERSION
    f.attrs["created_utc"] = datetime.now(timezone.utc).isoformat()
    f.attrs["software"] = SOFTWARE
    f.attrs["config_text"] = snapshot_config_toml(cfg_path)

    # /meta
    meta = f.create_group("meta")
    for k, v in cfg.search.model_dump().items():
        meta.attrs[f"search.{k}"] = v
    meta.attrs["vertex.mode"] = cfg.vertex.mode
    meta.attrs["geometry.speed_of_light_cm_per_ns"] = cfg.geometry.speed_of_light_cm_per_ns
    meta.attrs["features.fit_features"] = json_dumps(cfg.features.fit_features)
    meta.attrs["features.n_wide_windows_ns"] = json_dumps(cfg.features.n_wide_windows_ns)
    return f


def _replace_or_create(grp: h5py.Group, name: str, data: np.ndarray) -> None:
    if name in grp:
        del grp[name]
    grp.create_dataset(name, data=data, compression="gzip")


def write_candidates(f: h5py.File, store: CandidateStore) -> None:
    """
    Store the run-level candidate features under /candidates.

    /candidates/event_id     (E,)   int64
    /candidates/event_ptr    (E+1,) int64   CSR pointer: event e owns rows [ptr[e], ptr[e+1])
    /candidates/int/<name>   (N,)   int64
    /candidates/float/<name> (N,)   float64
    """
    event_id, event_ptr, ints, floats = store.run_arrays()
    grp = f.require_group("candidates")
    _replace_or_create(grp, "event_id", event_id)
    _replace_or_create(grp, "event_ptr", event_ptr)

    g_int = grp.require_group("int")
    g_float = grp.require_group("float")
    for name in store.int_names or ():
        data = ints.get(name, np.zeros(0, dtype=np.int64))
        _replace_or_create(g_int, name, data.astype(np.int64))
    for name in store.float_names or ():
        data = floats.get(name, np.zeros(0, dtype=np.float64))
        _replace_or_create(g_float, name, data.astype(np.float64))


HitSlice = Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray, Optional[np.ndarray]]

def candidate_hit_slice(c: Candidate) -> HitSlice:
    """(t_raw, t_res, q, cable, signal) copies of a candidate's window, sorted in corrected time."""
    sig = c.signal
    return (c.t_raw.copy(), c.t_res.copy(), c.q.copy(), c.cable.copy(), None if sig is None else sig.copy())


def write_candidate_hits(f: h5py.File, slices: Sequence[HitSlice]) -> None:
    """
    Ragged per-candidate hit windows under /candidates/hits.

    hit_ptr (N+1,) int64 ; t_raw_ns, t_res_ns (M,) float64 ; q_pe (M,) float32 ;
    cable (M,) int32 ; signal (M,) int8 with -1 where no truth flag exists.
    """
    n = len(slices)
    ptr = np.zeros(n + 1, dtype=np.int64)
    for i, s in enumerate(slices):
        ptr[i + 1] = ptr[i] + len(s[0])

    def _cat(k: int, dtype) -> np.ndarray:
        if not slices:
            return np.zeros(0, dtype=dtype)
        return np.concatenate([np.asarray(s[k], dtype=dtype) for s in slices])

    sig_parts = [
        np.full(len(s[0]), -1, dtype=np.int8) if s[4] is None else np.asarray(s[4], dtype=np.int8)
        for s in slices
    ]
    grp = f.require_group("candidates").require_group("hits")
    _replace_or_create(grp, "hit_ptr", ptr)
    _replace_or_create(grp, "t_raw_ns", _cat(0, np.float64))
    _replace_or_create(grp, "t_res_ns", _cat(1, np.float64))
    _replace_or_create(grp, "q_pe", _cat(2, np.float32))
    _replace_or_create(grp, "cable", _cat(3, np.int32))
    _replace_or_create(grp, "signal", np.concatenate(sig_parts) if sig_parts else np.zeros(0, dtype=np.int8))


EVENT_SUMMARY_DTYPES = {
    "event_id": np.int64,
    "n_hits": np.int32,
    "n_removed": np.int32,
    "n_candidates": np.int32,
    "max_n_wide": np.int32,
    "max_n_wide_time_ns": np.float64,
    "first_hit_time_ns": np.float64,
    "status": np.uint8,   # 0 = processed, 1 = aborted on input/schema error
}

def write_event_summary(f: h5py.File, rows: Sequence[Mapping[str, Any]]) -> None:
    """Per-event summary under /events, one dataset per field of EVENT_SUMMARY_DTYPES."""
    grp = f.require_group("events")
    for key, dt in EVENT_SUMMARY_DTYPES.items():
        # NaN marks "never set" for the float fields
        default = np.nan if np.issubdtype(dt, np.floating) else 0
        data = np.array([r.get(key, default) if r.get(key) is not None else default for r in rows], dtype=dt)
        _replace_or_create(grp, key, data)


def read_features(path: str) -> Dict[str, np.ndarray]:
    """Candidate feature columns by name; the float namespace wins on a shared name."""
    out: Dict[str, np.ndarray] = {}
    with h5py.File(str(path), "r") as f:
        grp = f["candidates"]
        for name, ds in grp.get("int", {}).items():
            out[name] = np.array(ds, dtype=np.int64)
        for name, ds in grp.get("float", {}).items():
            out[name] = np.array(ds, dtype=np.float64)
    return out


def read_event_ptr(path: str) -> Tuple[np.ndarray, np.ndarray]:
    with h5py.File(str(path), "r") as f:
        return np.array(f["candidates/event_id"]), np.array(f["candidates/event_ptr"])


# ---------------------------------------------------------------------------
# Ragged trigger-window input layout (read back by io.adapters.HDF5Adapter)
# ---------------------------------------------------------------------------

def write_events_ragged(h5: h5py.File, events: Sequence[TriggerEvent], *, group: str = "/input") -> None:
    """
    Write variable-length trigger windows in the layout HDF5Adapter reads.

    {group}/hits/event_ptr (E+1,) ; t_ns, q_pe (M,) float64 ; cable (M,) int32 ; [in_gate (M,) bool]
    {group}/events/event_id (E,) ; vertex (E,3) float64 (NaN row = no fit) ; fit/<name> (E,)
    {group}/truth/...  only when every event carries truth
    """
    if group.endswith("/"):
        group = group[:-1]
    g_hits = h5.require_group(f"{group}/hits")
    g_ev = h5.require_group(f"{group}/events")

    n_events = len(events)
    ptr = np.zeros(n_events + 1, dtype=np.int64)
    for i, ev in enumerate(events):
        ptr[i + 1] = ptr[i] + ev.n_hits

    def _cat(arrs: List[np.ndarray], dtype) -> np.ndarray:
        return np.concatenate([np.asarray(a, dtype=dtype) for a in arrs]) if arrs else np.zeros(0, dtype=dtype)

    _replace_or_create(g_hits, "event_ptr", ptr)
    _replace_or_create(g_hits, "t_ns", _cat([e.t for e in events], np.float64))
    _replace_or_create(g_hits, "q_pe", _cat([e.q for e in events], np.float64))
    _replace_or_create(g_hits, "cable", _cat([e.cable for e in events], np.int32))
    if events and all(e.in_gate is not None for e in events):
        _replace_or_create(g_hits, "in_gate", _cat([e.in_gate for e in events], bool))

    _replace_or_create(g_ev, "event_id", np.array([e.event_id for e in events], dtype=np.int64))
    vtx = np.full((n_events, 3), np.nan, dtype=np.float64)
    for i, ev in enumerate(events):
        if ev.vertex is not None:
            vtx[i] = ev.vertex
    _replace_or_create(g_ev, "vertex", vtx)

    fit_names = sorted({k for ev in events for k in ev.fit})
    g_fit = g_ev.require_group("fit")
    for name in fit_names:
        col = np.array([ev.fit.get(name, np.nan) for ev in events], dtype=np.float64)
        _replace_or_create(g_fit, name, col)

    if events and all(ev.truth is not None for ev in events):
        g_tr = h5.require_group(f"{group}/truth")
        sig_ptr = np.zeros(n_events + 1, dtype=np.int64)
        cap_ptr = np.zeros(n_events + 1, dtype=np.int64)
        for i, ev in enumerate(events):
            st = ev.truth.signal_t
            sig_ptr[i + 1] = sig_ptr[i] + (0 if st is None else len(st))
            cap_ptr[i + 1] = cap_ptr[i] + len(ev.truth.capture_t_ns)
        _replace_or_create(g_tr, "signal_ptr", sig_ptr)
        _replace_or_create(g_tr, "signal_t_ns",
                           _cat([ev.truth.signal_t for ev in events if ev.truth.signal_t is not None], np.float64))
        _replace_or_create(g_tr, "signal_cable",
                           _cat([ev.truth.signal_cable for ev in events if ev.truth.signal_cable is not None], np.int32))
        _replace_or_create(g_tr, "capture_ptr", cap_ptr)
        _replace_or_create(g_tr, "capture_t_ns", _cat([ev.truth.capture_t_ns for ev in events], np.float64))
        _replace_or_create(g_tr, "capture_gamma_mev", _cat([ev.truth.capture_gamma_mev for ev in events], np.float64))
        tv = np.full((n_events, 3), np.nan, dtype=np.float64)
        for i, ev in enumerate(events):
            if ev.truth.vertex is not None:
                tv[i] = ev.truth.vertex
        _replace_or_create(g_tr, "vertex", tv)
        has_sig = np.array([ev.truth.signal_t is not None for ev in events], dtype=bool)
        _replace_or_create(g_tr, "has_signal", has_sig)
