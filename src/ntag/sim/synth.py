from __future__ import annotations
import numpy as np
from ..geometry.pmt import PMTGeometry
from ..physics.events import TriggerEvent, TruthInfo
from ..physics.tof import C_WATER_CM_PER_NS

H_GAMMA_MEV = 2.2
GD_GAMMA_MEV = 8.0

def cylinder_pmt_geometry(
    radius_cm: float = 200.0,
    half_height_cm: float = 200.0,
    n_phi: int = 24,
    n_z: int = 8,
    n_cap_rings: int = 3,
) -> PMTGeometry:
    """
    PMTs on the barrel (n_phi x n_z grid) and on both end caps (concentric
    rings). Cable k is row k-1: barrel first, then the top cap, then the bottom cap.
    """
    rows = []
    phi = 2 * np.pi * (np.arange(n_phi) + 0.5) / n_phi
    for z in np.linspace(-half_height_cm, half_height_cm, n_z + 2)[1:-1]:
        for p in phi:
            rows.append((radius_cm * np.cos(p), radius_cm * np.sin(p), z))
    for zc in (half_height_cm, -half_height_cm):
        for k in range(1, n_cap_rings + 1):
            r = radius_cm * k / (n_cap_rings + 1)
            n_ring = max(4, int(round(n_phi * k / (n_cap_rings + 1))))
            for p in 2 * np.pi * np.arange(n_ring) / n_ring:
                rows.append((r * np.cos(p), r * np.sin(p), zc))
    return PMTGeometry.from_array(np.array(rows, dtype=np.float64))

def synth_trigger_windows(
    n_events: int,
    geometry: PMTGeometry,
    *,
    window_ns: tuple[float, float] = (-100.0, 600.0),
    dark_hits_mean: float = 60.0,
    captures_mean: float = 0.8,
    capture_window_ns: tuple[float, float] = (20.0, 500.0),
    hits_per_capture_mean: float = 14.0,
    gd_fraction: float = 0.5,
    jitter_ns: float = 1.5,
    vertex_spread_cm: float = 50.0,
    trigger_offset_ns: float = 1000.0,
    c_cm_per_ns: float = C_WATER_CM_PER_NS,
    rng: np.random.Generator | None = None,
) -> list[TriggerEvent]:
    """
    Trigger windows of uniform dark noise plus point-like capture bursts.

    Each event has a prompt vertex inside the detector; captures happen at
    that vertex (smeared by `vertex_spread_cm`), and a capture hit arrives at
    t_capture + ToF(capture point, PMT) + N(0, jitter_ns). The fitted vertex
    handed to the search is the prompt vertex. Truth carries the capture hits
    as signal hits and capture times on the global clock (+trigger_offset_ns).
    """
    rng = rng or np.random.default_rng()
    xyz = geometry.xyz
    rmax = float(np.max(np.hypot(xyz[:, 0], xyz[:, 1])))
    zmax = float(np.max(np.abs(xyz[:, 2])))
    events: list[TriggerEvent] = []

    for eid in range(n_events):
        r = 0.7 * rmax * np.sqrt(rng.uniform())
        p = rng.uniform(0.0, 2 * np.pi)
        vtx = np.array([r * np.cos(p), r * np.sin(p), rng.uniform(-0.7, 0.7) * zmax])

        n_dark = rng.poisson(dark_hits_mean)
        t = [rng.uniform(window_ns[0], window_ns[1], n_dark)]
        cable = [rng.integers(1, geometry.n_pmts + 1, n_dark)]
        q = [rng.exponential(1.0, n_dark)]

        sig_t, sig_c, cap_t, cap_e = [], [], [], []
        for _ in range(rng.poisson(captures_mean)):
            tc = rng.uniform(*capture_window_ns)
            is_gd = rng.uniform() < gd_fraction
            nh = rng.poisson(hits_per_capture_mean * (2.0 if is_gd else 1.0))
            point = vtx + rng.normal(0.0, vertex_spread_cm, 3)
            c = rng.integers(1, geometry.n_pmts + 1, nh)
            d = np.linalg.norm(geometry.positions(c) - point, axis=1)
            th = tc + d / c_cm_per_ns + rng.normal(0.0, jitter_ns, nh)
            t.append(th)
            cable.append(c)
            q.append(rng.exponential(1.0, nh))
            sig_t.append(th)
            sig_c.append(c)
            cap_t.append(tc + trigger_offset_ns)
            cap_e.append(GD_GAMMA_MEV if is_gd else H_GAMMA_MEV)

        t = np.concatenate(t)
        keep = (t >= window_ns[0]) & (t < window_ns[1])
        truth = TruthInfo(
            signal_t=np.concatenate(sig_t) if sig_t else np.zeros(0),
            signal_cable=np.concatenate(sig_c) if sig_c else np.zeros(0, dtype=np.int64),
            capture_t_ns=np.asarray(cap_t, dtype=np.float64),
            capture_gamma_mev=np.asarray(cap_e, dtype=np.float64),
            vertex=vtx.copy(),
        )
        events.append(TriggerEvent(
            event_id=eid,
            t=t[keep],
            q=np.concatenate(q)[keep],
            cable=np.concatenate(cable)[keep].astype(np.int64),
            vertex=vtx,
            fit={"energy": float(rng.uniform(5.0, 50.0)), "goodness": float(rng.uniform(0.4, 1.0))},
            truth=truth,
        ))
    return events
