# src/ntag/cli/synth_smoke.py
'''
A small CLI that runs:
synthesize trigger windows → write ragged input HDF5 + PMT table →
search/extract every event → write an ntag output HDF5 (+ PNG of one feature).
It does not need a TOML file; thresholds are the [search] defaults unless overridden.
'''
from __future__ import annotations
import argparse
from pathlib import Path

import h5py
import numpy as np

from ntag.config.schemas import Config, IOCfg, RunCfg, SearchCfg, GeometryCfg
from ntag.io.ntag_store import (
    write_events_ragged,
    write_init,
    write_candidates,
    write_candidate_hits,
    write_event_summary,
)
from ntag.physics.candidate_store import CandidateStore
from ntag.pipelines.core import process_events, collect_results
from ntag.sim.synth import cylinder_pmt_geometry, synth_trigger_windows

def main():
    ap = argparse.ArgumentParser(description="Synthetic neutron-capture search smoke run")
    ap.add_argument("-n", "--events", type=int, default=200, help="Number of trigger windows")
    ap.add_argument("-o", "--out", type=Path, default=Path("ntag_smoke.h5"), help="Output HDF5")
    ap.add_argument("--seed", type=int, default=1)
    ap.add_argument("--workers", type=int, default=1)
    ap.add_argument("--n-low", type=int, default=7)
    ap.add_argument("--mc", action="store_true", help="Label candidates with the synthetic truth")
    ap.add_argument("--png", default=None, help="Also histogram this feature to PNG (e.g. N10)")
    args = ap.parse_args()

    rng = np.random.default_rng(args.seed)
    geom = cylinder_pmt_geometry()
    events = synth_trigger_windows(args.events, geom, rng=rng)
    n_caps = sum(len(ev.truth.capture_t_ns) for ev in events)
    print(f"[smoke] Synthesized {len(events)} windows, {geom.n_pmts} PMTs, {n_caps} true captures")

    out = Path(args.out)
    in_path = out.with_name(out.stem + "_input.h5")
    pmt_path = out.with_name(out.stem + "_pmts.npz")
    np.savez(pmt_path, xyz=geom.xyz)
    with h5py.File(in_path, "w") as f:
        write_events_ragged(f, events)
    print(f"[smoke] Wrote ragged input to {in_path}")

    cfg = Config(
        run=RunCfg(workers=args.workers, is_mc=args.mc, progress=False),
        io=IOCfg(input_path=str(in_path), output_path=str(out), adapter={"type": "hdf5"}),
        geometry=GeometryCfg(pmt_table=str(pmt_path)),
        search=SearchCfg(n_low=args.n_low),
    )
    results = process_events(cfg, geom, events, workers=args.workers)
    store = CandidateStore()
    rows, slices = collect_results(results, store, diag_level=1)
    print(f"[smoke] {len(slices)} candidates in {store.n_events} events")

    f = write_init(str(out), None, cfg)
    try:
        write_candidates(f, store)
        write_candidate_hits(f, slices)
        write_event_summary(f, rows)
    finally:
        f.close()
    print(f"[smoke] Wrote {out}")

    if args.png:
        try:
            from ntag.vis.hdf import save_feature_hist_png
            png = save_feature_hist_png(str(out), feature=args.png)
            print(f"[smoke] PNG saved to {png}")
        except (ImportError, KeyError) as e:
            print(f"[smoke] PNG export skipped: {e}")

if __name__ == "__main__":
    main()
