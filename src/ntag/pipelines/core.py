from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass, field
from itertools import islice
from pathlib import Path
from typing import Iterable, List, Optional, Sequence
import os
import typer

try:
    from tqdm import tqdm  # optional, for progress bars
except Exception:  # pragma: no cover
    tqdm = None  # noqa

from ntag.config.load import load_config
from ntag.config.schemas import Config
from ntag.errors import NTagError, InputShapeError
from ntag.filters.peak_search import PeakSearch
from ntag.geometry.pmt import PMTGeometry
from ntag.io.adapters import make_adapter
from ntag.io.ntag_store import (
    write_init,
    write_candidates,
    write_candidate_hits,
    write_event_summary,
    candidate_hit_slice,
)
from ntag.io.pmt_table import load_pmt_table
from ntag.physics.candidate_store import CandidateStore
from ntag.physics.candidates import Candidate
from ntag.physics.classifier import make_classifier
from ntag.physics.events import TriggerEvent, split_chunks
from ntag.physics.features import CandidateFeatureExtractor
from ntag.physics.hits import HitBuffer
from ntag.physics.tof import ToFCorrector
from ntag.physics.truth import label_candidates
from ntag.physics.vertex import make_vertex_strategy
from ntag.vis.hdf import save_feature_hist_png


@dataclass
class EventResult:
    """Outcome of one trigger window; status 0 = processed, 1 = aborted on an NTagError."""
    event_id: int
    status: int = 0
    n_hits: int = 0
    n_removed: int = 0
    max_n_wide: int = 0
    max_n_wide_time_ns: Optional[float] = None
    first_hit_time_ns: Optional[float] = None
    candidates: List[Candidate] = field(default_factory=list)
    error: Optional[str] = None

    def summary_row(self, n_candidates: int) -> dict:
        return {
            "event_id": self.event_id,
            "n_hits": self.n_hits,
            "n_removed": self.n_removed,
            "n_candidates": n_candidates,
            "max_n_wide": self.max_n_wide,
            "max_n_wide_time_ns": self.max_n_wide_time_ns,
            "first_hit_time_ns": self.first_hit_time_ns,
            "status": self.status,
        }


class EventProcessor:
    """
    Per-event processing context:

        HitBuffer -> vertex -> ToF correction + sort -> PeakSearch
                  -> feature extraction -> [truth labels] -> [classifier]

    Only the geometry table is shared; the hit buffer is rebuilt for every
    event, so processing the same event twice yields identical candidates.
    Each worker process builds its own instance.
    """

    def __init__(self, cfg: Config, geometry: PMTGeometry):
        self.cfg = cfg
        self.geometry = geometry
        self.hits = HitBuffer(
            dead_time_ns=cfg.hits.dead_time_ns,
            max_cable=cfg.hits.max_cable,
            signal_match_tol_ns=cfg.hits.signal_match_tol_ns,
        )
        self.vertex_strategy = make_vertex_strategy(cfg.vertex)
        self.tof = ToFCorrector(geometry, cfg.geometry.speed_of_light_cm_per_ns, use_tof=cfg.search.use_tof)
        self.search = PeakSearch(cfg.search)
        self.extractor = CandidateFeatureExtractor(
            geometry,
            cluster_window_ns=cfg.search.cluster_window_ns,
            wide_windows_ns=cfg.features.n_wide_windows_ns,
            fit_features=cfg.features.fit_features,
        )
        self.classifier = make_classifier(cfg.classifier)

    def process_event(self, ev: TriggerEvent) -> EventResult:
        """Run the whole chain on one event; NTagError propagates to the caller."""
        ev.validate()
        res = EventResult(event_id=ev.event_id)

        self.hits.clear()
        truth = ev.truth
        self.hits.append(
            ev.t, ev.q, ev.cable,
            in_gate=ev.in_gate if self.cfg.hits.require_in_gate else None,
            signal_t=None if truth is None else truth.signal_t,
            signal_cable=None if truth is None else truth.signal_cable,
        )
        res.n_hits = len(self.hits)
        res.n_removed = self.hits.n_removed

        vertex = self.vertex_strategy.vertex_for(ev)
        series = self.tof.correct(self.hits, vertex, sort=True)
        peaks, diag = self.search.run(series.t)
        res.max_n_wide = diag.max_wide_count
        res.max_n_wide_time_ns = diag.max_wide_time
        res.first_hit_time_ns = diag.first_hit_time

        for k, peak in enumerate(peaks):
            cand = self.extractor.make_candidate(k, series, peak)
            self.extractor.extract(cand, vertex, ev.fit)
            res.candidates.append(cand)

        if self.cfg.run.is_mc:
            if truth is None:
                raise InputShapeError(f"Event {ev.event_id}: run.is_mc set but the event has no truth block")
            label_candidates(
                res.candidates,
                truth,
                match_window_ns=self.cfg.truth.match_window_ns,
                gd_energy_threshold_mev=self.cfg.truth.gd_energy_threshold_mev,
                trigger_offset_ns=self.cfg.truth.trigger_offset_ns,
            )

        if self.classifier is not None:
            out_name = self.cfg.classifier.output_name
            for cand in res.candidates:
                cand.float_vars[out_name] = self.classifier.evaluate(cand.features())
        return res

    def process(self, ev: TriggerEvent) -> EventResult:
        """process_event with per-event error isolation."""
        try:
            return self.process_event(ev)
        except NTagError as exc:
            return EventResult(event_id=ev.event_id, status=1, n_hits=ev.n_hits, error=f"{type(exc).__name__}: {exc}")


def _process_chunk(cfg: Config, geometry: PMTGeometry, events: Sequence[TriggerEvent]) -> List[EventResult]:
    proc = EventProcessor(cfg, geometry)
    return [proc.process(ev) for ev in events]


def _auto_chunk_size(n_events: int, workers: int) -> int:
    # a few chunks per worker keeps the pool busy without tiny tasks
    return max(50, min(5000, n_events // max(1, 4 * workers)))


def process_events(
    cfg: Config,
    geometry: PMTGeometry,
    events: Sequence[TriggerEvent],
    *,
    workers: int | str = 1,
    chunk_events: int | str = "auto",
    progress: bool = False,
) -> List[EventResult]:
    """
    Process events, in parallel when workers > 1. Results come back in input
    order regardless of which worker finished first.
    """
    if workers == "auto":
        workers = max(1, os.cpu_count() or 1)
    elif isinstance(workers, int):
        workers = max(0, workers)
    else:
        raise ValueError("workers must be int or 'auto'")

    events = list(events)
    N = len(events)

    if workers <= 1 or N < 2:
        proc = EventProcessor(cfg, geometry)
        it = tqdm(events, desc="ntag", unit="event") if (progress and tqdm) else events
        return [proc.process(ev) for ev in it]

    if chunk_events == "auto":
        chunk_events = _auto_chunk_size(N, workers)
    else:
        chunk_events = int(chunk_events)

    chunks = split_chunks(events, chunk_events)
    by_chunk: List[Optional[List[EventResult]]] = [None] * len(chunks)

    # Progress bar over chunks
    pbar = tqdm(total=len(chunks), desc=f"ntag x{workers}", unit="chunk") if (progress and tqdm) else None

    with ProcessPoolExecutor(max_workers=workers) as ex:
        futs = {ex.submit(_process_chunk, cfg, geometry, ch): k for k, ch in enumerate(chunks)}
        for fut in as_completed(futs):
            by_chunk[futs[fut]] = fut.result()
            if pbar:
                pbar.update(1)
    if pbar:
        pbar.close()

    return [r for chunk in by_chunk for r in chunk]


def _iter_source_events(cfg: Config) -> Iterable[TriggerEvent]:
    adapter = make_adapter(cfg.io.adapter)
    events = adapter.iter_events(str(cfg.io.input_path))
    if cfg.run.max_events is not None:
        events = islice(events, cfg.run.max_events)
    return events


def _load_geometry(cfg: Config) -> PMTGeometry:
    if not cfg.geometry.pmt_table:
        raise ValueError("geometry.pmt_table is required")
    return load_pmt_table(cfg.geometry.pmt_table)


def collect_results(results: Sequence[EventResult], store: CandidateStore, *, diag_level: int = 0):
    """
    Append every event's candidates to the run store in event order.

    A candidate whose feature names differ from the run schema aborts its
    event (status 1, no candidates kept); later events continue.
    Returns (summary rows, hit slices of all kept candidates).
    """
    rows: List[dict] = []
    slices = []
    n_failed = 0
    for res in results:
        if res.status == 0:
            try:
                for cand in res.candidates:
                    store.append(cand)
            except NTagError as exc:
                store.clear()
                res.status = 1
                res.error = f"{type(exc).__name__}: {exc}"
        if res.status != 0:
            if n_failed < 5 and diag_level >= 1:
                print(f"[event] {res.event_id} aborted: {res.error}")
            n_failed += 1
        else:
            slices.extend(candidate_hit_slice(c) for c in store.candidates)
            if diag_level >= 2:
                print(f"[event] {res.event_id}: {res.n_hits} hits, {len(store)} candidates")
                for c in store.candidates:
                    print(f"[event]   {c.summary()}")
        n = store.commit_event(res.event_id)
        rows.append(res.summary_row(n))
    if n_failed and diag_level >= 1:
        print(f"[pipeline] {n_failed} event(s) aborted on input/schema errors")
    return rows, slices


def run_pipeline(
    cfg_path: str,
    *,
    workers: Optional[int] = None,
    max_events: Optional[int] = None,
    is_mc: Optional[bool] = None,
    use_tof: Optional[bool] = None,
) -> Path:
    """
    Orchestrate the full pipeline from a TOML config file.

    CLI flags (--workers/--max-events/--mc/--no-tof) override the
    corresponding TOML fields when not None.

    Returns
    -------
    Path to written HDF5 file.
    """
    cfg = load_config(cfg_path)

    # ---- apply CLI overrides on top of TOML ----
    if workers is not None:
        cfg.run.workers = workers
    if max_events is not None:
        cfg.run.max_events = max_events
    if is_mc is not None:
        cfg.run.is_mc = is_mc
    if use_tof is not None:
        cfg.search.use_tof = use_tof

    diag_level = cfg.run.diagnostics_level

    if diag_level >= 1:
        print(f"[run] config = {cfg_path}")
        print(f"[run] input={cfg.io.input_path} -> output={cfg.io.output_path}")
        print(f"[run] vertex={cfg.vertex.mode} use_tof={cfg.search.use_tof} "
              f"mc={cfg.run.is_mc} workers={cfg.run.workers}")

    geometry = _load_geometry(cfg)
    if diag_level >= 1:
        print(f"[run] {geometry.n_pmts} PMTs from {cfg.geometry.pmt_table}")

    events = list(_iter_source_events(cfg))
    if diag_level >= 1:
        print(f"[pipeline] Got {len(events)} events")

    results = process_events(
        cfg, geometry, events,
        workers=cfg.run.workers,
        chunk_events=cfg.run.chunk_events,
        progress=cfg.run.progress,
    )

    store = CandidateStore()
    rows, slices = collect_results(results, store, diag_level=diag_level)
    if diag_level >= 1:
        print(f"[search] {len(slices)} candidates in {store.n_events} events")
        if store.schema_fixed and diag_level >= 2:
            print(f"[search] features: {store.names()}")

    # HDF5 output
    out_path = Path(cfg.io.output_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    f = write_init(str(out_path), cfg_path, cfg)
    try:
        write_candidates(f, store)
        write_candidate_hits(f, slices)
        write_event_summary(f, rows)
    finally:
        f.close()
    if diag_level >= 1:
        print(f"[store] Wrote {out_path}")

    # Optional PNG export
    if cfg.vis.export_png_on_write:
        try:
            out_png = save_feature_hist_png(str(out_path), feature=cfg.vis.feature)
            if diag_level >= 1:
                print(f"[pipeline] Wrote PNG {out_png} for {cfg.vis.feature}")
        except (KeyError, OSError, ValueError) as e:
            if diag_level >= 1:
                print(f"[pipeline] PNG export failed: {e!r}")

    return out_path


# ---------------------------------------------------------------------------
# Unified CLI entry point
# ---------------------------------------------------------------------------

app = typer.Typer(help="Neutron capture candidate search (ntag.pipelines.core)")


@app.command()
def main(
    cfg_path: str = typer.Argument(
        ...,
        help="Path to TOML config file",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers",
        help="Override [run].workers (0 or 1 = single process)",
    ),
    max_events: Optional[int] = typer.Option(
        None,
        "--max-events",
        help="Process at most this many events",
    ),
    is_mc: Optional[bool] = typer.Option(
        None,
        "--mc / --data",
        help="Enable or disable MC truth labelling; overrides [run].is_mc when set",
    ),
    no_tof: bool = typer.Option(
        False,
        "--no-tof",
        help="Search on raw hit times (override [search].use_tof = false)",
    ),
):
    """
    Run the candidate search for a single config.
    """
    out_path = run_pipeline(
        cfg_path,
        workers=workers,
        max_events=max_events,
        is_mc=is_mc,
        use_tof=False if no_tof else None,
    )
    typer.echo(str(out_path))


if __name__ == "__main__":
    app()
