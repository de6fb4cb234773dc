from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterator, Optional
import numpy as np

from ntag.errors import InputShapeError

@dataclass(slots=True)
class Hit:
    """
    One recorded PMT hit (physics layer).

    t_ns: hit time [ns]
    q_pe: charge [p.e.]
    cable: PMT cable id (1-based)
    signal: MC truth flag; None when no truth is available
    """
    t_ns: float
    q_pe: float
    cable: int
    signal: Optional[bool] = None


def _check_parallel(**arrays: np.ndarray) -> int:
    lengths = {k: len(v) for k, v in arrays.items() if v is not None}
    if len(set(lengths.values())) > 1:
        raise InputShapeError(f"Parallel hit arrays differ in length: {lengths}")
    return next(iter(lengths.values())) if lengths else 0


@dataclass
class HitBuffer:
    """
    Raw (t, q, cable[, signal]) hits of one trigger window.

    The four arrays are always index-aligned. `signal` stays None until a
    chunk with MC truth is appended; mixing chunks with and without truth in
    one window is an input error.

    dead_time_ns: a hit on a cable whose previous accepted hit is closer
        than this is dropped (0 disables the reduction).
    max_cable: hits on cables above this id are ignored.
    signal_match_tol_ns: truth hit <-> recorded hit time tolerance.
    """
    dead_time_ns: float = 0.0
    max_cable: Optional[int] = None
    signal_match_tol_ns: float = 1e-3

    t: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float64))
    q: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.float64))
    cable: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int64))
    signal: Optional[np.ndarray] = None

    # counters for the event summary
    n_total: int = 0
    n_removed: int = 0
    n_signal_found: int = 0

    _last_hit_time: dict = field(default_factory=dict, repr=False)
    # truth state of the first chunk, even if all its hits were cut
    _truth_state: Optional[bool] = field(default=None, repr=False)

    def __len__(self) -> int:
        return int(self.t.size)

    def __iter__(self) -> Iterator[Hit]:
        for i in range(len(self)):
            sig = None if self.signal is None else bool(self.signal[i])
            yield Hit(float(self.t[i]), float(self.q[i]), int(self.cable[i]), sig)

    @property
    def has_signal(self) -> bool:
        return self.signal is not None

    def append(
        self,
        t,
        q,
        cable,
        *,
        in_gate=None,
        signal_t=None,
        signal_cable=None,
        stitch: bool = False,
    ) -> int:
        """
        Append one chunk of raw hits; returns the number of hits kept.

        If stitch=True and the buffer already holds hits, the first incoming
        hit that repeats the last buffered (q, cable) marks the overlap of two
        consecutive readout windows; the time offset found there is applied
        to it and every later incoming hit.
        """
        t = np.asarray(t, dtype=np.float64).ravel()
        q = np.asarray(q, dtype=np.float64).ravel()
        cable = np.asarray(cable, dtype=np.int64).ravel()
        gate = None if in_gate is None else np.asarray(in_gate, dtype=bool).ravel()
        _check_parallel(t=t, q=q, cable=cable, in_gate=gate)

        has_truth = signal_t is not None or signal_cable is not None
        if has_truth:
            signal_t = np.asarray(signal_t if signal_t is not None else [], dtype=np.float64).ravel()
            signal_cable = np.asarray(signal_cable if signal_cable is not None else [], dtype=np.int64).ravel()
            _check_parallel(signal_t=signal_t, signal_cable=signal_cable)
        if self._truth_state is not None and has_truth != self._truth_state:
            raise InputShapeError("Cannot mix hit chunks with and without signal truth in one window")
        self._truth_state = has_truth

        t = t + self._stitch_offsets(t, q, cable) if (stitch and len(self)) else t

        keep = np.ones(t.size, dtype=bool)
        if gate is not None:
            keep &= gate
        if self.max_cable is not None:
            keep &= cable <= self.max_cable
        self.n_total += int(keep.sum())

        # Dead-time reduction is order dependent (previous *accepted* hit per cable)
        if self.dead_time_ns > 0:
            for i in np.flatnonzero(keep):
                c = int(cable[i])
                last = self._last_hit_time.get(c)
                if last is not None and abs(t[i] - last) < self.dead_time_ns:
                    keep[i] = False
                    self.n_removed += 1
                    continue
                self._last_hit_time[c] = float(t[i])

        t, q, cable = t[keep], q[keep], cable[keep]

        if has_truth:
            flags = self._match_signal(t, cable, signal_t, signal_cable)
            self.n_signal_found += int(flags.sum())
            prev = self.signal if self.signal is not None else np.zeros(0, dtype=bool)
            self.signal = np.concatenate([prev, flags])

        self.t = np.concatenate([self.t, t])
        self.q = np.concatenate([self.q, q])
        self.cable = np.concatenate([self.cable, cable])
        return int(t.size)

    def append_hit(self, hit: Hit) -> None:
        has_truth = hit.signal is not None
        if self._truth_state is not None and has_truth != self._truth_state:
            raise InputShapeError("Cannot mix hits with and without signal truth in one window")
        self._truth_state = has_truth
        self.t = np.append(self.t, float(hit.t_ns))
        self.q = np.append(self.q, float(hit.q_pe))
        self.cable = np.append(self.cable, int(hit.cable))
        if hit.signal is not None:
            prev = self.signal if self.signal is not None else np.zeros(0, dtype=bool)
            self.signal = np.append(prev, bool(hit.signal))
        else:
            self.signal = None
        self.n_total += 1

    def _stitch_offsets(self, t: np.ndarray, q: np.ndarray, cable: np.ndarray) -> np.ndarray:
        off = np.zeros_like(t)
        match = np.flatnonzero((q == self.q[-1]) & (cable == self.cable[-1]))
        if match.size:
            i0 = int(match[0])
            off[i0:] = self.t[-1] - t[i0]
        return off

    def _match_signal(self, t, cable, signal_t, signal_cable) -> np.ndarray:
        flags = np.zeros(t.size, dtype=bool)
        if signal_t.size == 0 or t.size == 0:
            return flags
        for c in np.unique(cable):
            sel = np.flatnonzero(cable == c)
            st = signal_t[signal_cable == c]
            if st.size == 0:
                continue
            dt = np.abs(t[sel][:, None] - st[None, :])
            flags[sel] = np.any(dt < self.signal_match_tol_ns, axis=1)
        return flags

    def validate(self) -> None:
        _check_parallel(t=self.t, q=self.q, cable=self.cable, signal=self.signal)

    def clear(self) -> None:
        self.t = np.zeros(0, dtype=np.float64)
        self.q = np.zeros(0, dtype=np.float64)
        self.cable = np.zeros(0, dtype=np.int64)
        self.signal = None
        self.n_total = 0
        self.n_removed = 0
        self.n_signal_found = 0
        self._last_hit_time.clear()
        self._truth_state = None
