# src/ntag/physics/events.py
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional

import numpy as np

from ntag.errors import InputShapeError

@dataclass(slots=True)
class TruthInfo:
    """
    Optional MC ground truth attached to a trigger window.

    signal_t / signal_cable: hits produced by the signal (capture) photons,
        used to flag recorded hits as signal.
    capture_t_ns / capture_gamma_mev: true capture times (global simulation
        clock) and total gamma energy released per capture.
    vertex: true primary vertex, for vertex.mode = "true".
    """
    signal_t: Optional[np.ndarray] = None
    signal_cable: Optional[np.ndarray] = None
    capture_t_ns: np.ndarray = field(default_factory=lambda: np.zeros(0))
    capture_gamma_mev: np.ndarray = field(default_factory=lambda: np.zeros(0))
    vertex: Optional[np.ndarray] = None

    def validate(self) -> None:
        if (self.signal_t is None) != (self.signal_cable is None):
            raise InputShapeError("signal_t and signal_cable must be given together")
        if self.signal_t is not None and len(self.signal_t) != len(self.signal_cable):
            raise InputShapeError(
                f"Truth signal arrays differ in length: "
                f"t={len(self.signal_t)}, cable={len(self.signal_cable)}"
            )
        if len(self.capture_t_ns) != len(self.capture_gamma_mev):
            raise InputShapeError(
                f"Truth capture arrays differ in length: "
                f"t={len(self.capture_t_ns)}, E={len(self.capture_gamma_mev)}"
            )

@dataclass(slots=True)
class TriggerEvent:
    """
    One trigger window as delivered by an adapter.

    Hit arrays are parallel (t [ns], q [p.e.], cable id). `vertex` and `fit`
    come from the external vertex fitter: `vertex` is None when the source
    has no fit, `fit` holds opaque scalars (energy, goodness, ...) that are
    passed through to the candidate features untouched.
    """
    event_id: int
    t: np.ndarray
    q: np.ndarray
    cable: np.ndarray
    in_gate: Optional[np.ndarray] = None
    vertex: Optional[np.ndarray] = None
    fit: Dict[str, float] = field(default_factory=dict)
    truth: Optional[TruthInfo] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_hits(self) -> int:
        return int(len(self.t))

    def validate(self) -> None:
        """
        Raise InputShapeError if the parallel arrays are not index-aligned.
        """
        lengths = {"t": len(self.t), "q": len(self.q), "cable": len(self.cable)}
        if self.in_gate is not None:
            lengths["in_gate"] = len(self.in_gate)
        if len(set(lengths.values())) > 1:
            raise InputShapeError(f"Event {self.event_id}: parallel hit arrays differ in length: {lengths}")
        if self.vertex is not None and np.asarray(self.vertex).shape != (3,):
            raise InputShapeError(f"Event {self.event_id}: vertex must be (x, y, z)")
        if self.truth is not None:
            self.truth.validate()

def split_chunks(events: List[TriggerEvent], size: int) -> List[List[TriggerEvent]]:
    return [events[i:i + size] for i in range(0, len(events), size)]
