from __future__ import annotations
from dataclasses import dataclass
import numpy as np

from ntag.errors import InputShapeError
from .events import TriggerEvent

@dataclass(frozen=True)
class Vertex:
    """Prompt vertex (x, y, z) [cm]; immutable once handed to a ToF pass."""
    x: float
    y: float
    z: float

    @classmethod
    def from_xyz(cls, xyz) -> "Vertex":
        a = np.asarray(xyz, dtype=np.float64).ravel()
        if a.shape != (3,) or not np.all(np.isfinite(a)):
            raise InputShapeError(f"Vertex must be three finite numbers, got {xyz!r}")
        return cls(float(a[0]), float(a[1]), float(a[2]))

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float64)

# --- Interfaces -------------------------------------------------------------

class VertexStrategy:
    """Base protocol: pick the prompt vertex used for ToF correction of an event."""
    name: str

    def vertex_for(self, event: TriggerEvent) -> Vertex:
        raise NotImplementedError

# --- Implementations --------------------------------------------------------

class FittedVertex(VertexStrategy):
    """Vertex delivered with the event by the external fitter."""
    name = "fit"

    def vertex_for(self, event):
        if event.vertex is None:
            raise InputShapeError(f"Event {event.event_id}: no fitted vertex supplied")
        return Vertex.from_xyz(event.vertex)

class CustomVertex(VertexStrategy):
    """Fixed point, e.g. a calibration source position."""
    name = "custom"

    def __init__(self, xyz):
        self.vertex = Vertex.from_xyz(xyz)

    def vertex_for(self, event):
        return self.vertex

class TrueVertex(VertexStrategy):
    name = "true"

    def vertex_for(self, event):
        if event.truth is None or event.truth.vertex is None:
            raise InputShapeError(f"Event {event.event_id}: no true vertex in truth block")
        return Vertex.from_xyz(event.truth.vertex)

# --- Factory ----------------------------------------------------------------

def make_vertex_strategy(cfg_vertex) -> VertexStrategy:
    if cfg_vertex.mode == "fit":
        return FittedVertex()
    elif cfg_vertex.mode == "custom":
        return CustomVertex(cfg_vertex.custom)
    elif cfg_vertex.mode == "true":
        return TrueVertex()
    else:
        raise ValueError(f"Unknown vertex mode {cfg_vertex.mode}")
