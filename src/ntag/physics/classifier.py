# src/ntag/physics/classifier.py
from __future__ import annotations
from pathlib import Path
from typing import Callable, Mapping, Optional, Protocol, Sequence
import json

import numpy as np

from ntag.errors import SchemaViolationError

class Classifier(Protocol):
    name: str
    feature_names: Sequence[str]
    def evaluate(self, features: Mapping[str, float]) -> float:
        """Return one scalar score for one candidate's named features."""

def feature_vector(features: Mapping[str, float], names: Sequence[str]) -> np.ndarray:
    """Order `features` by `names`; a missing name is a contract violation, never defaulted."""
    missing = [k for k in names if k not in features]
    if missing:
        raise SchemaViolationError(f"Classifier input missing features {missing}")
    return np.array([float(features[k]) for k in names], dtype=np.float64)

class LogisticClassifier:
    """sigmoid(bias + w . x) over a fixed, named feature list."""

    def __init__(self, names: Sequence[str], weights, bias: float = 0.0):
        self.feature_names = list(names)
        self.weights = np.asarray(weights, dtype=np.float64)
        if self.weights.shape != (len(self.feature_names),):
            raise ValueError(
                f"LogisticClassifier: {len(self.feature_names)} names but weights shape {self.weights.shape}"
            )
        self.bias = float(bias)
        self.name = "logistic"

    def evaluate(self, features: Mapping[str, float]) -> float:
        x = feature_vector(features, self.feature_names)
        z = self.bias + float(self.weights @ x)
        return float(1.0 / (1.0 + np.exp(-z)))

class CallableClassifier:
    """Wrap any externally trained model exposed as f(x: (n,) array) -> float."""

    def __init__(self, names: Sequence[str], fn: Callable[[np.ndarray], float], name: str = "callable"):
        self.feature_names = list(names)
        self.fn = fn
        self.name = name

    def evaluate(self, features: Mapping[str, float]) -> float:
        return float(self.fn(feature_vector(features, self.feature_names)))

def load_logistic(path: str | Path) -> LogisticClassifier:
    """
    Weights file, either
      .npz  : arrays `names` (str), `weights` (float), optional scalar `bias`
      .json : {"names": [...], "weights": [...], "bias": 0.0}
    """
    p = Path(path)
    if p.suffix.lower() == ".json":
        d = json.loads(p.read_text())
        return LogisticClassifier(d["names"], d["weights"], d.get("bias", 0.0))
    with np.load(p, allow_pickle=False) as z:
        keys = set(z.files)
        for k in ("names", "weights"):
            if k not in keys:
                raise KeyError(f"{p.name}: missing array {k!r}; found {sorted(keys)}")
        names = [str(s) for s in z["names"]]
        bias = float(z["bias"]) if "bias" in keys else 0.0
        return LogisticClassifier(names, z["weights"], bias)

def make_classifier(cfg_classifier) -> Optional[Classifier]:
    """
    Small factory used by pipelines.core; returns a Classifier or None.

      [classifier]
      type = "none" | "logistic"
      weights_path = "weights.npz"   # for type="logistic"
    """
    typ = (cfg_classifier.type or "none").lower()
    if typ == "none":
        return None
    if typ == "logistic":
        return load_logistic(cfg_classifier.weights_path)
    raise ValueError(f"Unknown classifier.type={cfg_classifier.type!r}")
