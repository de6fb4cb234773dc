from __future__ import annotations
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Literal, Optional, Dict, List, Union, Any

class RunCfg(BaseModel):
    """
    Global run controls.

    TOML:

    [run]
    diagnostics_level = 1
    workers = "auto"      # 0 or 1 = single process
    is_mc = false
    """

    # Performance / execution
    workers: Union[int, Literal["auto"]] = 1
    chunk_events: Union[int, Literal["auto"]] = "auto"
    progress: bool = True

    # Diagnostics
    diagnostics_level: int = 1  # 0=off, 1=minimal, 2=verbose

    # Limits
    max_events: Optional[int] = None

    # MC truth labelling of candidates
    is_mc: bool = False

    @field_validator("diagnostics_level")
    def _diag_range(cls, v: int) -> int:
        if v not in (0, 1, 2):
            raise ValueError("diagnostics_level must be 0, 1, or 2")
        return v

class IOCfg(BaseModel):
    """
    I/O paths and high-level source description.

    TOML:

    [io]
    input_path  = "..."
    output_path = "..."

    [io.adapter]
    type = "hdf5"         # "hdf5" | "table" | "root"
    """

    input_path: str
    output_path: str

    # Adapter-specific sub-config, e.g. [io.adapter]
    adapter: Dict[str, Any] = Field(default_factory=dict)

class GeometryCfg(BaseModel):
    """
    PMT position table and light propagation.

    [geometry]
    pmt_table = "pmt_positions.npz"   # cable id k -> row k-1
    speed_of_light_cm_per_ns = 21.5833
    """

    pmt_table: Optional[str] = None
    speed_of_light_cm_per_ns: float = 21.5833

    @field_validator("speed_of_light_cm_per_ns")
    def _positive_speed(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("speed_of_light_cm_per_ns must be positive")
        return v

class HitsCfg(BaseModel):
    dead_time_ns: float = 0.0          # per-PMT re-hit rejection; 0 disables
    max_cable: Optional[int] = None    # reject hits on cables above this id
    require_in_gate: bool = True       # honour the in-gate flag when the source has one
    signal_match_tol_ns: float = 1e-3  # truth signal hit <-> recorded hit matching

class VertexCfg(BaseModel):
    """
    Which prompt vertex the ToF correction uses.

    mode = "fit"    : vertex delivered with the event by the external fitter
    mode = "custom" : fixed point from `custom`
    mode = "true"   : MC true vertex (truth block of the event)
    """

    mode: Literal["fit", "custom", "true"] = "fit"
    custom: Optional[List[float]] = None

    @model_validator(mode="after")
    def _custom_needs_point(self) -> "VertexCfg":
        if self.mode == "custom":
            if self.custom is None or len(self.custom) != 3:
                raise ValueError("vertex.mode='custom' needs vertex.custom = [x, y, z]")
        return self

class SearchCfg(BaseModel):
    """
    Peak-search thresholds (all times in ns, counts inclusive).

    [search]
    n_low = 7
    n_high = 50
    n_wide_max = 200
    cluster_window_ns = 10.0
    wide_window_ns = 200.0
    min_peak_separation_ns = 50.0
    early_time_cutoff_ns = 5.0
    late_time_cutoff_ns = 535.0   # reported only, not a cut
    """

    n_low: int = 7
    n_high: int = 50
    n_wide_max: int = 200
    cluster_window_ns: float = 10.0
    wide_window_ns: float = 200.0
    min_peak_separation_ns: float = 50.0
    early_time_cutoff_ns: float = 5.0
    late_time_cutoff_ns: float = 535.0
    use_tof: bool = True

    @field_validator("cluster_window_ns", "wide_window_ns", "min_peak_separation_ns")
    def _positive_width(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("window widths and peak separation must be positive")
        return v

    @model_validator(mode="after")
    def _ordering(self) -> "SearchCfg":
        if self.n_low < 1:
            raise ValueError(f"n_low must be >= 1, got {self.n_low}")
        if self.n_low > self.n_high:
            raise ValueError(f"n_low ({self.n_low}) must not exceed n_high ({self.n_high})")
        if self.early_time_cutoff_ns > self.late_time_cutoff_ns:
            raise ValueError(
                f"early_time_cutoff_ns ({self.early_time_cutoff_ns}) "
                f"must not exceed late_time_cutoff_ns ({self.late_time_cutoff_ns})"
            )
        return self

class FeaturesCfg(BaseModel):
    # External fit scalars every event must provide (e.g. "tbsenergy", "tbsgood")
    fit_features: List[str] = []
    # Centred-window hit counts: feature name -> window width [ns]
    n_wide_windows_ns: Dict[str, float] = {"N50": 50.0, "N200": 200.0}

    @model_validator(mode="after")
    def _no_shadowed_int_features(self) -> "FeaturesCfg":
        int_names = {"N10", "NSigHits", "CaptureType", *self.n_wide_windows_ns}
        clash = sorted(set(self.fit_features) & int_names)
        if clash:
            raise ValueError(f"fit_features {clash} collide with integer feature names")
        return self

class ClassifierCfg(BaseModel):
    type: Literal["none", "logistic"] = "none"
    weights_path: Optional[str] = None
    output_name: str = "ClassifierOutput"

    @model_validator(mode="after")
    def _weights_needed(self) -> "ClassifierCfg":
        if self.type == "logistic" and not self.weights_path:
            raise ValueError("classifier.type='logistic' needs classifier.weights_path")
        return self

class TruthCfg(BaseModel):
    match_window_ns: float = 40.0
    gd_energy_threshold_mev: float = 6.0
    trigger_offset_ns: float = 1000.0

class VisCfg(BaseModel):
    export_png_on_write: bool = False
    feature: str = "N10"


class Config(BaseModel):
    """
    Top-level TOML configuration.
    """

    run: RunCfg = Field(default_factory=RunCfg)
    io: IOCfg
    geometry: GeometryCfg = Field(default_factory=GeometryCfg)
    hits: HitsCfg = Field(default_factory=HitsCfg)
    vertex: VertexCfg = Field(default_factory=VertexCfg)
    search: SearchCfg = Field(default_factory=SearchCfg)
    features: FeaturesCfg = Field(default_factory=FeaturesCfg)
    classifier: ClassifierCfg = Field(default_factory=ClassifierCfg)
    truth: TruthCfg = Field(default_factory=TruthCfg)
    vis: VisCfg = Field(default_factory=VisCfg)
