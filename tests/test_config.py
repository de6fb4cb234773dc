import pytest
from pydantic import ValidationError

from ntag.config.load import load_config, snapshot_config_toml
from ntag.config.schemas import Config, FeaturesCfg, SearchCfg, RunCfg, VertexCfg

TOML = """
[run]
diagnostics_level = 0
workers = "auto"

[io]
input_path = "in.h5"
output_path = "out.h5"

[io.adapter]
type = "hdf5"

[search]
n_low = 5
early_time_cutoff_ns = 0.0

[features]
fit_features = ["energy"]
"""


def test_load_config(tmp_path):
    p = tmp_path / "cfg.toml"
    p.write_text(TOML)
    cfg = load_config(p)
    assert cfg.run.workers == "auto"
    assert cfg.io.adapter["type"] == "hdf5"
    assert cfg.search.n_low == 5 and cfg.search.n_high == 50
    assert cfg.search.cluster_window_ns == 10.0
    assert cfg.features.fit_features == ["energy"]
    assert cfg.features.n_wide_windows_ns == {"N50": 50.0, "N200": 200.0}
    assert cfg.geometry.speed_of_light_cm_per_ns == pytest.approx(21.5833)
    assert snapshot_config_toml(p) == TOML
    assert snapshot_config_toml(None) == ""


def test_search_defaults():
    s = SearchCfg()
    assert (s.n_low, s.n_high, s.n_wide_max) == (7, 50, 200)
    assert (s.min_peak_separation_ns, s.early_time_cutoff_ns, s.late_time_cutoff_ns) == (50.0, 5.0, 535.0)


@pytest.mark.parametrize("kw", [
    {"n_low": 60, "n_high": 50},
    {"n_low": 0},
    {"cluster_window_ns": 0.0},
    {"wide_window_ns": -5.0},
    {"early_time_cutoff_ns": 600.0},
])
def test_invalid_thresholds_fail_at_load(kw):
    with pytest.raises(ValidationError):
        SearchCfg(**kw)


def test_other_validators():
    with pytest.raises(ValidationError):
        RunCfg(diagnostics_level=3)
    with pytest.raises(ValidationError):
        VertexCfg(mode="custom")
    assert VertexCfg(mode="custom", custom=[0, 0, 1]).custom == [0, 0, 1]
    with pytest.raises(ValidationError):
        Config()  # [io] is required


def test_fit_features_must_not_collide_with_int_features():
    for bad in (["N10"], ["energy", "NSigHits"], ["CaptureType"], ["N200"]):
        with pytest.raises(ValidationError, match="collide"):
            FeaturesCfg(fit_features=bad)
    with pytest.raises(ValidationError, match="N30"):
        FeaturesCfg(fit_features=["N30"], n_wide_windows_ns={"N30": 30.0})
    # a window name that is not configured is free to use
    assert FeaturesCfg(fit_features=["N200"], n_wide_windows_ns={"N50": 50.0}).fit_features == ["N200"]
