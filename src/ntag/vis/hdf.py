import numpy as np
import matplotlib.pyplot as plt
from pathlib import Path

from ntag.io.ntag_store import read_features

def save_feature_hist_png(h5_path: str, out_png: str | None = None, feature: str = "N10", bins: int = 50):
    """Histogram one stored candidate feature (float namespace wins on a shared name) to PNG."""
    h5_path = str(h5_path)
    cols = read_features(h5_path)
    if feature not in cols:
        raise KeyError(f"feature {feature!r} not found in {h5_path}; have {sorted(cols)}")
    vals = np.asarray(cols[feature], dtype=np.float64)
    vals = vals[np.isfinite(vals)]

    if out_png is None:
        out_png = str(Path(h5_path).with_name(f"{Path(h5_path).stem}_{feature}.png"))

    plt.figure()
    plt.hist(vals, bins=bins, histtype="step")
    plt.xlabel(feature)
    plt.ylabel("candidates")
    plt.title(Path(h5_path).name + " : " + feature + f" (N={vals.size})")
    plt.tight_layout()
    plt.savefig(out_png, dpi=150)
    plt.close()
    return out_png
