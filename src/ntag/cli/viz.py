from __future__ import annotations

import typer
from typing import Optional

from ntag.vis.hdf import save_feature_hist_png

app = typer.Typer(help="ntag output visualization tools")

@app.command("feature-hist")
def feature_hist(
    h5_path: str = typer.Argument(..., help="Path to an ntag output HDF5 file"),
    feature: str = typer.Option("N10", "--feature", "-f", help="Candidate feature name"),
    bins: int = typer.Option(50, "--bins", "-b", help="Number of histogram bins"),
    out: Optional[str] = typer.Option(None, "--out", "-o", help="Output PNG path (defaults to <file>_<feature>.png)"),
):
    """Histogram one candidate feature from an output file to a PNG."""
    out_png = save_feature_hist_png(h5_path, out_png=out, feature=feature, bins=bins)
    typer.echo(f"Wrote {out_png}")

if __name__ == "__main__":
    app()
