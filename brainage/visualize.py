"""
visualize.py

Plot per-slice brain age predictions so the spread across slices can be
inspected next to the median estimate.
"""

import os

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np


def plot_slice_predictions(brain_age_per_slice, slices, save_path, title=None):
    """
    Save a line plot of brain age per slice index.

    Args:
        brain_age_per_slice: per-slice predictions
        slices: slice index of each prediction
        save_path: output image path (.png)
        title: optional plot title
    """
    preds = np.asarray(brain_age_per_slice, dtype=float)
    slices = np.asarray(slices)
    if preds.shape != slices.shape:
        raise ValueError(f"{preds.shape[0]} predictions for {slices.shape[0]} slices")

    median = float(np.median(preds))

    out_dir = os.path.dirname(save_path)
    if out_dir:
        os.makedirs(out_dir, exist_ok=True)

    fig, ax = plt.subplots(figsize=(6, 4))
    ax.plot(slices, preds, marker="o", markersize=3, linewidth=1)
    ax.axhline(median, color="tab:red", linestyle="--", label=f"median = {median:.1f}")
    ax.set_xlabel("Slice index")
    ax.set_ylabel("Brain age")
    ax.set_title(title or "Brain age per slice")
    ax.legend()
    fig.savefig(save_path, bbox_inches="tight")
    plt.close(fig)
    return save_path
