r"""
inference.py

Estimate brain age from T1-weighted MR volumes with DeepBrainNet.

Usage:

    brainage-predict --t1_path sub-01_T1w.nii.gz --out_csv sub-01_slices.csv

    # Uncertainty from 10 random affine perturbations, tracked in MLflow
    brainage-predict --t1_path sub-01_T1w.nii.gz --simulations 10 \
        --sd-affine 0.01 --plot sub-01.png --mlflow

    # Every NIfTI in a directory, one summary row per image
    brainage-predict --input-dir ./t1 --out_csv summary.csv

Requirements:
    - Pretrained weights are downloaded to --output-dir on first use.
    - Raw T1 input needs the preprocessing extra (antspyx, antspynet);
      pass --no-preprocessing for volumes already registered to MNI.
"""

import argparse
import glob
import logging
import os
import sys
import time

import mlflow
import numpy as np
import pandas as pd

from .config import EXPERIMENT_NAME, MLFLOW_URI, SD_AFFINE
from .data import load_volume
from .errors import BrainAgeError
from .estimator import BrainAgeEstimator
from .visualize import plot_slice_predictions


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="DeepBrainNet brain age estimation")

    parser.add_argument("--t1_path", type=str, default=None, help="Path to T1 volume")
    parser.add_argument("--input-dir", type=str, default=None, help="Directory of T1 volumes")
    parser.add_argument("--output-dir", type=str, default=None, help="Model weight cache directory")
    parser.add_argument("--no-preprocessing", action="store_true", help="Input is already preprocessed")
    parser.add_argument("--simulations", type=int, default=0, help="Number of random affine perturbations")
    parser.add_argument("--sd-affine", type=float, default=SD_AFFINE, help="SD of the affine perturbation")
    parser.add_argument("--seed", type=int, default=None, help="Seed for the perturbations")
    parser.add_argument("--workers", type=int, default=None, help="Threads for per-simulation prediction")
    parser.add_argument("--out_csv", type=str, default=None, help="Output CSV path")
    parser.add_argument("--plot", type=str, default=None, help="Per-slice plot path (.png)")
    parser.add_argument("--mlflow", action="store_true", help="Log the run to MLflow")
    parser.add_argument("--quiet", action="store_true", help="Only print the result")

    args = parser.parse_args(argv)

    if (args.t1_path is None) == (args.input_dir is None):
        parser.error("Provide exactly one of --t1_path or --input-dir")
    if args.simulations < 0:
        parser.error("--simulations must be >= 0")
    if args.input_dir is not None and args.plot is not None:
        parser.error("--plot is only supported with --t1_path")

    return args


def find_volumes(input_dir):
    paths = []
    for pattern in ("*.nii", "*.nii.gz", "*.hdr"):
        paths.extend(glob.glob(os.path.join(input_dir, pattern)))
    return sorted(paths)


def slice_table(result, slices) -> pd.DataFrame:
    return pd.DataFrame({
        "slice_index": np.asarray(slices, dtype=int),
        "brain_age": np.asarray(result.brain_age_per_slice, dtype=float),
    })


def summary_row(path, result, number_of_simulations) -> dict:
    return {
        "image": path,
        "predicted_age": result.predicted_age,
        "slice_std": float(np.std(result.brain_age_per_slice)),
        "number_of_simulations": number_of_simulations,
    }


def run_inference(
    t1_path,
    estimator,
    do_preprocessing=True,
    number_of_simulations=0,
    sd_affine=SD_AFFINE,
    out_csv=None,
    plot_path=None,
    max_workers=None,
):
    vol = load_volume(t1_path)
    result = estimator.estimate(
        vol,
        do_preprocessing=do_preprocessing,
        number_of_simulations=number_of_simulations,
        sd_affine=sd_affine,
        max_workers=max_workers,
    )

    if out_csv:
        slice_table(result, estimator.slices).to_csv(out_csv, index=False)
    if plot_path:
        plot_slice_predictions(
            result.brain_age_per_slice,
            estimator.slices,
            plot_path,
            title=os.path.basename(t1_path),
        )
    return result


def run_batch(input_dir, estimator, out_csv=None, **kwargs) -> pd.DataFrame:
    paths = find_volumes(input_dir)
    if not paths:
        raise SystemExit(f"No volumes found in {input_dir}")

    rows = []
    for path in paths:
        print(f"Processing {path}")
        result = run_inference(path, estimator, **kwargs)
        rows.append(summary_row(path, result, kwargs.get("number_of_simulations", 0)))

    df = pd.DataFrame(rows)
    if out_csv:
        df.to_csv(out_csv, index=False)
    return df


def _run(args, estimator):
    options = dict(
        do_preprocessing=not args.no_preprocessing,
        number_of_simulations=args.simulations,
        sd_affine=args.sd_affine,
        max_workers=args.workers,
    )
    if args.input_dir is not None:
        df = run_batch(args.input_dir, estimator, out_csv=args.out_csv, **options)
        print(df.to_string(index=False))
        return {"predicted_age_mean": float(df["predicted_age"].mean())}

    result = run_inference(
        args.t1_path, estimator, out_csv=args.out_csv, plot_path=args.plot, **options
    )
    print(f"Predicted brain age: {result.predicted_age:.2f}")
    return {
        "predicted_age": result.predicted_age,
        "slice_std": float(np.std(result.brain_age_per_slice)),
    }


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.WARNING if args.quiet else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    estimator = BrainAgeEstimator(
        output_directory=args.output_dir,
        seed=args.seed,
        verbose=not args.quiet,
    )

    try:
        if not args.mlflow:
            _run(args, estimator)
            return 0

        mlflow.set_tracking_uri(MLFLOW_URI)
        mlflow.set_experiment(EXPERIMENT_NAME)
        with mlflow.start_run(run_name="BrainAgeInference"):
            mlflow.log_param("t1_path", args.t1_path or args.input_dir)
            mlflow.log_param("number_of_simulations", args.simulations)
            mlflow.log_param("sd_affine", args.sd_affine)
            mlflow.log_param("do_preprocessing", not args.no_preprocessing)

            start = time.time()
            metrics = _run(args, estimator)
            for key, value in metrics.items():
                mlflow.log_metric(key, value)
            mlflow.log_metric("inference_time_sec", time.time() - start)

            for artifact in (args.out_csv, args.plot):
                if artifact and os.path.isfile(artifact):
                    mlflow.log_artifact(artifact)
    except BrainAgeError as exc:
        print(f"ERROR: {type(exc).__name__}: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
