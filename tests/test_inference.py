import mlflow
import nibabel as nib
import numpy as np
import pandas as pd
import pytest

from brainage import inference
from brainage.config import EXPERIMENT_NAME
from brainage.estimator import BrainAgeEstimator, BrainAgeResult
from brainage.visualize import plot_slice_predictions

from conftest import StubRegressor


@pytest.fixture
def stub_estimator(monkeypatch):
    def factory(**kwargs):
        return BrainAgeEstimator(regressor=StubRegressor(), **kwargs)

    monkeypatch.setattr(inference, "BrainAgeEstimator", factory)


def _write_volume(path, seed=0):
    data = np.random.default_rng(seed).random((6, 7, 130)).astype(np.float32)
    nib.save(nib.Nifti1Image(data, affine=np.eye(4)), str(path))
    return data


def test_parse_args_requires_one_input():
    with pytest.raises(SystemExit):
        inference.parse_args([])
    with pytest.raises(SystemExit):
        inference.parse_args(["--t1_path", "a.nii.gz", "--input-dir", "d"])


def test_parse_args_rejects_negative_simulations():
    with pytest.raises(SystemExit):
        inference.parse_args(["--t1_path", "a.nii.gz", "--simulations", "-2"])


def test_single_volume_writes_csv_and_plot(tmp_path, stub_estimator, capsys):
    t1 = tmp_path / "sub-01_T1w.nii.gz"
    _write_volume(t1)
    out_csv = tmp_path / "slices.csv"
    plot = tmp_path / "plots" / "sub-01.png"

    code = inference.main([
        "--t1_path", str(t1), "--no-preprocessing", "--quiet",
        "--out_csv", str(out_csv), "--plot", str(plot),
    ])

    assert code == 0
    df = pd.read_csv(out_csv)
    assert list(df.columns) == ["slice_index", "brain_age"]
    assert df["slice_index"].tolist() == list(range(45, 125))
    assert plot.is_file()
    assert "Predicted brain age:" in capsys.readouterr().out


def test_batch_mode_writes_summary(tmp_path, stub_estimator):
    for i in range(2):
        _write_volume(tmp_path / f"sub-0{i}.nii.gz", seed=i)
    out_csv = tmp_path / "summary.csv"

    code = inference.main([
        "--input-dir", str(tmp_path), "--no-preprocessing", "--quiet",
        "--simulations", "1", "--seed", "3", "--out_csv", str(out_csv),
    ])

    assert code == 0
    df = pd.read_csv(out_csv)
    assert len(df) == 2
    assert set(df.columns) == {"image", "predicted_age", "slice_std", "number_of_simulations"}
    assert (df["number_of_simulations"] == 1).all()


def test_estimation_errors_return_nonzero(tmp_path, stub_estimator, capsys):
    t1 = tmp_path / "short.nii.gz"
    nib.save(nib.Nifti1Image(np.random.rand(6, 7, 50).astype(np.float32), np.eye(4)), str(t1))

    code = inference.main(["--t1_path", str(t1), "--no-preprocessing", "--quiet"])

    assert code == 1
    assert "IndexOutOfRangeError" in capsys.readouterr().err


def test_summary_row_reports_slice_spread():
    result = BrainAgeResult(50.0, np.array([40.0, 50.0, 60.0]))
    row = inference.summary_row("x.nii.gz", result, 0)
    assert row["predicted_age"] == 50.0
    assert row["slice_std"] == pytest.approx(np.std([40.0, 50.0, 60.0]))


def test_plot_rejects_mismatched_lengths(tmp_path):
    with pytest.raises(ValueError):
        plot_slice_predictions([1.0, 2.0], [0, 1, 2], str(tmp_path / "p.png"))


def test_mlflow_run_records_params_metrics_and_artifacts(tmp_path, stub_estimator, monkeypatch):
    tracking_uri = f"file://{tmp_path}/mlruns"
    monkeypatch.setattr(inference, "MLFLOW_URI", tracking_uri)
    monkeypatch.chdir(tmp_path)

    t1 = tmp_path / "sub-01_T1w.nii.gz"
    _write_volume(t1)
    out_csv = tmp_path / "slices.csv"
    plot = tmp_path / "sub-01.png"

    code = inference.main([
        "--t1_path", str(t1), "--no-preprocessing", "--quiet",
        "--out_csv", str(out_csv), "--plot", str(plot), "--mlflow",
    ])
    assert code == 0

    client = mlflow.tracking.MlflowClient(tracking_uri=tracking_uri)
    experiment = client.get_experiment_by_name(EXPERIMENT_NAME)
    runs = client.search_runs([experiment.experiment_id])
    assert len(runs) == 1
    run = runs[0]

    assert run.data.params == {
        "t1_path": str(t1),
        "number_of_simulations": "0",
        "sd_affine": "0.01",
        "do_preprocessing": "False",
    }
    assert {"predicted_age", "slice_std", "inference_time_sec"} <= set(run.data.metrics)
    df = pd.read_csv(out_csv)
    assert run.data.metrics["predicted_age"] == pytest.approx(np.median(df["brain_age"]))

    artifacts = {a.path for a in client.list_artifacts(run.info.run_id)}
    assert artifacts == {"slices.csv", "sub-01.png"}
