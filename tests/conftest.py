import numpy as np
import pytest


class StubRegressor:
    """Predicts 100 x mean intensity of each slice and records every call."""

    def __init__(self):
        self.calls = []

    def predict(self, batch):
        self.calls.append(batch.copy())
        return 100.0 * batch.mean(axis=(1, 2, 3))


class SequenceRegressor:
    """Returns the given prediction vectors, one per call."""

    def __init__(self, predictions):
        self.predictions = [np.asarray(p, dtype=float) for p in predictions]
        self.calls = 0

    def predict(self, batch):
        prediction = self.predictions[self.calls]
        self.calls += 1
        return prediction


class FailingRegressor:
    def predict(self, batch):
        raise RuntimeError("out of memory")


@pytest.fixture
def stub_regressor():
    return StubRegressor()


@pytest.fixture
def small_volume():
    rng = np.random.default_rng(0)
    return rng.random((6, 7, 130)) * 500.0


@pytest.fixture
def mni_volume():
    rng = np.random.default_rng(1)
    return rng.random((181, 217, 181)).astype(np.float32)
