from pathlib import Path

import pytest

from rmbg_service import model_loader
from rmbg_service.model_loader import InferenceSession
from tests.helpers import FakeEngine


@pytest.fixture(autouse=True)
def reset_session(monkeypatch):
    """Each test starts with no process-wide session."""
    monkeypatch.setattr(model_loader, "_SESSION", None)


@pytest.fixture
def make_session():
    def _make(value=1.0, **kwargs):
        return InferenceSession(FakeEngine(value, **kwargs), Path("fake-model.onnx"))

    return _make


@pytest.fixture
def model_file(tmp_path):
    path = tmp_path / "model.onnx"
    path.write_bytes(b"not really onnx")
    return path
