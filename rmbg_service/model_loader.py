"""
Model session management for RMBG.

The loader:
 - opens the ONNX model from `RMBG_MODEL_PATH` with onnxruntime,
 - keeps a single shared session for the life of the process,
 - serializes inference calls on that session,
 - exposes `init_session()` / `get_session()` / `infer()` for callers.
"""

from __future__ import annotations

import logging
from pathlib import Path
from threading import Lock
from typing import List, Optional, Union

import onnxruntime as ort
from PIL import Image

from . import config
from .errors import InferenceError, ModelNotInitializedError
from .preprocessing import INPUT_NAME, image_to_tensor, output_to_mask

logger = logging.getLogger(__name__)

_SESSION: Optional["InferenceSession"] = None
_LOCK = Lock()


class InferenceSession:
    """
    A loaded model plus the lock that serializes calls into it.

    The onnxruntime session is never mutated by `infer`, so an exception
    raised mid-call leaves it usable and the lock is released by the
    context manager.
    """

    def __init__(self, engine: ort.InferenceSession, model_path: Path):
        self._engine = engine
        self._run_lock = Lock()
        self.model_path = model_path

    @property
    def providers(self) -> List[str]:
        return list(self._engine.get_providers())

    def infer(self, image: Image.Image) -> Image.Image:
        """Return the alpha mask (mode "L") for `image` at its own resolution."""
        prepared = image_to_tensor(image)

        with self._run_lock:
            try:
                outputs = self._engine.run(None, {INPUT_NAME: prepared.tensor})
            except Exception as exc:  # noqa: BLE001
                raise InferenceError(str(exc)) from exc

        if not outputs:
            raise InferenceError("model returned no outputs")
        return output_to_mask(outputs[0], prepared.orig_size)


def _default_providers() -> List[str]:
    # Prefer CUDA when the installed onnxruntime build has it.
    available = ort.get_available_providers()
    if "CUDAExecutionProvider" in available:
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def check_model(model_path: Union[str, Path]) -> Path:
    """Return the model path if the file exists, else raise with that path."""
    path = Path(model_path)
    if not path.is_file():
        raise ModelNotInitializedError(
            f"model.onnx not found at {path}. Download RMBG-1.4 from HuggingFace and place it there.",
            model_path=path,
        )
    return path


def _load_session(model_path: Path, providers: Optional[List[str]]) -> InferenceSession:
    check_model(model_path)
    providers = providers or _default_providers()
    logger.info("Loading RMBG model from %s (providers=%s)", model_path, providers)
    try:
        engine = ort.InferenceSession(str(model_path), providers=providers)
    except Exception as exc:  # noqa: BLE001
        raise InferenceError(f"could not load {model_path}: {exc}") from exc
    return InferenceSession(engine, model_path)


def init_session(
    model_path: Optional[Union[str, Path]] = None,
    providers: Optional[List[str]] = None,
) -> InferenceSession:
    """
    Load the model once and return the shared session.

    Calls after the first successful load are no-ops that return the
    existing session, whatever path they pass. Concurrent first calls are
    serialized so only one load happens.
    """
    global _SESSION
    if _SESSION is not None:
        return _SESSION

    with _LOCK:
        if _SESSION is None:
            settings = config.get_settings()
            path = Path(model_path) if model_path is not None else settings.rmbg_model_path
            _SESSION = _load_session(path, providers or settings.provider_list())
            logger.info("RMBG model loaded with providers: %s", _SESSION.providers)
    return _SESSION


def get_session() -> InferenceSession:
    """Return the shared session, or raise if `init_session` never succeeded."""
    if _SESSION is None:
        raise ModelNotInitializedError("Model not initialized. Call init_session() first.")
    return _SESSION


def is_initialized() -> bool:
    return _SESSION is not None


def infer(image: Image.Image) -> Image.Image:
    """Run the shared session on `image`; see `InferenceSession.infer`."""
    return get_session().infer(image)
