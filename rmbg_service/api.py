"""
FastAPI layer exposing RMBG background removal.

Endpoints:
 - GET /health
 - GET /model
 - POST /remove-bg
 - POST /remove-bg/batch   (NDJSON progress stream)
 - POST /capture, POST /reprocess
 - POST /save, POST /save-batch
"""

from __future__ import annotations

import json
import logging
from threading import Lock
from typing import Iterator, List, Literal, Optional, Union

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
import uvicorn

from . import config, model_loader
from .encoding import data_url_to_bytes, save_batch_to_folder, save_data_url
from .errors import (
    EncodingError,
    FileAccessError,
    InvalidInputError,
    ModelNotInitializedError,
    RmbgError,
)
from .pipeline import process_one
from .postprocessing import BackgroundPolicy, Black, Color, Transparent, White
from .queue_worker import process_batch

settings = config.get_settings()
logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="RMBG Background Removal Service", version="0.1.0")


class TransparentBackground(BaseModel):
    type: Literal["Transparent"]


class WhiteBackground(BaseModel):
    type: Literal["White"]


class BlackBackground(BaseModel):
    type: Literal["Black"]


class ColorBackground(BaseModel):
    type: Literal["Color"]
    r: int = Field(..., ge=0, le=255)
    g: int = Field(..., ge=0, le=255)
    b: int = Field(..., ge=0, le=255)


BackgroundBody = Union[TransparentBackground, WhiteBackground, BlackBackground, ColorBackground]


def _to_policy(body: BackgroundBody) -> BackgroundPolicy:
    if isinstance(body, ColorBackground):
        return Color(body.r, body.g, body.b)
    if isinstance(body, WhiteBackground):
        return White()
    if isinstance(body, BlackBackground):
        return Black()
    return Transparent()


class ProcessOptions(BaseModel):
    background: BackgroundBody = Field(
        default_factory=lambda: TransparentBackground(type="Transparent"),
        discriminator="type",
    )


class RemoveBgRequest(ProcessOptions):
    path: Optional[str] = None
    imageBase64: Optional[str] = None


class BatchRequest(ProcessOptions):
    paths: List[str]


class CaptureRequest(ProcessOptions):
    imageBase64: str


class SaveRequest(BaseModel):
    dataUrl: str
    destPath: str


class SaveBatchItem(BaseModel):
    name: str
    dataUrl: str


class SaveBatchRequest(BaseModel):
    items: List[SaveBatchItem]
    folder: str


class ResultResponse(BaseModel):
    result: str


class CaptureStore:
    """Last captured input bytes, kept so a result can be redone with another background."""

    def __init__(self):
        self._lock = Lock()
        self._data: Optional[bytes] = None

    def put(self, data: bytes) -> None:
        with self._lock:
            self._data = data

    def get(self) -> bytes:
        with self._lock:
            data = self._data
        if data is None:
            raise InvalidInputError("No captured image to reprocess")
        return data


capture_store = CaptureStore()


def _http_error(exc: RmbgError) -> HTTPException:
    if isinstance(exc, InvalidInputError):
        status = 400
    elif isinstance(exc, ModelNotInitializedError):
        status = 503
    elif isinstance(exc, FileAccessError):
        status = 404 if exc.missing else 500
    else:
        # InferenceError, EncodingError
        status = 500
    if status >= 500:
        logger.error("Request failed (%s): %s", exc.kind, exc)
    return HTTPException(status_code=status, detail=str(exc))


def _run_single(source, background: BackgroundBody) -> ResultResponse:
    try:
        data_url = process_one(source, _to_policy(background))
    except RmbgError as exc:
        raise _http_error(exc) from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("RMBG processing failed: %s", exc)
        raise HTTPException(status_code=500, detail="Background removal failed") from exc
    return ResultResponse(result=data_url)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/model")
def model_status():
    try:
        path = model_loader.check_model(settings.rmbg_model_path)
    except ModelNotInitializedError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"modelPath": str(path), "loaded": model_loader.is_initialized()}


@app.post("/remove-bg", response_model=ResultResponse)
def remove_bg(body: RemoveBgRequest):
    if (body.path is None) == (body.imageBase64 is None):
        raise HTTPException(status_code=400, detail="Provide exactly one of path or imageBase64")

    if body.path is not None:
        return _run_single(body.path, body.background)
    try:
        data = data_url_to_bytes(body.imageBase64)
    except EncodingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _run_single(data, body.background)


@app.post("/remove-bg/batch")
def remove_bg_batch(body: BatchRequest):
    try:
        outcomes = process_batch(body.paths, _to_policy(body.background))
    except RmbgError as exc:
        raise _http_error(exc) from exc

    def stream() -> Iterator[str]:
        for progress in outcomes:
            yield json.dumps(progress.to_dict()) + "\n"

    return StreamingResponse(stream(), media_type="application/x-ndjson")


@app.post("/capture", response_model=ResultResponse)
def capture(body: CaptureRequest):
    try:
        data = data_url_to_bytes(body.imageBase64)
    except EncodingError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    capture_store.put(data)
    return _run_single(data, body.background)


@app.post("/reprocess", response_model=ResultResponse)
def reprocess(body: ProcessOptions):
    try:
        data = capture_store.get()
    except InvalidInputError as exc:
        raise _http_error(exc) from exc
    return _run_single(data, body.background)


@app.post("/save")
def save(body: SaveRequest):
    try:
        dest = save_data_url(body.dataUrl, body.destPath)
    except RmbgError as exc:
        raise _http_error(exc) from exc
    return {"written": str(dest)}


@app.post("/save-batch")
def save_batch(body: SaveBatchRequest):
    try:
        written = save_batch_to_folder(((item.name, item.dataUrl) for item in body.items), body.folder)
    except RmbgError as exc:
        raise _http_error(exc) from exc
    return {"written": [str(p) for p in written]}


def main() -> None:
    """Serve the API with uvicorn on API_HOST:API_PORT."""
    logger.info("Starting RMBG API on %s:%d", settings.api_host, settings.api_port)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
