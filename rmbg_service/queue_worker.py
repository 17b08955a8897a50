"""
Batch worker.

Items are processed one at a time, in input order, through the shared
pipeline. A failing item is reported and the batch moves on; only a failure
to bring up the model session aborts the whole batch, before any item runs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
import logging
from pathlib import Path
from threading import Event
from typing import Callable, Iterable, Iterator, List, Optional, Tuple, Union

from .image_loader import Source
from .model_loader import InferenceSession, init_session
from .pipeline import process_to_data_url
from .postprocessing import BackgroundPolicy

logger = logging.getLogger(__name__)

BatchSource = Union[Source, Tuple[str, bytes]]

CANCELLED_MESSAGE = "Batch cancelled"


class BatchStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class BatchProgress:
    index: int
    total: int
    name: str
    result: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class BatchItem:
    index: int
    name: str
    source: Source
    status: BatchStatus = BatchStatus.PENDING
    result: Optional[str] = None
    error: Optional[str] = None

    def start(self) -> None:
        assert self.status is BatchStatus.PENDING, f"item {self.index} already {self.status.value}"
        self.status = BatchStatus.PROCESSING

    def complete(self, result: str) -> None:
        assert self.status is BatchStatus.PROCESSING, f"item {self.index} is {self.status.value}"
        self.status = BatchStatus.COMPLETED
        self.result = result

    def fail(self, error: str) -> None:
        assert self.status in (BatchStatus.PENDING, BatchStatus.PROCESSING), (
            f"item {self.index} already {self.status.value}"
        )
        self.status = BatchStatus.FAILED
        self.error = error

    def progress(self, total: int) -> BatchProgress:
        return BatchProgress(
            index=self.index,
            total=total,
            name=self.name,
            result=self.result,
            error=self.error,
        )


def _item_name(source: BatchSource, index: int) -> str:
    if isinstance(source, tuple):
        return source[0]
    if isinstance(source, (bytes, bytearray, memoryview)):
        return f"image-{index + 1}"
    return Path(source).name or "unknown"


def build_items(sources: Iterable[BatchSource]) -> List[BatchItem]:
    items = []
    for index, source in enumerate(sources):
        payload = source[1] if isinstance(source, tuple) else source
        items.append(BatchItem(index=index, name=_item_name(source, index), source=payload))
    return items


def _run_items(
    items: List[BatchItem],
    background: BackgroundPolicy,
    session: InferenceSession,
    cancel_event: Optional[Event],
) -> Iterator[BatchProgress]:
    total = len(items)
    for item in items:
        if cancel_event is not None and cancel_event.is_set():
            item.fail(CANCELLED_MESSAGE)
        else:
            item.start()
            logger.info("Processing batch item %d/%d name=%s", item.index + 1, total, item.name)
            try:
                data_url = process_to_data_url(item.source, background, session=session)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Batch item %d (%s) failed: %s", item.index, item.name, exc)
                item.fail(str(exc) or exc.__class__.__name__)
            else:
                item.complete(data_url)
        yield item.progress(total)


def process_batch(
    sources: Iterable[BatchSource],
    background: BackgroundPolicy,
    session: Optional[InferenceSession] = None,
    cancel_event: Optional[Event] = None,
) -> Iterator[BatchProgress]:
    """
    Process a batch and lazily yield one `BatchProgress` per item, in order.

    The session is brought up before this returns, so a bootstrap failure
    raises here once and no item is attempted. `cancel_event`, when set,
    is checked between items; the remaining items are reported as failed.
    """
    items = build_items(sources)
    session = session or init_session()
    return _run_items(items, background, session, cancel_event)


def run_batch(
    sources: Iterable[BatchSource],
    background: BackgroundPolicy,
    on_progress: Callable[[BatchProgress], None],
    session: Optional[InferenceSession] = None,
    cancel_event: Optional[Event] = None,
) -> List[BatchProgress]:
    """Drive `process_batch` to completion, pushing each outcome to `on_progress`."""
    outcomes = []
    for progress in process_batch(sources, background, session=session, cancel_event=cancel_event):
        on_progress(progress)
        outcomes.append(progress)
    return outcomes
