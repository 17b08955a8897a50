"""Tests for the single-item pipeline and the batch worker."""

from threading import Event
from unittest.mock import patch

import numpy as np
import pytest

from rmbg_service import model_loader
from rmbg_service.encoding import decode_data_url
from rmbg_service.errors import FileAccessError, ModelNotInitializedError, UnsupportedFormatError
from rmbg_service.pipeline import process_image, process_one
from rmbg_service.postprocessing import Transparent, White
from rmbg_service.queue_worker import (
    CANCELLED_MESSAGE,
    BatchItem,
    BatchStatus,
    build_items,
    process_batch,
    run_batch,
)
from tests.helpers import png_bytes, save_image


class TestPipeline:
    def test_full_foreground_stays_opaque(self, make_session, tmp_path):
        path = save_image(tmp_path / "in.png", size=(20, 10))
        out = np.asarray(process_image(path, Transparent(), session=make_session(1.0)))
        assert out.shape == (10, 20, 4)
        assert np.all(out[..., 3] == 255)

    def test_full_background_white(self, make_session):
        out = np.asarray(process_image(png_bytes(), White(), session=make_session(0.0)))
        assert np.all(out == 255)

    def test_process_one_returns_data_url(self, make_session, monkeypatch):
        monkeypatch.setattr(model_loader, "_SESSION", make_session(0.0))
        data_url = process_one(png_bytes(size=(8, 6)), Transparent())
        decoded = np.asarray(decode_data_url(data_url))
        assert decoded.shape == (6, 8, 4)
        assert np.all(decoded[..., 3] == 0)

    def test_process_one_propagates_typed_errors(self, make_session, tmp_path):
        with pytest.raises(UnsupportedFormatError):
            process_one(tmp_path / "file.doc", Transparent(), session=make_session())
        with pytest.raises(FileAccessError):
            process_one(tmp_path / "missing.png", Transparent(), session=make_session())

    def test_process_one_without_model(self, tmp_path):
        with patch("rmbg_service.pipeline.init_session", side_effect=ModelNotInitializedError("no model")):
            with pytest.raises(ModelNotInitializedError):
                process_one(png_bytes(), Transparent())


class TestBatchItem:
    def test_lifecycle(self):
        item = BatchItem(index=0, name="a.png", source="a.png")
        assert item.status is BatchStatus.PENDING
        item.start()
        item.complete("data:...")
        assert item.status is BatchStatus.COMPLETED
        with pytest.raises(AssertionError):
            item.fail("late failure")
        with pytest.raises(AssertionError):
            item.start()

    def test_names(self, tmp_path):
        items = build_items([tmp_path / "x.png", b"raw", ("clipboard.png", b"raw")])
        assert [i.name for i in items] == ["x.png", "image-2", "clipboard.png"]
        assert items[2].source == b"raw"
        assert [i.index for i in items] == [0, 1, 2]


class TestProcessBatch:
    def test_failure_isolated_and_order_kept(self, make_session, tmp_path):
        good_a = save_image(tmp_path / "a.png")
        good_c = save_image(tmp_path / "c.jpg", fmt="JPEG")
        sources = [good_a, tmp_path / "missing.png", good_c]

        outcomes = list(process_batch(sources, Transparent(), session=make_session(1.0)))

        assert [o.index for o in outcomes] == [0, 1, 2]
        assert all(o.total == 3 for o in outcomes)
        assert [o.name for o in outcomes] == ["a.png", "missing.png", "c.jpg"]
        assert outcomes[0].result and outcomes[0].error is None
        assert outcomes[1].result is None and "missing.png" in outcomes[1].error
        assert outcomes[2].result and outcomes[2].error is None

    def test_progress_dict_shape(self, make_session):
        outcome = next(process_batch([("one.png", png_bytes())], White(), session=make_session()))
        assert set(outcome.to_dict()) == {"index", "total", "name", "result", "error"}

    def test_is_lazy(self, make_session):
        with patch("rmbg_service.queue_worker.process_to_data_url", return_value="data:x") as run:
            outcomes = process_batch([b"a", b"b"], White(), session=make_session())
            assert run.call_count == 0
            first = next(outcomes)
            assert run.call_count == 1
            assert first.result == "data:x"

    def test_bootstrap_failure_raises_before_any_item(self):
        with patch("rmbg_service.queue_worker.init_session", side_effect=ModelNotInitializedError("no model")):
            with patch("rmbg_service.queue_worker.process_to_data_url") as run:
                with pytest.raises(ModelNotInitializedError):
                    process_batch([b"a", b"b"], White())
        run.assert_not_called()

    def test_cancel_between_items(self, make_session):
        cancel = Event()
        outcomes = process_batch([b"a", b"b", b"c"], White(), session=make_session(), cancel_event=cancel)
        with patch("rmbg_service.queue_worker.process_to_data_url", return_value="data:x"):
            first = next(outcomes)
            cancel.set()
            rest = list(outcomes)
        assert first.result == "data:x"
        assert [o.index for o in rest] == [1, 2]
        assert all(o.error == CANCELLED_MESSAGE and o.result is None for o in rest)

    def test_run_batch_pushes_each_outcome(self, make_session):
        seen = []
        with patch("rmbg_service.queue_worker.process_to_data_url", side_effect=["data:1", RuntimeError("boom")]):
            outcomes = run_batch([b"a", b"b"], White(), on_progress=seen.append, session=make_session())
        assert seen == outcomes
        assert seen[0].result == "data:1"
        assert seen[1].error == "boom"

    def test_empty_batch(self, make_session):
        assert list(process_batch([], White(), session=make_session())) == []
