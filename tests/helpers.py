"""Test doubles and image builders shared across test modules."""

from io import BytesIO
import threading
import time

import numpy as np
from PIL import Image

from rmbg_service.preprocessing import INPUT_SIZE


class FakeEngine:
    """Stands in for onnxruntime.InferenceSession and returns a constant matte."""

    def __init__(self, value=1.0, fail_times=0, delay=0.0):
        self.value = value
        self.fail_times = fail_times
        self.delay = delay
        self.calls = []
        self.active = 0
        self.max_active = 0
        self._guard = threading.Lock()

    def get_providers(self):
        return ["CPUExecutionProvider"]

    def run(self, output_names, feed):
        with self._guard:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            self.calls.append({name: (arr.shape, arr.dtype) for name, arr in feed.items()})
            if self.delay:
                time.sleep(self.delay)
            if self.fail_times > 0:
                self.fail_times -= 1
                raise RuntimeError("engine exploded")
            return [np.full((1, 1, INPUT_SIZE, INPUT_SIZE), self.value, dtype=np.float32)]
        finally:
            with self._guard:
                self.active -= 1


def png_bytes(size=(32, 24), color=(200, 100, 50, 255), mode="RGBA"):
    buf = BytesIO()
    Image.new(mode, size, color).save(buf, format="PNG")
    return buf.getvalue()


def save_image(path, size=(32, 24), color=(200, 100, 50), mode="RGB", fmt=None):
    Image.new(mode, size, color).save(path, format=fmt)
    return path
