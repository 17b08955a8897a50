"""Error kinds raised by the background-removal pipeline.

Every error carries a message that can be shown to an end user as-is.
"""


class RmbgError(Exception):
    """Base exception for all pipeline errors."""

    kind = "error"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ModelNotInitializedError(RmbgError):
    """Model file missing, or inference requested before the session exists."""

    kind = "model_not_initialized"

    def __init__(self, message: str = "Model not initialized. Place model.onnx in the resources/ folder.", model_path=None):
        self.model_path = model_path
        super().__init__(message)


class InferenceError(RmbgError):
    """Engine-level failure while building, running or reading the model."""

    kind = "inference"

    def __init__(self, message: str):
        super().__init__(f"Inference error: {message}")


class InvalidInputError(RmbgError):
    """Corrupt or undecodable input, zero-area image, degenerate SVG canvas."""

    kind = "invalid_input"


class UnsupportedFormatError(InvalidInputError):
    """File extension outside the supported set; rejected before decoding."""

    kind = "unsupported_format"

    def __init__(self, extension: str):
        self.extension = extension
        super().__init__(f"Unsupported file format: {extension or '(none)'}")


class EncodingError(RmbgError):
    """Failure producing PNG / base64 output."""

    kind = "encoding"


class FileAccessError(RmbgError):
    """Filesystem read or write failure."""

    kind = "io"

    def __init__(self, message: str, path=None, missing: bool = False):
        self.path = path
        self.missing = missing
        super().__init__(message)
