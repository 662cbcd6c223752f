class ShieldError(Exception):
    """Base exception for the privacy shield."""


class ConfigError(ShieldError):
    """Raised when settings are out of range or unreadable."""


class CameraError(ShieldError):
    """Raised when webcam access fails."""


class FaceEngineError(ShieldError):
    """Raised when face detection or embedding generation fails."""


class NoFaceFound(FaceEngineError):
    """Raised when a frame has no usable face for capture."""


class EmbeddingExtractionFailed(FaceEngineError):
    """Raised when a face crop cannot be turned into an embedding."""


class PersistenceError(ShieldError):
    """Raised when enrolled templates cannot be stored or read."""


class PersistenceWriteFailed(PersistenceError):
    pass


class PersistenceLoadFailed(PersistenceError):
    pass
