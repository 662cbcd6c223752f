from .config import ShieldSettings
from .decision_engine import DecisionEngine
from .exceptions import ShieldError
from .hysteresis import ShieldStateMachine
from .recognizer import Recognizer, embedding_distance
from .template_store import TemplateStore
from .types import DecisionState, EnrolledIdentity, FaceBox

__all__ = [
    "DecisionEngine",
    "DecisionState",
    "EnrolledIdentity",
    "FaceBox",
    "Recognizer",
    "ShieldError",
    "ShieldSettings",
    "ShieldStateMachine",
    "TemplateStore",
    "embedding_distance",
]

__version__ = "0.1.0"
