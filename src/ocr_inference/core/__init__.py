"""Engine core: backend selection, sessions, state machine and pipelines."""

from .backend_selector import BackendProbe, BackendSelector, OnnxProviderProbe, create_probes
from .fallback import FallbackCoordinator
from .primary import PrimaryPipeline
from .progress import ProgressChannel
from .secondary import SecondaryPipeline
from .sessions import ModelLoader, ModelSession, ModelSet, load_session
from .state import EngineEvent, next_state

__all__ = [
    "BackendProbe",
    "BackendSelector",
    "OnnxProviderProbe",
    "create_probes",
    "FallbackCoordinator",
    "PrimaryPipeline",
    "ProgressChannel",
    "SecondaryPipeline",
    "ModelLoader",
    "ModelSession",
    "ModelSet",
    "load_session",
    "EngineEvent",
    "next_state",
]
