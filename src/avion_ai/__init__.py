from .config import DecisionLayerConfig
from .context import ContextGatherer
from .decisions import DecisionLayer, calculate_confidence
from .dispatcher import RequestDispatcher
from .retry import AttemptState, RetryPolicy
from .store import DecisionLogEntry, JsonProgressStore

__all__ = [
    "AttemptState",
    "ContextGatherer",
    "DecisionLayer",
    "DecisionLayerConfig",
    "DecisionLogEntry",
    "JsonProgressStore",
    "RequestDispatcher",
    "RetryPolicy",
    "calculate_confidence",
]
