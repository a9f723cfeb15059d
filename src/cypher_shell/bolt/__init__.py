from .results import BoltResult
from .state_handler import BoltStateHandler

__all__ = ["BoltResult", "BoltStateHandler"]
