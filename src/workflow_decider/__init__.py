"""Workflow Decider.

Client-side decision logic for a remote workflow coordination service:
- history replay into per-unit state
- dependency graphs with checkpoints
- exponential backoff retries
- a polling loop against a pluggable service client
"""

__version__ = "0.1.0"

from workflow_decider.core.config import DeciderSettings
from workflow_decider.core.decider import Decider

__all__ = ["__version__", "Decider", "DeciderSettings"]
