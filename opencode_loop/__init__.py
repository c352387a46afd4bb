"""opencode-loop: drive a coding agent through repeated turns until it declares completion."""

from .orchestration.orchestrator import LoopOrchestrator

__version__ = "0.1.0"
__all__ = ["LoopOrchestrator", "__version__"]
