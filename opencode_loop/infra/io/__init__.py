"""I/O utilities for opencode-loop.

This package contains:
- config: LoopConfig dataclass for configuration management
- base_sink / console_sink: LoopEventSink implementations
- log_output/: Console logging helpers
"""

from opencode_loop.infra.io.base_sink import BaseEventSink, NullEventSink
from opencode_loop.infra.io.config import ConfigurationError, LoopConfig
from opencode_loop.infra.io.console_sink import ConsoleEventSink

__all__ = [
    "BaseEventSink",
    "ConfigurationError",
    "ConsoleEventSink",
    "LoopConfig",
    "NullEventSink",
]
