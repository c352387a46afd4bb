"""Configuration dataclass for opencode-loop.

Provides LoopConfig for centralized configuration management. Programmatic
users construct it directly; the CLI layers command-line options over
environment defaults via from_env().

Environment Variables:
    OPENCODE_LOOP_MAX_ITERATIONS: Iteration budget (default: 50)
    OPENCODE_LOOP_MAX_RETRIES: Retries for a failed turn (default: 3)
    OPENCODE_LOOP_MODEL: Model selector ("provider/model" for OpenCode)
    OPENCODE_LOOP_AGENT: OpenCode agent name (default: loop)
    OPENCODE_LOOP_RUNTIME: "opencode" or "claude" (default: opencode)
    OPENCODE_LOOP_ATTACH: URL of an already running OpenCode server
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from opencode_loop.core.protocols import LoopError
from opencode_loop.pipeline.idle_retry_policy import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_BACKOFF,
)

DEFAULT_MAX_ITERATIONS = 50
DEFAULT_AGENT = "loop"
DEFAULT_RUNTIME = "opencode"
DEFAULT_HOSTNAME = "127.0.0.1"

RUNTIMES = frozenset({"opencode", "claude"})


class ConfigurationError(LoopError):
    """Raised when configuration validation fails."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        message = "Configuration validation failed:\n" + "\n".join(
            f"  - {e}" for e in errors
        )
        super().__init__(message)


def _parse_int(
    name: str, raw: str | None, default: int, errors: list[str]
) -> int:
    """Parse an integer env var, recording a parse error instead of raising."""
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        errors.append(f"{name}: invalid integer '{raw}'")
        return default


def split_model(model: str) -> tuple[str, str]:
    """Split an OpenCode model selector into (provider_id, model_id).

    The model id may itself contain slashes ("openrouter/anthropic/claude").

    Raises:
        ValueError: If the selector has no provider prefix.
    """
    provider_id, sep, model_id = model.partition("/")
    if not sep or not provider_id or not model_id:
        raise ValueError(f"model must be in format 'provider/modelId', got '{model}'")
    return provider_id, model_id


@dataclass(frozen=True)
class LoopConfig:
    """Centralized configuration for one loop run.

    Attributes:
        prompt: The task prompt sent on the first iteration.
        cwd: Target project directory the agent works in.
        max_iterations: Iteration budget (>= 1).
        max_retries: How many failed turns are tolerated per wait (>= 0).
        model: Model selector; "provider/model" for OpenCode, plain id for Claude.
        agent: OpenCode agent name. Ignored by the Claude runtime.
        runtime: Which runtime drives the agent ("opencode" or "claude").
        port: Port for a launched OpenCode server (0 = auto).
        hostname: Hostname for a launched OpenCode server.
        attach: URL of an existing OpenCode server; skips launching one.
        retry_backoff: Delay before each retry, in seconds. The last entry is
            reused for later retries.
        verbose: Show full tool activity in the console.
        debug: Enable DEBUG diagnostics on stderr.

    Example:
        config = LoopConfig(prompt="Fix the failing tests", cwd=Path("."))
        config = LoopConfig.from_env(prompt="...", cwd=Path("."))
    """

    prompt: str
    cwd: Path = field(default_factory=Path.cwd)
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    max_retries: int = DEFAULT_MAX_RETRIES
    model: str | None = None
    agent: str = DEFAULT_AGENT
    runtime: str = DEFAULT_RUNTIME
    port: int = 0
    hostname: str = DEFAULT_HOSTNAME
    attach: str | None = None
    retry_backoff: tuple[float, ...] = DEFAULT_RETRY_BACKOFF
    verbose: bool = False
    debug: bool = False

    def __post_init__(self) -> None:
        """Normalize path and sequence fields.

        Since the dataclass is frozen, object.__setattr__ is used.
        """
        if not isinstance(self.cwd, Path):
            object.__setattr__(self, "cwd", Path(self.cwd))
        if isinstance(self.retry_backoff, list):
            object.__setattr__(self, "retry_backoff", tuple(self.retry_backoff))

    @classmethod
    def from_env(cls, *, validate: bool = True, **overrides: Any) -> LoopConfig:  # noqa: ANN401
        """Create LoopConfig from OPENCODE_LOOP_* variables plus explicit overrides.

        Overrides whose value is None fall back to the environment, then to
        the dataclass default.

        Args:
            validate: If True (default), raise ConfigurationError on any errors.
            **overrides: Field values that take precedence over the environment.

        Raises:
            ConfigurationError: If configuration is invalid.
        """
        parse_errors: list[str] = []
        env_values: dict[str, Any] = {
            "max_iterations": _parse_int(
                "OPENCODE_LOOP_MAX_ITERATIONS",
                os.environ.get("OPENCODE_LOOP_MAX_ITERATIONS"),
                DEFAULT_MAX_ITERATIONS,
                parse_errors,
            ),
            "max_retries": _parse_int(
                "OPENCODE_LOOP_MAX_RETRIES",
                os.environ.get("OPENCODE_LOOP_MAX_RETRIES"),
                DEFAULT_MAX_RETRIES,
                parse_errors,
            ),
            "model": os.environ.get("OPENCODE_LOOP_MODEL") or None,
            "agent": os.environ.get("OPENCODE_LOOP_AGENT") or DEFAULT_AGENT,
            "runtime": os.environ.get("OPENCODE_LOOP_RUNTIME") or DEFAULT_RUNTIME,
            "attach": os.environ.get("OPENCODE_LOOP_ATTACH") or None,
        }

        known = {f.name for f in fields(cls)}
        unknown = set(overrides) - known
        if unknown:
            raise TypeError(f"Unknown LoopConfig fields: {sorted(unknown)}")
        values = dict(env_values)
        values.update({k: v for k, v in overrides.items() if v is not None})
        if "prompt" not in values:
            values["prompt"] = ""

        config = cls(**values)

        if validate:
            errors = config.validate()
            errors.extend(parse_errors)
            if errors:
                raise ConfigurationError(errors)
        elif parse_errors:
            raise ConfigurationError(parse_errors)
        return config

    def validate(self) -> list[str]:
        """Validate configuration and return a list of errors (empty if valid)."""
        errors: list[str] = []
        if not self.prompt.strip():
            errors.append("prompt must not be empty")
        if self.max_iterations < 1:
            errors.append("max_iterations must be a positive integer")
        if self.max_retries < 0:
            errors.append("max_retries must be a non-negative integer")
        if self.runtime not in RUNTIMES:
            errors.append(
                f"runtime must be one of {', '.join(sorted(RUNTIMES))}, got '{self.runtime}'"
            )
        if self.port < 0 or self.port > 65535:
            errors.append(f"port must be between 0 and 65535, got {self.port}")
        if self.runtime == "opencode" and self.model:
            try:
                split_model(self.model)
            except ValueError as exc:
                errors.append(str(exc))
        if self.runtime == "claude" and self.attach:
            errors.append("attach is only supported by the opencode runtime")
        if any(delay < 0 for delay in self.retry_backoff):
            errors.append("retry_backoff entries must be non-negative")
        if not self.cwd.is_dir():
            errors.append(f"cwd does not exist or is not a directory: {self.cwd}")
        return errors
