"""Prompt loading and the re-prompt escalation policy.

Prompt templates live in opencode_loop/prompts/ and are loaded once. The
escalation policy is a pure function of the previous turn's verdict and the
consecutive miss count, so it can be tested without any I/O besides the
cached template reads.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass
from pathlib import Path

from opencode_loop.core.models import LOOP_CONTROL_TOOL, LoopStatus, TaskStatus

# Prompt directory - points to opencode_loop/prompts/ where prompt files live
_PROMPT_DIR = Path(__file__).parent.parent / "prompts"


@dataclass(frozen=True)
class PromptProvider:
    """All continuation prompt templates, loaded from disk."""

    retry_continue: str
    progress_continue: str
    unknown_status: str
    missed_status_first: str
    missed_status_second: str
    missed_status_urgent: str


def load_prompts(prompt_dir: Path = _PROMPT_DIR) -> PromptProvider:
    """Load all prompt templates from disk.

    Raises:
        FileNotFoundError: If any required prompt file is missing.
    """
    return PromptProvider(
        retry_continue=(prompt_dir / "retry_continue.md").read_text().strip(),
        progress_continue=(prompt_dir / "progress_continue.md").read_text().strip(),
        unknown_status=(prompt_dir / "unknown_status.md").read_text().strip(),
        missed_status_first=(prompt_dir / "missed_status_1.md").read_text().strip(),
        missed_status_second=(prompt_dir / "missed_status_2.md").read_text().strip(),
        missed_status_urgent=(prompt_dir / "missed_status_urgent.md")
        .read_text()
        .strip(),
    )


@functools.cache
def get_prompts() -> PromptProvider:
    """Load the bundled prompt templates (cached on first use)."""
    return load_prompts()


def build_continuation_prompt(
    verdict: TaskStatus | None,
    miss_count: int,
    prompts: PromptProvider | None = None,
) -> str:
    """Compose the next re-prompt from the previous turn's outcome.

    The wording escalates with the number of consecutive turns that ended
    without a loop_control call.

    Args:
        verdict: The previous turn's verdict, or None if it declared nothing.
        miss_count: Consecutive turns without a verdict, including the
            previous one. Ignored when verdict is present.
        prompts: Templates to use; defaults to the bundled ones.

    Returns:
        The prompt text for the next turn.

    Raises:
        ValueError: If verdict is terminal, or absent with miss_count < 1.
    """
    provider = prompts or get_prompts()
    if verdict is not None:
        if verdict.status.is_terminal:
            raise ValueError(
                f"No continuation after terminal status {verdict.status.value!r}"
            )
        if verdict.status == LoopStatus.PROGRESS:
            return provider.progress_continue.format(tool=LOOP_CONTROL_TOOL)
        detail = verdict.message or "the status value was missing or not recognized."
        return provider.unknown_status.format(tool=LOOP_CONTROL_TOOL, detail=detail)

    if miss_count < 1:
        raise ValueError("miss_count must be >= 1 when no status was declared")
    if miss_count == 1:
        template = provider.missed_status_first
    elif miss_count == 2:
        template = provider.missed_status_second
    else:
        template = provider.missed_status_urgent
    return template.format(tool=LOOP_CONTROL_TOOL, miss_count=miss_count)
