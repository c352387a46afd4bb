"""Console logging helpers for opencode-loop.

Colored, timestamped console lines with an optional [iteration/max] prefix.
"""

import sys
from datetime import datetime

# Global verbose setting (can be modified at runtime)
_verbose_enabled: bool = False

# Current iteration prefix state, set by the console sink
_iteration: int = 0
_max_iterations: int = 0

SEPARATOR_WIDTH = 60


def set_verbose(enabled: bool) -> None:
    """Enable or disable verbose output globally."""
    global _verbose_enabled
    _verbose_enabled = enabled


def set_iteration(current: int, maximum: int) -> None:
    """Set the iteration shown in the line prefix (0 hides the prefix)."""
    global _iteration, _max_iterations
    _iteration = current
    _max_iterations = maximum


def truncate_text(text: str, max_length: int) -> str:
    """Truncate text to max_length, adding ellipsis if truncated.

    Respects global verbose setting. If verbose is enabled,
    returns the original text unchanged.
    """
    if _verbose_enabled:
        return text
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text


class Colors:
    """ANSI color codes for terminal output (bright variants)."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    MAGENTA = "\033[95m"
    CYAN = "\033[96m"
    RED = "\033[91m"
    GRAY = "\033[90m"
    WHITE = "\033[97m"
    # Subdued style for secondary info
    MUTED = "\033[90m"


def _prefix() -> str:
    timestamp = datetime.now().strftime("%H:%M:%S")
    prefix = f"{Colors.GRAY}{timestamp}{Colors.RESET}"
    if _iteration > 0:
        prefix += f" {Colors.BOLD}[{_iteration}/{_max_iterations}]{Colors.RESET}"
    return prefix


def log(
    icon: str,
    message: str,
    color: str = Colors.RESET,
    dim: bool = False,
    stderr: bool = False,
) -> None:
    """Print one timestamped console line."""
    style = Colors.MUTED if dim else ""
    print(
        f"{_prefix()} {style}{color}{icon} {message}{Colors.RESET}",
        file=sys.stderr if stderr else sys.stdout,
    )


def log_verbose(icon: str, message: str, color: str = Colors.RESET) -> None:
    """Log only when verbose output is enabled."""
    if _verbose_enabled:
        log(icon, message, color, dim=True)


def log_tool(tool_name: str, detail: str = "") -> None:
    """Log one tool activity line.

    Args:
        tool_name: Name of the tool.
        detail: Tool title, or its state when no title is known.
    """
    icon = "⚙"
    detail_text = truncate_text(detail, 80) if detail else ""
    suffix = f" {Colors.MUTED}{detail_text}{Colors.RESET}" if detail_text else ""
    print(f"{_prefix()} {Colors.CYAN}{icon} {tool_name}{Colors.RESET}{suffix}")


def log_separator() -> None:
    """Print a horizontal rule."""
    print(f"{Colors.MUTED}{'─' * SEPARATOR_WIDTH}{Colors.RESET}")


def log_banner(title: str) -> None:
    """Print a title framed by separators."""
    log_separator()
    print(f"{Colors.BOLD}  {title}{Colors.RESET}")
    log_separator()


def format_duration(ms: int) -> str:
    """Format milliseconds as "42s" or "3m 07s"."""
    total_seconds = ms // 1000
    if total_seconds < 60:
        return f"{total_seconds}s"
    minutes, seconds = divmod(total_seconds, 60)
    return f"{minutes}m {seconds:02d}s"


def format_tokens(n: int) -> str:
    """Format a token count as "950", "12.3k" or "1.2M"."""
    if n >= 1_000_000:
        return f"{n / 1_000_000:.1f}M"
    if n >= 1_000:
        return f"{n / 1_000:.1f}k"
    return str(n)


def format_cost(cost: float) -> str:
    """Format a USD cost with four decimals."""
    return f"${cost:.4f}"
