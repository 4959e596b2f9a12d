"""Logging utilities for MeadowLoop simulations.

Console output is color-coded by operation type so a running town reads at a
glance: blue for deterministic world mutation (movement, cleanup, sweeps),
yellow for LLM traffic, red for contained failures, green for completed ticks.

Environment flags:
- ``MEADOWLOOP_NO_COLOR`` strips ANSI codes (CI logs, files)
- ``MEADOWLOOP_VERBOSE`` enables per-character detail lines via ``log_verbose``
- ``DEBUG_LLM`` prints rendered prompts and raw structured responses
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Deterministic operations (movement, sweeps)
    YELLOW = "\033[93m"    # LLM calls (actions, summaries, consolidation)
    RED = "\033[91m"       # Errors and cooldowns
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"
LOG_TAG_LLM = "[AI]"
LOG_TAG_ERROR = "[!]"
LOG_TAG_SUCCESS = "[✓]"
LOG_TAG_INFO = "[i]"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if MEADOWLOOP_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("MEADOWLOOP_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def verbose_enabled() -> bool:
    return os.getenv("MEADOWLOOP_VERBOSE", "").lower() in {"1", "true", "yes"}


def llm_debug_enabled() -> bool:
    return os.getenv("DEBUG_LLM", "").lower() in {"1", "true", "yes"}


def log_deterministic(message: str) -> None:
    """Log a deterministic operation (blue)."""
    print(colored(f"{LOG_TAG_DETERMINISTIC} {message}", Color.BLUE))


def log_llm(message: str) -> None:
    """Log an LLM operation (yellow)."""
    print(colored(f"{LOG_TAG_LLM} {message}", Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error or cooldown (red)."""
    print(colored(f"{LOG_TAG_ERROR} {message}", Color.RED))


def log_success(message: str) -> None:
    """Log a success (green)."""
    print(colored(f"{LOG_TAG_SUCCESS} {message}", Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    print(colored(f"{LOG_TAG_INFO} {message}", Color.CYAN))


def log_verbose(message: str) -> None:
    """Log a detail line only when MEADOWLOOP_VERBOSE is set."""
    if verbose_enabled():
        print(colored(f"    {message}", Color.CYAN))


__all__ = [
    "Color",
    "LOG_TAG_DETERMINISTIC",
    "LOG_TAG_ERROR",
    "LOG_TAG_INFO",
    "LOG_TAG_LLM",
    "LOG_TAG_SUCCESS",
    "colored",
    "llm_debug_enabled",
    "log_deterministic",
    "log_error",
    "log_info",
    "log_llm",
    "log_success",
    "log_verbose",
    "verbose_enabled",
]
