"""Environment configuration and loading for opencode-loop.

Centralizes config paths and dotenv loading. Call load_user_env() early so
OPENCODE_LOOP_* variables from the user's .env are visible to
LoopConfig.from_env().
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# User config directory (stores .env)
USER_CONFIG_DIR = Path.home() / ".config" / "opencode-loop"


def get_user_env_path() -> Path:
    """Get the user .env path, respecting OPENCODE_LOOP_CONFIG_DIR.

    Evaluated at call time so tests can redirect it.
    """
    config_dir = os.environ.get("OPENCODE_LOOP_CONFIG_DIR")
    base = Path(config_dir) if config_dir else USER_CONFIG_DIR
    return base / ".env"


def load_user_env() -> None:
    """Load environment from the user config directory.

    Loads ${USER_CONFIG_DIR}/.env (typically ~/.config/opencode-loop/.env).
    Existing environment variables win over values from the file.
    """
    load_dotenv(dotenv_path=get_user_env_path())
