"""
Environment variable access with .env file support.

All orderflow settings are read from ``ORDERFLOW_*`` variables; a ``.env``
file in the project root is loaded first when present.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

ENV_PREFIX = "ORDERFLOW_"


class EnvManager:
    """
    Manages environment variables for orderflow deployments.

    Example:
        >>> env = EnvManager()
        >>> env.get("USER_SERVICE_URL")   # reads ORDERFLOW_USER_SERVICE_URL
    """

    def __init__(
        self,
        project_root: Path | str | None = None,
        auto_load: bool = True,
        prefix: str = ENV_PREFIX,
    ):
        """
        Args:
            project_root: Directory searched for a .env file (default: cwd)
            auto_load: Load the .env file immediately if found
            prefix: Prefix prepended to every key
        """
        self.project_root = Path(project_root) if project_root else Path.cwd()
        self.prefix = prefix
        self._loaded = False

        if auto_load:
            self.load()

    def load(self, env_file: str | Path | None = None, override: bool = False) -> bool:
        """
        Load environment variables from a .env file.

        Returns:
            True if a .env file was loaded, False otherwise
        """
        env_path = Path(env_file) if env_file is not None else self.project_root / ".env"
        if not env_path.exists():
            return False

        load_dotenv(env_path, override=override)
        self._loaded = True
        return True

    @property
    def loaded(self) -> bool:
        return self._loaded

    def key(self, name: str) -> str:
        return name if name.startswith(self.prefix) else f"{self.prefix}{name}"

    def get(self, name: str, default: str | None = None, required: bool = False) -> str | None:
        """
        Get a variable value.

        Raises:
            ValueError: If required=True and the variable is not set
        """
        value = os.environ.get(self.key(name), default)
        if required and value is None:
            msg = f"Required environment variable not set: {self.key(name)}"
            raise ValueError(msg)
        return value

    def get_bool(self, name: str, default: bool = False) -> bool:
        value = (self.get(name) or "").strip().lower()
        if value in ("true", "1", "yes", "on"):
            return True
        if value in ("false", "0", "no", "off"):
            return False
        return default

    def get_int(self, name: str, default: int = 0) -> int:
        try:
            return int(self.get(name, str(default)))
        except (ValueError, TypeError):
            return default

    def get_float(self, name: str, default: float = 0.0) -> float:
        try:
            return float(self.get(name, str(default)))
        except (ValueError, TypeError):
            return default

