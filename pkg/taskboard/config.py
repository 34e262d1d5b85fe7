# Task board configuration
# Override via taskboard.yaml, TASKBOARD_CONFIG, or the env vars below.

import logging
import os
import sys
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

CONFIG_PATH = Path(__file__).parent / "taskboard.yaml"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration values are invalid."""
    pass


@dataclass
class Config:
    """Runtime configuration for the task board."""

    # Storage
    db_path: str = "~/.local/share/taskboard/taskboard.db"

    # Transcript extraction (OpenAI-compatible chat completions)
    llm_base_url: str = "https://api.openai.com/v1"
    llm_model: str = "gpt-4o-mini"
    llm_api_key_env: str = "OPENAI_API_KEY"
    llm_timeout: float = 30.0
    llm_max_tokens: int = 2000

    # Server
    api_secret_env: str = "TASKBOARD_API_SECRET"
    log_level: str = "INFO"

    def resolve_paths(self):
        """Expand ~ and apply environment overrides."""
        self.db_path = os.environ.get("TASKBOARD_DB", self.db_path)
        self.llm_base_url = os.environ.get("TASKBOARD_LLM_URL", self.llm_base_url)
        self.llm_model = os.environ.get("TASKBOARD_LLM_MODEL", self.llm_model)
        self.db_path = str(Path(self.db_path).expanduser())

    def validate(self):
        if self.llm_timeout <= 0:
            raise ConfigError(f"llm_timeout must be positive, got {self.llm_timeout}")
        if self.llm_max_tokens <= 0:
            raise ConfigError(f"llm_max_tokens must be positive, got {self.llm_max_tokens}")
        if logging.getLevelName(self.log_level.upper()) not in (
            logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL
        ):
            raise ConfigError(f"Unknown log_level: {self.log_level}")

    @property
    def llm_api_key(self) -> Optional[str]:
        return os.environ.get(self.llm_api_key_env) or None

    @property
    def api_secret(self) -> str:
        return os.environ.get(self.api_secret_env, "")

    @classmethod
    def load(cls, path: Optional[str] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        path = path or os.environ.get("TASKBOARD_CONFIG")
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                known = {fld.name for fld in fields(cls)}
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except (yaml.YAMLError, TypeError, AttributeError) as e:
                logger.warning(f"Ignoring unreadable config {cfg_path}: {e}")
                cfg = cls()
        else:
            cfg = cls()
        cfg.resolve_paths()
        cfg.validate()
        return cfg


def setup_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [taskboard] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
