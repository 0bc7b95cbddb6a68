import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from .defaults import DEFAULT_CONFIG_PATH
from .schema import SocFeedConfig

CONFIG_ENV_VAR = "SOCFEED_CONFIG"


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in e['loc'])}: {e['msg']}" for e in error.errors()
    )


class ConfigLoader:
    def __init__(self, config_path: Union[str, Path] = DEFAULT_CONFIG_PATH):
        self.config_path = Path(config_path)

    def load(self) -> SocFeedConfig:
        """
        Load the YAML config file and validate it.

        A missing or empty file gives the defaults. Anything unreadable or
        invalid raises ValueError naming the file and the offending keys.
        """
        raw = self._read()
        try:
            return SocFeedConfig.model_validate(raw)
        except ValidationError as e:
            raise ValueError(f"Invalid configuration in {self.config_path}: {_describe(e)}") from e

    def _read(self) -> Dict[str, Any]:
        if not self.config_path.exists():
            return {}

        try:
            with open(self.config_path, "r") as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Error parsing config file {self.config_path}: {e}") from e

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Config root in {self.config_path} must be a mapping, got {type(raw).__name__}")
        return raw


def resolve_config_path(path: Optional[Union[str, Path]] = None) -> Path:
    """Explicit path first, then $SOCFEED_CONFIG, then the system default."""
    if path:
        return Path(path)
    return Path(os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)


def load_config(path: Optional[Union[str, Path]] = None) -> SocFeedConfig:
    return ConfigLoader(resolve_config_path(path)).load()
