# src/formgraph/core/config.py
"""Engine settings: a frozen pydantic model, loadable from YAML through Dynaconf."""

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from formgraph.contracts.enums import BranchValuePolicy, InactiveWritePolicy

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


class EngineSettings(BaseModel):
    """Evaluation limits and policies for graph instances.

    Example YAML:
        max_effect_depth: 8
        max_remounts: 16
        branch_values: restore
        inactive_writes: reject
        log_level: DEBUG
    """

    model_config = {"frozen": True}

    max_effect_depth: int = Field(
        default=8,
        gt=0,
        description="Maximum cascading effect passes per call before CycleError",
    )
    max_remounts: int = Field(
        default=16,
        gt=0,
        description="Maximum repeat remounts of one discriminator within a resolver pass before CycleError",
    )
    branch_values: BranchValuePolicy = Field(
        default=BranchValuePolicy.RESET,
        description="Remounted variants start from defaults (reset) or their last valid values (restore)",
    )
    inactive_writes: InactiveWritePolicy = Field(
        default=InactiveWritePolicy.DISCARD,
        description="Writes to keys that are not mounted once a call settles: discard (logged) or reject",
    )
    log_level: str = Field(
        default="INFO",
        description="Log level used by configure_logging()",
    )
    json_logs: bool = Field(
        default=False,
        description="Emit JSON log lines instead of console output",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {v!r}")
        return level


def _expand_env_vars(config: dict[str, Any]) -> dict[str, Any]:
    """Substitute ``${VAR}`` / ``${VAR:-default}`` in every string of ``config``.

    Unset variables without a default are left as written.
    """

    def substitute(match: re.Match[str]) -> str:
        name, fallback = match.group(1), match.group(2)
        return os.environ.get(name, fallback if fallback is not None else match.group(0))

    def walk(node: Any) -> Any:
        if isinstance(node, str):
            return _ENV_VAR_PATTERN.sub(substitute, node)
        if isinstance(node, dict):
            return {key: walk(item) for key, item in node.items()}
        if isinstance(node, list):
            return [walk(item) for item in node]
        return node

    return walk(config)


# Keys Dynaconf reports about itself rather than about the settings file
_DYNACONF_KEYS = frozenset({"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"})


def load_settings(config_path: Path) -> EngineSettings:
    """Read engine settings from a YAML file.

    Dynaconf merges the file with ``FORMGRAPH_*`` environment variables
    (environment wins); anything left unset falls back to the EngineSettings
    defaults.

    Raises:
        FileNotFoundError: ``config_path`` does not exist
        pydantic.ValidationError: A value is out of range or of the wrong kind
    """
    from dynaconf import Dynaconf

    # Dynaconf treats a missing settings file as empty
    if not config_path.is_file():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    loaded = Dynaconf(
        envvar_prefix="FORMGRAPH",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )
    raw = {key.lower(): value for key, value in loaded.as_dict().items() if key not in _DYNACONF_KEYS}
    return EngineSettings(**_expand_env_vars(raw))
