"""Engine settings.

Environment variables:
- TOPOCRAFT_MAX_CONCURRENCY: Operations in flight at once (default: 4)
- TOPOCRAFT_RETRY: Set to "1" to retry transient provider errors
- TOPOCRAFT_RETRY_LIMIT: Retries per operation (default: 3)
- TOPOCRAFT_STOP_ON_ERROR: Set to "1" to stop dispatching after a failure
- TOPOCRAFT_AUDIT_LOG: Path of the JSON-lines audit log
"""
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from ..errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_RETRY_LIMIT = 3

_TRUE = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class EngineSettings:
    """Options for planning and applying."""
    max_concurrent_operations: int = DEFAULT_MAX_CONCURRENCY
    retry_transient_errors: bool = False
    retry_limit: int = DEFAULT_RETRY_LIMIT
    retry_min_wait: float = 0.5
    retry_max_wait: float = 10.0
    stop_on_error: bool = False
    replace_on_conflict: bool = True
    audit_log: Optional[str] = None

    def __post_init__(self):
        errors = []
        if not isinstance(self.max_concurrent_operations, int) or self.max_concurrent_operations < 1:
            errors.append(
                f"max_concurrent_operations must be a positive integer, "
                f"got {self.max_concurrent_operations!r}"
            )
        if not isinstance(self.retry_limit, int) or self.retry_limit < 0:
            errors.append(f"retry_limit must be >= 0, got {self.retry_limit!r}")
        if self.retry_min_wait < 0 or self.retry_max_wait < self.retry_min_wait:
            errors.append(
                f"retry waits must satisfy 0 <= min <= max, got "
                f"{self.retry_min_wait}..{self.retry_max_wait}"
            )
        if errors:
            raise ValidationError(f"Invalid settings: {'; '.join(errors)}", errors=errors)

    @property
    def retries(self) -> int:
        """Retries actually allowed per operation."""
        return self.retry_limit if self.retry_transient_errors else 0

    def merged(self, **overrides: Any) -> "EngineSettings":
        """Copy with the non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_env(cls, base: Optional["EngineSettings"] = None) -> "EngineSettings":
        """Load settings from environment variables on top of ``base``."""
        base = base or cls()
        env = os.environ
        overrides: dict[str, Any] = {}

        try:
            if "TOPOCRAFT_MAX_CONCURRENCY" in env:
                overrides["max_concurrent_operations"] = int(env["TOPOCRAFT_MAX_CONCURRENCY"])
            if "TOPOCRAFT_RETRY_LIMIT" in env:
                overrides["retry_limit"] = int(env["TOPOCRAFT_RETRY_LIMIT"])
        except ValueError as e:
            raise ValidationError(f"Invalid numeric setting in environment: {e}")

        if "TOPOCRAFT_RETRY" in env:
            overrides["retry_transient_errors"] = env["TOPOCRAFT_RETRY"].lower() in _TRUE
        if "TOPOCRAFT_STOP_ON_ERROR" in env:
            overrides["stop_on_error"] = env["TOPOCRAFT_STOP_ON_ERROR"].lower() in _TRUE
        if env.get("TOPOCRAFT_AUDIT_LOG"):
            overrides["audit_log"] = env["TOPOCRAFT_AUDIT_LOG"]

        return base.merged(**overrides)

    @classmethod
    def from_file(cls, path: Path, base: Optional["EngineSettings"] = None) -> "EngineSettings":
        """Load the ``settings:`` section of a YAML declaration."""
        base = base or cls()
        if not path.exists():
            logger.warning(f"Settings file not found: {path}")
            return base

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_mapping(data.get("settings") or {}, base)

    @classmethod
    def from_mapping(cls, data: dict, base: Optional["EngineSettings"] = None) -> "EngineSettings":
        """Apply a plain mapping of settings on top of ``base``."""
        base = base or cls()
        if not isinstance(data, dict):
            raise ValidationError("settings must be a mapping")
        return base.merged(**data)


def load_settings(path: Optional[Path] = None, **overrides: Any) -> EngineSettings:
    """Resolve settings: defaults < file < environment < explicit overrides."""
    settings = EngineSettings()
    if path is not None:
        settings = EngineSettings.from_file(path, settings)
    settings = EngineSettings.from_env(settings)
    return settings.merged(**overrides)
