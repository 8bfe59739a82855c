"""Local state provider: the in-memory control plane persisted to YAML.

Every successful mutation rewrites the state file, so plan, apply and
destroy can run end to end from the command line.
"""
import itertools
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import yaml

from ..engine.schema import RemoteHandle, ResourceKind, define_resource
from ..errors import PermanentProviderError
from .memory import InMemoryProvider

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = Path(".topocraft") / "state.yaml"
STATE_VERSION = 1


class LocalStateProvider(InMemoryProvider):
    """Provider backed by a YAML state file."""

    name = "local"

    def __init__(self, options: Optional[dict[str, Any]] = None):
        super().__init__(options)
        self.state_path = Path(self.options.get("state_path") or DEFAULT_STATE_FILE)
        self._next_id = 1

    async def connect(self) -> None:
        self._load()
        await super().connect()

    def _load(self) -> None:
        """Load provisioned resources from the state file, if present."""
        self._resources.clear()
        if not self.state_path.exists():
            logger.debug(f"No state file at {self.state_path}, starting empty")
            return

        try:
            data = yaml.safe_load(self.state_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise PermanentProviderError(f"Corrupt state file {self.state_path}: {e}")

        for entry in data.get("resources", []):
            kind = ResourceKind.parse(entry["kind"])
            handle = RemoteHandle(kind=kind, name=entry["name"], remote_id=entry["remote_id"])
            resource = define_resource(
                kind,
                entry["name"],
                entry.get("properties", {}),
                entry.get("depends_on", []),
                handle=handle,
            )
            self._resources[resource.key] = resource

        self._next_id = int(data.get("next_id", len(self._resources) + 1))
        self._ids = itertools.count(self._next_id)
        logger.info(f"Loaded {len(self._resources)} resources from {self.state_path}")

    def _new_handle(self, resource) -> RemoteHandle:
        handle = super()._new_handle(resource)
        self._next_id += 1
        return handle

    def _changed(self) -> None:
        """Write the state file."""
        state = {
            "version": STATE_VERSION,
            "updated_at": datetime.now(timezone.utc).isoformat(),
            "next_id": self._next_id,
            "resources": [r.to_dict() for r in self._resources.values()],
        }
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.state_path.with_suffix(".tmp")
        tmp_path.write_text(yaml.dump(state, default_flow_style=False, sort_keys=False))
        tmp_path.replace(self.state_path)
        logger.debug(f"Saved state to {self.state_path}")
