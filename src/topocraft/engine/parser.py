"""Parser for topology declarations.

Converts dict/YAML input to a validated DesiredState.

Document shape:

    topology:                 # optional, expanded by service_topology()
      name: superalgos
      image: ghcr.io/superalgos/superalgos
      ports: {socket: 18041, web: 34248}
    resources:                # optional, explicit resources
      - kind: Network
        name: extra-vpc
        properties: {cidr: 10.1.0.0/16}
        depends_on: []
    settings:                 # read by EngineSettings.from_file
      max_concurrent_operations: 4
"""
import hashlib
import inspect
import json
import logging
from pathlib import Path
from typing import Any

import yaml

from ..errors import ParseError, ValidationError
from .schema import DesiredState, Resource, define_resource
from .validator import build_desired_state

logger = logging.getLogger(__name__)


class DeclarationParser:
    """Parse a declaration document into desired state."""

    def parse(self, document: dict[str, Any]) -> DesiredState:
        """
        Parse a declaration dict into a DesiredState.

        Args:
            document: Dict with ``topology`` and/or ``resources``

        Returns:
            Validated DesiredState in declaration order

        Raises:
            ParseError: Document is malformed
            ValidationError: Resources are inconsistent
        """
        if not isinstance(document, dict):
            raise ParseError("Declaration must be a mapping")

        unknown = set(document) - {"topology", "resources", "settings", "version", "checksum"}
        if unknown:
            raise ParseError(f"Unknown top-level keys: {', '.join(sorted(unknown))}")

        resources: list[Resource] = []

        topology = document.get("topology")
        if topology is not None:
            resources.extend(self._parse_topology(topology))

        for position, entry in enumerate(document.get("resources") or []):
            resources.append(self._parse_resource(position, entry))

        if not resources:
            raise ParseError("Declaration has neither a topology nor resources")

        desired = build_desired_state(resources)
        logger.debug(f"Parsed {len(desired)} resources")
        return desired

    def _parse_topology(self, config: Any) -> list[Resource]:
        from ..topology import service_topology

        if not isinstance(config, dict):
            raise ParseError("topology must be a mapping")

        unknown = set(config) - set(inspect.signature(service_topology).parameters)
        if unknown:
            raise ParseError(f"Unknown topology options: {', '.join(sorted(unknown))}")
        for required in ("name", "image"):
            if not config.get(required):
                raise ParseError(f"Missing required topology field: {required}")

        try:
            return service_topology(**config)
        except ValidationError as e:
            raise ParseError(f"Invalid topology: {e}", errors=e.errors)

    def _parse_resource(self, position: int, entry: Any) -> Resource:
        if not isinstance(entry, dict):
            raise ParseError(f"Resource #{position} must be a mapping")

        for required in ("kind", "name"):
            if not entry.get(required):
                raise ParseError(f"Resource #{position} is missing required field: {required}")

        properties = entry.get("properties") or {}
        if not isinstance(properties, dict):
            raise ParseError(f"Resource {entry['name']}: properties must be a mapping")

        depends_on = entry.get("depends_on") or []
        if isinstance(depends_on, str):
            depends_on = [depends_on]
        if not isinstance(depends_on, list) or not all(isinstance(d, str) for d in depends_on):
            raise ParseError(f"Resource {entry['name']}: depends_on must be a list of names")

        try:
            return define_resource(entry["kind"], str(entry["name"]), properties, depends_on)
        except ValidationError as e:
            raise ParseError(str(e), errors=e.errors)


def load_declaration(path: "str | Path") -> DesiredState:
    """Read a YAML declaration file and parse it."""
    path = Path(path)
    try:
        with open(path) as f:
            document = yaml.safe_load(f)
    except FileNotFoundError:
        raise ParseError(f"Declaration file not found: {path}")
    except yaml.YAMLError as e:
        raise ParseError(f"Invalid YAML in {path}: {e}")

    return DeclarationParser().parse(document or {})


def compute_checksum(document: dict[str, Any]) -> str:
    """
    Compute SHA256 checksum of a declaration dict.

    Useful for telling whether a declaration changed between runs.
    """
    # Remove existing checksum field for computation
    document_copy = {k: v for k, v in document.items() if k != "checksum"}

    # Serialize deterministically
    document_str = json.dumps(document_copy, sort_keys=True, separators=(",", ":"), default=str)

    hash_bytes = hashlib.sha256(document_str.encode()).hexdigest()

    return f"sha256:{hash_bytes[:16]}"  # Short hash for readability
