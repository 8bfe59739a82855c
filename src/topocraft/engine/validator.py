"""Pre-flight validation for desired state.

Catches logical errors before any provider communication.
"""
from collections import Counter
from typing import Iterable

from ..errors import ValidationError
from .schema import (
    DesiredState,
    PortBinding,
    Resource,
    ResourceKind,
    ValidationResult,
    port_bindings,
)


# Protocols accepted per kind
VALID_PROTOCOLS = {
    ResourceKind.SECURITY_RULE: {"tcp", "udp", "icmp", "-1"},
    ResourceKind.TARGET_GROUP: {"HTTP", "HTTPS", "TCP", "UDP", "TLS"},
    ResourceKind.LISTENER: {"HTTP", "HTTPS", "TCP", "UDP", "TLS"},
}

PORT_KINDS = (
    ResourceKind.SECURITY_RULE,
    ResourceKind.TARGET_GROUP,
    ResourceKind.LISTENER,
)


class ResourceValidator:
    """Validate a set of resources for logical errors before planning."""

    def validate(self, resources: Iterable[Resource]) -> ValidationResult:
        """
        Validate a resource set.

        Performs pre-flight checks:
        - Name uniqueness
        - Dependency references
        - Port ranges and protocols
        - Port binding ownership (container -> target group -> listener)

        Args:
            resources: Resources in declaration order

        Returns:
            ValidationResult with valid flag, errors, and warnings
        """
        resources = list(resources)
        errors: list[str] = []
        warnings: list[str] = []

        self._check_names(resources, errors)
        self._check_references(resources, errors)
        self._check_ports(resources, errors)
        self._check_bindings(resources, errors, warnings)
        self._check_listeners(resources, errors, warnings)

        return ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
        )

    def _check_names(self, resources: list[Resource], errors: list[str]) -> None:
        counts = Counter(r.name for r in resources)
        for name, count in counts.items():
            if count > 1:
                errors.append(f"Resource name '{name}' is declared {count} times")

    def _check_references(self, resources: list[Resource], errors: list[str]) -> None:
        names = {r.name for r in resources}
        for resource in resources:
            for ref in sorted(resource.depends_on - names):
                errors.append(f"{resource} depends on unknown resource '{ref}'")

    def _check_ports(self, resources: list[Resource], errors: list[str]) -> None:
        for resource in resources:
            if resource.kind in PORT_KINDS:
                if not _valid_port(resource.properties.get("port")):
                    errors.append(
                        f"Invalid port {resource.properties.get('port')!r} on {resource}"
                    )
                protocol = resource.properties.get("protocol")
                if protocol not in VALID_PROTOCOLS[resource.kind]:
                    valid = ", ".join(sorted(VALID_PROTOCOLS[resource.kind]))
                    errors.append(
                        f"Invalid protocol {protocol!r} on {resource}. Valid: {valid}"
                    )

            if resource.kind == ResourceKind.CONTAINER:
                try:
                    bindings = port_bindings(resource)
                except (KeyError, TypeError, ValueError):
                    errors.append(f"Malformed port_mappings on {resource}")
                    continue
                for binding in bindings:
                    if not _valid_port(binding.container_port):
                        errors.append(
                            f"Invalid container port {binding.container_port} on {resource}"
                        )
                duplicates = [b for b, n in Counter(bindings).items() if n > 1]
                for binding in duplicates:
                    errors.append(
                        f"Port {binding.container_port}/{binding.protocol} bound twice on {resource}"
                    )

    def _check_bindings(
        self,
        resources: list[Resource],
        errors: list[str],
        warnings: list[str]
    ) -> None:
        """Each container port binding is claimed by at most one target group."""
        containers = {
            r.name: r for r in resources if r.kind == ResourceKind.CONTAINER
        }
        claimed: dict[tuple[str, PortBinding], str] = {}

        for group in resources:
            if group.kind != ResourceKind.TARGET_GROUP:
                continue
            container_name = group.properties.get("container")
            if container_name is None:
                continue

            container = containers.get(container_name)
            if container is None:
                errors.append(f"{group} targets unknown container '{container_name}'")
                continue

            port = group.properties.get("container_port", group.properties.get("port"))
            try:
                bindings = port_bindings(container)
            except (KeyError, TypeError, ValueError):
                continue
            binding = next((b for b in bindings if b.container_port == port), None)
            if binding is None:
                errors.append(
                    f"{group} targets port {port} which {container} does not bind"
                )
                continue

            owner = claimed.get((container_name, binding))
            if owner:
                errors.append(
                    f"Port {port} of {container} is claimed by both "
                    f"TargetGroup {owner} and TargetGroup {group.name}"
                )
            else:
                claimed[(container_name, binding)] = group.name

        for container in containers.values():
            try:
                bindings = port_bindings(container)
            except (KeyError, TypeError, ValueError):
                continue
            for binding in bindings:
                if (container.name, binding) not in claimed:
                    warnings.append(
                        f"Port {binding.container_port} of {container} is not "
                        f"exposed by any target group"
                    )

    def _check_listeners(
        self,
        resources: list[Resource],
        errors: list[str],
        warnings: list[str]
    ) -> None:
        """Each target group has at most one listener; listener ports are unique per balancer."""
        groups = {r.name for r in resources if r.kind == ResourceKind.TARGET_GROUP}
        routed: dict[str, str] = {}
        ports: dict[tuple, str] = {}

        for listener in resources:
            if listener.kind != ResourceKind.LISTENER:
                continue

            group = listener.properties.get("target_group")
            if group is not None:
                if group not in groups:
                    errors.append(f"{listener} forwards to unknown target group '{group}'")
                elif group in routed:
                    errors.append(
                        f"TargetGroup {group} is the target of both "
                        f"Listener {routed[group]} and Listener {listener.name}"
                    )
                else:
                    routed[group] = listener.name

            balancer = listener.properties.get("load_balancer")
            port_key = (balancer, listener.properties.get("port"))
            if port_key in ports:
                errors.append(
                    f"Listeners {ports[port_key]} and {listener.name} both use "
                    f"port {port_key[1]} on load balancer {balancer}"
                )
            else:
                ports[port_key] = listener.name

        for group in sorted(groups - set(routed)):
            warnings.append(f"TargetGroup {group} has no listener")


def _valid_port(port) -> bool:
    return isinstance(port, int) and not isinstance(port, bool) and 1 <= port <= 65535


def build_desired_state(resources: Iterable[Resource]) -> DesiredState:
    """
    Validate resources and freeze them into a DesiredState.

    Raises:
        ValidationError: Listing every problem found
    """
    resources = tuple(resources)
    result = ResourceValidator().validate(resources)
    if not result.valid:
        raise ValidationError(
            f"Validation failed: {'; '.join(result.errors)}",
            errors=result.errors,
        )
    return DesiredState(resources=resources)
