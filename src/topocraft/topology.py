"""Service topology builder.

Expands "one container service behind a load balancer exposing N ports"
into the full resource set:

    network
      ├── security rule per port
      ├── load balancer
      └── service ── task definition ── role
            │              └── container ── log sink
            └── target group per port ── listener per port

Usage:
    from topocraft.topology import service_topology

    resources = service_topology(
        "superalgos",
        image="ghcr.io/superalgos/superalgos",
        ports={"socket": 18041, "web": 34248},
        command=["minMemo", "demoMode"],
    )
"""
from typing import Any, Iterable, Optional, Union

from .engine.schema import PortBinding, Resource, ResourceKind, define_resource
from .errors import ValidationError

# Two ports exposed by the demo stack this builder started from
DEFAULT_PORTS = {"socket": 18041, "web": 34248}

EXECUTION_ROLE_PRINCIPAL = "ecs-tasks.amazonaws.com"
EXECUTION_ROLE_POLICY = "service-role/AmazonECSTaskExecutionRolePolicy"

PortsSpec = Union[dict[str, Any], Iterable[Any]]


def _normalize_ports(ports: PortsSpec, default_protocol: str) -> list[tuple[str, int, str]]:
    """Turn the accepted port shapes into (label, port, protocol) triples.

    Accepts a mapping of label -> port, or a list of ints, or a list of
    ``{"port": .., "name": .., "protocol": ..}`` mappings.
    """
    if isinstance(ports, dict):
        entries = [{"name": label, "port": port} for label, port in ports.items()]
    else:
        entries = [p if isinstance(p, dict) else {"port": p} for p in ports]

    normalized = []
    seen: set[int] = set()
    for entry in entries:
        port = entry.get("port")
        if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
            raise ValidationError(f"Invalid port: {port!r}")
        if port in seen:
            raise ValidationError(f"Port {port} is exposed twice")
        seen.add(port)
        label = str(entry.get("name") or port)
        protocol = str(entry.get("protocol") or default_protocol).upper()
        normalized.append((label, port, protocol))

    if not normalized:
        raise ValidationError("A service topology needs at least one port")
    return normalized


def service_topology(
    name: str,
    image: str,
    ports: Optional[PortsSpec] = None,
    command: Optional[list[str]] = None,
    cidr: str = "10.0.0.0/16",
    max_azs: int = 2,
    cpu: int = 2048,
    memory: int = 4096,
    desired_count: int = 1,
    protocol: str = "HTTP",
    internet_facing: bool = True,
    assign_public_ip: bool = False,
    ingress_source: str = "0.0.0.0/0",
    allow_all_outbound: bool = True,
) -> list[Resource]:
    """
    Build the resources for one service behind a load balancer.

    Args:
        name: Prefix for every resource name
        image: Container image reference
        ports: Exposed ports (defaults to DEFAULT_PORTS)
        command: Container command override
        cidr: Network address range
        max_azs: Availability zones the network spans
        cpu: Task CPU units
        memory: Task memory in MiB
        desired_count: Running task count
        protocol: Default listener / target group protocol
        internet_facing: Whether the load balancer is public
        assign_public_ip: Whether tasks get public addresses
        ingress_source: CIDR allowed to reach the exposed ports
        allow_all_outbound: Whether the network lets all egress traffic out

    Returns:
        Resources in declaration order

    Raises:
        ValidationError: Bad name, ports or sizing
    """
    if not name:
        raise ValidationError("A service topology needs a name")
    if not image:
        raise ValidationError(f"Service topology {name} needs an image")

    port_specs = _normalize_ports(DEFAULT_PORTS if ports is None else ports, protocol)

    network = f"{name}-vpc"
    log_sink = f"{name}-logs"
    role = f"{name}-execution-role"
    task = f"{name}-task"
    container = f"{name}-container"
    service = f"{name}-service"
    balancer = f"{name}-alb"
    rules = [f"{name}-ingress-{label}" for label, _, _ in port_specs]

    resources = [
        define_resource(ResourceKind.NETWORK, network, {
            "cidr": cidr,
            "max_azs": max_azs,
            "allow_all_outbound": allow_all_outbound,
        }),
    ]

    for rule, (label, port, _) in zip(rules, port_specs):
        resources.append(define_resource(ResourceKind.SECURITY_RULE, rule, {
            "network": network,
            "direction": "ingress",
            "port": port,
            "protocol": "tcp",
            "source": ingress_source,
        }, depends_on=[network]))

    resources.extend([
        define_resource(ResourceKind.LOG_SINK, log_sink, {
            "group_name": f"/ecs/{name}",
            "stream_prefix": name,
            "removal_policy": "destroy",
        }),
        define_resource(ResourceKind.ROLE, role, {
            "assumed_by": EXECUTION_ROLE_PRINCIPAL,
            "managed_policies": [EXECUTION_ROLE_POLICY],
        }),
        define_resource(ResourceKind.TASK_DEFINITION, task, {
            "cpu": cpu,
            "memory": memory,
            "compatibility": "FARGATE",
            "task_role": role,
        }, depends_on=[role]),
        define_resource(ResourceKind.CONTAINER, container, {
            "image": image,
            "command": list(command) if command else None,
            "task_definition": task,
            "log_sink": log_sink,
            "port_mappings": [
                PortBinding(container_port=port).to_dict() for _, port, _ in port_specs
            ],
        }, depends_on=[task, log_sink]),
        define_resource(ResourceKind.SERVICE, service, {
            "cluster": f"{name}-cluster",
            "launch_type": "FARGATE",
            "task_definition": task,
            "desired_count": desired_count,
            "assign_public_ip": assign_public_ip,
            "security_rules": rules,
            "network": network,
        }, depends_on=[network, task, container, *rules]),
        define_resource(ResourceKind.LOAD_BALANCER, balancer, {
            "internet_facing": internet_facing,
            "network": network,
        }, depends_on=[network]),
    ])

    for label, port, port_protocol in port_specs:
        target_group = f"{name}-tg-{label}"
        resources.append(define_resource(ResourceKind.TARGET_GROUP, target_group, {
            "port": port,
            "protocol": port_protocol,
            "network": network,
            "target_type": "ip",
            "container": container,
            "container_port": port,
        }, depends_on=[network, service]))
        resources.append(define_resource(ResourceKind.LISTENER, f"{name}-listener-{label}", {
            "port": port,
            "protocol": port_protocol,
            "load_balancer": balancer,
            "target_group": target_group,
        }, depends_on=[balancer, target_group]))

    return resources
