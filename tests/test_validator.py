"""Tests for desired state validation."""
import pytest

from topocraft.engine import ResourceValidator, build_desired_state, define_resource
from topocraft.errors import ValidationError


def network(name="vpc"):
    return define_resource("Network", name, {"cidr": "10.0.0.0/16"})


def container(name="app", ports=(80,)):
    return define_resource("Container", name, {
        "image": "nginx",
        "port_mappings": [{"container_port": p} for p in ports],
    })


def target_group(name, port, container_name="app"):
    return define_resource("TargetGroup", name, {
        "port": port,
        "protocol": "HTTP",
        "container": container_name,
        "container_port": port,
    }, depends_on=[container_name])


def listener(name, port, group, balancer="alb"):
    return define_resource("Listener", name, {
        "port": port,
        "protocol": "HTTP",
        "target_group": group,
        "load_balancer": balancer,
    }, depends_on=[group])


class TestResourceValidator:
    """Tests for ResourceValidator."""

    def test_valid_set(self):
        resources = [
            network(),
            container(),
            target_group("tg", 80),
            listener("l", 80, "tg"),
        ]

        result = ResourceValidator().validate(resources)

        assert result.valid
        assert result.errors == []
        assert result.warnings == []

    def test_duplicate_names(self):
        """Names are unique across kinds."""
        resources = [
            network("shared"),
            define_resource("LogSink", "shared", {"group_name": "/x"}),
        ]

        result = ResourceValidator().validate(resources)

        assert not result.valid
        assert any("shared" in e and "2 times" in e for e in result.errors)

    def test_unknown_reference(self):
        resources = [
            define_resource("Service", "svc", {"desired_count": 1}, ["vpc"]),
        ]

        result = ResourceValidator().validate(resources)

        assert not result.valid
        assert any("unknown resource 'vpc'" in e for e in result.errors)

    def test_invalid_port(self):
        resources = [
            define_resource("Listener", "l", {"port": 70000, "protocol": "HTTP"}),
        ]

        result = ResourceValidator().validate(resources)

        assert not result.valid
        assert any("Invalid port" in e for e in result.errors)

    def test_invalid_protocol(self):
        resources = [
            define_resource("TargetGroup", "tg", {"port": 80, "protocol": "GOPHER"}),
        ]

        result = ResourceValidator().validate(resources)

        assert not result.valid
        assert any("GOPHER" in e for e in result.errors)

    def test_target_group_port_not_bound(self):
        resources = [container(ports=(80,)), target_group("tg", 443)]

        result = ResourceValidator().validate(resources)

        assert not result.valid
        assert any("does not bind" in e for e in result.errors)

    def test_port_binding_claimed_twice(self):
        """A port binding belongs to exactly one target group."""
        resources = [
            container(ports=(80,)),
            target_group("tg-a", 80),
            target_group("tg-b", 80),
        ]

        result = ResourceValidator().validate(resources)

        assert not result.valid
        assert any("claimed by both" in e for e in result.errors)

    def test_target_group_routed_twice(self):
        resources = [
            container(ports=(80,)),
            target_group("tg", 80),
            listener("l1", 80, "tg"),
            listener("l2", 8080, "tg"),
        ]

        result = ResourceValidator().validate(resources)

        assert not result.valid
        assert any("target of both" in e for e in result.errors)

    def test_listener_port_clash_on_same_balancer(self):
        resources = [
            container(ports=(80, 81)),
            target_group("tg-a", 80),
            target_group("tg-b", 81),
            listener("l1", 80, "tg-a"),
            listener("l2", 80, "tg-b"),
        ]

        result = ResourceValidator().validate(resources)

        assert not result.valid
        assert any("both use port 80" in e for e in result.errors)

    def test_unexposed_port_is_warning(self):
        resources = [container(ports=(80, 81)), target_group("tg", 80), listener("l", 80, "tg")]

        result = ResourceValidator().validate(resources)

        assert result.valid
        assert any("81" in w and "not exposed" in w for w in result.warnings)

    def test_target_group_without_listener_is_warning(self):
        resources = [container(), target_group("tg", 80)]

        result = ResourceValidator().validate(resources)

        assert result.valid
        assert any("no listener" in w for w in result.warnings)


class TestBuildDesiredState:
    """Tests for build_desired_state."""

    def test_keeps_declaration_order(self):
        resources = [network("b"), network("a")]

        desired = build_desired_state(resources)

        assert [r.name for r in desired] == ["b", "a"]
        assert desired.get("a").name == "a"
        assert desired.get("zzz") is None

    def test_raises_with_all_errors(self):
        resources = [
            network("dup"),
            network("dup"),
            define_resource("Service", "svc", {"desired_count": 1}, ["missing"]),
        ]

        with pytest.raises(ValidationError) as exc:
            build_desired_state(resources)

        assert len(exc.value.errors) == 2
