"""Tests for declaration parsing."""
from pathlib import Path

import pytest

from topocraft.engine import (
    DeclarationParser,
    ResourceKind,
    compute_checksum,
    load_declaration,
)
from topocraft.errors import ParseError, ValidationError

EXAMPLE = Path(__file__).parent.parent / "configs" / "superalgos.yaml"


class TestDeclarationParser:
    """Tests for DeclarationParser."""

    @pytest.fixture
    def parser(self):
        return DeclarationParser()

    def test_topology_section(self, parser):
        desired = parser.parse({
            "topology": {
                "name": "demo",
                "image": "nginx",
                "ports": {"web": 8080},
            },
        })

        assert desired.get("demo-vpc").kind == ResourceKind.NETWORK
        assert desired.get("demo-listener-web").properties["port"] == 8080

    def test_explicit_resources(self, parser):
        desired = parser.parse({
            "resources": [
                {"kind": "Network", "name": "vpc", "properties": {"cidr": "10.0.0.0/16"}},
                {
                    "kind": "Service",
                    "name": "svc",
                    "properties": {"desired_count": 2},
                    "depends_on": "vpc",
                },
            ],
        })

        assert [r.name for r in desired] == ["vpc", "svc"]
        assert desired.get("svc").depends_on == frozenset({"vpc"})

    def test_topology_and_resources_combined(self, parser):
        desired = parser.parse({
            "topology": {"name": "demo", "image": "nginx", "ports": [80]},
            "resources": [
                {
                    "kind": "LogSink",
                    "name": "audit",
                    "properties": {"group_name": "/audit"},
                    "depends_on": ["demo-vpc"],
                },
            ],
        })

        assert desired.get("audit") is not None
        assert desired.get("demo-tg-80") is not None

    def test_settings_section_is_allowed(self, parser):
        desired = parser.parse({
            "topology": {"name": "demo", "image": "nginx"},
            "settings": {"max_concurrent_operations": 2},
        })
        assert len(desired) > 0

    def test_not_a_mapping(self, parser):
        with pytest.raises(ParseError):
            parser.parse(["not", "a", "dict"])

    def test_unknown_top_level_key(self, parser):
        with pytest.raises(ParseError) as exc:
            parser.parse({"topology": {"name": "d", "image": "x"}, "outputs": {}})
        assert "outputs" in str(exc.value)

    def test_empty_document(self, parser):
        with pytest.raises(ParseError):
            parser.parse({})

    def test_unknown_topology_option(self, parser):
        with pytest.raises(ParseError) as exc:
            parser.parse({"topology": {"name": "d", "image": "x", "gpu": 1}})
        assert "gpu" in str(exc.value)

    def test_topology_requires_image(self, parser):
        with pytest.raises(ParseError) as exc:
            parser.parse({"topology": {"name": "d"}})
        assert "image" in str(exc.value)

    def test_invalid_topology_ports(self, parser):
        with pytest.raises(ParseError):
            parser.parse({"topology": {"name": "d", "image": "x", "ports": [80, 80]}})

    def test_resource_missing_kind(self, parser):
        with pytest.raises(ParseError) as exc:
            parser.parse({"resources": [{"name": "vpc"}]})
        assert "kind" in str(exc.value)

    def test_resource_unknown_kind(self, parser):
        with pytest.raises(ParseError):
            parser.parse({"resources": [{"kind": "Bucket", "name": "b"}]})

    def test_resource_missing_required_property(self, parser):
        with pytest.raises(ParseError) as exc:
            parser.parse({"resources": [{"kind": "Network", "name": "vpc"}]})
        assert "cidr" in str(exc.value)

    def test_bad_depends_on(self, parser):
        with pytest.raises(ParseError):
            parser.parse({"resources": [{
                "kind": "Network",
                "name": "vpc",
                "properties": {"cidr": "10.0.0.0/16"},
                "depends_on": {"a": 1},
            }]})

    def test_unknown_reference_is_validation_error(self, parser):
        with pytest.raises(ValidationError) as exc:
            parser.parse({"resources": [{
                "kind": "Service",
                "name": "svc",
                "properties": {"desired_count": 1},
                "depends_on": ["vpc"],
            }]})
        assert "unknown resource 'vpc'" in str(exc.value)


class TestLoadDeclaration:
    def test_example_file(self):
        desired = load_declaration(EXAMPLE)

        container = desired.get("superalgos-container")
        assert container.properties["command"] == ["minMemo", "demoMode"]
        assert desired.get("superalgos-listener-socket").properties["port"] == 18041
        assert desired.get("superalgos-listener-web").properties["port"] == 34248

    def test_missing_file(self, tmp_path):
        with pytest.raises(ParseError) as exc:
            load_declaration(tmp_path / "nope.yaml")
        assert "not found" in str(exc.value)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("topology: [unclosed\n")

        with pytest.raises(ParseError):
            load_declaration(path)


class TestComputeChecksum:
    def test_stable_and_ignores_checksum_field(self):
        document = {"topology": {"name": "demo", "image": "nginx"}}

        checksum = compute_checksum(document)

        assert checksum.startswith("sha256:")
        assert len(checksum) == len("sha256:") + 16
        assert compute_checksum({**document, "checksum": "sha256:old"}) == checksum

    def test_changes_with_content(self):
        a = compute_checksum({"topology": {"name": "a", "image": "nginx"}})
        b = compute_checksum({"topology": {"name": "b", "image": "nginx"}})
        assert a != b
