"""Tests for provider adapters."""
import pytest
import yaml

from topocraft.engine import PropertyChange, RemoteHandle, ResourceKind, define_resource
from topocraft.errors import PermanentProviderError, TransientProviderError
from topocraft.providers import (
    InMemoryProvider,
    LocalStateProvider,
    PROVIDER_TYPES,
    create_provider,
)


def network(cidr="10.0.0.0/16"):
    return define_resource("Network", "vpc", {"cidr": cidr})


class TestProviderFactory:
    """Tests for provider factory function."""

    def test_create_memory_provider(self):
        provider = create_provider("memory")
        assert isinstance(provider, InMemoryProvider)

    def test_create_local_provider(self, tmp_path):
        provider = create_provider("LOCAL", {"state_path": str(tmp_path / "s.yaml")})
        assert isinstance(provider, LocalStateProvider)
        assert provider.state_path == tmp_path / "s.yaml"

    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError) as exc:
            create_provider("aws")
        assert "Unknown provider type" in str(exc.value)

    def test_registry(self):
        assert set(PROVIDER_TYPES) == {"memory", "local"}


class TestInMemoryProvider:
    """Tests for InMemoryProvider."""

    @pytest.fixture
    def provider(self):
        return InMemoryProvider()

    @pytest.mark.asyncio
    async def test_context_manager(self, provider):
        async with provider as p:
            assert p.is_connected
        assert not provider.is_connected

    @pytest.mark.asyncio
    async def test_create_and_describe(self, provider):
        handle = await provider.create_resource(network())

        assert handle == RemoteHandle(ResourceKind.NETWORK, "vpc", "n-000001")
        observed = await provider.describe_all()
        assert observed == [network()]
        assert observed[0].handle == handle

    @pytest.mark.asyncio
    async def test_describe_filters_kinds(self, provider):
        await provider.create_resource(network())
        await provider.create_resource(
            define_resource("LogSink", "logs", {"group_name": "/logs"})
        )

        observed = await provider.describe_all([ResourceKind.LOG_SINK])

        assert [r.name for r in observed] == ["logs"]

    @pytest.mark.asyncio
    async def test_create_twice_fails(self, provider):
        await provider.create_resource(network())

        with pytest.raises(PermanentProviderError):
            await provider.create_resource(network())

    @pytest.mark.asyncio
    async def test_update_applies_changes(self, provider):
        handle = await provider.create_resource(
            define_resource("Service", "svc", {"desired_count": 1, "note": "x"})
        )
        desired = define_resource("Service", "svc", {"desired_count": 2})

        returned = await provider.update_resource(handle, desired, {
            "desired_count": PropertyChange(old=1, new=2),
            "note": PropertyChange(old="x", new=None),
        })

        assert returned == handle
        assert provider.snapshot()["svc"].properties == {"desired_count": 2}

    @pytest.mark.asyncio
    async def test_delete(self, provider):
        handle = await provider.create_resource(network())

        await provider.delete_resource(handle)

        assert provider.snapshot() == {}
        assert provider.calls == [("create", "vpc"), ("delete", "vpc")]

    @pytest.mark.asyncio
    async def test_delete_unknown_handle(self, provider):
        with pytest.raises(PermanentProviderError) as exc:
            await provider.delete_resource(RemoteHandle(ResourceKind.NETWORK, "vpc", "n-9"))
        assert "not found" in str(exc.value)

    @pytest.mark.asyncio
    async def test_injected_failure_for_one_action(self, provider):
        provider.fail("vpc", action="delete")
        handle = await provider.create_resource(network())

        with pytest.raises(PermanentProviderError):
            await provider.delete_resource(handle)
        assert "vpc" in provider.snapshot()

    @pytest.mark.asyncio
    async def test_injected_failure_clears_after_times(self, provider):
        provider.fail("vpc", error=TransientProviderError("throttled"), times=1)

        with pytest.raises(TransientProviderError):
            await provider.create_resource(network())
        await provider.create_resource(network())

        assert "vpc" in provider.snapshot()

    @pytest.mark.asyncio
    async def test_described_resources_are_copies(self, provider):
        await provider.create_resource(network())

        observed = await provider.describe_all()
        observed[0].properties["cidr"] = "changed"

        assert provider.snapshot()["vpc"].properties["cidr"] == "10.0.0.0/16"


class TestLocalStateProvider:
    """Tests for LocalStateProvider persistence."""

    @pytest.fixture
    def state_path(self, tmp_path):
        return tmp_path / "state" / "state.yaml"

    @pytest.mark.asyncio
    async def test_missing_state_file_starts_empty(self, state_path):
        async with LocalStateProvider({"state_path": str(state_path)}) as provider:
            assert await provider.describe_all() == []
        assert not state_path.exists()

    @pytest.mark.asyncio
    async def test_state_survives_restart(self, state_path):
        async with LocalStateProvider({"state_path": str(state_path)}) as provider:
            handle = await provider.create_resource(network())
            await provider.create_resource(
                define_resource("Service", "svc", {"desired_count": 1}, ["vpc"])
            )

        async with LocalStateProvider({"state_path": str(state_path)}) as provider:
            observed = {r.name: r for r in await provider.describe_all()}

            assert observed["vpc"].handle == handle
            assert observed["svc"].depends_on == frozenset({"vpc"})

            # Ids keep counting from where the last run stopped
            new = await provider.create_resource(
                define_resource("LogSink", "logs", {"group_name": "/logs"})
            )
            assert new.remote_id == "ls-000003"

    @pytest.mark.asyncio
    async def test_state_file_format(self, state_path):
        async with LocalStateProvider({"state_path": str(state_path)}) as provider:
            await provider.create_resource(network())

        data = yaml.safe_load(state_path.read_text())

        assert data["version"] == 1
        assert data["next_id"] == 2
        assert data["resources"] == [{
            "kind": "Network",
            "name": "vpc",
            "properties": {"cidr": "10.0.0.0/16"},
            "depends_on": [],
            "remote_id": "n-000001",
        }]

    @pytest.mark.asyncio
    async def test_delete_is_persisted(self, state_path):
        async with LocalStateProvider({"state_path": str(state_path)}) as provider:
            handle = await provider.create_resource(network())
            await provider.delete_resource(handle)

        data = yaml.safe_load(state_path.read_text())
        assert data["resources"] == []

    @pytest.mark.asyncio
    async def test_corrupt_state_file(self, state_path):
        state_path.parent.mkdir(parents=True)
        state_path.write_text("resources: [unclosed\n")

        with pytest.raises(PermanentProviderError):
            async with LocalStateProvider({"state_path": str(state_path)}):
                pass
