"""
Integration tests for the client sync flow.
"""

import pytest

from replane_sdk import ReplaneClient, restore_client
from replane_shared.config import ClientSettings
from replane_shared.test_helpers import ConfigFactory as F, FakeReplaneServer, wait_for


class TestSyncFlow:
    """End-to-end flows against a scripted Replane server."""

    @pytest.fixture
    def settings(self):
        return ClientSettings(
            base_url="https://replane.test",
            sdk_key="sk-integration",
            retry_delay_ms=5,
            max_retry_delay_ms=20,
            initialization_timeout_ms=1000,
            enable_metrics=False
        )

    @pytest.fixture
    def rollout(self):
        """Checkout flag rolled out to half the users, plus every beta tester."""
        return F.config("new-checkout", False, overrides=[
            F.override("beta", [F.condition("in", "plan", ["beta", "internal"])], True),
            F.override("half", [F.segmentation("user_id", 0, 50, "checkout-2024")], True),
        ])

    @pytest.mark.asyncio
    async def test_rollout_evaluation(self, settings, rollout):
        server = FakeReplaneServer()
        server.add_stream(F.snapshot_frame(1, rollout))

        async with ReplaneClient(settings, transport=server.transport) as client:
            assert client.get("new-checkout", {"plan": "beta"}) is True

            users = [f"user-{n}" for n in range(400)]
            enabled = [u for u in users if client.get("new-checkout", {"user_id": u, "plan": "free"})]
            assert 120 < len(enabled) < 280

            # Stable across calls
            again = [u for u in users if client.get("new-checkout", {"user_id": u, "plan": "free"})]
            assert again == enabled

    @pytest.mark.asyncio
    async def test_changes_survive_reconnect(self, settings, rollout):
        server = FakeReplaneServer()
        server.add_stream(
            F.snapshot_frame(1, rollout, F.config("limit", 10)),
            F.patch_frame(1, 2, {"limit": F.config("limit", 20, version=2)}),
            hold_open=False
        )
        server.add_stream(F.patch_frame(2, 3, {"limit": F.config("limit", 30, version=3)}))

        changes = []
        client = ReplaneClient(settings, transport=server.transport)
        client.subscribe("limit", changes.append)

        async with client:
            assert await wait_for(lambda: client.get("limit") == 30)
            assert [r["body"]["fromVersion"] for r in server.stream_requests] == [None, 2]
            assert changes == ["limit", "limit", "limit"]

    @pytest.mark.asyncio
    async def test_gap_recovery_through_snapshot(self, settings):
        server = FakeReplaneServer()
        server.add_stream(F.snapshot_frame(1, F.config("limit", 10)))
        server.add_snapshot(F.snapshot_frame(8, F.config("limit", 80, version=5)))

        async with ReplaneClient(settings, transport=server.transport) as client:
            server.push(F.patch_frame(7, 8, {"limit": F.config("limit", 80, version=5)}))

            assert await wait_for(lambda: client.version == 8)
            assert client.get("limit") == 80
            assert len(server.stream_requests) == 1

    @pytest.mark.asyncio
    async def test_server_render_handoff(self, settings, rollout):
        server = FakeReplaneServer()
        server.add_stream(F.snapshot_frame(3, rollout))
        browser_server = FakeReplaneServer()
        browser_server.add_stream(F.patch_frame(3, 4, {"new-checkout": F.config("new-checkout", True, version=2)}))

        async with ReplaneClient(settings, transport=server.transport) as rendering:
            payload = rendering.get_snapshot(context={"plan": "beta"}).to_json()

        client = restore_client(payload, settings, transport=browser_server.transport)
        assert client.get("new-checkout") is True

        try:
            await client.start(wait=False)
            assert await wait_for(lambda: client.version == 4)
            assert client.get("new-checkout", {"plan": "free"}) is True
            assert browser_server.stream_requests[0]["body"]["fromVersion"] == 3
        finally:
            await client.close()
