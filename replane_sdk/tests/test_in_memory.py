"""
Unit tests for the in-memory client.
"""

from unittest.mock import MagicMock

import pytest

from replane_sdk import NOT_FOUND, InMemoryClient
from replane_sdk.app.rules.models import Config, Variant
from replane_shared.test_helpers import ConfigFactory as F


class TestInMemoryClient:
    """Test cases for InMemoryClient."""

    @pytest.fixture
    def client(self):
        return InMemoryClient(configs={"max-items": 10, "theme": "dark"}, defaults={"banner": "off"})

    def test_initial_configs(self, client):
        assert client.get("max-items") == 10
        assert client.get("theme") == "dark"
        assert client.version == 2

    def test_defaults_and_not_found(self, client):
        assert client.get("banner") == "off"
        assert client.get("missing") is NOT_FOUND

    def test_set_with_overrides(self, client):
        client.set("max-items", 10, overrides=[
            F.override("vip", [F.condition("equals", "tier", "vip")], 100),
        ])

        assert client.get("max-items") == 10
        assert client.get("max-items", {"tier": "vip"}) == 100
        assert client.store.get("max-items").version == 2

    def test_set_notifies_subscribers(self, client):
        callback = MagicMock()
        client.subscribe("theme", callback)

        client.set("theme", "light")
        callback.assert_called_once_with("theme")

        callback.reset_mock()
        client.set("max-items", 20)
        callback.assert_not_called()

    def test_delete(self, client):
        callback = MagicMock()
        client.subscribe("theme", callback)

        assert client.delete("theme") is True
        assert client.delete("theme") is False
        assert client.get("theme") is NOT_FOUND
        callback.assert_called_once_with("theme")

    def test_set_config_with_environment_variant(self):
        client = InMemoryClient(environment_id="prod")
        client.set_config(Config(
            name="theme",
            base=Variant(value="dark"),
            variants={"prod": Variant(environment_id="prod", value="black")}
        ))

        assert client.get("theme") == "black"
        assert client.get("theme", environment_id="staging") == "dark"

    def test_reference_between_configs(self, client):
        client.set("allowed-tier", "vip")
        client.set("max-items", 10, overrides=[
            F.override("vip", [F.condition("equals", "tier", F.reference("allowed-tier"))], 100),
        ])

        assert client.get("max-items", {"tier": "vip"}) == 100
        client.set("allowed-tier", "gold")
        assert client.get("max-items", {"tier": "vip"}) == 10

    def test_close_drops_subscriptions(self, client):
        callback = MagicMock()
        client.subscribe("theme", callback)

        client.close()
        client.set("theme", "light")

        callback.assert_not_called()
        assert client.get("theme") == "light"
