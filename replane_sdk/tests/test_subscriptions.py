"""
Unit tests for the subscription registry.
"""

from unittest.mock import MagicMock

import pytest
from prometheus_client import CollectorRegistry

from replane_sdk.app.store.config_store import ConfigStore
from replane_sdk.app.subscriptions.manager import SubscriptionRegistry
from replane_shared.metrics import SdkMetrics
from replane_shared.test_helpers import ConfigFactory as F


class TestSubscriptionRegistry:
    """Test cases for SubscriptionRegistry."""

    @pytest.fixture
    def registry(self):
        return SubscriptionRegistry()

    def test_callback_receives_name(self, registry):
        callback = MagicMock()
        registry.subscribe("theme", callback)

        assert registry.notify({"theme"}) == 1
        callback.assert_called_once_with("theme")

    def test_unrelated_names_do_not_notify(self, registry):
        callback = MagicMock()
        registry.subscribe("theme", callback)

        assert registry.notify({"limit"}) == 0
        callback.assert_not_called()

    def test_multiple_callbacks_per_name(self, registry):
        first, second = MagicMock(), MagicMock()
        registry.subscribe("theme", first)
        registry.subscribe("theme", second)

        registry.notify(["theme"])

        first.assert_called_once_with("theme")
        second.assert_called_once_with("theme")

    def test_same_callback_registered_twice_is_called_twice(self, registry):
        callback = MagicMock()
        registry.subscribe("theme", callback)
        registry.subscribe("theme", callback)

        registry.notify(["theme"])
        assert callback.call_count == 2

    def test_unsubscribe_is_idempotent(self, registry):
        callback = MagicMock()
        unsubscribe = registry.subscribe("theme", callback)

        assert unsubscribe() is True
        assert unsubscribe() is False
        registry.notify(["theme"])
        callback.assert_not_called()
        assert registry.get_subscription_count() == 0

    def test_failing_callback_is_isolated(self, registry):
        failing = MagicMock(side_effect=RuntimeError("boom"))
        healthy = MagicMock()
        registry.subscribe("theme", failing)
        registry.subscribe("theme", healthy)

        assert registry.notify(["theme"]) == 2
        healthy.assert_called_once_with("theme")

    def test_subscribe_all(self, registry):
        callback = MagicMock()
        registry.subscribe_all(callback)

        registry.notify(["theme", "limit"])

        assert sorted(c.args[0] for c in callback.call_args_list) == ["limit", "theme"]

    def test_unsubscribe_during_notify(self, registry):
        calls = []
        unsubscribe_second = None

        def first(name):
            calls.append("first")
            unsubscribe_second()

        registry.subscribe("theme", first)
        unsubscribe_second = registry.subscribe("theme", lambda name: calls.append("second"))

        registry.notify(["theme"])
        assert calls == ["first"]

    def test_rejects_non_callable(self, registry):
        with pytest.raises(TypeError):
            registry.subscribe("theme", "not-callable")

    def test_stats(self, registry):
        registry.subscribe("theme", MagicMock())
        registry.subscribe("limit", MagicMock())
        registry.subscribe_all(MagicMock())
        registry.notify(["theme"])

        stats = registry.stats()
        assert stats["total_subscriptions"] == 3
        assert stats["subscribed_configs"] == 2
        assert stats["global_subscriptions"] == 1
        assert stats["notifications_sent"] == 2

    def test_notification_metric(self):
        registry = CollectorRegistry()
        subscriptions = SubscriptionRegistry(metrics=SdkMetrics(registry=registry))
        subscriptions.subscribe("theme", MagicMock())
        subscriptions.notify(["theme"])
        assert registry.get_sample_value("replane_notifications_total") == 1


class TestStoreNotifications:
    """Registry wired to a store, the way the client uses it."""

    @pytest.fixture
    def store(self):
        store = ConfigStore()
        store.apply_snapshot([F.config("theme", "dark"), F.config("limit", 5)], 1)
        return store

    @pytest.fixture
    def registry(self, store):
        registry = SubscriptionRegistry()
        store.add_listener(registry.notify)
        return registry

    def test_theme_subscriber_notified_once(self, store, registry):
        callback = MagicMock()
        registry.subscribe("theme", callback)

        store.apply_snapshot([F.config("theme", "light", version=2), F.config("limit", 5)], 2)
        callback.assert_called_once_with("theme")

        callback.reset_mock()
        store.apply_snapshot([F.config("theme", "light", version=2), F.config("limit", 6, version=2)], 3)
        callback.assert_not_called()

    def test_removal_notifies(self, store, registry):
        callback = MagicMock()
        registry.subscribe("theme", callback)

        store.apply_patch(1, 2, {"theme": None})
        callback.assert_called_once_with("theme")

    def test_rejected_patch_does_not_notify(self, store, registry):
        callback = MagicMock()
        registry.subscribe("theme", callback)

        store.apply_patch(5, 6, {"theme": F.config("theme", "blue", version=3)})
        callback.assert_not_called()
