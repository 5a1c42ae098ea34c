"""
Subscription registry for config change notifications.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Set

from replane_shared.logging import get_logger
from replane_shared.metrics import SdkMetrics


ChangeCallback = Callable[[str], Any]

# Key under which whole-client subscriptions are indexed
ALL_CONFIGS = None


@dataclass
class Subscription:
    """Subscription data."""
    subscription_id: str
    callback: ChangeCallback
    config_name: Optional[str] = ALL_CONFIGS
    created_at: datetime = field(default_factory=datetime.now)
    last_notified_at: Optional[datetime] = None
    notification_count: int = 0


class SubscriptionRegistry:
    """Maps config names to change callbacks.

    Callbacks receive the changed config name and are expected to call
    ``get`` again for the new value. Each registration is invoked once per
    applied update touching its name, in registration order.
    """

    def __init__(self, metrics: Optional[SdkMetrics] = None):
        self.logger = get_logger("sdk.subscriptions.manager")
        self.metrics = metrics

        self.subscriptions: Dict[str, Subscription] = {}
        self.name_subscriptions: Dict[Optional[str], Dict[str, None]] = {}  # name -> ordered subscription ids

    def subscribe(self, name: str, callback: ChangeCallback) -> Callable[[], bool]:
        """Register ``callback`` for changes to ``name``; returns the unsubscribe function."""
        return self._add(name, callback)

    def subscribe_all(self, callback: ChangeCallback) -> Callable[[], bool]:
        """Register ``callback`` for changes to any config."""
        return self._add(ALL_CONFIGS, callback)

    def _add(self, name: Optional[str], callback: ChangeCallback) -> Callable[[], bool]:
        if not callable(callback):
            raise TypeError("callback must be callable")

        subscription_id = str(uuid.uuid4())
        self.subscriptions[subscription_id] = Subscription(
            subscription_id=subscription_id,
            callback=callback,
            config_name=name
        )
        self.name_subscriptions.setdefault(name, {})[subscription_id] = None

        self.logger.debug("Subscription created", subscription_id=subscription_id, config_name=name)

        def unsubscribe() -> bool:
            return self.remove_subscription(subscription_id)

        return unsubscribe

    def remove_subscription(self, subscription_id: str) -> bool:
        """Remove a subscription; False when it was already gone."""
        subscription = self.subscriptions.pop(subscription_id, None)
        if subscription is None:
            return False

        ids = self.name_subscriptions.get(subscription.config_name)
        if ids is not None:
            ids.pop(subscription_id, None)
            if not ids:
                del self.name_subscriptions[subscription.config_name]

        self.logger.debug(
            "Subscription removed",
            subscription_id=subscription_id,
            config_name=subscription.config_name
        )
        return True

    def notify(self, names: Iterable[str]) -> int:
        """Invoke the callbacks of every changed name; returns the number invoked."""
        invoked = 0
        for name in sorted(set(names)):
            # Snapshot ids first so callbacks may (un)subscribe while we iterate
            ids = list(self.name_subscriptions.get(name, ())) + list(self.name_subscriptions.get(ALL_CONFIGS, ()))
            for subscription_id in ids:
                subscription = self.subscriptions.get(subscription_id)
                if subscription is None:
                    continue
                self._invoke(subscription, name)
                invoked += 1

        if self.metrics:
            self.metrics.record_notifications(invoked)
        return invoked

    def _invoke(self, subscription: Subscription, name: str) -> None:
        subscription.last_notified_at = datetime.now()
        subscription.notification_count += 1
        try:
            subscription.callback(name)
        except Exception as e:
            self.logger.error(
                "Subscriber callback failed",
                subscription_id=subscription.subscription_id,
                config_name=name,
                error=str(e)
            )

    def get_subscription_count(self, name: Optional[str] = ALL_CONFIGS) -> int:
        """Number of subscriptions for ``name``, or the total when omitted."""
        if name is ALL_CONFIGS:
            return len(self.subscriptions)
        return len(self.name_subscriptions.get(name, ()))

    def clear(self) -> None:
        """Drop every subscription."""
        self.subscriptions.clear()
        self.name_subscriptions.clear()

    def stats(self) -> Dict[str, Any]:
        """Subscription statistics."""
        per_name: Set[str] = {name for name in self.name_subscriptions if name is not ALL_CONFIGS}
        return {
            "total_subscriptions": len(self.subscriptions),
            "subscribed_configs": len(per_name),
            "global_subscriptions": len(self.name_subscriptions.get(ALL_CONFIGS, ())),
            "notifications_sent": sum(s.notification_count for s in self.subscriptions.values()),
        }
