"""Config change subscriptions."""
