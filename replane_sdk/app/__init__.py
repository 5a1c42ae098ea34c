"""
Replane SDK core package.

Keeps a local copy of a project's configs in sync with the server and
resolves values for an evaluation context. Key modules include:

- app.client: ReplaneClient facade, restore_client and fetch_snapshot
- app.snapshot_cache: Shared started clients for repeated snapshot reads
- app.rules: Config model, condition evaluation, bucketing, overrides
- app.store: Versioned config store and snapshot format
- app.sse: SSE parsing, wire frames, HTTP contract and the sync channel
- app.subscriptions: Change callbacks per config name
- app.testing: In-memory client for application tests
"""
