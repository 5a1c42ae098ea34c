"""
Replication stream package.

- parser: SSE line protocol.
- frames: snapshot / patch / heartbeat frames.
- api_client: HTTP contract with the server.
- channel: Background task keeping the store in sync.
"""
