"""
Config store package.

- config_store: Copy-on-write store swapped atomically per version.
- snapshot: Plain-data snapshot for hand-off and restore.
"""
