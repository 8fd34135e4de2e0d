"""
Reconciliation between the local mirror and the live guild.

- **guild_sync.py**: Full sync (roles, members, active infractions) and the
  per-event incremental updates driven by gateway events.
"""
