"""
Plain data structures shared across Infracord.

- **infraction_datatypes.py**: InfractionType with its per-kind metadata, the
  Infraction record, and ActionResult for applied/reverted effects.
- **mirror_datatypes.py**: Snapshots of guild members and roles as stored in the
  local mirror, plus SyncStats for reporting a reconciliation pass.
"""
