"""
Scheduled reversal of temporary infractions.

- **expiry_scheduler.py**: In-memory timer table keyed by infraction ID. Timers
  are re-derived from the database on startup, so nothing is lost across
  restarts; firing reverts the effect, deactivates the record and publishes an
  audit event.
"""
