"""
Infraction handling for Infracord.

- **action_applier.py**: Dispatch table mapping each infraction kind to its
  Discord effect and the inverse of that effect.
- **infraction_service.py**: Creation and pardon pipelines used by commands,
  keeping the persist -> apply -> schedule order.
- **audit.py**: Audit events and the moderator-log sink they are published to.
"""
