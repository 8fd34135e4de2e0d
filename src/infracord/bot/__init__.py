"""
Discord cogs wiring Infracord into py-cord.

- **cogs/infraction_cmds.py**: Slash commands creating and pardoning infractions
  and listing a member's history.
- **cogs/sync_listener.py**: Gateway event listeners feeding the sync engine,
  startup recovery, and the manual /sync command.
"""
