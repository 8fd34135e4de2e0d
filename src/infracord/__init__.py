"""
Infracord - Discord Infraction Lifecycle Manager

Infracord records disciplinary actions taken against guild members, applies and
reverses their Discord-side effects, and keeps a local mirror of guild roles and
members in step with Discord.

Core Components:

- **Infraction Store**: Append-only SQLite record of bans, kicks, mutes, warnings
  and notes, with active/expired state
- **Action Applier**: Per-kind table of Discord effects (ban, kick, role grant)
  and their reversals
- **Expiry Scheduler**: Restart-safe timers that lift temporary infractions when
  they expire
- **Guild Sync**: Full and event-driven reconciliation of roles, members and
  active infractions against the live guild

Usage:
    from infracord.main import main
    main()  # Starts the bot
"""
