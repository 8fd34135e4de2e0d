"""
Utility helpers for Infracord.

- **logger.py**: Centralized logging configuration with coloured console output
  through prompt_toolkit, one log file per session, and clamping of verbose
  library loggers (Discord internals, aiosqlite).
"""
