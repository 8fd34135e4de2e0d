"""
Configuration management for Infracord.

- **app_configuration.py**: File-locked YAML loader for global settings: the
  moderated guild, the role used by each mute kind, log channels, the database
  path and sync timing. Falls back gracefully on missing or malformed files.
"""
