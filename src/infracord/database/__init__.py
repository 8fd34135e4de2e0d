"""
Database package for Infracord.

Public API:
    - Database: coordinator owning the connection and both stores
    - InfractionStore: append-only infraction records
    - MirrorStore: local copy of guild users, roles and their junction
"""
