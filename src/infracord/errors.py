"""
Exception types raised by the Infracord core.

Failures fall into a small taxonomy so callers can decide how to react:

- NotFoundError: a missing infraction, user or role. Recovered locally as a
  no-op or a user-facing message.
- RemotePlatformError: Discord rejected or failed a call. The local record is
  already correct, so retrying is safe.
- AbsentTargetError: the member is not in the guild. Role effects treat this
  as a soft success.
- MalformedRecordError: a persisted row could not be decoded. Logged and left
  out of the working set; the row itself stays in storage.
- InvalidDurationError: a duration that is zero, negative, unparsable, or given
  for a kind that never expires.
"""

from __future__ import annotations


class InfracordError(Exception):
    """Base class for every error raised by Infracord."""


class NotFoundError(InfracordError):
    """A requested infraction, user or role does not exist."""


class RemotePlatformError(InfracordError):
    """A call to Discord failed.

    Attributes:
        operation: Name of the platform operation that failed (``"ban"``, ``"add_role"``...).
        status: HTTP status reported by Discord, if any.
    """

    def __init__(self, operation: str, message: str, status: int | None = None) -> None:
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation
        self.status = status


class AbsentTargetError(InfracordError):
    """The target account is not a member of the guild."""

    def __init__(self, target_id: int) -> None:
        super().__init__(f"User {target_id} is not a member of the guild")
        self.target_id = target_id


class MalformedRecordError(InfracordError):
    """A persisted row could not be decoded into a record."""

    def __init__(self, table: str, key: object, message: str) -> None:
        super().__init__(f"Malformed row {key!r} in {table}: {message}")
        self.table = table
        self.key = key


class InvalidDurationError(InfracordError, ValueError):
    """A duration was rejected before anything was persisted."""
