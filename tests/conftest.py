"""
Pytest configuration and fixtures for Infracord tests.
"""

import asyncio
import os
import sys
import tempfile
from pathlib import Path
from types import SimpleNamespace

# Keep test runs from writing session logs into the repository
os.environ.setdefault("INFRACORD_LOG_DIR", str(Path(tempfile.gettempdir()) / "infracord-test-logs"))

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

import pytest
import pytest_asyncio

from infracord.database.database import Database
from infracord.errors import AbsentTargetError, RemotePlatformError

ROLE_IDS = {
    "admin": 900,
    "moderator": 901,
    "muted": 910,
    "no_meta": 911,
    "no_reactions": 912,
    "no_requests": 913,
    "no_support": 914,
}


class FakeRole:
    def __init__(self, role_id: int, name: str = "role", colour: int = 0, position: int = 0) -> None:
        self.id = role_id
        self.name = name
        self.colour = SimpleNamespace(value=colour)
        self.position = position


class FakeMember:
    def __init__(self, member_id: int, name: str = "user", roles=None, administrator: bool = False) -> None:
        self.id = member_id
        self.name = name
        self.discriminator = "0"
        self.display_avatar = SimpleNamespace(url=f"https://cdn.example/{member_id}.png")
        self.roles = list(roles or [])
        self.guild_permissions = SimpleNamespace(administrator=administrator)


class FakePlatform:
    """In-memory RemotePlatform recording every effect."""

    def __init__(self) -> None:
        self.members: dict[int, FakeMember] = {}
        self.roles: list[FakeRole] = []
        self.bans: set[int] = set()
        self.calls: list[tuple] = []
        self.failing: set[str] = set()

    def add_member(self, member_id: int, name: str = "user", role_ids=()) -> FakeMember:
        member = FakeMember(member_id, name, [FakeRole(role_id) for role_id in role_ids])
        self.members[member_id] = member
        return member

    def has_role(self, member_id: int, role_id: int) -> bool:
        member = self.members.get(member_id)
        return member is not None and any(role.id == role_id for role in member.roles)

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise RemotePlatformError(operation, "simulated failure", 500)

    async def get_member(self, user_id):
        self._check("get_member")
        return self.members.get(user_id)

    async def add_role(self, member, role_id, reason):
        self._check("add_role")
        if any(role.id == role_id for role in member.roles):
            return False
        member.roles.append(FakeRole(role_id))
        self.calls.append(("add_role", member.id, role_id))
        return True

    async def remove_role(self, member, role_id, reason):
        self._check("remove_role")
        if not any(role.id == role_id for role in member.roles):
            return False
        member.roles = [role for role in member.roles if role.id != role_id]
        self.calls.append(("remove_role", member.id, role_id))
        return True

    async def ban(self, user_id, reason):
        self._check("ban")
        self.bans.add(user_id)
        self.members.pop(user_id, None)
        self.calls.append(("ban", user_id))

    async def unban(self, user_id, reason):
        self._check("unban")
        if user_id not in self.bans:
            return False
        self.bans.discard(user_id)
        self.calls.append(("unban", user_id))
        return True

    async def kick(self, user_id, reason):
        self._check("kick")
        if user_id not in self.members:
            raise AbsentTargetError(user_id)
        del self.members[user_id]
        self.calls.append(("kick", user_id))

    async def list_members(self):
        self._check("list_members")
        return list(self.members.values())

    async def list_roles(self):
        self._check("list_roles")
        return list(self.roles)


class RecordingSink:
    def __init__(self) -> None:
        self.events = []

    async def publish(self, event) -> None:
        self.events.append(event)

    def kinds(self):
        return [event.kind for event in self.events]


async def eventually(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it holds or ``timeout`` seconds pass."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(tmp_path / "infracord.db")
    assert await db.initialize()
    yield db
    await db.shutdown()


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def sink():
    return RecordingSink()
