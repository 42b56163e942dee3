"""
Identity lookup used at login and refresh.

Persistent user/role storage is an external collaborator; IdentityStore is the
seam. InMemoryIdentityStore backs development and tests.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Protocol

from core.exceptions import DuplicateError
from models.tokens import Identity


@dataclass
class StoredUser:
    id: str
    email: str
    username: str
    password_hash: str
    roles: list[str] = field(default_factory=list)
    permissions: list[str] = field(default_factory=list)
    is_active: bool = True

    def to_identity(self) -> Identity:
        return Identity(
            id=self.id,
            email=self.email,
            username=self.username,
            roles=list(self.roles),
            permissions=list(self.permissions),
        )


class IdentityStore(Protocol):
    async def find_by_email(self, email: str) -> StoredUser | None: ...

    async def find_by_id(self, user_id: str) -> StoredUser | None: ...

    async def create_user(
        self,
        email: str,
        username: str,
        password_hash: str,
        roles: list[str] | None = None,
        permissions: list[str] | None = None,
    ) -> StoredUser: ...


class InMemoryIdentityStore:
    """Dict-backed store. Emails and usernames are unique, case-insensitive."""

    def __init__(self) -> None:
        self._users: dict[str, StoredUser] = {}
        self._lock = asyncio.Lock()

    async def find_by_email(self, email: str) -> StoredUser | None:
        needle = email.strip().lower()
        return next((u for u in self._users.values() if u.email.lower() == needle), None)

    async def find_by_id(self, user_id: str) -> StoredUser | None:
        return self._users.get(user_id)

    async def create_user(
        self,
        email: str,
        username: str,
        password_hash: str,
        roles: list[str] | None = None,
        permissions: list[str] | None = None,
    ) -> StoredUser:
        async with self._lock:
            for user in self._users.values():
                if user.email.lower() == email.lower() or user.username.lower() == username.lower():
                    raise DuplicateError("User with this email or username already exists")
            user = StoredUser(
                id=str(uuid.uuid4()),
                email=email.strip(),
                username=username.strip(),
                password_hash=password_hash,
                roles=list(roles if roles is not None else ["user"]),
                permissions=list(permissions or []),
            )
            self._users[user.id] = user
        return user

    async def deactivate(self, user_id: str) -> None:
        user = self._users.get(user_id)
        if user is not None:
            user.is_active = False
