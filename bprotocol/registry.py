"""Registry — source of truth for user identities, avatars and delegation."""
from __future__ import annotations

import asyncio
import logging
from contextvars import ContextVar
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from .addresses import ZERO_ADDRESS, derive_address, short
from .avatar import Avatar
from .errors import IdentityInvariantError

if TYPE_CHECKING:
    from .bcomptroller import BComptroller
    from .market.comptroller import Comptroller

logger = logging.getLogger(__name__)

AVATAR_OF_AVATAR = "Registry: cannot-create-an-avatar-of-avatar"
ZERO_USER = "Registry: zero-address"

# Users whose avatars the current task's open transaction created, keyed by
# registry. Tasks copy the context when spawned, so creations made by other
# coroutines never land in this journal.
_journal: ContextVar[dict[int, list[str]] | None] = ContextVar(
    "bprotocol_registry_journal", default=None
)


class Registry:
    """Maps users to their avatars and each avatar to its single delegatee.

    Avatars are created lazily and never destroyed. Every wrapper wired to
    the same registry shares its transaction lock, so state-changing wrapper
    operations are serialized and an avatar created by an operation that
    fails is rolled back with it.
    """

    def __init__(
        self,
        comptroller: Comptroller,
        cether: str,
        pool: str,
        bcomptroller: BComptroller,
    ) -> None:
        self.comptroller = comptroller
        self.cether = cether
        self.pool = pool
        self.bcomptroller = bcomptroller
        self.address = derive_address("registry", comptroller.address, bcomptroller.address)

        self._avatar_of: dict[str, Avatar] = {}
        self._owner_of: dict[str, str] = {}
        self._delegate_of: dict[str, str] = {}

        self._lock = asyncio.Lock()

    # -- lookups -----------------------------------------------------------

    def avatar_of(self, user: str) -> str:
        """Return the user's avatar address, ``ZERO_ADDRESS`` if none exists."""
        avatar = self._avatar_of.get(user)
        return avatar.address if avatar else ZERO_ADDRESS

    def is_avatar(self, address: str) -> bool:
        return address in self._owner_of

    def owner_of(self, avatar: str) -> str:
        return self._owner_of.get(avatar, ZERO_ADDRESS)

    def delegate_of(self, avatar: str) -> str:
        return self._delegate_of.get(avatar, ZERO_ADDRESS)

    def get_avatar(self, avatar: str) -> Avatar:
        """Return the Avatar instance living at ``avatar``."""
        owner = self._owner_of.get(avatar)
        if owner is None:
            raise KeyError(f"No avatar at {avatar}")
        return self._avatar_of[owner]

    def avatars(self) -> Iterator[Avatar]:
        return iter(list(self._avatar_of.values()))

    def __len__(self) -> int:
        return len(self._avatar_of)

    # -- creation ----------------------------------------------------------

    def new_avatar(self, caller: str) -> str:
        """Create the caller's avatar, or return the existing one."""
        return self.get_or_create_avatar(caller)

    def get_or_create_avatar(self, user: str) -> str:
        """Resolve ``user`` to its avatar, creating it on first use.

        There is no suspension point between the lookup and the insert, so
        two coroutines resolving the same new user get the same avatar.
        """
        existing = self._avatar_of.get(user)
        if existing is not None:
            return existing.address
        if self.is_avatar(user):
            raise IdentityInvariantError(AVATAR_OF_AVATAR)
        if user == ZERO_ADDRESS:
            raise IdentityInvariantError(ZERO_USER)

        avatar = Avatar(
            address=derive_address("avatar", self.address, user),
            owner=user,
            registry=self,
        )
        self._avatar_of[user] = avatar
        self._owner_of[avatar.address] = user
        journals = _journal.get()
        if journals is not None and id(self) in journals:
            journals[id(self)].append(user)
        logger.info("Created avatar %s for %s", short(avatar.address), short(user))
        return avatar.address

    def require_user(self, address: str) -> None:
        """Reject addresses that are avatars where a user is expected."""
        if self.is_avatar(address):
            raise IdentityInvariantError(AVATAR_OF_AVATAR)

    # -- delegation --------------------------------------------------------

    def delegate_avatar(self, caller: str, delegatee: str) -> str:
        """Make ``delegatee`` the single delegate of the caller's avatar.

        Replaces any previous delegatee. ``ZERO_ADDRESS`` revokes delegation.
        Returns the caller's avatar address.
        """
        self.require_user(delegatee)
        avatar = self.get_or_create_avatar(caller)
        previous = self._delegate_of.get(avatar, ZERO_ADDRESS)
        if delegatee == ZERO_ADDRESS:
            self._delegate_of.pop(avatar, None)
        else:
            self._delegate_of[avatar] = delegatee
        logger.info(
            "Avatar %s delegate changed %s -> %s",
            short(avatar), short(previous), short(delegatee),
        )
        return avatar

    def delegate(self, avatar: str, who: str) -> bool:
        """True iff ``who`` owns ``avatar`` or is its current delegatee."""
        if who == ZERO_ADDRESS:
            return False
        owner = self._owner_of.get(avatar)
        if owner is None:
            return False
        return who == owner or who == self._delegate_of.get(avatar)

    # -- transactions ------------------------------------------------------

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """Serialize a wrapper operation and undo its avatar creations on failure.

        Only avatars created from within the operation are undone; avatars
        that other coroutines create meanwhile are kept.
        """
        async with self._lock:
            created: list[str] = []
            token = _journal.set({**(_journal.get() or {}), id(self): created})
            try:
                yield
            except BaseException:
                for user in reversed(created):
                    avatar = self._avatar_of.pop(user)
                    self._owner_of.pop(avatar.address, None)
                    self._delegate_of.pop(avatar.address, None)
                    logger.debug("Rolled back avatar %s", short(avatar.address))
                raise
            finally:
                _journal.reset(token)
