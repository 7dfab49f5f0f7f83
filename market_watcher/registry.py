"""
Subscription registry for notification receivers.

Keeps the ordered list of receivers and their package interest lists,
persisting every change through the storage layer.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import NamedTuple

from market_watcher.config import ReceiverConfig
from market_watcher.storage import ReceiverRow, Storage

logger = logging.getLogger(__name__)

# Interest list value meaning "every package"
WILDCARD = "*"


class NotSubscribedError(Exception):
    """Raised when a command targets a receiver that was never enabled."""

    def __init__(self, key: "ReceiverKey"):
        super().__init__(f"Receiver {key.label} is not subscribed")
        self.key = key


class ReceiverKey(NamedTuple):
    """Identity of a delivery target."""

    platform: str
    self_id: str
    channel_id: str
    guild_id: str | None = None

    @property
    def label(self) -> str:
        """Short label for log messages."""
        return f"{self.platform}/{self.channel_id}"


@dataclass
class Receiver:
    """
    A delivery target and the packages it is interested in.

    Attributes
    ----------
    key : ReceiverKey
        Identity of the target.
    plugins : list[str]
        Package names to notify about. Empty means all packages.
    """

    key: ReceiverKey
    plugins: list[str] = field(default_factory=list)

    def wants(self, name: str) -> bool:
        """Check whether a change to package ``name`` concerns this receiver."""
        return not self.plugins or name in self.plugins

    @classmethod
    def from_config(cls, config: ReceiverConfig) -> "Receiver":
        """Create a receiver from a configured rule."""
        return cls(
            key=ReceiverKey(config.platform, config.self_id, config.channel_id, config.guild_id),
            plugins=list(config.plugins),
        )

    def to_row(self) -> ReceiverRow:
        """Convert to a storage row."""
        return (*self.key, list(self.plugins))

    @classmethod
    def from_row(cls, row: ReceiverRow) -> "Receiver":
        """Create a receiver from a storage row."""
        platform, self_id, channel_id, guild_id, plugins = row
        return cls(key=ReceiverKey(platform, self_id, channel_id, guild_id), plugins=list(plugins))


class SubscriptionRegistry:
    """
    Ordered set of receivers keyed by their identity.

    Every mutating operation is persisted before it returns.
    Authorization is the caller's responsibility.
    """

    def __init__(self, storage: Storage):
        """
        Initialize the registry.

        Parameters
        ----------
        storage : Storage
            Initialized storage used for persistence.
        """
        self.storage = storage
        self._receivers: list[Receiver] = []

    @property
    def receivers(self) -> list[Receiver]:
        """Current receivers in registration order."""
        return list(self._receivers)

    def find(self, key: ReceiverKey) -> Receiver | None:
        """Return the receiver with this identity, if any."""
        for receiver in self._receivers:
            if receiver.key == key:
                return receiver
        return None

    def _require(self, key: ReceiverKey) -> Receiver:
        receiver = self.find(key)
        if receiver is None:
            raise NotSubscribedError(key)
        return receiver

    async def load(self) -> None:
        """Load receivers from storage, replacing the in-memory list."""
        rows = await self.storage.load_receivers()
        self._receivers = [Receiver.from_row(row) for row in rows]
        logger.info("Loaded %d receiver(s) from storage", len(self._receivers))

    async def seed(self, receivers: Iterable[Receiver]) -> int:
        """
        Add configured receivers that were never seeded before.

        A configured receiver is added only the first time its identity is
        seen, so one removed later with ``disable`` stays removed across
        restarts.

        Parameters
        ----------
        receivers : Iterable[Receiver]
            Receivers from configuration.

        Returns
        -------
        int
            Number of receivers added.
        """
        seeded = await self.storage.load_seeded_keys()
        fresh = [r for r in receivers if r.key not in seeded]
        if not fresh:
            return 0

        updated = list(self._receivers)
        added = 0
        for receiver in fresh:
            if receiver.key not in (r.key for r in updated):
                updated.append(receiver)
                added += 1

        await self._commit(updated, seeded=[r.key for r in fresh])
        if added:
            logger.info("Added %d receiver(s) from configuration", added)
        return added

    async def _commit(
        self,
        receivers: list[Receiver],
        seeded: Iterable[ReceiverKey] = (),
    ) -> None:
        # In-memory state only changes once storage accepted it
        await self.storage.save_receivers([r.to_row() for r in receivers], seeded)
        self._receivers = receivers

    def _with(self, receiver: Receiver) -> list[Receiver]:
        return [receiver if r.key == receiver.key else r for r in self._receivers]

    async def enable(self, key: ReceiverKey) -> bool:
        """
        Register a receiver for all packages.

        Returns
        -------
        bool
            False if the receiver already existed.
        """
        if self.find(key) is not None:
            return False

        await self._commit([*self._receivers, Receiver(key=key)])
        logger.info("Enabled notifications for %s", key.label)
        return True

    async def disable(self, key: ReceiverKey) -> bool:
        """
        Remove a receiver.

        Returns
        -------
        bool
            False if the receiver did not exist.
        """
        if self.find(key) is None:
            return False

        await self._commit([r for r in self._receivers if r.key != key])
        logger.info("Disabled notifications for %s", key.label)
        return True

    async def subscribe(self, key: ReceiverKey, name: str) -> bool:
        """
        Add a package to a receiver's interest list.

        ``*`` clears the list so the receiver gets every package.

        Returns
        -------
        bool
            Whether the interest list changed.

        Raises
        ------
        NotSubscribedError
            If the receiver is not registered.
        """
        receiver = self._require(key)
        name = name.strip()

        if name == WILDCARD:
            plugins = []
        elif name in receiver.plugins:
            return False
        else:
            plugins = [*receiver.plugins, name]

        changed = plugins != receiver.plugins
        await self._commit(self._with(replace(receiver, plugins=plugins)))
        return changed

    async def unsubscribe(self, key: ReceiverKey, name: str) -> bool:
        """
        Remove a package from a receiver's interest list.

        ``*`` clears the list so the receiver gets every package.

        Returns
        -------
        bool
            False if the package was not in the list.

        Raises
        ------
        NotSubscribedError
            If the receiver is not registered.
        """
        receiver = self._require(key)
        name = name.strip()

        if name == WILDCARD:
            plugins = []
        elif name in receiver.plugins:
            plugins = [p for p in receiver.plugins if p != name]
        else:
            return False

        await self._commit(self._with(replace(receiver, plugins=plugins)))
        return True

    def subscriptions(self, key: ReceiverKey) -> list[str] | None:
        """
        Return a receiver's interest list.

        Returns
        -------
        list[str] | None
            The package names, or None when the receiver gets every package.

        Raises
        ------
        NotSubscribedError
            If the receiver is not registered.
        """
        receiver = self._require(key)
        return list(receiver.plugins) or None
