"""
Administrative commands for managing market subscriptions.

Parses ``market`` command lines into command objects and executes them
against the subscription registry on behalf of a chat session.
"""

import argparse
import logging
import shlex
from collections.abc import Callable
from dataclasses import dataclass

import aiosqlite

from market_watcher.catalog import Snapshot
from market_watcher.registry import NotSubscribedError, ReceiverKey, SubscriptionRegistry

logger = logging.getLogger(__name__)

COMMAND_NAME = "market"

# Authority level required for every command except the plain query
ELEVATED_AUTHORITY = 3


class CommandError(Exception):
    """Raised when a command line cannot be parsed."""

    pass


@dataclass(frozen=True)
class Receive:
    """Turn notifications on or off for the current channel."""

    enabled: bool


@dataclass(frozen=True)
class Subscribe:
    """Add a package to the current channel's interest list."""

    name: str


@dataclass(frozen=True)
class Unsubscribe:
    """Remove a package from the current channel's interest list."""

    name: str


@dataclass(frozen=True)
class ListSubscriptions:
    """Show the current channel's interest list."""


@dataclass(frozen=True)
class Query:
    """Show the package count, or details about one package."""

    name: str | None = None


Command = Receive | Subscribe | Unsubscribe | ListSubscriptions | Query


class _CommandParser(argparse.ArgumentParser):
    """ArgumentParser that raises instead of exiting."""

    def error(self, message: str):
        raise CommandError(message)

    def exit(self, status: int = 0, message: str | None = None):
        raise CommandError(message or self.format_usage())


def _build_parser() -> _CommandParser:
    parser = _CommandParser(prog=COMMAND_NAME, add_help=False)
    parser.add_argument("name", nargs="?", help="Package to look up")
    parser.add_argument(
        "-r",
        dest="receive",
        action="store_const",
        const=True,
        help="Enable market notifications for this channel",
    )
    parser.add_argument(
        "-R",
        dest="receive",
        action="store_const",
        const=False,
        help="Disable market notifications for this channel",
    )
    parser.add_argument("-s", dest="subscribe", metavar="PLUGIN", help="Subscribe to a package")
    parser.add_argument("-u", dest="unsubscribe", metavar="PLUGIN", help="Unsubscribe from a package")
    parser.add_argument("-l", dest="list", action="store_true", help="List subscriptions")
    return parser


_PARSER = _build_parser()


def is_command(text: str, bot_username: str | None = None) -> bool:
    """
    Check whether a chat message is addressed to the market command.

    Parameters
    ----------
    text : str
        The chat message.
    bot_username : str | None
        Username of the receiving bot. When given, a command addressed to
        another bot (``/market@otherbot``) is not ours.

    Returns
    -------
    bool
        True if the message is a market command for this bot.
    """
    words = text.strip().split(maxsplit=1)
    if not words:
        return False
    head, _, target = words[0].lstrip("/").partition("@")
    if head != COMMAND_NAME:
        return False
    if target and bot_username:
        return target.lower() == bot_username.lower()
    return True


def parse_command(text: str) -> Command:
    """
    Parse a ``market`` command line.

    Parameters
    ----------
    text : str
        The full message, e.g. ``market -s foo`` or ``/market@bot foo``.

    Returns
    -------
    Command
        The parsed command object.

    Raises
    ------
    CommandError
        If the text is not a valid market command.
    """
    if not is_command(text):
        raise CommandError(f"Not a {COMMAND_NAME} command")

    try:
        args = shlex.split(text)[1:]
    except ValueError as e:
        raise CommandError(str(e)) from e

    options = _PARSER.parse_args(args)

    if options.list:
        return ListSubscriptions()
    if options.subscribe is not None:
        return Subscribe(options.subscribe.strip())
    if options.unsubscribe is not None:
        return Unsubscribe(options.unsubscribe.strip())
    if options.receive is not None:
        return Receive(options.receive)
    return Query(options.name)


class CommandHandler:
    """
    Executes market commands for a chat session.

    Replies are plain text meant to be sent back to the issuer.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        snapshot: Callable[[], Snapshot],
        language: str = "zh",
        fallback_language: str = "en",
    ):
        """
        Initialize the handler.

        Parameters
        ----------
        registry : SubscriptionRegistry
            Registry to manage.
        snapshot : Callable[[], Snapshot]
            Returns the latest market snapshot, used for queries.
        language : str
            Preferred description language for queries.
        fallback_language : str
            Description language used when the preferred one is missing.
        """
        self.registry = registry
        self.snapshot = snapshot
        self.language = language
        self.fallback_language = fallback_language
        self._handlers = {
            Receive: self._receive,
            Subscribe: self._subscribe,
            Unsubscribe: self._unsubscribe,
            ListSubscriptions: self._list,
            Query: self._query,
        }

    async def execute(self, text: str, session: ReceiverKey, authority: int) -> str:
        """
        Parse and run a command line.

        Parameters
        ----------
        text : str
            The command message.
        session : ReceiverKey
            Identity of the channel the command was sent from.
        authority : int
            Authority level of the sender.

        Returns
        -------
        str
            Reply text.
        """
        try:
            command = parse_command(text)
        except CommandError as e:
            return f"Invalid command: {e}".strip()
        return await self.handle(command, session, authority)

    async def handle(self, command: Command, session: ReceiverKey, authority: int) -> str:
        """
        Run a parsed command.

        Parameters
        ----------
        command : Command
            The command to run.
        session : ReceiverKey
            Identity of the channel the command was sent from.
        authority : int
            Authority level of the sender.

        Returns
        -------
        str
            Reply text.
        """
        if not isinstance(command, Query) and authority < ELEVATED_AUTHORITY:
            logger.info("Rejected %s from %s: insufficient authority", type(command).__name__, session.label)
            return "Permission denied"

        try:
            return await self._handlers[type(command)](command, session)
        except NotSubscribedError:
            return (
                "This channel is not subscribed to market updates; "
                f"enable it with `{COMMAND_NAME} -r` first"
            )
        except aiosqlite.Error as e:
            logger.error("Failed to save subscription settings for %s: %s", session.label, e)
            return "Failed to save subscription settings, please try again later"

    async def _receive(self, command: Receive, session: ReceiverKey) -> str:
        if command.enabled:
            changed = await self.registry.enable(session)
        else:
            changed = await self.registry.disable(session)
        return "Subscription settings updated" if changed else "Subscription unchanged"

    async def _subscribe(self, command: Subscribe, session: ReceiverKey) -> str:
        await self.registry.subscribe(session, command.name)
        if command.name == "*":
            return "Subscribed to updates for all packages"
        return f'Subscribed to updates for package "{command.name}"'

    async def _unsubscribe(self, command: Unsubscribe, session: ReceiverKey) -> str:
        removed = await self.registry.unsubscribe(session, command.name)
        if command.name == "*":
            return "Cleared specific subscriptions; updates for all packages will be received"
        if removed:
            return f'Unsubscribed from package "{command.name}"'
        return f'This channel is not subscribed to package "{command.name}"'

    async def _list(self, command: ListSubscriptions, session: ReceiverKey) -> str:
        plugins = self.registry.subscriptions(session)
        if plugins is None:
            return "This channel has no specific subscriptions and receives updates for all packages"
        return "Packages subscribed in this channel:\n" + "\n".join(plugins)

    async def _query(self, command: Query, session: ReceiverKey) -> str:
        snapshot = self.snapshot()

        if not command.name:
            visible = [entry for entry in snapshot.values() if not entry.hidden]
            return f"There are currently {len(visible)} visible packages"

        entry = snapshot.get(command.name)
        if entry is None:
            return f'Package "{command.name}" not found'

        return f"{entry.title} ({entry.version})\n{entry.describe(self.language, self.fallback_language)}"
