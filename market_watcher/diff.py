"""
Change detection between two market snapshots.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from market_watcher.catalog import PackageEntry, Snapshot
from market_watcher.config import MarketConfig

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    """Kind of change detected for a package."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class ChangeRecord:
    """
    A detected difference for one package.

    Attributes
    ----------
    name : str
        Package name.
    kind : ChangeKind
        What happened to the package.
    message : str
        Rendered human-readable line.
    old_version : str | None
        Version in the previous snapshot.
    new_version : str | None
        Version in the current snapshot.
    """

    name: str
    kind: ChangeKind
    message: str
    old_version: str | None = None
    new_version: str | None = None


def render_message(
    kind: ChangeKind,
    name: str,
    old: PackageEntry | None,
    new: PackageEntry | None,
    options: MarketConfig,
) -> str:
    """
    Render the notification line for a change.

    Parameters
    ----------
    kind : ChangeKind
        Kind of change.
    name : str
        Package name.
    old : PackageEntry | None
        Entry from the previous snapshot.
    new : PackageEntry | None
        Entry from the current snapshot.
    options : MarketConfig
        Display flags.

    Returns
    -------
    str
        The rendered line (may span two lines for descriptions).
    """
    if kind is ChangeKind.UPDATED and old is not None and new is not None:
        return f"Updated: {name} ({old.version} → {new.version})"

    if kind is ChangeKind.DELETED:
        return f"Removed: {name}"

    message = f"Added: {name}"
    if new is None:
        return message

    if options.show_publisher and new.publisher:
        message += f" (@{new.publisher})"

    if options.show_description:
        description = new.describe(options.description_language, options.fallback_language)
        if description:
            message += f"\n  {description}"

    return message


def diff_snapshots(
    previous: Snapshot,
    current: Snapshot,
    options: MarketConfig,
) -> list[ChangeRecord]:
    """
    Compare two snapshots.

    Parameters
    ----------
    previous : Snapshot
        Snapshot from the last successful poll.
    current : Snapshot
        Freshly fetched snapshot.
    options : MarketConfig
        Display flags; ``show_deletion`` controls whether removals are reported.

    Returns
    -------
    list[ChangeRecord]
        Changes in key order of ``previous`` followed by keys new in ``current``.
    """
    changes: list[ChangeRecord] = []

    for name in {**previous, **current}:
        old = previous.get(name)
        new = current.get(name)
        old_version = old.version if old is not None else None
        new_version = new.version if new is not None else None

        if old_version == new_version:
            continue

        if old is None:
            kind = ChangeKind.CREATED
        elif new is None:
            # Removals are dropped entirely unless explicitly requested
            if not options.show_deletion:
                continue
            kind = ChangeKind.DELETED
        else:
            kind = ChangeKind.UPDATED

        changes.append(
            ChangeRecord(
                name=name,
                kind=kind,
                message=render_message(kind, name, old, new, options),
                old_version=old_version,
                new_version=new_version,
            )
        )

    logger.debug(
        "Compared %d previous and %d current package(s): %d change(s)",
        len(previous),
        len(current),
        len(changes),
    )

    return changes
