"""
Routing of detected changes to interested receivers.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from market_watcher.diff import ChangeRecord
from market_watcher.registry import Receiver

logger = logging.getLogger(__name__)

MESSAGE_HEADER = "[Market Update]"


@dataclass(frozen=True)
class Delivery:
    """
    One message to send to one receiver.

    Attributes
    ----------
    receiver : Receiver
        The target.
    message : str
        Composed message text.
    """

    receiver: Receiver
    message: str


def compose_message(changes: Iterable[ChangeRecord]) -> str:
    """Join change lines under the update header."""
    return "\n".join([MESSAGE_HEADER, *(change.message for change in changes)])


def route(changes: Sequence[ChangeRecord], receivers: Iterable[Receiver]) -> list[Delivery]:
    """
    Build the delivery plan for one poll.

    Parameters
    ----------
    changes : Sequence[ChangeRecord]
        Changes in detection order.
    receivers : Iterable[Receiver]
        Receivers in registration order.

    Returns
    -------
    list[Delivery]
        One delivery per receiver with at least one relevant change.
    """
    plan: list[Delivery] = []

    for receiver in receivers:
        relevant = [change for change in changes if receiver.wants(change.name)]
        if not relevant:
            continue
        plan.append(Delivery(receiver=receiver, message=compose_message(relevant)))

    logger.debug("Routed %d change(s) to %d receiver(s)", len(changes), len(plan))
    return plan
