"""
Sequential, throttled delivery of routed notifications.
"""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from market_watcher.notifier import Notifier
from market_watcher.router import Delivery

logger = logging.getLogger(__name__)


@dataclass
class DeliveryReport:
    """Outcome counters for one delivery pass."""

    sent: int = 0
    failed: int = 0
    unroutable: int = 0


def resolve_notifier(notifiers: Iterable[Notifier], platform: str, self_id: str) -> Notifier | None:
    """Find the notifier handling this platform account."""
    for notifier in notifiers:
        if notifier.platform == platform and notifier.self_id == self_id:
            return notifier
    return None


async def deliver(
    plan: Sequence[Delivery],
    notifiers: Sequence[Notifier],
    delay: float = 0,
) -> DeliveryReport:
    """
    Send every planned message, one at a time.

    A failing receiver never stops the others; failures are logged
    and counted, and nothing is retried.

    Parameters
    ----------
    plan : Sequence[Delivery]
        Messages to send, in order.
    notifiers : Sequence[Notifier]
        Available transports.
    delay : float
        Seconds to wait between two deliveries.

    Returns
    -------
    DeliveryReport
        Counts of sent, failed and unroutable deliveries.
    """
    report = DeliveryReport()

    for index, delivery in enumerate(plan):
        if index and delay > 0:
            await asyncio.sleep(delay)

        key = delivery.receiver.key
        notifier = resolve_notifier(notifiers, key.platform, key.self_id)
        if notifier is None:
            logger.warning("No notifier matches %s/%s", key.platform, key.self_id)
            report.unroutable += 1
            continue

        try:
            success = await notifier.send_message(key.channel_id, delivery.message, key.guild_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Failed to send notification to %s: %s", key.label, e)
            report.failed += 1
            continue

        if success:
            logger.debug("Sent market update to %s", key.label)
            report.sent += 1
        else:
            logger.warning("Failed to send notification to %s: rejected by transport", key.label)
            report.failed += 1

    return report
