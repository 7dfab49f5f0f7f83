"""
Protocol definition for notification backends.

Defines the common interface that all notifiers must implement.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Notifier(Protocol):
    """
    Protocol defining the interface for notification backends.

    All notifiers (Telegram, SimpleX, etc.) must implement these members
    to be compatible with the delivery executor. Receivers are matched to
    a notifier by its ``platform`` and ``self_id``.
    """

    platform: str
    self_id: str

    async def test_connection(self) -> bool:
        """
        Test the connection to the notification backend.

        Returns
        -------
        bool
            True if the connection is working and messages can be sent.
        """
        ...

    async def send_message(self, channel_id: str, text: str, guild_id: str | None = None) -> bool:
        """
        Send a plain text message.

        Parameters
        ----------
        channel_id : str
            Target channel on this platform.
        text : str
            Message text.
        guild_id : str | None
            Optional group identifier.

        Returns
        -------
        bool
            True if the message was sent successfully.
        """
        ...

    async def close(self) -> None:
        """
        Close the notifier and release any resources.

        This method should be called when shutting down the application
        to cleanly close connections and free resources.
        """
        ...
