"""
SimpleX Chat notification client.

Delivers market updates through a simplex-chat CLI started with
``-p <port>``, talking to it over its WebSocket interface.
"""

import asyncio
import contextlib
import json
import logging
import uuid
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    ConnectionClosed,
    InvalidHandshake,
    InvalidURI,
)

from market_watcher.config import SimpleXConfig

logger = logging.getLogger(__name__)

PLATFORM = "simplex"

# Conservative message length limit
MAX_MESSAGE_LENGTH = 14000


class SimpleXError(Exception):
    """Raised when simplex-chat rejects or does not answer a message."""

    pass


class SimpleXNotifier:
    """
    SimpleX Chat notification client.

    Connects to a running simplex-chat CLI via WebSocket and sends
    messages to pre-established contacts or groups. A receiver's
    ``channel_id`` is the contact name; when ``guild_id`` is set the
    message goes to that group instead.
    """

    platform = PLATFORM

    def __init__(self, config: SimpleXConfig):
        self.config = config
        self.self_id = config.self_id
        self._ws: ClientConnection | None = None
        self._pending_responses: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._receive_task: asyncio.Task | None = None
        self._connected = False

    async def _connect(self) -> bool:
        """Open the WebSocket and start the receive loop, unless already connected."""
        if self._ws is not None and self._connected:
            return True

        url = self.config.websocket_url
        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(url), timeout=self.config.connect_timeout
            )
        except TimeoutError:
            logger.error("Timeout connecting to SimpleX at %s", url)
            return False
        except (InvalidURI, InvalidHandshake, OSError) as e:
            logger.error("Failed to connect to SimpleX at %s: %s", url, e)
            return False

        self._connected = True
        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info("Connected to SimpleX at %s", url)
        return True

    async def _receive_loop(self) -> None:
        """Resolve pending commands with the responses carrying their ``corrId``."""
        if self._ws is None:
            return

        try:
            async for message in self._ws:
                try:
                    data = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Invalid JSON from SimpleX: %s", message[:100])
                    continue

                future = self._pending_responses.pop(data.get("corrId") or "", None)
                if future is None:
                    # Chat events nobody waits for
                    logger.debug("SimpleX event: %s", data.get("resp", {}).get("type"))
                elif not future.done():
                    future.set_result(data)
        except ConnectionClosed as e:
            logger.warning("SimpleX connection closed: %s", e)
        except Exception as e:
            logger.error("Error in SimpleX receive loop: %s", e)
        finally:
            self._connected = False

    async def _send_command(self, command: str) -> dict[str, Any]:
        """
        Send a CLI command and wait for its response.

        Raises
        ------
        SimpleXError
            If the CLI is unreachable or does not answer in time.
        """
        target = command.split(" ", 1)[0]

        if not await self._connect() or self._ws is None:
            raise SimpleXError(f"Not connected to SimpleX, cannot send to {target}")

        corr_id = str(uuid.uuid4())
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending_responses[corr_id] = future

        try:
            await self._ws.send(json.dumps({"corrId": corr_id, "cmd": command}))
            return await asyncio.wait_for(future, timeout=self.config.message_timeout)
        except TimeoutError:
            raise SimpleXError(f"No response from SimpleX for {target}") from None
        except ConnectionClosed as e:
            self._connected = False
            raise SimpleXError(f"No response from SimpleX for {target}: {e}") from e
        finally:
            self._pending_responses.pop(corr_id, None)

    async def test_connection(self) -> bool:
        """
        Check that the CLI answers by asking for the active user profile.

        Returns
        -------
        bool
            True if the connection is working.
        """
        try:
            await self._send_command("/u")
        except SimpleXError as e:
            logger.error("Failed to verify SimpleX connection: %s", e)
            return False

        logger.info("Connected to SimpleX Chat as account %s", self.self_id)
        return True

    async def send_message(self, channel_id: str, text: str, guild_id: str | None = None) -> bool:
        """
        Send a message to a contact or group.

        Parameters
        ----------
        channel_id : str
            Contact name.
        text : str
            Message text; truncated to the SimpleX limit.
        guild_id : str | None
            Group name; takes precedence over the contact when set.

        Returns
        -------
        bool
            True once simplex-chat acknowledged the message.

        Raises
        ------
        SimpleXError
            If no response arrived or simplex-chat reported an error.
        """
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 3] + "..."

        target = f"#{guild_id}" if guild_id else f"@{channel_id}"
        resp = (await self._send_command(f"{target} {text}")).get("resp", {})

        if resp.get("type") == "chatCmdError" or "error" in resp:
            error = resp.get("chatError", resp.get("error", "Unknown error"))
            raise SimpleXError(f"SimpleX error for {target}: {error}")

        logger.debug("SimpleX accepted message for %s: %s", target, resp.get("type"))
        return True

    async def close(self) -> None:
        """Stop the receive loop, cancel pending commands and close the socket."""
        if self._receive_task is not None:
            self._receive_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._receive_task
            self._receive_task = None

        for future in self._pending_responses.values():
            if not future.done():
                future.cancel()
        self._pending_responses.clear()

        if self._ws is not None:
            with contextlib.suppress(Exception):
                await self._ws.close()
            self._ws = None

        self._connected = False
        logger.debug("SimpleX client closed")
