#!/usr/bin/env python3

import asyncio
import logging
from typing import Protocol

import websockets

import config


class ChannelListener(Protocol):
    """Events a message channel reports to its owner."""

    def on_connecting(self) -> None: ...
    def on_connect(self) -> None: ...
    def on_disconnect(self) -> None: ...
    def on_error(self, error: Exception) -> None: ...
    def on_message(self, raw: str | bytes) -> None: ...


class MessageChannel(Protocol):
    """Fire-and-forget message transport used by a session."""

    @property
    def connected(self) -> bool: ...
    def send(self, message: str) -> bool: ...


class WebSocketChannel:
    """Client-side message channel over a WebSocket, reconnecting on loss.

    run() connects, forwards every received frame to the listener and, when
    the connection drops, waits reconnect_delay_s and connects again until
    close() is called.
    """

    def __init__(self, url, reconnect_delay_s=config.RECONNECT_DELAY_S):
        self.url = url
        self.reconnect_delay_s = reconnect_delay_s
        self._listener = None
        self._websocket = None
        self._closing = False
        self._send_tasks = set()

    def subscribe(self, listener):
        self._listener = listener

    @property
    def connected(self):
        return self._websocket is not None and not self._closing

    def send(self, message):
        """Queue a frame for sending. Returns False if not connected."""
        if not self.connected:
            logging.debug("Send skipped: channel not connected")
            return False
        task = asyncio.ensure_future(self._send(self._websocket, message))
        self._send_tasks.add(task)
        task.add_done_callback(self._send_tasks.discard)
        return True

    async def _send(self, websocket, message):
        try:
            await websocket.send(message)
        except websockets.exceptions.ConnectionClosed:
            logging.debug("Send failed: connection already closed")
        except Exception as e:
            logging.error(f"Error sending message: {e}")
            if self._listener:
                self._listener.on_error(e)

    async def run(self):
        """Connect and pump messages until close() is called."""
        while not self._closing:
            if self._listener:
                self._listener.on_connecting()
            try:
                async with websockets.connect(self.url) as websocket:
                    self._websocket = websocket
                    logging.info(f"WebSocket connection established to {self.url}")
                    if self._listener:
                        self._listener.on_connect()
                    async for message in websocket:
                        if self._listener:
                            self._listener.on_message(message)
            except websockets.exceptions.ConnectionClosedOK:
                logging.info(f"Connection to {self.url} closed normally.")
            except websockets.exceptions.ConnectionClosedError as e:
                logging.warning(f"Connection to {self.url} closed abnormally: {e}")
                if self._listener:
                    self._listener.on_error(e)
            except (OSError, websockets.exceptions.WebSocketException) as e:
                logging.error(f"Could not connect to {self.url}: {e}")
                if self._listener:
                    self._listener.on_error(e)
            finally:
                self._websocket = None
                if self._listener:
                    self._listener.on_disconnect()

            if self._closing:
                break
            logging.info(f"Reconnecting in {self.reconnect_delay_s:.1f}s...")
            await asyncio.sleep(self.reconnect_delay_s)

    async def close(self):
        self._closing = True
        websocket = self._websocket
        if websocket is not None:
            try:
                await websocket.close(code=1000, reason="Measurement complete")
            except Exception as close_err:
                logging.error(f"Error during explicit close: {close_err}")
