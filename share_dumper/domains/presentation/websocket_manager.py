import asyncio
import json
import logging
from asyncio import Queue, Task
from typing import Any, Dict, List

from fastapi import WebSocket, WebSocketDisconnect


def encode_message(message_data: Dict[str, Any]) -> str:
    # Job and event payloads carry datetimes and paths
    return json.dumps(message_data, default=str)


class WebSocketManager:
    """
    Live UI connections.

    Handlers queue messages with ``broadcast_message`` from any coroutine; a
    single sender task writes them to every client in queue order, so a
    job's progress never reaches the browser after its completion.
    """

    def __init__(self):
        self._connections: List[WebSocket] = []
        self._message_queue: Queue = Queue()
        self._sender_task: Task | None = None
        logging.info("WebSocketManager initialized")

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def pending_messages(self) -> int:
        return self._message_queue.qsize()

    def start_sender_task(self) -> None:
        if self._sender_task is None:
            self._sender_task = asyncio.create_task(self._message_sender_task(), name="websocket-sender")
            logging.info("WebSocket message sender task started.")

    async def stop_sender_task(self) -> None:
        if self._sender_task is None:
            return
        self._sender_task.cancel()
        await asyncio.gather(self._sender_task, return_exceptions=True)
        self._sender_task = None
        logging.info(f"WebSocket message sender task stopped ({self.pending_messages} message(s) dropped).")

    async def drain(self) -> None:
        """Wait until every queued message has been sent."""
        await self._message_queue.join()

    async def _message_sender_task(self) -> None:
        while True:
            message_data = await self._message_queue.get()
            try:
                await self._send_to_all(message_data)
            except Exception as e:
                logging.error(f"Error broadcasting {message_data.get('type', 'message')}: {e}")
            finally:
                self._message_queue.task_done()

    async def _send_to_all(self, message_data: Dict[str, Any]) -> None:
        if not self._connections:
            return

        message_json = encode_message(message_data)
        dropped = []
        for websocket in list(self._connections):
            try:
                await websocket.send_text(message_json)
            except WebSocketDisconnect:
                dropped.append(websocket)
            except Exception as e:
                logging.warning(f"Error sending to client, dropping it: {e}")
                dropped.append(websocket)

        for websocket in dropped:
            self.disconnect(websocket)

    async def connect(self, websocket: WebSocket, initial_message: Dict[str, Any] | None = None) -> None:
        """Accept a client. ``initial_message`` goes to this client only, before any broadcast."""
        await websocket.accept()
        if initial_message is not None:
            await self.send_personal_message(websocket, initial_message)
        self._connections.append(websocket)
        logging.info(f"WebSocket client connected. Total connections: {len(self._connections)}")

    async def send_personal_message(self, websocket: WebSocket, message_data: Dict[str, Any]) -> None:
        await websocket.send_text(encode_message(message_data))

    def disconnect(self, websocket: WebSocket) -> None:
        if websocket in self._connections:
            self._connections.remove(websocket)
            logging.info(f"WebSocket client disconnected. Total connections: {len(self._connections)}")

    def broadcast_message(self, message_data: Dict[str, Any]) -> None:
        self._message_queue.put_nowait(message_data)
