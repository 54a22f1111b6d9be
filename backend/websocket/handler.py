from fastapi import WebSocket
from typing import List, Optional
import base64
import binascii
import logging
import uuid

from config.settings import settings
from services.call_controller import CallController, CallMode, CallStatus
from services.voice_client import VoiceClient

logger = logging.getLogger(__name__)

class CallSocketHandler:
    """
    Handle WebSocket connections for voice interview calls.
    Each connection owns one CallController; its navigation and view state
    are delivered to the browser as JSON messages.
    """

    def __init__(self):
        self.active_connections: dict = {}  # {connection_id: websocket}
        self.connection_users: dict = {}  # {connection_id: user_id}

    async def connect(self, websocket: WebSocket, user_id: str) -> str:
        """
        Accept WebSocket connection and register it.

        Args:
            websocket: WebSocket connection
            user_id: User ID from JWT token

        Returns:
            Connection ID used for all later sends
        """
        await websocket.accept()
        connection_id = str(uuid.uuid4())
        self.active_connections[connection_id] = websocket
        self.connection_users[connection_id] = user_id

        logger.info(f"WebSocket connected: user={user_id}, connection={connection_id}")

        await websocket.send_json({
            "type": "connection",
            "status": "connected",
            "message": "WebSocket connection established",
            "connection_id": connection_id
        })
        return connection_id

    def disconnect(self, connection_id: str):
        """Forget a closed connection."""
        self.active_connections.pop(connection_id, None)
        user_id = self.connection_users.pop(connection_id, None)

        logger.info(f"WebSocket disconnected: user={user_id}, connection={connection_id}")

    async def send_personal(self, connection_id: str, data: dict):
        """
        Send message to one connection.

        Args:
            connection_id: Connection ID
            data: Data to send
        """
        websocket = self.active_connections.get(connection_id)
        if websocket is None:
            return
        try:
            await websocket.send_json(data)
        except Exception as e:
            logger.error(f"Failed to send message to {connection_id}: {str(e)}")

    def create_controller(
        self,
        connection_id: str,
        voice_client: VoiceClient,
        usage_ledger,
        feedback_service,
        mode: CallMode,
        user_name: str,
        user_id: str,
        interview_id: Optional[str] = None,
        feedback_id: Optional[str] = None,
        questions: Optional[List[str]] = None,
        interview_workflow=None,
    ) -> CallController:
        """Build the call controller for a connection, wired to its socket."""

        async def navigate(path: str):
            logger.info(f"Navigating {connection_id} to {path}")
            await self.send_personal(connection_id, {"type": "navigate", "path": path})

        async def publish(payload: dict):
            await self.send_personal(connection_id, payload)

        return CallController(
            voice_client=voice_client,
            usage_ledger=usage_ledger,
            feedback_service=feedback_service,
            navigate=navigate,
            publish=publish,
            mode=mode,
            user_name=user_name,
            user_id=user_id,
            interview_id=interview_id,
            feedback_id=feedback_id,
            questions=questions,
            workflow_id=settings.WORKFLOW_ID,
            assistant_id=settings.ASSISTANT_ID,
            reserve_on_start=settings.RESERVE_USAGE_ON_START,
            interview_workflow=interview_workflow,
        )

    async def handle_message(self, connection_id: str, controller: CallController, message: dict):
        """
        Route one client message to the controller.

        Message Types:
            call: start the call
            disconnect: end the call
            audio: {type: "audio", payload: "<base64 pcm16>"}
            ping: keep-alive
        """
        message_type = message.get("type")

        if message_type == "call":
            await controller.handle_call()

        elif message_type == "disconnect":
            if controller.call_status in (CallStatus.CONNECTING, CallStatus.ACTIVE):
                await controller.handle_disconnect()

        elif message_type == "audio":
            payload = message.get("payload")
            if payload and controller.call_status is CallStatus.ACTIVE:
                try:
                    await controller.voice_client.send_audio(base64.b64decode(payload))
                except (binascii.Error, ValueError) as e:
                    logger.warning(f"Invalid audio payload from {connection_id}: {e}")

        elif message_type == "ping":
            await self.send_personal(connection_id, {"type": "pong"})

        else:
            logger.warning(f"Unknown message type: {message_type}")

# Global handler instance
ws_handler = CallSocketHandler()
