"""Voice call WebSocket: one CallController per connection"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from sqlalchemy.orm import Session

from core.dependencies import (
    get_feedback_service,
    get_interview_workflow,
    get_usage_ledger,
    get_voice_client,
)
from database.db import get_db
from services.call_controller import CallMode
from services.feedback_service import FeedbackService
from services.interview_service import InterviewService, InterviewWorkflow
from services.usage_ledger import UsageLedger
from services.voice_client import VoiceClient
from utils.security import user_from_token
from websocket.handler import ws_handler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["call"])

@router.websocket("/ws/call")
async def call_endpoint(
    websocket: WebSocket,
    token: str,
    type: CallMode = CallMode.INTERVIEW,
    interview_id: Optional[str] = None,
    feedback_id: Optional[str] = None,
    db: Session = Depends(get_db),
    voice_client: VoiceClient = Depends(get_voice_client),
    usage_ledger: UsageLedger = Depends(get_usage_ledger),
    feedback_service: FeedbackService = Depends(get_feedback_service),
    interview_workflow: InterviewWorkflow = Depends(get_interview_workflow),
):
    """
    WebSocket endpoint for a voice interview call.

    Query Parameters:
        token: JWT authentication token
        type: "generate" or "interview"
        interview_id: Interview to take (interview mode)
        feedback_id: Existing feedback to overwrite (optional)

    Client messages: call, disconnect, audio, ping
    Server messages: connection, state, audio, interview_generated, navigate, pong
    """
    try:
        user = user_from_token(token, db)
    except HTTPException as e:
        logger.warning(f"WebSocket authentication failed: {e.detail}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Authentication failed")
        return

    questions = []
    if type is CallMode.INTERVIEW and interview_id:
        interview = InterviewService.get_interview(db, interview_id)
        if interview is None:
            logger.warning(f"WebSocket rejected: interview not found - {interview_id}")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Interview not found")
            return
        if interview.user_id != user.id:
            logger.warning(f"WebSocket rejected: interview {interview_id} belongs to another user")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason="Interview not found")
            return
        questions = interview.questions or []

    connection_id = await ws_handler.connect(websocket, user.id)
    controller = ws_handler.create_controller(
        connection_id,
        voice_client=voice_client,
        usage_ledger=usage_ledger,
        feedback_service=feedback_service,
        mode=type,
        user_name=user.display_name,
        user_id=user.id,
        interview_id=interview_id,
        feedback_id=feedback_id,
        questions=questions,
        interview_workflow=interview_workflow,
    )

    try:
        async with controller.attached():
            await controller.publish_state()

            while True:
                message = await websocket.receive_json()
                await ws_handler.handle_message(connection_id, controller, message)

    except WebSocketDisconnect:
        logger.info(f"Client disconnected: {user.id}")

    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON message: {str(e)}")
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA, reason="Invalid JSON")

    finally:
        await controller.close()
        ws_handler.disconnect(connection_id)
