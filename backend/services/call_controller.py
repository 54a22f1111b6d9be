"""
Call Controller

Per-connection state machine for one candidate's voice call:

    INACTIVE --handle_call--> CONNECTING --CallStarted--> ACTIVE
    ACTIVE --handle_disconnect / CallEnded--> FINISHED
    any --CallFailed--> INACTIVE

Entering FINISHED runs the post-call flow once: usage bookkeeping, feedback
generation and navigation. A new call is refused until that flow has finished.
"""

import asyncio
import enum
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from core.errors import ConfigurationError, FeedbackError, QuotaExceededError
from services.interview_service import GENERATE_INTERVIEW_TOOL
from services.voice_client import (
    VoiceClient,
    VoiceEvent,
    CallStarted,
    CallEnded,
    CallFailed,
    TranscriptReceived,
    SpeechStarted,
    SpeechEnded,
    AudioReceived,
    ToolCallRequested,
)

logger = logging.getLogger(__name__)

class CallStatus(str, enum.Enum):
    """Call status enumeration"""
    INACTIVE = "INACTIVE"
    CONNECTING = "CONNECTING"
    ACTIVE = "ACTIVE"
    FINISHED = "FINISHED"

class CallMode(str, enum.Enum):
    """Call mode enumeration"""
    GENERATE = "generate"  # Workflow that builds a new interview
    INTERVIEW = "interview"  # Assistant that runs a stored interview

class SavedMessage(BaseModel):
    """One finalized transcript turn"""
    role: str  # "user", "system" or "assistant"
    content: str

Navigate = Callable[[str], Awaitable[None]]
Publish = Callable[[dict], Awaitable[None]]

FEEDBACK_FAILED_MESSAGE = "Failed to save feedback"

def format_questions(questions: Optional[List[str]]) -> str:
    """Render questions as the bullet list the assistant prompt expects"""
    if not questions:
        return ""
    return "\n".join(f"- {q}" for q in questions)

async def _discard(payload: dict):
    return None

class CallController:
    """
    Drive one voice call and react to its events.

    Collaborators are passed in: the voice client, the usage ledger, the
    feedback service, the interview workflow used by generate mode, and two
    coroutines, ``navigate`` to redirect the browser and ``publish`` to push
    view state.
    """

    def __init__(
        self,
        voice_client: VoiceClient,
        usage_ledger,
        feedback_service,
        navigate: Navigate,
        mode: CallMode,
        user_name: str,
        user_id: Optional[str] = None,
        interview_id: Optional[str] = None,
        feedback_id: Optional[str] = None,
        questions: Optional[List[str]] = None,
        workflow_id: Optional[str] = None,
        assistant_id: Optional[str] = None,
        publish: Optional[Publish] = None,
        reserve_on_start: bool = False,
        interview_workflow=None,
    ):
        self.voice_client = voice_client
        self.usage_ledger = usage_ledger
        self.feedback_service = feedback_service
        self.interview_workflow = interview_workflow
        self.navigate = navigate
        self.publish = publish or _discard

        self.mode = CallMode(mode)
        self.user_name = user_name
        self.user_id = user_id
        self.interview_id = interview_id
        self.feedback_id = feedback_id
        self.questions = questions or []
        self.workflow_id = workflow_id
        self.assistant_id = assistant_id
        self.reserve_on_start = reserve_on_start

        # View state
        self.call_status = CallStatus.INACTIVE
        self.messages: List[SavedMessage] = []
        self.is_speaking = False
        self.last_message = ""
        self.error = ""
        self.is_loading = False
        self.generated_interview_id: Optional[str] = None

        self._usage_reserved = False
        self._post_call_task: Optional[asyncio.Task] = None

    # ============ View State ============

    def snapshot(self) -> dict:
        return {
            "call_status": self.call_status.value,
            "is_speaking": self.is_speaking,
            "last_message": self.last_message,
            "message_count": len(self.messages),
            "error": self.error,
            "is_loading": self.is_loading,
        }

    async def publish_state(self):
        await self.publish({"type": "state", **self.snapshot()})

    def _set_status(self, status: CallStatus):
        previous = self.call_status
        self.call_status = status
        if previous != status:
            logger.info(f"Call status: {previous.value} -> {status.value}")

        if status is CallStatus.FINISHED and previous is not CallStatus.FINISHED:
            reserved, self._usage_reserved = self._usage_reserved, False
            self._post_call_task = asyncio.create_task(self._after_call(reserved))

    # ============ Commands ============

    async def handle_call(self):
        """Check quota, then start a voice session for the current mode"""
        if self.call_status in (CallStatus.CONNECTING, CallStatus.ACTIVE):
            logger.warning(f"Call already in progress: status={self.call_status.value}")
            return
        if self._post_call_task is not None and not self._post_call_task.done():
            logger.warning("Previous call is still being processed")
            return

        self.error = ""
        self.is_loading = True
        await self.publish_state()

        try:
            if self.mode is CallMode.INTERVIEW and self.user_id:
                await self._claim_quota()

            self.messages = []
            self.last_message = ""
            self._set_status(CallStatus.CONNECTING)
            logger.info("Starting call...")

            target_id, variable_values = self._session_target()
            tools = [GENERATE_INTERVIEW_TOOL] if self.mode is CallMode.GENERATE else None
            await self.voice_client.start(target_id, variable_values=variable_values, tools=tools)

        except QuotaExceededError as e:
            logger.info(f"Quota exhausted: user={self.user_id}")
            self.error = str(e)

        except Exception as e:
            logger.error(
                f"Error starting call: {e} "
                f"(mode={self.mode.value}, workflow={self.workflow_id}, assistant={self.assistant_id})"
            )
            self.error = str(e) or "Failed to start the call"
            self._set_status(CallStatus.INACTIVE)

        finally:
            self.is_loading = False
            await self.publish_state()

    async def _claim_quota(self):
        if self.reserve_on_start:
            usage = await run_in_threadpool(self.usage_ledger.reserve_interview, self.user_id)
            self._usage_reserved = usage.can_use
        else:
            usage = await run_in_threadpool(self.usage_ledger.check_user_usage, self.user_id)

        if not usage.can_use:
            raise QuotaExceededError()

    def _session_target(self) -> tuple:
        variable_values: Dict[str, str] = {
            "username": self.user_name or "",
            "userid": self.user_id or "",
        }

        if self.mode is CallMode.GENERATE:
            if not self.workflow_id:
                raise ConfigurationError("Workflow ID is not configured")
            logger.info(f"Using workflow: {self.workflow_id}")
            return self.workflow_id, variable_values

        if not self.assistant_id:
            raise ConfigurationError("Assistant ID is not configured")
        logger.info(f"Using assistant: {self.assistant_id}")
        variable_values["questions"] = format_questions(self.questions)
        return self.assistant_id, variable_values

    async def handle_disconnect(self):
        """End the call from the candidate's side"""
        self._set_status(CallStatus.FINISHED)
        await self.publish_state()
        await self.voice_client.stop()

    # ============ Events ============

    async def dispatch(self, event: VoiceEvent):
        if isinstance(event, CallStarted):
            self._set_status(CallStatus.ACTIVE)

        elif isinstance(event, CallEnded):
            self._set_status(CallStatus.FINISHED)

        elif isinstance(event, TranscriptReceived):
            if not event.final:
                return
            self.messages.append(SavedMessage(role=event.role, content=event.transcript))
            self.last_message = event.transcript

        elif isinstance(event, (SpeechStarted, SpeechEnded)):
            self.is_speaking = isinstance(event, SpeechStarted)

        elif isinstance(event, CallFailed):
            logger.error(f"Voice session error: {event.message}")
            self.is_speaking = False
            self._set_status(CallStatus.INACTIVE)
            await self.voice_client.stop()

        elif isinstance(event, AudioReceived):
            await self.publish({"type": "audio", "payload": event.audio})
            return

        elif isinstance(event, ToolCallRequested):
            output = await self._run_tool(event)
            await self.voice_client.send_tool_result(event.call_id, output)
            return

        await self.publish_state()

    async def _run_tool(self, event: ToolCallRequested) -> dict:
        if self.mode is not CallMode.GENERATE or event.name != GENERATE_INTERVIEW_TOOL["name"]:
            logger.warning(f"Unsupported tool call: {event.name}")
            return {"success": False, "error": f"Unknown tool: {event.name}"}

        if self.interview_workflow is None or not self.user_id:
            return {"success": False, "error": "Interview generation is not available"}

        arguments = event.arguments
        if not arguments.get("role"):
            return {"success": False, "error": "role is required"}

        try:
            interview = await self.interview_workflow.generate(
                user_id=self.user_id,
                role=str(arguments["role"]),
                level=arguments.get("level") or "Junior",
                type=arguments.get("type") or "mixed",
                techstack=arguments.get("techstack"),
                amount=arguments.get("amount") or 5,
            )
        except Exception as e:
            logger.error(f"Error generating interview: {e}")
            return {"success": False, "error": "Failed to generate interview"}

        if interview is None:
            return {"success": False, "error": "Failed to generate interview questions"}

        self.generated_interview_id = interview.id
        await self.publish({"type": "interview_generated", "interview_id": interview.id})
        return {"success": True, "interview_id": interview.id}

    async def _pump(self, events):
        async for event in events:
            try:
                await self.dispatch(event)
            except Exception as e:
                logger.error(f"Failed to handle voice event {type(event).__name__}: {e}")

    @asynccontextmanager
    async def attached(self):
        """Hold the voice event subscription for the lifetime of the block"""
        async with self.voice_client.subscribe() as events:
            pump = asyncio.create_task(self._pump(events))
            try:
                yield self
            finally:
                pump.cancel()
                try:
                    await pump
                except asyncio.CancelledError:
                    pass

    async def close(self):
        """
        Tear down after the browser went away: stop a live session without
        running the post-call flow, and let a running post-call flow finish.
        """
        if self.call_status in (CallStatus.CONNECTING, CallStatus.ACTIVE):
            self.call_status = CallStatus.INACTIVE
            await self.voice_client.stop()
        await self.wait_post_call()

    async def wait_post_call(self):
        task = self._post_call_task
        if task is not None:
            await task

    # ============ Post-call ============

    async def _after_call(self, usage_reserved: bool):
        if self.mode is CallMode.GENERATE:
            await self.navigate("/")
            return

        try:
            await self._generate_feedback(list(self.messages), usage_reserved)
        finally:
            if self.call_status is CallStatus.FINISHED:
                self.messages = []

    async def _generate_feedback(self, transcript: List[SavedMessage], usage_reserved: bool):
        try:
            logger.info("Generating feedback")

            if self.user_id and not usage_reserved:
                update = await run_in_threadpool(self.usage_ledger.increment_user_usage, self.user_id)
                if not update:
                    logger.error(f"Failed to increment usage: user={self.user_id}, error={update.error}")

            result = await self.feedback_service.create_feedback(
                interview_id=self.interview_id,
                user_id=self.user_id,
                transcript=transcript,
                feedback_id=self.feedback_id,
            )

            if not (result.success and result.feedback_id):
                raise FeedbackError(FEEDBACK_FAILED_MESSAGE)

            self.feedback_id = result.feedback_id
            await self.navigate(f"/interview/{self.interview_id}/feedback")

        except Exception as e:
            logger.error(f"Error generating feedback: {e}")
            self.error = FEEDBACK_FAILED_MESSAGE
            await self.publish_state()
            await self.navigate("/")
