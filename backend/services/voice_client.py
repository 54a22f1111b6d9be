"""Voice session collaborator: typed events and scoped subscriptions"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union


# ============ Events ============

@dataclass(frozen=True)
class CallStarted:
    pass

@dataclass(frozen=True)
class CallEnded:
    pass

@dataclass(frozen=True)
class TranscriptReceived:
    role: str
    transcript: str
    final: bool

@dataclass(frozen=True)
class SpeechStarted:
    pass

@dataclass(frozen=True)
class SpeechEnded:
    pass

@dataclass(frozen=True)
class CallFailed:
    message: str

@dataclass(frozen=True)
class AudioReceived:
    """Base64 PCM16 audio from the interviewer, forwarded for playback"""
    audio: str

@dataclass(frozen=True)
class ToolCallRequested:
    """The assistant asked to run a declared tool; answer with send_tool_result"""
    call_id: str
    name: str
    arguments: Dict[str, Any]

VoiceEvent = Union[
    CallStarted, CallEnded, TranscriptReceived, SpeechStarted,
    SpeechEnded, CallFailed, AudioReceived, ToolCallRequested,
]

# ============ Subscription ============

class EventSubscription:
    """Async iterator over the events emitted while the subscription is held"""

    def __init__(self):
        self._queue: "asyncio.Queue[VoiceEvent]" = asyncio.Queue()

    def put(self, event: VoiceEvent):
        self._queue.put_nowait(event)

    async def get(self) -> VoiceEvent:
        return await self._queue.get()

    def __aiter__(self):
        return self

    async def __anext__(self) -> VoiceEvent:
        return await self._queue.get()

# ============ Client ============

class VoiceClient:
    """
    Base class for voice providers.

    Subclasses implement ``start`` and ``stop`` and report what happens on
    the call through ``emit``. Consumers read events through ``subscribe``,
    which releases the subscription when the block exits.
    """

    def __init__(self):
        self._subscriptions: List[EventSubscription] = []

    async def start(
        self,
        target_id: str,
        variable_values: Optional[Dict[str, str]] = None,
        tools: Optional[List[dict]] = None,
    ):
        raise NotImplementedError

    async def stop(self):
        raise NotImplementedError

    async def send_audio(self, audio_bytes: bytes):
        """Forward microphone audio. Providers without an audio uplink ignore it."""

    async def send_tool_result(self, call_id: str, output: dict):
        """Answer a ToolCallRequested event"""
        raise NotImplementedError

    def emit(self, event: VoiceEvent):
        for subscription in list(self._subscriptions):
            subscription.put(event)

    @asynccontextmanager
    async def subscribe(self):
        subscription = EventSubscription()
        self._subscriptions.append(subscription)
        try:
            yield subscription
        finally:
            self._subscriptions.remove(subscription)
