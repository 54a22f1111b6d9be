import json
import base64
import asyncio
import logging
from typing import Dict, List, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from core.errors import SessionError
from services.voice_client import (
    VoiceClient,
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

class RealtimeVoiceClient(VoiceClient):
    """
    Voice session backed by the OpenAI Realtime API.

    The interviewer's instructions live in a stored prompt; ``start`` selects
    it by id and fills its template variables.
    """

    def __init__(self, api_key: str, url: str, voice: str = "alloy"):
        super().__init__()
        self.api_key = api_key
        self.url = url
        self.voice = voice
        self.ws = None
        self._listener: Optional[asyncio.Task] = None
        self._call_started = False
        self._speaking = False
        self._failed = False

    def _session_config(
        self,
        target_id: str,
        variable_values: Dict[str, str],
        tools: Optional[List[dict]] = None,
    ) -> dict:
        config = {
            "modalities": ["audio", "text"],
            "prompt": {
                "id": target_id,
                "variables": variable_values,
            },
            "voice": self.voice,
            "input_audio_format": "pcm16",
            "output_audio_format": "pcm16",
            "input_audio_transcription": {
                "model": "whisper-1"
            },
            "turn_detection": {
                "type": "server_vad",
                "threshold": 0.5,
                "prefix_padding_ms": 300,
                "silence_duration_ms": 500
            },
        }
        if tools:
            config["tools"] = tools
            config["tool_choice"] = "auto"
        return config

    async def start(
        self,
        target_id: str,
        variable_values: Optional[Dict[str, str]] = None,
        tools: Optional[List[dict]] = None,
    ):
        """Open the Realtime connection and configure the session"""
        if self.ws is not None:
            raise SessionError("A voice session is already running")
        if not self.api_key:
            raise SessionError("OPENAI_API_KEY is not configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "realtime=v1"
        }
        try:
            self.ws = await websockets.connect(self.url, additional_headers=headers)
            logger.info("✅ Connected to OpenAI Realtime API")

            await self.ws.send(json.dumps({
                "type": "session.update",
                "session": self._session_config(target_id, variable_values or {}, tools)
            }))
            logger.info(f"⚙️ Session configuration sent: prompt={target_id}")

        except Exception as e:
            logger.error(f"Failed to connect to OpenAI: {e}")
            if self.ws is not None:
                await self.ws.close()
                self.ws = None
            raise SessionError(f"Failed to connect to the voice service: {e}") from e

        self._call_started = False
        self._speaking = False
        self._failed = False
        self._listener = asyncio.create_task(self._listen(self.ws))

    async def stop(self):
        """Close the connection; the listener reports the end of the call"""
        ws, listener = self.ws, self._listener
        if ws is None:
            return

        await ws.close()
        if listener is not None:
            await listener

    async def send_audio(self, audio_bytes: bytes):
        """Send raw PCM16 audio chunk to OpenAI"""
        if not self.ws: return

        # Audio must be base64 encoded for the JSON event
        base64_audio = base64.b64encode(audio_bytes).decode('utf-8')

        try:
            await self.ws.send(json.dumps({
                "type": "input_audio_buffer.append",
                "audio": base64_audio
            }))
        except ConnectionClosed as e:
            logger.warning(f"Dropped audio chunk, connection closed: {e}")

    async def send_tool_result(self, call_id: str, output: dict):
        """Return a function call result and let the assistant continue"""
        if not self.ws: return

        try:
            await self.ws.send(json.dumps({
                "type": "conversation.item.create",
                "item": {
                    "type": "function_call_output",
                    "call_id": call_id,
                    "output": json.dumps(output)
                }
            }))
            await self.ws.send(json.dumps({"type": "response.create"}))
        except ConnectionClosed as e:
            logger.warning(f"Dropped tool result {call_id}, connection closed: {e}")

    async def _listen(self, ws):
        try:
            async for message in ws:
                self._handle_event(json.loads(message))
        except ConnectionClosed as e:
            logger.warning(f"Voice connection closed abnormally: {e}")
        except Exception as e:
            logger.error(f"Error reading from OpenAI: {e}")
            self._failed = True
            self.emit(CallFailed(str(e)))
        finally:
            await ws.close()
            self.ws = None
            self._listener = None
            if not self._failed:
                self.emit(CallEnded())
            logger.info("🔌 Disconnected from OpenAI")

    def _handle_event(self, event: dict):
        event_type = event.get("type")

        # 1. Session ready
        if event_type == "session.updated":
            if not self._call_started:
                self._call_started = True
                self.emit(CallStarted())

        # 2. Candidate transcript
        elif event_type == "conversation.item.input_audio_transcription.delta":
            self.emit(TranscriptReceived("user", event.get("delta", ""), final=False))

        elif event_type == "conversation.item.input_audio_transcription.completed":
            self.emit(TranscriptReceived("user", event.get("transcript", ""), final=True))

        # 3. Interviewer transcript
        elif event_type == "response.audio_transcript.delta":
            self.emit(TranscriptReceived("assistant", event.get("delta", ""), final=False))

        elif event_type == "response.audio_transcript.done":
            self.emit(TranscriptReceived("assistant", event.get("transcript", ""), final=True))

        # 4. Interviewer audio
        elif event_type == "response.audio.delta":
            if not self._speaking:
                self._speaking = True
                self.emit(SpeechStarted())
            self.emit(AudioReceived(event.get("delta", "")))

        elif event_type == "response.audio.done":
            if self._speaking:
                self._speaking = False
                self.emit(SpeechEnded())

        # 5. Tool calls
        elif event_type == "response.function_call_arguments.done":
            try:
                arguments = json.loads(event.get("arguments") or "{}")
            except json.JSONDecodeError:
                logger.warning(f"Unparseable arguments for tool {event.get('name')}")
                arguments = {}
            self.emit(ToolCallRequested(
                call_id=event.get("call_id", ""),
                name=event.get("name", ""),
                arguments=arguments if isinstance(arguments, dict) else {}
            ))

        # 6. Error Handling
        elif event_type == "error":
            error = event.get("error") or {}
            message = error.get("message", "Voice service error")
            logger.error(f"OpenAI Error: {message}")
            self._failed = True
            self.emit(CallFailed(message))
