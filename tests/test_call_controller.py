import asyncio
from unittest import IsolatedAsyncioTestCase, TestCase

from core.errors import SessionError
from models.interview import Interview
from models.usage import UsageRecord
from services.call_controller import CallController, CallMode, CallStatus, SavedMessage, format_questions
from services.feedback_service import FeedbackResult
from services.interview_service import GENERATE_INTERVIEW_TOOL, InterviewWorkflow
from services.usage_ledger import UsageLedger
from services.voice_client import (
    CallStarted,
    CallEnded,
    CallFailed,
    TranscriptReceived,
    SpeechStarted,
    SpeechEnded,
    AudioReceived,
    ToolCallRequested,
)

from fakes import (
    FakeFeedbackService,
    FakeQuestionGenerator,
    FakeVoiceClient,
    Recorder,
    make_session_factory,
    settle,
)

QUOTA_MESSAGE = "You have reached your interview limit. Each user can only take one interview."


class CallControllerTestCase(IsolatedAsyncioTestCase):
    def setUp(self):
        self.session_factory = make_session_factory()
        self.ledger = UsageLedger(self.session_factory, quota=1)
        self.voice = FakeVoiceClient()
        self.feedback = FakeFeedbackService()
        self.recorder = Recorder()

    def make_controller(self, mode=CallMode.INTERVIEW, **overrides):
        options = dict(
            voice_client=self.voice,
            usage_ledger=self.ledger,
            feedback_service=self.feedback,
            navigate=self.recorder.navigate,
            publish=self.recorder.publish,
            mode=mode,
            user_name="Ada",
            user_id="u1",
            interview_id="int-1",
            questions=["Tell me about yourself", "Why this role?"],
            workflow_id="wf-1",
            assistant_id="asst-1",
        )
        options.update(overrides)
        return CallController(**options)

    def interviews_used(self, user_id="u1"):
        db = self.session_factory()
        try:
            record = db.get(UsageRecord, user_id)
            return record.interviews if record else None
        finally:
            db.close()

    # ============ Starting ============

    async def test_generate_call_starts_workflow(self):
        controller = self.make_controller(mode=CallMode.GENERATE)

        await controller.handle_call()

        self.assertEqual(controller.call_status, CallStatus.CONNECTING)
        self.assertEqual(self.voice.started, [("wf-1", {"username": "Ada", "userid": "u1"})])
        self.assertFalse(controller.is_loading)
        self.assertEqual(controller.error, "")
        # Generate mode never touches the quota
        self.assertIsNone(self.interviews_used())

    async def test_interview_call_starts_assistant_with_questions(self):
        controller = self.make_controller()

        await controller.handle_call()

        self.assertEqual(controller.call_status, CallStatus.CONNECTING)
        target_id, variables = self.voice.started[0]
        self.assertEqual(target_id, "asst-1")
        self.assertEqual(variables["username"], "Ada")
        self.assertEqual(variables["userid"], "u1")
        self.assertEqual(variables["questions"], "- Tell me about yourself\n- Why this role?")
        self.assertEqual(self.interviews_used(), 0)

    async def test_exhausted_quota_aborts_without_status_change(self):
        self.ledger.check_user_usage("u1")
        self.ledger.increment_user_usage("u1")
        controller = self.make_controller()

        await controller.handle_call()

        self.assertEqual(controller.call_status, CallStatus.INACTIVE)
        self.assertEqual(controller.error, QUOTA_MESSAGE)
        self.assertFalse(controller.is_loading)
        self.assertEqual(self.voice.started, [])

    async def test_missing_assistant_id_is_configuration_error(self):
        controller = self.make_controller(assistant_id=None)

        await controller.handle_call()

        self.assertEqual(controller.call_status, CallStatus.INACTIVE)
        self.assertEqual(controller.error, "Assistant ID is not configured")
        self.assertEqual(self.voice.started, [])

    async def test_missing_workflow_id_is_configuration_error(self):
        controller = self.make_controller(mode=CallMode.GENERATE, workflow_id="")

        await controller.handle_call()

        self.assertEqual(controller.call_status, CallStatus.INACTIVE)
        self.assertEqual(controller.error, "Workflow ID is not configured")

    async def test_session_error_resets_to_inactive(self):
        self.voice.fail_with = SessionError("voice service unreachable")
        controller = self.make_controller()

        await controller.handle_call()

        self.assertEqual(controller.call_status, CallStatus.INACTIVE)
        self.assertEqual(controller.error, "voice service unreachable")
        self.assertFalse(controller.is_loading)

    async def test_call_ignored_while_active(self):
        controller = self.make_controller()
        await controller.handle_call()
        await controller.dispatch(CallStarted())

        await controller.handle_call()

        self.assertEqual(len(self.voice.started), 1)
        self.assertEqual(controller.call_status, CallStatus.ACTIVE)

    # ============ Events ============

    async def test_active_only_after_call_started(self):
        controller = self.make_controller()
        await controller.handle_call()

        await controller.dispatch(SpeechStarted())
        await controller.dispatch(TranscriptReceived("assistant", "Hello", final=True))
        self.assertEqual(controller.call_status, CallStatus.CONNECTING)

        await controller.dispatch(CallStarted())
        self.assertEqual(controller.call_status, CallStatus.ACTIVE)

    async def test_only_final_transcripts_are_saved(self):
        controller = self.make_controller()
        await controller.handle_call()
        await controller.dispatch(CallStarted())

        await controller.dispatch(TranscriptReceived("assistant", "Hel", final=False))
        await controller.dispatch(TranscriptReceived("assistant", "Hello Ada", final=True))
        await controller.dispatch(TranscriptReceived("user", "Hi th", final=False))
        await controller.dispatch(TranscriptReceived("user", "Hi there", final=True))

        self.assertEqual(controller.messages, [
            SavedMessage(role="assistant", content="Hello Ada"),
            SavedMessage(role="user", content="Hi there"),
        ])
        self.assertEqual(controller.last_message, "Hi there")

    async def test_speech_events_toggle_speaking(self):
        controller = self.make_controller()

        await controller.dispatch(SpeechStarted())
        self.assertTrue(controller.is_speaking)
        await controller.dispatch(SpeechEnded())
        self.assertFalse(controller.is_speaking)

    async def test_call_failed_resets_and_stops_session(self):
        controller = self.make_controller()
        await controller.handle_call()
        await controller.dispatch(CallStarted())

        await controller.dispatch(CallFailed("transport lost"))

        self.assertEqual(controller.call_status, CallStatus.INACTIVE)
        self.assertEqual(self.voice.stop_count, 1)

    async def test_audio_is_forwarded(self):
        controller = self.make_controller()

        await controller.dispatch(AudioReceived("AAAA"))

        self.assertIn({"type": "audio", "payload": "AAAA"}, self.recorder.published)

    async def test_events_flow_through_subscription(self):
        controller = self.make_controller(mode=CallMode.GENERATE)

        async with controller.attached():
            self.assertEqual(len(self.voice._subscriptions), 1)
            await controller.handle_call()
            self.voice.emit(CallStarted())
            self.voice.emit(TranscriptReceived("assistant", "Welcome", final=True))
            await settle()
            self.assertEqual(controller.call_status, CallStatus.ACTIVE)
            self.assertEqual(controller.last_message, "Welcome")

        self.assertEqual(self.voice._subscriptions, [])

    # ============ Post-call ============

    async def test_generate_finish_navigates_home(self):
        controller = self.make_controller(mode=CallMode.GENERATE)
        await controller.handle_call()
        await controller.dispatch(CallStarted())
        await controller.dispatch(TranscriptReceived("user", "I want a React interview", final=True))

        await controller.handle_disconnect()
        await controller.wait_post_call()

        self.assertEqual(controller.call_status, CallStatus.FINISHED)
        self.assertEqual(self.voice.stop_count, 1)
        self.assertEqual(self.recorder.paths, ["/"])
        self.assertEqual(self.feedback.calls, [])

    async def test_interview_finish_increments_and_opens_feedback(self):
        controller = self.make_controller(feedback_id="old-fb")
        await controller.handle_call()
        await controller.dispatch(CallStarted())
        await controller.dispatch(TranscriptReceived("assistant", "Tell me about yourself", final=True))
        await controller.dispatch(TranscriptReceived("user", "I build web apps", final=True))

        await controller.dispatch(CallEnded())
        await controller.wait_post_call()

        self.assertEqual(self.interviews_used(), 1)
        self.assertEqual(len(self.feedback.calls), 1)
        call = self.feedback.calls[0]
        self.assertEqual(call["interview_id"], "int-1")
        self.assertEqual(call["user_id"], "u1")
        self.assertEqual(call["feedback_id"], "old-fb")
        self.assertEqual([m.content for m in call["transcript"]], ["Tell me about yourself", "I build web apps"])
        self.assertEqual(self.recorder.paths, ["/interview/int-1/feedback"])
        self.assertEqual(controller.messages, [])

    async def test_post_call_runs_once(self):
        controller = self.make_controller()

        async with controller.attached():
            await controller.handle_call()
            await controller.dispatch(CallStarted())
            # stop() on the fake also emits CallEnded
            await controller.handle_disconnect()
            await settle()
            await controller.wait_post_call()

        self.assertEqual(len(self.feedback.calls), 1)
        self.assertEqual(self.interviews_used(), 1)
        self.assertEqual(self.recorder.paths, ["/interview/int-1/feedback"])

    async def test_unsuccessful_feedback_navigates_home(self):
        self.feedback.result = FeedbackResult(success=False)
        controller = self.make_controller()
        await controller.handle_call()
        await controller.dispatch(CallStarted())

        await controller.dispatch(CallEnded())
        await controller.wait_post_call()

        self.assertEqual(controller.error, "Failed to save feedback")
        self.assertEqual(self.recorder.paths, ["/"])

    async def test_feedback_exception_navigates_home(self):
        self.feedback.error = RuntimeError("model offline")
        controller = self.make_controller()
        await controller.handle_call()
        await controller.dispatch(CallStarted())

        await controller.dispatch(CallEnded())
        await controller.wait_post_call()

        self.assertEqual(controller.error, "Failed to save feedback")
        self.assertEqual(self.recorder.paths, ["/"])

    async def test_failed_increment_does_not_block_feedback(self):
        # No usage record: the increment fails but the flow continues
        controller = self.make_controller()
        controller.call_status = CallStatus.ACTIVE

        await controller.dispatch(CallEnded())
        await controller.wait_post_call()

        self.assertIsNone(self.interviews_used())
        self.assertEqual(len(self.feedback.calls), 1)
        self.assertEqual(self.recorder.paths, ["/interview/int-1/feedback"])

    async def test_reserve_on_start_consumes_quota_once(self):
        controller = self.make_controller(reserve_on_start=True)

        await controller.handle_call()
        self.assertEqual(self.interviews_used(), 1)

        await controller.dispatch(CallStarted())
        await controller.dispatch(CallEnded())
        await controller.wait_post_call()

        self.assertEqual(self.interviews_used(), 1)
        self.assertEqual(self.recorder.paths, ["/interview/int-1/feedback"])

    async def test_new_cycle_from_finished(self):
        controller = self.make_controller(mode=CallMode.GENERATE)
        await controller.handle_call()
        await controller.dispatch(CallStarted())
        await controller.dispatch(TranscriptReceived("user", "first call", final=True))
        await controller.dispatch(CallEnded())
        await controller.wait_post_call()

        await controller.handle_call()

        self.assertEqual(controller.call_status, CallStatus.CONNECTING)
        self.assertEqual(controller.messages, [])
        self.assertEqual(len(self.voice.started), 2)

    async def test_close_stops_live_call_without_feedback(self):
        controller = self.make_controller()

        async with controller.attached():
            await controller.handle_call()
            await controller.dispatch(CallStarted())
        await controller.close()

        self.assertEqual(self.voice.stop_count, 1)
        self.assertEqual(self.feedback.calls, [])
        self.assertEqual(self.recorder.paths, [])

    async def finish_with_held_feedback(self, controller, transcript):
        self.feedback.gate = asyncio.Event()
        await controller.handle_call()
        await controller.dispatch(CallStarted())
        await controller.dispatch(TranscriptReceived("user", transcript, final=True))
        await controller.dispatch(CallEnded())
        await settle()

    async def test_new_call_waits_for_previous_feedback(self):
        self.ledger = UsageLedger(self.session_factory, quota=2)
        controller = self.make_controller()
        await self.finish_with_held_feedback(controller, "first call")

        await controller.handle_call()

        self.assertEqual(controller.call_status, CallStatus.FINISHED)
        self.assertEqual(len(self.voice.started), 1)

        self.feedback.gate.set()
        await controller.wait_post_call()
        self.assertEqual(self.recorder.paths, ["/interview/int-1/feedback"])

        await controller.handle_call()
        await controller.dispatch(CallStarted())
        await controller.dispatch(TranscriptReceived("user", "second call", final=True))
        await settle()

        self.assertEqual(controller.call_status, CallStatus.ACTIVE)
        self.assertEqual([m.content for m in controller.messages], ["second call"])
        self.assertEqual(self.recorder.paths, ["/interview/int-1/feedback"])
        self.assertEqual([m.content for m in self.feedback.calls[0]["transcript"]], ["first call"])

    async def test_reservation_belongs_to_its_own_call(self):
        self.ledger = UsageLedger(self.session_factory, quota=3)
        controller = self.make_controller(reserve_on_start=True)
        await self.finish_with_held_feedback(controller, "first call")

        await controller.handle_call()
        self.assertEqual(self.interviews_used(), 1)

        self.feedback.gate.set()
        await controller.wait_post_call()

        await controller.handle_call()
        await controller.dispatch(CallStarted())
        await controller.dispatch(CallEnded())
        await controller.wait_post_call()

        self.assertEqual(self.interviews_used(), 2)
        self.assertEqual(len(self.feedback.calls), 2)

    # ============ Interview generation ============

    def make_generating_controller(self, questions):
        self.generator = FakeQuestionGenerator(questions)
        workflow = InterviewWorkflow(self.session_factory, self.generator)
        return self.make_controller(mode=CallMode.GENERATE, interview_workflow=workflow)

    def stored_interviews(self):
        db = self.session_factory()
        try:
            return db.query(Interview).all()
        finally:
            db.close()

    async def test_generate_call_declares_interview_tool(self):
        controller = self.make_controller(mode=CallMode.GENERATE)
        await controller.handle_call()
        self.assertEqual(self.voice.tools, [[GENERATE_INTERVIEW_TOOL]])

    async def test_interview_call_declares_no_tools(self):
        controller = self.make_controller()
        await controller.handle_call()
        self.assertEqual(self.voice.tools, [None])

    async def test_tool_call_creates_interview(self):
        controller = self.make_generating_controller(["What is the virtual DOM?", "How does CSS grid work?"])
        await controller.handle_call()
        await controller.dispatch(CallStarted())

        await controller.dispatch(ToolCallRequested(
            call_id="call_1",
            name="generate_interview",
            arguments={
                "role": "Frontend Developer",
                "level": "Senior",
                "type": "technical",
                "techstack": "react, css",
                "amount": 2,
            },
        ))

        interviews = self.stored_interviews()
        self.assertEqual(len(interviews), 1)
        interview = interviews[0]
        self.assertEqual(interview.user_id, "u1")
        self.assertEqual(interview.level, "Senior")
        self.assertEqual(interview.techstack, ["react", "css"])
        self.assertEqual(interview.questions, ["What is the virtual DOM?", "How does CSS grid work?"])
        self.assertEqual(self.generator.requests[0], ("Frontend Developer", "Senior", ["react", "css"], "technical", 2))

        self.assertEqual(self.voice.tool_results, [("call_1", {"success": True, "interview_id": interview.id})])
        self.assertEqual(controller.generated_interview_id, interview.id)
        self.assertIn({"type": "interview_generated", "interview_id": interview.id}, self.recorder.published)

    async def test_tool_call_without_questions_reports_failure(self):
        controller = self.make_generating_controller([])

        await controller.dispatch(ToolCallRequested("call_2", "generate_interview", {"role": "Data Engineer"}))

        call_id, output = self.voice.tool_results[0]
        self.assertEqual(call_id, "call_2")
        self.assertFalse(output["success"])
        self.assertEqual(self.stored_interviews(), [])

    async def test_tool_call_without_role_is_refused(self):
        controller = self.make_generating_controller(["Q1"])

        await controller.dispatch(ToolCallRequested("call_3", "generate_interview", {}))

        self.assertEqual(self.voice.tool_results, [("call_3", {"success": False, "error": "role is required"})])
        self.assertEqual(self.generator.requests, [])

    async def test_unknown_tool_is_refused(self):
        controller = self.make_generating_controller(["Q1"])

        await controller.dispatch(ToolCallRequested("call_4", "delete_everything", {}))

        self.assertEqual(self.voice.tool_results, [("call_4", {"success": False, "error": "Unknown tool: delete_everything"})])

    async def test_interview_mode_does_not_run_generation(self):
        controller = self.make_controller()

        await controller.dispatch(ToolCallRequested("call_5", "generate_interview", {"role": "SRE"}))

        self.assertFalse(self.voice.tool_results[0][1]["success"])
        self.assertEqual(self.stored_interviews(), [])


class FormatQuestionsTestCase(TestCase):
    def test_bullets(self):
        self.assertEqual(format_questions(["A?", "B?"]), "- A?\n- B?")

    def test_empty(self):
        self.assertEqual(format_questions(None), "")
        self.assertEqual(format_questions([]), "")
