"""Tests for the pipeline orchestrator with fake gateways."""

import asyncio

import pytest

from agents.hitl import REVIEW_MESSAGES
from agents.orchestrator import PipelineBusyError, PipelineOrchestrator
from agents.state import (
    AGENT_ORDER,
    AgentStatus,
    AgentType,
    HITLDecision,
    HITLKind,
    InputMode,
    PipelineRun,
    Topic,
)
from llm.errors import GatewayError, GatewayErrorKind
from memory.memory_store import MemoryStore

DERIVATIVE_PROBLEM = "Find the derivative of f(x) = x³ + 2x² - 5x + 3"


@pytest.fixture
def events():
    return []


@pytest.fixture
def make_orchestrator(config, solving_gateway, events):
    def _make(solver=None, image=None, audio=None, memory=None):
        orchestrator = PipelineOrchestrator(
            solving_gateway=solver or solving_gateway,
            image_gateway=image,
            audio_gateway=audio,
            memory=memory,
            config=config,
        )
        orchestrator.add_listener(events.append)
        return orchestrator
    return _make


def _statuses(run):
    return {agent.type: agent.status for agent in run.agents}


def _notifications(events):
    return [event for event in events if event["type"] == "notification"]


class TestSubmitText:
    def test_derivative_end_to_end(self, make_orchestrator, solving_gateway):
        orchestrator = make_orchestrator()
        solution = asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM))

        run = orchestrator.run
        assert solution is run.solution
        assert run.solution.final_answer == "f'(x) = 3x² + 4x - 5"
        assert len(run.solution.steps) == 7
        assert run.problem.topic == Topic.CALCULUS
        assert run.problem.variables == ["x"]
        assert all(status == AgentStatus.COMPLETED for status in _statuses(run).values())
        assert run.agent(AgentType.VERIFY).message == "Solution verified"
        assert not orchestrator.is_processing
        assert solving_gateway.calls == [(DERIVATIVE_PROBLEM, "calculus")]

    def test_stage_order_seen_by_listener(self, make_orchestrator, events):
        orchestrator = make_orchestrator()
        asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM))

        transitions = [(e["agent"], e["status"]) for e in events if e["type"] == "agent"]
        expected = []
        for agent_type in AGENT_ORDER:
            expected += [(agent_type.value, "running"), (agent_type.value, "completed")]
        assert transitions == expected

    def test_at_most_one_stage_running(self, make_orchestrator, events):
        orchestrator = make_orchestrator()
        asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM))

        for event in events:
            if event["type"] == "state":
                running = [a for a in event["run"].agents if a.status == AgentStatus.RUNNING]
                assert len(running) <= 1

    def test_success_notification(self, make_orchestrator, events):
        asyncio.run(make_orchestrator().submit(DERIVATIVE_PROBLEM))
        assert [n["title"] for n in _notifications(events)] == ["Problem Solved!"]

    def test_solve_failure_halts_run(self, make_orchestrator, make_solver, events):
        failing = make_solver(error=GatewayError(GatewayErrorKind.RATE_LIMITED))
        orchestrator = make_orchestrator(solver=failing)
        result = asyncio.run(orchestrator.submit("Solve for x: 2x-3=0"))

        run = orchestrator.run
        statuses = _statuses(run)
        assert result is None
        assert run.solution is None
        assert statuses[AgentType.PARSE] == AgentStatus.COMPLETED
        assert statuses[AgentType.ROUTE] == AgentStatus.COMPLETED
        assert statuses[AgentType.SOLVE] == AgentStatus.ERROR
        assert statuses[AgentType.VERIFY] == AgentStatus.IDLE
        assert statuses[AgentType.EXPLAIN] == AgentStatus.IDLE
        assert not orchestrator.is_processing

        notification = _notifications(events)[-1]
        assert notification["variant"] == "destructive"
        assert notification["description"] == "Rate limit exceeded. Please try again in a moment."

    def test_unexpected_solver_exception_is_contained(self, make_orchestrator, make_solver):
        failing = make_solver(error=KeyError("boom"))
        orchestrator = make_orchestrator(solver=failing)

        assert asyncio.run(orchestrator.submit("2 + 2")) is None
        assert orchestrator.run.agent(AgentType.SOLVE).status == AgentStatus.ERROR
        assert not orchestrator.is_processing

    def test_empty_input_is_rejected(self, make_orchestrator):
        orchestrator = make_orchestrator()
        with pytest.raises(ValueError):
            asyncio.run(orchestrator.submit("   "))
        assert orchestrator.run == PipelineRun()

    def test_new_submission_replaces_run(self, make_orchestrator):
        orchestrator = make_orchestrator()
        asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM))
        first = orchestrator.run
        asyncio.run(orchestrator.submit("Solve for x: 2x-3=0"))
        assert orchestrator.run is not first
        assert orchestrator.run.problem.topic == Topic.ALGEBRA

    def test_text_never_reaches_recognition(self, make_orchestrator, make_recognizer):
        image = make_recognizer()
        audio = make_recognizer()
        orchestrator = make_orchestrator(image=image, audio=audio)
        asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM))

        assert image.calls == []
        assert audio.calls == []
        assert orchestrator.run.input_mode == InputMode.TEXT
        assert orchestrator.run.extraction_confidence is None


class TestBusy:
    def test_submit_while_processing(self, make_orchestrator, derivative_solution):
        release = asyncio.Event()

        class SlowSolver:
            async def solve(self, problem_text, topic):
                await release.wait()
                return derivative_solution

        orchestrator = make_orchestrator(solver=SlowSolver())

        async def scenario():
            task = asyncio.create_task(orchestrator.submit(DERIVATIVE_PROBLEM))
            await asyncio.sleep(0)
            assert orchestrator.is_processing
            run_before = orchestrator.run
            with pytest.raises(PipelineBusyError):
                await orchestrator.submit("Solve for x: 2x-3=0")
            assert orchestrator.run is run_before
            release.set()
            return await task

        solution = asyncio.run(scenario())
        assert solution.final_answer == "f'(x) = 3x² + 4x - 5"
        assert not orchestrator.is_processing


class TestSubmitMedia:
    def test_low_confidence_image_opens_review(self, make_orchestrator, make_recognizer, image_data_url):
        recognizer = make_recognizer(text="Solve 2x + [?] = 7", confidence=0.5)
        orchestrator = make_orchestrator(image=recognizer)
        extraction = asyncio.run(orchestrator.submit_media(image_data_url, InputMode.IMAGE))

        run = orchestrator.run
        assert extraction.confidence == 0.5
        assert run.hitl_request is not None
        assert run.hitl_request.kind == HITLKind.OCR_CORRECTION
        assert run.hitl_request.original_content == "Solve 2x + [?] = 7"
        assert run.hitl_request.message == REVIEW_MESSAGES[HITLKind.OCR_CORRECTION]
        assert run.agent(AgentType.PARSE).status == AgentStatus.WAITING_HITL
        assert run.solution is None
        assert not orchestrator.is_processing
        assert recognizer.calls == [image_data_url]

    def test_threshold_confidence_skips_review(self, make_orchestrator, make_recognizer, image_data_url):
        orchestrator = make_orchestrator(image=make_recognizer(text="Solve 2x + 3 = 7", confidence=0.7))
        asyncio.run(orchestrator.submit_media(image_data_url, InputMode.IMAGE))

        run = orchestrator.run
        assert run.hitl_request is None
        assert orchestrator.hitl.pending is None
        assert run.extraction_confidence == 0.7
        assert run.extracted_text == "Solve 2x + 3 = 7"
        assert run.agent(AgentType.PARSE).status != AgentStatus.WAITING_HITL

    def test_confident_audio_is_previewed(self, make_orchestrator, make_recognizer, audio_data_url, solving_gateway):
        orchestrator = make_orchestrator(audio=make_recognizer(text="x ² = 4", confidence=0.9))
        asyncio.run(orchestrator.submit_media(audio_data_url, InputMode.AUDIO))

        run = orchestrator.run
        assert run.extracted_text == "x ² = 4"
        assert run.extraction_confidence == 0.9
        assert run.hitl_request is None
        assert run.raw_input.startswith("audio/webm (")
        assert solving_gateway.calls == []

    def test_confirm_extraction_keeps_media_context(self, make_orchestrator, make_recognizer, image_data_url):
        orchestrator = make_orchestrator(image=make_recognizer(confidence=0.9))
        asyncio.run(orchestrator.submit_media(image_data_url, InputMode.IMAGE))
        reference = orchestrator.run.raw_input

        asyncio.run(orchestrator.confirm_extraction("Find the derivative of x^3"))

        run = orchestrator.run
        assert run.input_mode == InputMode.IMAGE
        assert run.raw_input == reference
        assert run.extraction_confidence == 0.9
        assert run.extracted_text == "Find the derivative of x^3"
        assert run.solution is not None

    def test_reject_extraction(self, make_orchestrator, make_recognizer, image_data_url):
        orchestrator = make_orchestrator(image=make_recognizer(confidence=0.9))
        asyncio.run(orchestrator.submit_media(image_data_url, InputMode.IMAGE))
        orchestrator.reject_extraction()
        assert orchestrator.run.extracted_text == ""

    def test_recognition_failure(self, make_orchestrator, make_recognizer, image_data_url, events):
        failing = make_recognizer(error=GatewayError(GatewayErrorKind.UNREACHABLE))
        orchestrator = make_orchestrator(image=failing)
        result = asyncio.run(orchestrator.submit_media(image_data_url, InputMode.IMAGE))

        run = orchestrator.run
        assert result is None
        assert run.extracted_text == ""
        assert run.extraction_confidence is None
        assert run.problem is None
        assert all(status == AgentStatus.IDLE for status in _statuses(run).values())
        assert not orchestrator.is_processing
        assert _notifications(events)[-1]["variant"] == "destructive"

    def test_text_mode_is_rejected(self, make_orchestrator, image_data_url):
        with pytest.raises(ValueError):
            asyncio.run(make_orchestrator().submit_media(image_data_url, InputMode.TEXT))

    def test_invalid_media_is_rejected(self, make_orchestrator, make_recognizer):
        orchestrator = make_orchestrator(image=make_recognizer())
        with pytest.raises(ValueError):
            asyncio.run(orchestrator.submit_media("data:image/png;base64,!!!", InputMode.IMAGE))
        assert not orchestrator.is_processing


class TestHITLResolution:
    @pytest.fixture
    def pending(self, make_orchestrator, make_recognizer, image_data_url):
        orchestrator = make_orchestrator(image=make_recognizer(text="Solve 2x + [?] = 7", confidence=0.5))
        asyncio.run(orchestrator.submit_media(image_data_url, InputMode.IMAGE))
        return orchestrator

    def test_reject(self, pending, solving_gateway, events):
        asyncio.run(pending.resolve_hitl(HITLDecision.REJECT))

        run = pending.run
        assert run.hitl_request is None
        assert run.extracted_text == ""
        assert run.raw_input is None
        assert run.extraction_confidence is None
        assert run.input_mode == InputMode.IMAGE
        assert run == PipelineRun(input_mode=InputMode.IMAGE)
        assert all(status == AgentStatus.IDLE for status in _statuses(run).values())
        assert solving_gateway.calls == []
        assert _notifications(events)[-1]["title"] == "Input rejected"

    def test_approve_with_correction(self, pending, solving_gateway):
        solution = asyncio.run(pending.resolve_hitl(HITLDecision.APPROVE, "Solve 2x + 3 = 7"))

        run = pending.run
        assert solution is not None
        assert run.hitl_request is None
        assert run.extracted_text == "Solve 2x + 3 = 7"
        assert run.extraction_confidence == 0.5
        assert solving_gateway.calls == [("Solve 2x + 3 = 7", "algebra")]

    def test_approve_without_correction(self, pending, solving_gateway):
        asyncio.run(pending.resolve_hitl("approve"))
        assert solving_gateway.calls == [("Solve 2x + [?] = 7", "algebra")]

    def test_no_pending_request_is_noop(self, make_orchestrator, solving_gateway):
        orchestrator = make_orchestrator()
        assert asyncio.run(orchestrator.resolve_hitl(HITLDecision.APPROVE, "x = 1")) is None
        assert solving_gateway.calls == []


class TestFeedbackAndMemory:
    def test_feedback_without_solution_is_noop(self, make_orchestrator, events):
        orchestrator = make_orchestrator()
        assert orchestrator.record_feedback(True) is None
        assert orchestrator.memory == []
        assert _notifications(events) == []

    def test_feedback_prepends_entry(self, make_orchestrator):
        orchestrator = make_orchestrator()
        asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM))
        orchestrator.record_feedback(True)
        asyncio.run(orchestrator.submit("Solve for x: 2x-3=0"))
        latest = orchestrator.record_feedback(False, "wrong sign")

        assert [e.original_input for e in orchestrator.memory] == ["Solve for x: 2x-3=0", DERIVATIVE_PROBLEM]
        assert orchestrator.memory[0] is latest
        assert latest.was_correct is False
        assert latest.user_feedback == "wrong sign"

    def test_feedback_notifications(self, make_orchestrator, events):
        orchestrator = make_orchestrator()
        asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM))
        orchestrator.record_feedback(True)
        orchestrator.record_feedback(False)
        titles = [n["title"] for n in _notifications(events)]
        assert titles[-2:] == ["Thanks for the feedback!", "We'll improve!"]

    def test_select_memory_entry(self, make_orchestrator):
        orchestrator = make_orchestrator()
        asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM))
        entry = orchestrator.record_feedback(True)
        orchestrator.reset()

        assert orchestrator.select_memory_entry(entry.id) is entry
        run = orchestrator.run
        assert run.solution.final_answer == "f'(x) = 3x² + 4x - 5"
        assert run.problem.topic == Topic.CALCULUS
        assert run.extracted_text == DERIVATIVE_PROBLEM
        assert all(status == AgentStatus.IDLE for status in _statuses(run).values())

    def test_select_unknown_entry(self, make_orchestrator):
        assert make_orchestrator().select_memory_entry("missing") is None

    def test_clear_memory(self, make_orchestrator, events):
        store = MemoryStore()
        orchestrator = make_orchestrator(memory=store)
        asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM))
        orchestrator.record_feedback(True)
        orchestrator.clear_memory()
        assert len(store) == 0
        assert _notifications(events)[-1]["title"] == "Memory cleared"


class TestLifecycle:
    def test_reset_is_idempotent(self, make_orchestrator):
        orchestrator = make_orchestrator()
        asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM))
        orchestrator.reset()
        first = orchestrator.snapshot()
        orchestrator.reset()
        assert orchestrator.snapshot() == first == PipelineRun()
        assert not orchestrator.is_processing

    def test_set_input_mode(self, make_orchestrator):
        orchestrator = make_orchestrator()
        orchestrator.set_input_mode("audio")
        assert orchestrator.run.input_mode == InputMode.AUDIO
        assert orchestrator.run.solution is None

    def test_snapshot_is_detached(self, make_orchestrator):
        orchestrator = make_orchestrator()
        asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM))
        snapshot = orchestrator.snapshot()
        snapshot.agents.clear()
        snapshot.solution.steps.clear()
        assert len(orchestrator.run.agents) == 5
        assert len(orchestrator.run.solution.steps) == 7

    def test_failing_listener_does_not_break_pipeline(self, make_orchestrator):
        orchestrator = make_orchestrator()

        def broken(event):
            raise RuntimeError("listener bug")

        orchestrator.add_listener(broken)
        assert asyncio.run(orchestrator.submit(DERIVATIVE_PROBLEM)) is not None

    def test_removed_listener_stops_receiving(self, make_orchestrator, events):
        orchestrator = make_orchestrator()
        orchestrator.remove_listener(events.append)
        orchestrator.reset()
        assert events == []
