"""
Orchestrator
Drives the five-stage solving pipeline (parse -> route -> solve -> verify ->
explain), the recognition step for photos and recordings, the human review
gate for low-confidence extractions and the memory of solved problems.

Progress is published on a per-orchestrator event bus:
    {"type": "state", "run": PipelineRun, "is_processing": bool}
    {"type": "agent", "agent": "solve", "status": "running", "message": "..."}
    {"type": "notification", "title": "...", "description": "...", "variant": "..."}
"""

import logging
import time
from typing import List, Optional, Union

from agents.events import EventBus, Listener
from agents.explainer_agent import ExplainerAgent
from agents.hitl import HITLGate
from agents.parser_agent import ParserAgent
from agents.router_agent import RouterAgent
from agents.solver_agent import SolverAgent
from agents.state import (
    AgentStatus,
    AgentType,
    Extraction,
    HITLDecision,
    InputMode,
    MediaInput,
    MemoryEntry,
    Notification,
    PipelineRun,
    Solution,
)
from agents.verifier_agent import VerifierAgent
from config import AppConfig, get_config
from llm.errors import GatewayError, USER_MESSAGES, GatewayErrorKind
from memory.memory_store import MemoryStore

logger = logging.getLogger(__name__)


GENERIC_FAILURE = USER_MESSAGES[GatewayErrorKind.UPSTREAM]

_DEFAULT_MIME_TYPES = {
    InputMode.IMAGE: "image/png",
    InputMode.AUDIO: "audio/webm",
}


class PipelineBusyError(RuntimeError):
    """Raised when work is submitted while a run is still processing."""


class PipelineOrchestrator:
    """
    Owns the current PipelineRun and moves it through the pipeline.

    One run is active at a time. A new submission or ``reset`` replaces the
    run wholesale; submissions made while a run is processing are rejected
    with ``PipelineBusyError``. Gateway failures never escape ``submit`` or
    ``submit_media``: they end the run with an error stage and a notification.

    Gateways are injected:
        solving_gateway: ``async solve(problem_text, topic) -> Solution``
        image_gateway:   ``async extract(image_data) -> Extraction``
        audio_gateway:   ``async transcribe(audio_data) -> Extraction``
    """

    def __init__(self, solving_gateway, image_gateway=None, audio_gateway=None,
                 memory: Optional[MemoryStore] = None, parser: Optional[ParserAgent] = None,
                 config: Optional[AppConfig] = None):
        config = config or get_config()

        self.parser = parser or ParserAgent()
        self.router = RouterAgent()
        self.solver = SolverAgent(solving_gateway)
        self.verifier = VerifierAgent()
        self.explainer = ExplainerAgent()

        self.image_gateway = image_gateway
        self.audio_gateway = audio_gateway

        self.hitl = HITLGate(threshold=config.hitl_confidence_threshold)
        self.memory_store = memory if memory is not None else MemoryStore(config.memory_max_entries)
        self.events = EventBus()

        self._run = PipelineRun()
        self._processing = False

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def run(self) -> PipelineRun:
        return self._run

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def memory(self) -> List[MemoryEntry]:
        """Stored entries, newest first."""
        return self.memory_store.entries

    def snapshot(self) -> PipelineRun:
        """Deep copy of the current run, safe to hand to observers."""
        return self._run.model_copy(deep=True)

    def add_listener(self, fn: Listener):
        self.events.add_listener(fn)

    def remove_listener(self, fn: Listener):
        self.events.remove_listener(fn)

    def _emit_state(self):
        self.events.emit({"type": "state", "run": self.snapshot(), "is_processing": self._processing})

    def _notify(self, title: str, description: str = "", variant: str = "default"):
        notification = Notification(title=title, description=description, variant=variant)
        logger.info("Notification: %s - %s", notification.title, notification.description)
        self.events.emit({"type": "notification", **notification.model_dump()})

    def _set_agent(self, run: PipelineRun, agent_type: AgentType, status: AgentStatus, message: str):
        """Replace one stage record and publish the transition."""
        now = time.time()
        for index, state in enumerate(run.agents):
            if state.type != agent_type:
                continue
            update = {"status": status, "message": message}
            if status == AgentStatus.RUNNING:
                update.update(start_time=now, end_time=None)
            elif status == AgentStatus.COMPLETED:
                update["end_time"] = now
            run.agents[index] = state.model_copy(update=update)
            break
        else:
            raise KeyError(agent_type)

        logger.info("[%s] %s: %s", agent_type.value, status.value, message)
        if run is self._run:
            self.events.emit({
                "type": "agent",
                "agent": agent_type.value,
                "status": status.value,
                "message": message,
            })
            self._emit_state()

    def _claim(self):
        # No await between the check and the set
        if self._processing:
            raise PipelineBusyError("A problem is already being processed")
        self._processing = True

    def _release(self, run: PipelineRun):
        # A reset during the await may already have replaced the run
        if run is self._run:
            self._processing = False
            self._emit_state()

    # ------------------------------------------------------------------
    # Solving
    # ------------------------------------------------------------------

    async def submit(self, input_text: str, mode: Union[InputMode, str] = InputMode.TEXT) -> Optional[Solution]:
        """
        Run the full pipeline on problem text.

        For ``image``/``audio`` mode the text is the confirmed or corrected
        extraction; the media reference and extraction confidence of the
        current run are carried over.

        Args:
            input_text: Problem text
            mode: Input mode the text came from

        Returns:
            The Solution, or None when solving failed

        Raises:
            PipelineBusyError: If a run is already processing
            ValueError: If the text is empty
        """
        mode = InputMode(mode)
        if self._processing:
            raise PipelineBusyError("A problem is already being processed")
        if not input_text or not input_text.strip():
            raise ValueError("Problem text is empty")
        text = input_text.strip()

        previous = self._run
        self._claim()
        self.hitl.discard()
        if mode == InputMode.TEXT:
            run = PipelineRun(input_mode=mode, raw_input=text, extracted_text=text)
        else:
            run = PipelineRun(
                input_mode=mode,
                raw_input=previous.raw_input,
                extracted_text=text,
                extraction_confidence=previous.extraction_confidence,
            )
        self._run = run
        logger.info("Starting %s run: %s", mode.value, text[:100])
        self._emit_state()

        try:
            return await self._run_stages(run, text)
        finally:
            self._release(run)

    async def _run_stages(self, run: PipelineRun, text: str) -> Optional[Solution]:
        # Parse
        self._set_agent(run, AgentType.PARSE, AgentStatus.RUNNING, "Parsing problem")
        problem = self.parser.parse(text)
        run.problem = problem
        self._set_agent(run, AgentType.PARSE, AgentStatus.COMPLETED, f"Detected topic: {problem.topic.value}")

        # Route
        self._set_agent(run, AgentType.ROUTE, AgentStatus.RUNNING, "Selecting solver")
        topic = self.router.route(problem)
        self._set_agent(run, AgentType.ROUTE, AgentStatus.COMPLETED, self.router.describe(topic))

        # Solve
        self._set_agent(run, AgentType.SOLVE, AgentStatus.RUNNING, "Solving problem step by step")
        try:
            solution = await self.solver.solve(problem)
        except GatewayError as e:
            logger.warning("Solving failed (%s): %s", e.kind.value, e.message)
            self._fail(run, AgentType.SOLVE, e.message)
            return None
        except Exception:
            logger.exception("Unexpected error from solving gateway")
            self._fail(run, AgentType.SOLVE, GENERIC_FAILURE)
            return None
        run.solution = solution
        self._set_agent(run, AgentType.SOLVE, AgentStatus.COMPLETED, f"Solution found in {len(solution.steps)} steps")

        # Verify
        self._set_agent(run, AgentType.VERIFY, AgentStatus.RUNNING, "Checking verification result")
        self._set_agent(run, AgentType.VERIFY, AgentStatus.COMPLETED, self.verifier.verify(solution))

        # Explain
        self._set_agent(run, AgentType.EXPLAIN, AgentStatus.RUNNING, "Preparing explanation")
        self._set_agent(run, AgentType.EXPLAIN, AgentStatus.COMPLETED, self.explainer.explain(solution))

        if run is self._run:
            self._notify("Problem Solved!", "Check the solution below.")
        return solution

    def _fail(self, run: PipelineRun, agent_type: AgentType, message: str):
        self._set_agent(run, agent_type, AgentStatus.ERROR, message)
        if run is self._run:
            self._notify("Error", message or GENERIC_FAILURE, variant="destructive")

    # ------------------------------------------------------------------
    # Recognition
    # ------------------------------------------------------------------

    async def submit_media(self, media: Union[str, MediaInput], mode: Union[InputMode, str]) -> Optional[Extraction]:
        """
        Recognise a photo or a recording.

        The extraction is stored on the run for preview; nothing is solved
        until it is confirmed. Below the confidence threshold a review
        request is opened instead.

        Args:
            media: Base64 data URL (or MediaInput) of the image/audio
            mode: ``image`` or ``audio``

        Returns:
            The Extraction, or None when recognition failed

        Raises:
            PipelineBusyError: If a run is already processing
            ValueError: For text mode, a missing gateway or undecodable media
        """
        mode = InputMode(mode)
        if mode == InputMode.TEXT:
            raise ValueError("Text input goes through submit()")
        gateway = self.image_gateway if mode == InputMode.IMAGE else self.audio_gateway
        if gateway is None:
            raise ValueError(f"No {mode.value} recognition gateway configured")
        if self._processing:
            raise PipelineBusyError("A problem is already being processed")

        if isinstance(media, MediaInput):
            data_url = media.to_data_url()
            reference = media.describe()
        else:
            if not media:
                raise ValueError(f"No {mode.value} data provided")
            data_url = media
            reference = MediaInput.from_data_url(media, default_mime_type=_DEFAULT_MIME_TYPES[mode]).describe()

        self._claim()
        self.hitl.discard()
        run = PipelineRun(input_mode=mode, raw_input=reference)
        self._run = run
        logger.info("Starting %s recognition: %s", mode.value, reference)
        self._emit_state()

        try:
            extraction = await self._recognize(gateway, mode, data_url)
            if extraction is None or run is not self._run:
                return extraction

            run.extracted_text = extraction.extracted_text
            run.extraction_confidence = extraction.confidence

            if self.hitl.needs_review(extraction.confidence):
                request = self.hitl.open(extraction, mode)
                run.hitl_request = request
                self._set_agent(run, AgentType.PARSE, AgentStatus.WAITING_HITL, request.message)
            return extraction
        finally:
            self._release(run)

    async def _recognize(self, gateway, mode: InputMode, data_url: str) -> Optional[Extraction]:
        label = "Image" if mode == InputMode.IMAGE else "Audio"
        try:
            if mode == InputMode.IMAGE:
                return await gateway.extract(data_url)
            return await gateway.transcribe(data_url)
        except GatewayError as e:
            logger.warning("%s recognition failed (%s): %s", label, e.kind.value, e.message)
            self._notify(f"{label} processing failed", e.message, variant="destructive")
        except Exception:
            logger.exception("Unexpected error from %s recognition gateway", mode.value)
            self._notify(f"{label} processing failed", GENERIC_FAILURE, variant="destructive")
        return None

    async def confirm_extraction(self, text: str) -> Optional[Solution]:
        """Solve the previewed (possibly edited) extraction."""
        return await self.submit(text, self._run.input_mode)

    def reject_extraction(self):
        if self._processing:
            raise PipelineBusyError("A problem is already being processed")
        self._run.extracted_text = ""
        logger.debug("Extraction preview discarded")
        self._emit_state()

    # ------------------------------------------------------------------
    # Human review
    # ------------------------------------------------------------------

    async def resolve_hitl(self, decision: Union[HITLDecision, str],
                           corrected_content: Optional[str] = None) -> Optional[Solution]:
        """
        Approve or reject the pending review request.

        Approve submits the corrected content (or the original extraction
        when no correction is given). Reject drops the extraction and leaves
        the pipeline ready for new input. Without a pending request this is
        a no-op.
        """
        if self.hitl.pending is None:
            logger.debug("resolve_hitl(%s) with no pending request", decision)
            return None
        decision = HITLDecision(decision)
        content = self.hitl.resolve(decision, corrected_content)
        run = self._run
        run.hitl_request = None

        if decision == HITLDecision.REJECT:
            self._run = PipelineRun(input_mode=run.input_mode)
            self._emit_state()
            self._notify("Input rejected", "Please try again with a clearer input.")
            return None

        self._emit_state()
        return await self.submit(content, run.input_mode)

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def record_feedback(self, correct: bool, comment: Optional[str] = None) -> Optional[MemoryEntry]:
        """
        Store the current problem and solution with the user's verdict.

        Without a completed solution this is a silent no-op.
        """
        run = self._run
        if run.problem is None or run.solution is None:
            logger.debug("Feedback ignored: no completed solution")
            return None

        entry = MemoryEntry(
            input_mode=run.input_mode,
            original_input=run.extracted_text or run.raw_input or run.problem.problem_text,
            problem=run.problem,
            solution=run.solution,
            was_correct=bool(correct),
            user_feedback=comment or None,
        )
        self.memory_store.append(entry)
        if correct:
            self._notify("Thanks for the feedback!", "This solution has been saved to memory.")
        else:
            self._notify("We'll improve!", "Your correction helps us learn.")
        self._emit_state()
        return entry

    def select_memory_entry(self, entry_id: str) -> Optional[MemoryEntry]:
        """Load a stored problem and its solution into a fresh run."""
        if self._processing:
            raise PipelineBusyError("A problem is already being processed")
        entry = self.memory_store.select(entry_id)
        if entry is None:
            logger.debug("Unknown memory entry %s", entry_id)
            return None

        self.hitl.discard()
        self._run = PipelineRun(
            input_mode=entry.input_mode,
            raw_input=entry.original_input,
            extracted_text=entry.original_input,
            problem=entry.problem.model_copy(deep=True),
            solution=entry.solution.model_copy(deep=True),
        )
        self._emit_state()
        return entry

    def clear_memory(self):
        self.memory_store.clear()
        self._notify("Memory cleared")
        self._emit_state()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def set_input_mode(self, mode: Union[InputMode, str]):
        mode = InputMode(mode)
        if self._processing:
            raise PipelineBusyError("A problem is already being processed")
        self._run.input_mode = mode
        self._emit_state()

    def reset(self):
        """Start over with an empty run. Safe to call repeatedly."""
        self.hitl.discard()
        self._run = PipelineRun()
        self._processing = False
        logger.debug("Pipeline reset")
        self._emit_state()
