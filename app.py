"""
Math Mentor - Multimodal Input Application
Streamlit front end for the agent pipeline.
"""

import asyncio
import logging

import streamlit as st

from agents.orchestrator import PipelineBusyError, PipelineOrchestrator
from agents.state import AgentStatus, HITLDecision, InputMode, MediaInput, VerificationStatus
from asr.whisper_engine import WhisperEngine
from config import get_config
from llm.groq_client import GroqClient
from ocr.vision_engine import VisionEngine
from utils.confidence import format_confidence_percentage, get_confidence_color
from utils.logging_config import configure_logging

config = get_config()
configure_logging(config.log_level)
logger = logging.getLogger(__name__)


# Page configuration
st.set_page_config(
    page_title="Math Mentor",
    page_icon="🧮",
    layout="wide",
    initial_sidebar_state="expanded"
)


MODE_LABELS = {
    InputMode.TEXT: "📝 Text",
    InputMode.IMAGE: "🖼️ Image",
    InputMode.AUDIO: "🎤 Audio",
}

STATUS_ICONS = {
    AgentStatus.IDLE: "⚪",
    AgentStatus.RUNNING: "🔄",
    AgentStatus.COMPLETED: "✅",
    AgentStatus.ERROR: "❌",
    AgentStatus.WAITING_HITL: "✋",
}

VERIFICATION_BADGES = {
    VerificationStatus.VERIFIED: ("Verified ✓", "green"),
    VerificationStatus.UNCERTAIN: ("Uncertain", "orange"),
    VerificationStatus.FAILED: ("Failed", "red"),
}


# ============================================================================
# PIPELINE SETUP
# ============================================================================

def create_orchestrator() -> PipelineOrchestrator:
    """Build the orchestrator with the Groq-backed gateways."""
    logger.info("Creating pipeline orchestrator (solver=%s)", config.solver_model)
    return PipelineOrchestrator(
        solving_gateway=GroqClient(config=config),
        image_gateway=VisionEngine(config=config),
        audio_gateway=WhisperEngine(config=config),
        config=config,
    )


def _queue_notification(event: dict):
    if event.get("type") == "notification":
        st.session_state.notifications.append(event)


def get_orchestrator() -> PipelineOrchestrator:
    """One orchestrator per browser session."""
    if "notifications" not in st.session_state:
        st.session_state.notifications = []
    if "orchestrator" not in st.session_state:
        orchestrator = create_orchestrator()
        orchestrator.add_listener(_queue_notification)
        st.session_state.orchestrator = orchestrator
    return st.session_state.orchestrator


def run_async(coro):
    """Run a pipeline coroutine from Streamlit's synchronous script."""
    try:
        return asyncio.run(coro)
    except PipelineBusyError:
        st.warning("A problem is already being processed. Please wait.")
        return None


def show_notifications():
    while st.session_state.notifications:
        event = st.session_state.notifications.pop(0)
        icon = "⚠️" if event.get("variant") == "destructive" else "✅"
        message = f"**{event['title']}**"
        if event.get("description"):
            message += f"  \n{event['description']}"
        st.toast(message, icon=icon)


# ============================================================================
# RENDERING
# ============================================================================

def render_agent_trace(orchestrator: PipelineOrchestrator):
    """Render the five pipeline stages with their current status."""
    st.markdown("##### 🧠 Agent Trace")
    for agent in orchestrator.run.agents:
        icon = STATUS_ICONS[agent.status]
        line = f"{icon} **{agent.type.value.title()}**"
        if agent.message:
            line += f" · {agent.message}"
        if agent.start_time and agent.end_time:
            line += f" ({agent.end_time - agent.start_time:.2f}s)"
        st.markdown(line)


def render_extraction_preview(orchestrator: PipelineOrchestrator):
    """Let the user confirm, edit or discard an extraction."""
    run = orchestrator.run
    st.markdown("### ✏️ Review & Edit Before Sending")
    if run.extraction_confidence is not None:
        color = get_confidence_color(run.extraction_confidence)
        st.markdown(
            f"Extraction confidence: :{color}[{format_confidence_percentage(run.extraction_confidence)}]"
        )

    edited_input = st.text_area("Edit your question if needed:", value=run.extracted_text, height=120,
                                key="edit_input")
    col1, col2 = st.columns(2)
    with col1:
        if st.button("✅ Confirm & Solve", type="primary", use_container_width=True):
            if edited_input.strip():
                with st.spinner("🔍 Analyzing your problem..."):
                    run_async(orchestrator.confirm_extraction(edited_input))
                st.rerun()
            else:
                st.warning("Please enter the problem text.")
    with col2:
        if st.button("🗑️ Cancel", use_container_width=True):
            orchestrator.reject_extraction()
            st.rerun()


def render_hitl_dialog(orchestrator: PipelineOrchestrator):
    """Human review of a low-confidence extraction."""
    request = orchestrator.run.hitl_request
    st.warning(f"✋ **Human review required** · {request.message}")
    st.caption(f"Original: {request.original_content}")

    corrected = st.text_area("Corrected text:", value=request.suggested_content or request.original_content,
                             height=120, key=f"hitl_{request.id}")
    col1, col2 = st.columns(2)
    with col1:
        if st.button("✅ Approve", type="primary", use_container_width=True):
            if corrected.strip():
                with st.spinner("🔍 Analyzing your problem..."):
                    run_async(orchestrator.resolve_hitl(HITLDecision.APPROVE, corrected))
                st.rerun()
            else:
                st.warning("Corrected text cannot be empty.")
    with col2:
        if st.button("❌ Reject", use_container_width=True):
            run_async(orchestrator.resolve_hitl(HITLDecision.REJECT))
            st.rerun()


def render_solution(orchestrator: PipelineOrchestrator):
    """Render the solution card and the feedback buttons."""
    run = orchestrator.run
    solution = run.solution
    badge, color = VERIFICATION_BADGES[solution.verification_status]

    st.markdown(f"### 💡 Solution  :{color}[{badge}]")
    if run.problem is not None:
        st.caption(f"Topic: {run.problem.topic.value} · Variables: {', '.join(run.problem.variables) or '-'}")

    for step in solution.steps:
        st.markdown(f"**Step {step.step_number}.** {step.description}")
        if step.formula:
            st.code(step.formula, language=None)
        if step.result:
            st.markdown(f"→ {step.result}")

    st.success(f"**Answer**: {solution.final_answer}")
    st.metric("Confidence", format_confidence_percentage(solution.confidence))
    st.markdown(solution.explanation)

    if solution.retrieved_context:
        with st.expander("📚 References", expanded=False):
            for item in solution.retrieved_context:
                st.markdown(f"- {item}")

    st.markdown("##### Was this solution correct?")
    comment = st.text_input("Comment (optional)", key="feedback_comment")
    col1, col2 = st.columns(2)
    with col1:
        if st.button("👍 Correct", use_container_width=True):
            orchestrator.record_feedback(True, comment)
            st.rerun()
    with col2:
        if st.button("👎 Incorrect", use_container_width=True):
            orchestrator.record_feedback(False, comment)
            st.rerun()


def render_memory_sidebar(orchestrator: PipelineOrchestrator):
    st.markdown("### 🗂️ Memory")
    entries = orchestrator.memory
    if not entries:
        st.caption("No solved problems yet.")
        return

    for entry in entries:
        mark = "✅" if entry.was_correct else "❌"
        label = f"{mark} {entry.original_input[:40]}"
        if st.button(label, key=f"memory_{entry.id}", use_container_width=True,
                     help=entry.timestamp.strftime("%Y-%m-%d %H:%M")):
            try:
                orchestrator.select_memory_entry(entry.id)
            except PipelineBusyError:
                st.warning("A problem is already being processed. Please wait.")
            st.rerun()

    if st.button("🗑️ Clear Memory", use_container_width=True):
        orchestrator.clear_memory()
        st.rerun()


# ============================================================================
# MAIN APPLICATION
# ============================================================================

def main():
    """Main application function."""
    st.title("🧮 Math Mentor")
    st.caption("Step-by-step solutions for typed, photographed or spoken math problems.")

    try:
        orchestrator = get_orchestrator()
    except ValueError as e:
        st.error(f"Failed to start: {e}")
        st.stop()

    show_notifications()

    with st.sidebar:
        st.markdown("### ⚙️ Settings")
        modes = list(MODE_LABELS)
        selected = st.radio(
            "Choose input method:",
            modes,
            index=modes.index(orchestrator.run.input_mode),
            format_func=MODE_LABELS.get,
            key="sidebar_input_mode",
        )
        if selected != orchestrator.run.input_mode and not orchestrator.is_processing:
            orchestrator.set_input_mode(selected)

        if st.button("🔄 New Problem", use_container_width=True):
            orchestrator.reset()
            st.rerun()

        st.markdown("---")
        render_memory_sidebar(orchestrator)

    run = orchestrator.run
    mode = run.input_mode

    if run.hitl_request is not None:
        render_hitl_dialog(orchestrator)
    elif mode != InputMode.TEXT and run.extracted_text and run.solution is None and run.problem is None:
        render_extraction_preview(orchestrator)
    elif mode == InputMode.TEXT:
        user_input = st.text_area("Message", height=100, label_visibility="collapsed",
                                  placeholder="Ask a math question... (e.g., Find the derivative of x^2)")
        if st.button("➤ Solve", type="primary"):
            if user_input.strip():
                with st.spinner("🔍 Analyzing your problem..."):
                    run_async(orchestrator.submit(user_input))
                st.rerun()
            else:
                st.warning("Please enter a math problem.")
    else:
        if mode == InputMode.IMAGE:
            uploaded_file = st.file_uploader("Upload image", type=["jpg", "jpeg", "png", "webp"])
            spinner = "📷 Extracting text from the image..."
        else:
            uploaded_file = st.file_uploader("Upload audio", type=["wav", "mp3", "m4a", "ogg", "webm"])
            spinner = "🎧 Transcribing audio..."

        if st.button("🔍 Process", type="primary", disabled=uploaded_file is None):
            media = MediaInput(data=uploaded_file.getvalue(),
                               mime_type=uploaded_file.type or "application/octet-stream")
            with st.spinner(spinner):
                run_async(orchestrator.submit_media(media, mode))
            st.rerun()

    st.markdown("---")
    render_agent_trace(orchestrator)

    if orchestrator.run.solution is not None:
        st.markdown("---")
        render_solution(orchestrator)


if __name__ == "__main__":
    main()
