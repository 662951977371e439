"""
Pipeline State
Typed data model shared by the orchestrator, the agents and the gateways.

Python attribute names are snake_case; gateway payloads use the camelCase
aliases, so ``Solution.model_validate(payload)`` accepts the wire format.
"""

import base64
import binascii
import hashlib
import math
import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.confidence import clamp_confidence


class InputMode(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    AUDIO = "audio"


class AgentType(str, Enum):
    PARSE = "parse"
    ROUTE = "route"
    SOLVE = "solve"
    VERIFY = "verify"
    EXPLAIN = "explain"


# Execution order of the five stages
AGENT_ORDER: List[AgentType] = [
    AgentType.PARSE,
    AgentType.ROUTE,
    AgentType.SOLVE,
    AgentType.VERIFY,
    AgentType.EXPLAIN,
]


class AgentStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    WAITING_HITL = "waiting-hitl"


class Topic(str, Enum):
    ALGEBRA = "algebra"
    PROBABILITY = "probability"
    CALCULUS = "calculus"
    LINEAR_ALGEBRA = "linear-algebra"
    UNKNOWN = "unknown"


class VerificationStatus(str, Enum):
    VERIFIED = "verified"
    UNCERTAIN = "uncertain"
    FAILED = "failed"


class HITLKind(str, Enum):
    OCR_CORRECTION = "ocr-correction"
    ASR_CORRECTION = "asr-correction"
    CLARIFICATION = "clarification"
    VERIFICATION = "verification"


class HITLDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


_DATA_URL_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)


def _new_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ---------- Stage status ----------

class AgentState(_WireModel):
    """Status of one of the five fixed pipeline stages."""

    type: AgentType
    status: AgentStatus = AgentStatus.IDLE
    message: Optional[str] = None
    start_time: Optional[float] = Field(default=None, alias="startTime")
    end_time: Optional[float] = Field(default=None, alias="endTime")


def initial_agents() -> List[AgentState]:
    return [AgentState(type=agent_type) for agent_type in AGENT_ORDER]


# ---------- Problem & solution ----------

class ParsedProblem(_WireModel):
    problem_text: str = Field(alias="problemText")
    topic: Topic = Topic.UNKNOWN
    variables: List[str] = Field(default_factory=list)
    constraints: List[str] = Field(default_factory=list)
    # Reserved: no code path sets this yet
    needs_clarification: bool = Field(default=False, alias="needsClarification")
    clarification_reason: Optional[str] = Field(default=None, alias="clarificationReason")


class SolutionStep(_WireModel):
    step_number: int = Field(alias="stepNumber")
    description: str = ""
    formula: Optional[str] = None
    result: Optional[str] = None


DEFAULT_CONFIDENCE = 0.85
DEFAULT_FINAL_ANSWER = "See steps above"
DEFAULT_EXPLANATION = "Solution provided by AI."


class Solution(_WireModel):
    """
    Structured solution returned by the solving gateway.

    Validation fills defaults for missing or malformed fields so that every
    Solution entering orchestrator state is well formed.
    """

    steps: List[SolutionStep] = Field(default_factory=list)
    final_answer: str = Field(default=DEFAULT_FINAL_ANSWER, alias="finalAnswer")
    confidence: float = DEFAULT_CONFIDENCE
    verification_status: VerificationStatus = Field(
        default=VerificationStatus.UNCERTAIN, alias="verificationStatus"
    )
    explanation: str = DEFAULT_EXPLANATION
    retrieved_context: List[str] = Field(default_factory=list, alias="retrievedContext")

    @field_validator("steps", mode="before")
    @classmethod
    def _default_steps(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        steps = []
        for index, item in enumerate(value, start=1):
            if isinstance(item, SolutionStep):
                steps.append(item)
            elif isinstance(item, dict):
                item = dict(item)
                number = item.get("stepNumber", item.get("step_number"))
                if isinstance(number, bool) or not isinstance(number, (int, float)) or not math.isfinite(number):
                    item["stepNumber"] = index
                else:
                    item["stepNumber"] = int(number)
                item.pop("step_number", None)
                item["description"] = str(item.get("description") or "")
                for key in ("formula", "result"):
                    if item.get(key) is not None:
                        item[key] = str(item[key])
                steps.append(item)
        return steps

    @field_validator("final_answer", mode="before")
    @classmethod
    def _default_final_answer(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return DEFAULT_FINAL_ANSWER
        return str(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _default_confidence(cls, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
            return DEFAULT_CONFIDENCE
        return clamp_confidence(value)

    @field_validator("verification_status", mode="before")
    @classmethod
    def _default_verification_status(cls, value: Any) -> VerificationStatus:
        try:
            return VerificationStatus(value)
        except (TypeError, ValueError):
            return VerificationStatus.UNCERTAIN

    @field_validator("explanation", mode="before")
    @classmethod
    def _default_explanation(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            return DEFAULT_EXPLANATION
        return str(value)

    @field_validator("retrieved_context", mode="before")
    @classmethod
    def _default_retrieved_context(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item is not None]


# ---------- Recognition ----------

class Extraction(_WireModel):
    extracted_text: str = Field(alias="extractedText")
    confidence: float = Field(ge=0.0, le=1.0)


class MediaInput(BaseModel):
    """Captured binary media (an uploaded photo or an audio recording)."""

    model_config = ConfigDict(frozen=True)

    data: bytes
    mime_type: str = "application/octet-stream"

    @classmethod
    def from_data_url(cls, data_url: str, default_mime_type: str = "application/octet-stream") -> "MediaInput":
        """
        Decode a ``data:<mime>;base64,<payload>`` URL.

        A bare base64 string is accepted too; its MIME type cannot be inferred
        and falls back to ``default_mime_type``.

        Raises:
            ValueError: If the payload is not valid base64
        """
        match = _DATA_URL_RE.match(data_url.strip())
        if match:
            mime_type, payload = match.group(1), match.group(2)
        else:
            mime_type, payload = default_mime_type, data_url.strip()
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Invalid base64 media payload: {e}") from e
        return cls(data=data, mime_type=mime_type)

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"

    def describe(self) -> str:
        """Short reference kept on the run instead of the raw bytes."""
        digest = hashlib.sha256(self.data).hexdigest()[:12]
        return f"{self.mime_type} ({len(self.data)} bytes, sha256:{digest})"


# ---------- Human in the loop ----------

class HITLRequest(_WireModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default_factory=_new_id)
    kind: HITLKind
    original_content: str = Field(alias="originalContent")
    suggested_content: Optional[str] = Field(default=None, alias="suggestedContent")
    message: str
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")


# ---------- Memory ----------

class MemoryEntry(_WireModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(default_factory=_new_id)
    timestamp: datetime = Field(default_factory=_utcnow)
    input_mode: InputMode = Field(alias="inputMode")
    original_input: str = Field(alias="originalInput")
    problem: ParsedProblem
    solution: Solution
    was_correct: bool = Field(alias="wasCorrect")
    user_feedback: Optional[str] = Field(default=None, alias="userFeedback")


# ---------- Notifications ----------

class Notification(BaseModel):
    title: str
    description: str = ""
    variant: str = "default"  # "default" | "destructive"


# ---------- Run ----------

class PipelineRun(_WireModel):
    """One attempt to solve one problem. Replaced wholesale, never patched back."""

    input_mode: InputMode = Field(default=InputMode.TEXT, alias="inputMode")
    raw_input: Optional[str] = Field(default=None, alias="rawInput")
    extracted_text: str = Field(default="", alias="extractedText")
    extraction_confidence: Optional[float] = Field(default=None, alias="extractionConfidence")
    problem: Optional[ParsedProblem] = None
    solution: Optional[Solution] = None
    agents: List[AgentState] = Field(default_factory=initial_agents)
    hitl_request: Optional[HITLRequest] = Field(default=None, alias="hitlRequest")

    def agent(self, agent_type: AgentType) -> AgentState:
        for state in self.agents:
            if state.type == agent_type:
                return state
        raise KeyError(agent_type)
