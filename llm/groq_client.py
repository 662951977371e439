"""
Central Groq LLM Client for Math Mentor
Solving gateway: turns problem text plus a topic hint into a structured Solution.

The model is forced to answer through the ``solve_math_problem`` tool so the
reply is JSON; the arguments are validated once here, with defaults filled in,
before anything reaches the orchestrator.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

import groq
from groq import AsyncGroq
from pydantic import ValidationError

from agents.state import Solution, VerificationStatus
from config import AppConfig, get_config
from llm.errors import GatewayError, GatewayErrorKind

logger = logging.getLogger(__name__)


# ============================================================================
# LOCKED SOLVER SYSTEM PROMPT - DO NOT MODIFY AT RUNTIME
# ============================================================================
_LOCKED_SOLVER_SYSTEM_PROMPT = """You are an expert mathematics tutor and solver. Your task is to solve mathematical problems step-by-step with clear explanations.

You MUST respond using the solve_math_problem function with a structured solution.

Guidelines:
1. Break down the solution into clear, numbered steps
2. Show formulas and intermediate calculations
3. Provide the final answer clearly
4. Explain the reasoning in simple terms
5. Verify your answer is correct
6. Use proper mathematical notation (√, π, ², ³, ∫, Σ, etc.)

For each step, provide:
- A clear description of what you're doing
- The formula or operation being applied (if any)
- The result of that step (if applicable)"""

# Guard flag to ensure prompt immutability
_SOLVER_PROMPT_LOCKED = True


def _get_locked_solver_prompt() -> str:
    """
    Get the locked solver system prompt.
    This function ensures the prompt cannot be modified at runtime.
    """
    if not _SOLVER_PROMPT_LOCKED:
        raise RuntimeError("SECURITY ERROR: Solver prompt lock has been tampered with.")
    return _LOCKED_SOLVER_SYSTEM_PROMPT


SOLVE_TOOL_NAME = "solve_math_problem"

SOLVE_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": SOLVE_TOOL_NAME,
        "description": "Return a structured solution to a math problem with steps, final answer, and explanation.",
        "parameters": {
            "type": "object",
            "properties": {
                "steps": {
                    "type": "array",
                    "description": "Array of solution steps",
                    "items": {
                        "type": "object",
                        "properties": {
                            "stepNumber": {"type": "number", "description": "The step number (1, 2, 3, ...)"},
                            "description": {"type": "string", "description": "What is being done in this step"},
                            "formula": {"type": "string", "description": "Formula or expression used (optional)"},
                            "result": {"type": "string", "description": "Result of this step (optional)"},
                        },
                        "required": ["stepNumber", "description"],
                    },
                },
                "finalAnswer": {"type": "string", "description": "The final answer, clearly stated"},
                "confidence": {"type": "number", "description": "Confidence in the solution (0.0 to 1.0)"},
                "verificationStatus": {
                    "type": "string",
                    "enum": [status.value for status in VerificationStatus],
                    "description": "Whether the solution was verified as correct",
                },
                "explanation": {"type": "string", "description": "Overall approach and key insights"},
                "retrievedContext": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Concepts, formulas or theorems used",
                },
            },
            "required": [
                "steps", "finalAnswer", "confidence",
                "verificationStatus", "explanation", "retrievedContext",
            ],
        },
    },
}

# Confidence given to a plain-text answer that skipped the tool call
CONTENT_FALLBACK_CONFIDENCE = 0.8


class GroqClient:
    """
    Solving gateway backed by the Groq chat completions API.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 client: Optional[AsyncGroq] = None, config: Optional[AppConfig] = None):
        """
        Initialize the Groq client.

        Args:
            api_key: Groq API key (defaults to GROQ_API_KEY from config)
            model: Chat model (defaults to SOLVER_MODEL from config)
            client: Pre-built async client, mainly for tests
            config: Application config (defaults to the cached one)
        """
        config = config or get_config()
        self.model = model or config.solver_model
        self.temperature = config.solver_temperature
        self.max_tokens = config.max_tokens

        if client is not None:
            self.client = client
        else:
            api_key = api_key or config.groq_api_key
            if not api_key:
                raise ValueError("GROQ_API_KEY not found in environment variables")
            self.client = AsyncGroq(api_key=api_key, timeout=config.gateway_timeout)

    async def solve(self, problem_text: str, topic: str) -> Solution:
        """
        Solve a problem through the forced tool call.

        Args:
            problem_text: The confirmed problem statement
            topic: Topic hint from the classifier

        Returns:
            A validated Solution

        Raises:
            ValueError: If the problem text is empty
            GatewayError: On any upstream or parsing failure
        """
        if not problem_text or not problem_text.strip():
            raise ValueError("No problem text provided")

        logger.info("Solving %s problem: %s", topic or "mathematics", problem_text[:100])

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": _get_locked_solver_prompt()},
                    {
                        "role": "user",
                        "content": f"Solve this {topic or 'mathematics'} problem step by step:\n\n{problem_text}",
                    },
                ],
                tools=[SOLVE_TOOL],
                tool_choice={"type": "function", "function": {"name": SOLVE_TOOL_NAME}},
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except groq.APIError as e:
            error = GatewayError.from_exception(e)
            logger.warning("Solver request failed (%s): %s", error.kind.value, e)
            raise error from e

        return self._parse_response(response)

    def _parse_response(self, response: Any) -> Solution:
        choices = getattr(response, "choices", None)
        if not choices:
            raise GatewayError(GatewayErrorKind.MALFORMED_RESPONSE, "No valid solution received from AI")

        message = choices[0].message
        tool_calls = getattr(message, "tool_calls", None) or []
        tool_call = next(
            (call for call in tool_calls if call.function.name == SOLVE_TOOL_NAME),
            None,
        )

        if tool_call is None:
            content = (getattr(message, "content", None) or "").strip()
            if not content:
                raise GatewayError(GatewayErrorKind.MALFORMED_RESPONSE, "No valid solution received from AI")
            logger.info("No tool call, using content fallback")
            return Solution(
                steps=[{"stepNumber": 1, "description": "AI provided solution", "result": content}],
                final_answer=content,
                confidence=CONTENT_FALLBACK_CONFIDENCE,
                verification_status=VerificationStatus.UNCERTAIN,
                explanation=content,
            )

        payload = self._parse_solver_json(tool_call.function.arguments or "")
        if not payload:
            raise GatewayError(GatewayErrorKind.MALFORMED_RESPONSE, "Failed to parse AI solution")

        try:
            return Solution.model_validate(payload)
        except ValidationError as e:
            logger.warning("Solver payload failed validation: %s", e)
            raise GatewayError(GatewayErrorKind.MALFORMED_RESPONSE, "Failed to parse AI solution") from e

    def _parse_solver_json(self, text: str) -> Dict[str, Any]:
        """Parse JSON from solver response."""
        try:
            result = json.loads(text)
            return result if isinstance(result, dict) else {}
        except json.JSONDecodeError:
            pass

        # Try extracting JSON from markdown code blocks
        json_patterns = [
            r'```json\s*([\s\S]*?)\s*```',
            r'```\s*([\s\S]*?)\s*```',
            r'\{[\s\S]*\}'
        ]

        for pattern in json_patterns:
            match = re.search(pattern, text)
            if match:
                try:
                    json_str = match.group(1) if '```' in pattern else match.group(0)
                    result = json.loads(json_str)
                    if isinstance(result, dict):
                        return result
                except json.JSONDecodeError:
                    continue

        return {}
