"""Shared fixtures: fake gateways and stub Groq clients."""

import base64
import json
from types import SimpleNamespace

import httpx
import pytest

from agents.state import Extraction, Solution
from config import AppConfig

GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"


class FakeSolvingGateway:
    def __init__(self, solution=None, error=None):
        self.solution = solution
        self.error = error
        self.calls = []

    async def solve(self, problem_text, topic):
        self.calls.append((problem_text, topic))
        if self.error is not None:
            raise self.error
        return self.solution


class FakeRecognitionGateway:
    """Stands in for both VisionEngine.extract and WhisperEngine.transcribe."""

    def __init__(self, extraction=None, error=None):
        self.extraction = extraction
        self.error = error
        self.calls = []

    async def _recognize(self, data):
        self.calls.append(data)
        if self.error is not None:
            raise self.error
        return self.extraction

    async def extract(self, image_data):
        return await self._recognize(image_data)

    async def transcribe(self, audio_data):
        return await self._recognize(audio_data)


class StubEndpoint:
    """Async ``create`` endpoint recording its kwargs."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture
def config():
    return AppConfig(groq_api_key="test-key")


@pytest.fixture
def derivative_solution():
    return Solution.model_validate({
        "steps": [
            {"stepNumber": 1, "description": "Identify the function", "formula": "f(x) = x³ + 2x² - 5x + 3"},
            {"stepNumber": 2, "description": "Apply the power rule", "formula": "d/dx[xⁿ] = nxⁿ⁻¹"},
            {"stepNumber": 3, "description": "Differentiate x³", "result": "3x²"},
            {"stepNumber": 4, "description": "Differentiate 2x²", "result": "4x"},
            {"stepNumber": 5, "description": "Differentiate -5x", "result": "-5"},
            {"stepNumber": 6, "description": "Differentiate the constant 3", "result": "0"},
            {"stepNumber": 7, "description": "Combine the terms", "result": "3x² + 4x - 5"},
        ],
        "finalAnswer": "f'(x) = 3x² + 4x - 5",
        "confidence": 0.95,
        "verificationStatus": "verified",
        "explanation": "Differentiate term by term with the power rule.",
        "retrievedContext": ["Power rule"],
    })


@pytest.fixture
def solving_gateway(derivative_solution):
    return FakeSolvingGateway(solution=derivative_solution)


@pytest.fixture
def make_solver():
    return FakeSolvingGateway


@pytest.fixture
def make_recognizer():
    def _make(text="Find the derivative of x^2", confidence=0.9, error=None):
        extraction = None if error else Extraction(extracted_text=text, confidence=confidence)
        return FakeRecognitionGateway(extraction=extraction, error=error)
    return _make


@pytest.fixture
def image_data_url():
    return "data:image/png;base64," + base64.b64encode(b"not-really-a-png").decode("ascii")


@pytest.fixture
def audio_data_url():
    return "data:audio/webm;base64," + base64.b64encode(b"fake-webm-audio").decode("ascii")


@pytest.fixture
def chat_client():
    """Build a stub exposing ``chat.completions.create``."""
    def _make(response=None, error=None):
        endpoint = StubEndpoint(response=response, error=error)
        return SimpleNamespace(chat=SimpleNamespace(completions=endpoint)), endpoint
    return _make


@pytest.fixture
def audio_client():
    """Build a stub exposing ``audio.transcriptions.create``."""
    def _make(response=None, error=None):
        endpoint = StubEndpoint(response=response, error=error)
        return SimpleNamespace(audio=SimpleNamespace(transcriptions=endpoint)), endpoint
    return _make


def chat_response(content=None, tool_arguments=None, tool_name="solve_math_problem"):
    tool_calls = None
    if tool_arguments is not None:
        if not isinstance(tool_arguments, str):
            tool_arguments = json.dumps(tool_arguments)
        tool_calls = [SimpleNamespace(function=SimpleNamespace(name=tool_name, arguments=tool_arguments))]
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


@pytest.fixture
def make_chat_response():
    return chat_response


@pytest.fixture
def groq_request():
    return httpx.Request("POST", GROQ_URL)


@pytest.fixture
def groq_response(groq_request):
    def _make(status_code):
        return httpx.Response(status_code, request=groq_request)
    return _make
