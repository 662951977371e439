"""Centralised configuration.

Values come from the environment (a ``.env`` file is loaded first).

Env vars
--------
GROQ_API_KEY                Groq API key used by every gateway
SOLVER_MODEL                Chat model for the solving gateway
VISION_MODEL                Vision model for image recognition
ASR_MODEL                   Speech-to-text model for audio recognition
SOLVER_TEMPERATURE          Sampling temperature of the solver
MAX_TOKENS                  Completion budget of the solver
GATEWAY_TIMEOUT             Per-request timeout in seconds
HITL_CONFIDENCE_THRESHOLD   Extractions below this go to human review
MEMORY_MAX_ENTRIES          Memory Store bound (0 = unbounded)
LOG_LEVEL                   Logging level name
"""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_SOLVER_MODEL = "llama-3.3-70b-versatile"
DEFAULT_VISION_MODEL = "meta-llama/llama-4-scout-17b-16e-instruct"
DEFAULT_ASR_MODEL = "whisper-large-v3"


@dataclass
class AppConfig:
    groq_api_key: str = ""
    solver_model: str = DEFAULT_SOLVER_MODEL
    vision_model: str = DEFAULT_VISION_MODEL
    asr_model: str = DEFAULT_ASR_MODEL
    solver_temperature: float = 0.1
    max_tokens: int = 2048
    gateway_timeout: float = 60.0
    hitl_confidence_threshold: float = 0.7
    memory_max_entries: int = 200
    log_level: str = "INFO"


def load_config() -> AppConfig:
    return AppConfig(
        groq_api_key=os.getenv("GROQ_API_KEY", ""),
        solver_model=os.getenv("SOLVER_MODEL", DEFAULT_SOLVER_MODEL),
        vision_model=os.getenv("VISION_MODEL", DEFAULT_VISION_MODEL),
        asr_model=os.getenv("ASR_MODEL", DEFAULT_ASR_MODEL),
        solver_temperature=float(os.getenv("SOLVER_TEMPERATURE", "0.1")),
        max_tokens=int(os.getenv("MAX_TOKENS", "2048")),
        gateway_timeout=float(os.getenv("GATEWAY_TIMEOUT", "60")),
        hitl_confidence_threshold=float(os.getenv("HITL_CONFIDENCE_THRESHOLD", "0.7")),
        memory_max_entries=int(os.getenv("MEMORY_MAX_ENTRIES", "200")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> AppConfig:
    global _config
    _config = load_config()
    return _config
