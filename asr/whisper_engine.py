"""
ASR Engine using Whisper (hosted on Groq) for audio transcription.
"""

import logging
from typing import Optional

import groq
from groq import AsyncGroq

from agents.state import Extraction, MediaInput
from config import AppConfig, get_config
from llm.errors import GatewayError, GatewayErrorKind
from utils.math_normalizer import MathNormalizer

logger = logging.getLogger(__name__)

# Browsers' MediaRecorder produces webm when no MIME type is given
DEFAULT_AUDIO_MIME_TYPE = "audio/webm"

TRANSCRIPTION_PROMPT = (
    "Transcribe mathematical expressions accurately. "
    "Use symbols like + - * / =, √, π when appropriate."
)

# Whisper exposes no usable per-request score through the hosted API
TRANSCRIPTION_CONFIDENCE = 0.9


def mime_to_extension(mime_type: str) -> str:
    """Filename extension the transcription endpoint uses to sniff the format."""
    mt = mime_type.lower()
    if "webm" in mt:
        return "webm"
    if "ogg" in mt:
        return "ogg"
    if "wav" in mt:
        return "wav"
    if "mpeg" in mt or "mp3" in mt:
        return "mp3"
    if "m4a" in mt:
        return "m4a"
    if "mp4" in mt:
        return "mp4"
    return "bin"


class WhisperEngine:
    """
    Audio recognition gateway: spoken problem -> transcribed text + confidence.
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 client: Optional[AsyncGroq] = None, config: Optional[AppConfig] = None):
        """
        Initialize Whisper engine.

        Args:
            api_key: Groq API key. If not provided, read from config.
            model: Transcription model (defaults to ASR_MODEL from config)
            client: Pre-built async client, mainly for tests
            config: Application config (defaults to the cached one)
        """
        config = config or get_config()
        self.model_name = model or config.asr_model

        if client is not None:
            self.client = client
        else:
            api_key = api_key or config.groq_api_key
            if not api_key:
                raise ValueError("GROQ_API_KEY not found in environment variables")
            self.client = AsyncGroq(api_key=api_key, timeout=config.gateway_timeout)

    async def transcribe(self, audio_data: str, language: Optional[str] = None) -> Extraction:
        """
        Transcribe audio to text.

        Args:
            audio_data: Base64 data URL of the recording (bare base64 is read as webm)
            language: Language code (e.g., 'en'). If None, auto-detect.

        Returns:
            Extraction with spoken math rewritten to symbols

        Raises:
            ValueError: If the audio data is missing or not base64
            GatewayError: On upstream failure or an empty transcription
        """
        if not audio_data or not isinstance(audio_data, str):
            raise ValueError("No audio data provided")

        media = MediaInput.from_data_url(audio_data, default_mime_type=DEFAULT_AUDIO_MIME_TYPE)
        ext = mime_to_extension(media.mime_type)
        logger.info("Processing ASR request: mimeType=%s ext=%s bytes=%d", media.mime_type, ext, len(media.data))

        kwargs = {
            "file": (f"audio.{ext}", media.data),
            "model": self.model_name,
            "prompt": TRANSCRIPTION_PROMPT,
            "response_format": "json",
        }
        if language:
            kwargs["language"] = language

        try:
            result = await self.client.audio.transcriptions.create(**kwargs)
        except groq.APIError as e:
            error = GatewayError.from_exception(e)
            logger.warning("Transcription request failed (%s): %s", error.kind.value, e)
            raise error from e

        text = str(getattr(result, "text", "") or "").strip()
        if not text:
            raise GatewayError(GatewayErrorKind.MALFORMED_RESPONSE, "No speech detected in the audio.")

        text = MathNormalizer.spoken_to_symbols(text)
        logger.info("ASR transcription successful: %s", text[:100])

        return Extraction(extracted_text=text, confidence=TRANSCRIPTION_CONFIDENCE)
