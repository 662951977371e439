"""
Vision Engine for Math OCR
Image recognition gateway: photo of a problem -> extracted text + confidence.

Uses a Groq-hosted vision model in extraction-only mode.

LOCKED: System prompt is immutable at runtime.
"""

import io
import logging
import re
from typing import Optional

import groq
from groq import AsyncGroq
from PIL import Image, UnidentifiedImageError

from agents.state import Extraction, MediaInput
from config import AppConfig, get_config
from llm.errors import GatewayError, GatewayErrorKind

logger = logging.getLogger(__name__)


# ============================================================================
# LOCKED SYSTEM PROMPT - DO NOT MODIFY AT RUNTIME
# ============================================================================
_LOCKED_OCR_PROMPT = """You are an OCR specialist for mathematical problems. Extract the exact mathematical text from the image.

Rules:
1. Extract ONLY the mathematical problem text - no explanations
2. Preserve all mathematical notation (use proper unicode: ², ³, √, ∫, ∑, π, θ, etc.)
3. Keep equations on separate lines if there are multiple
4. If the image contains handwritten text, do your best to interpret it accurately
5. If confidence is low, indicate uncertain parts with [?]
6. Do NOT solve the problem - only extract what is written"""

# Guard flag to ensure prompt immutability
_PROMPT_LOCKED = True


def _get_locked_prompt() -> str:
    """
    Get the locked extraction prompt.
    This function ensures the prompt cannot be modified at runtime.
    """
    if not _PROMPT_LOCKED:
        raise RuntimeError("SECURITY ERROR: Prompt lock has been tampered with.")
    return _LOCKED_OCR_PROMPT


UNCERTAIN_MARKER = "[?]"
CONFIDENT_SCORE = 0.92
UNCERTAIN_SCORE = 0.6

# Longest image side sent upstream (to reduce token usage)
MAX_IMAGE_SIZE = 1024


class VisionEngine:
    """
    Image recognition gateway backed by a Groq vision model.

    IMPORTANT: This engine operates in EXTRACTION MODE only.
    - Extracts the question text from the image
    - Does NOT solve problems
    - System prompt is LOCKED and immutable
    """

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 client: Optional[AsyncGroq] = None, config: Optional[AppConfig] = None):
        """
        Initialize the vision engine.

        Args:
            api_key: Groq API key. If not provided, read from config.
            model: Vision model. Defaults to VISION_MODEL from config.
            client: Pre-built async client, mainly for tests
            config: Application config (defaults to the cached one)
        """
        config = config or get_config()
        self.model_name = model or config.vision_model

        if client is not None:
            self.client = client
        else:
            api_key = api_key or config.groq_api_key
            if not api_key:
                raise ValueError("GROQ_API_KEY not found. Set it in .env or pass api_key parameter.")
            self.client = AsyncGroq(api_key=api_key, timeout=config.gateway_timeout)

    async def extract(self, image_data: str) -> Extraction:
        """
        Extract the math problem text from an image.

        Args:
            image_data: Base64 data URL of the image

        Returns:
            Extraction with the text and an estimated confidence

        Raises:
            ValueError: If no image data is given
            GatewayError: On upstream failure or an empty extraction
        """
        if not image_data:
            raise ValueError("No image data provided")

        logger.info("Processing OCR request...")

        try:
            response = await self.client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": _get_locked_prompt()},
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "text",
                                "text": "Extract the mathematical problem text from this image. Return only the extracted text, nothing else.",
                            },
                            {"type": "image_url", "image_url": {"url": self._prepare_image(image_data)}},
                        ],
                    },
                ],
                max_tokens=500,
            )
        except groq.APIError as e:
            error = GatewayError.from_exception(e)
            logger.warning("OCR request failed (%s): %s", error.kind.value, e)
            raise error from e

        choices = getattr(response, "choices", None)
        raw_text = (choices[0].message.content or "") if choices else ""
        text = self._clean_extracted_text(raw_text)
        if not text:
            raise GatewayError(GatewayErrorKind.MALFORMED_RESPONSE, "No text detected in the image.")

        # Estimate confidence based on response characteristics
        confidence = UNCERTAIN_SCORE if UNCERTAIN_MARKER in text else CONFIDENT_SCORE
        logger.info("OCR extraction successful: %s", text[:100])

        return Extraction(extracted_text=text, confidence=confidence)

    def _prepare_image(self, image_data: str) -> str:
        """
        Downscale oversized images before upload.

        Anything Pillow cannot open is passed through untouched; the upstream
        service decides whether it is usable.
        """
        try:
            media = MediaInput.from_data_url(image_data, default_mime_type="image/png")
            img = Image.open(io.BytesIO(media.data))
            if max(img.size) <= MAX_IMAGE_SIZE:
                return image_data

            ratio = MAX_IMAGE_SIZE / max(img.size)
            new_size = tuple(int(dim * ratio) for dim in img.size)
            image_format = img.format or "PNG"
            img = img.resize(new_size, Image.Resampling.LANCZOS)

            buffer = io.BytesIO()
            img.save(buffer, format=image_format)
            mime_type = Image.MIME.get(image_format, media.mime_type)
            return MediaInput(data=buffer.getvalue(), mime_type=mime_type).to_data_url()
        except (ValueError, OSError, UnidentifiedImageError) as e:
            logger.debug("Image left as-is: %s", e)
            return image_data

    def _clean_extracted_text(self, text: str) -> str:
        """
        Clean up extracted text from common VLM artifacts.

        Args:
            text: Raw extracted text

        Returns:
            Cleaned text
        """
        text = text.strip()

        # Remove common prefixes
        prefixes_to_remove = [
            r'^The (?:mathematical )?(?:expression|equation|problem) (?:is|reads?|shows?|states?)[:\s]*',
            r'^(?:Here is|This is) the (?:mathematical )?(?:expression|equation|problem)[:\s]*',
            r'^The image (?:shows?|contains?)[:\s]*',
        ]

        for pattern in prefixes_to_remove:
            text = re.sub(pattern, '', text, flags=re.IGNORECASE)

        # Remove markdown code blocks if present
        text = re.sub(r'^```[^\n]*\n?', '', text)
        text = re.sub(r'\n?```$', '', text)

        # Remove quotes if entire text is quoted
        if len(text) >= 2 and text[0] == text[-1] and text[0] in ('"', "'"):
            text = text[1:-1]

        return text.strip()
