"""
HITL Gate
Decides when an extraction needs human review and holds the single
outstanding review request.
"""

import logging
from typing import Optional

from agents.state import Extraction, HITLDecision, HITLKind, HITLRequest, InputMode
from utils.confidence import DEFAULT_HITL_THRESHOLD, format_confidence_percentage, is_low_confidence

logger = logging.getLogger(__name__)


REVIEW_MESSAGES = {
    HITLKind.OCR_CORRECTION: "The OCR confidence is low. Please review and correct the extracted text.",
    HITLKind.ASR_CORRECTION: "The transcription confidence is low. Please review and correct the transcribed text.",
}

_KIND_BY_MODE = {
    InputMode.IMAGE: HITLKind.OCR_CORRECTION,
    InputMode.AUDIO: HITLKind.ASR_CORRECTION,
}


class HITLPendingError(RuntimeError):
    """A review request is already outstanding."""


class HITLGate:
    """
    Human-in-the-loop checkpoint for low-confidence extractions.

    At most one request is pending. A request is never edited: resolving or
    discarding it drops it, and a new one is created for the next review.
    """

    def __init__(self, threshold: float = DEFAULT_HITL_THRESHOLD):
        self.threshold = threshold
        self._pending: Optional[HITLRequest] = None

    @property
    def pending(self) -> Optional[HITLRequest]:
        return self._pending

    def needs_review(self, confidence: float) -> bool:
        return is_low_confidence(confidence, self.threshold)

    def open(self, extraction: Extraction, mode: InputMode) -> HITLRequest:
        """
        Create the review request for an extraction.

        Args:
            extraction: Low-confidence recognition result
            mode: ``image`` or ``audio``

        Raises:
            HITLPendingError: If a request is already outstanding
            ValueError: If the mode has no recognition step
        """
        if self._pending is not None:
            raise HITLPendingError(f"HITL request {self._pending.id} is still pending")
        kind = _KIND_BY_MODE.get(InputMode(mode))
        if kind is None:
            raise ValueError(f"No review step for input mode {mode!r}")

        self._pending = HITLRequest(
            kind=kind,
            original_content=extraction.extracted_text,
            message=REVIEW_MESSAGES[kind],
        )
        logger.info(
            "Opened %s review (confidence %s)",
            kind.value, format_confidence_percentage(extraction.confidence),
        )
        return self._pending

    def resolve(self, decision: HITLDecision, corrected_content: Optional[str] = None) -> Optional[str]:
        """
        Resolve the pending request.

        Returns:
            Text to submit on approve (the correction if given, else the
            original content), ``None`` on reject or when nothing is pending

        Raises:
            ValueError: If approving would submit empty text
        """
        request = self._pending
        if request is None:
            logger.debug("No HITL request pending; ignoring %s", decision)
            return None

        decision = HITLDecision(decision)
        if decision == HITLDecision.REJECT:
            self._pending = None
            logger.info("HITL request %s rejected", request.id)
            return None

        content = corrected_content if corrected_content and corrected_content.strip() else request.original_content
        if not content or not content.strip():
            raise ValueError("Cannot approve an empty extraction")
        self._pending = None
        logger.info("HITL request %s approved%s", request.id, " with correction" if content != request.original_content else "")
        return content.strip()

    def discard(self) -> None:
        if self._pending is not None:
            logger.debug("Discarding HITL request %s", self._pending.id)
        self._pending = None
