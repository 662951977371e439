"""
Confidence utilities for OCR and ASR results.
"""

# Extractions below this go through human review
DEFAULT_HITL_THRESHOLD = 0.7


def clamp_confidence(confidence: float) -> float:
    """
    Clamp a confidence score to [0.0, 1.0].

    Args:
        confidence: Raw confidence score

    Returns:
        Confidence within [0.0, 1.0]
    """
    return min(1.0, max(0.0, float(confidence)))


def is_low_confidence(confidence: float, threshold: float = DEFAULT_HITL_THRESHOLD) -> bool:
    """Strictly below the threshold counts as low; the threshold itself passes."""
    return confidence < threshold


def format_confidence_percentage(confidence: float) -> str:
    """
    Format confidence score as percentage string.

    Args:
        confidence: Confidence score (0.0 to 1.0)

    Returns:
        Formatted percentage string (e.g., "95.5%")
    """
    return f"{confidence * 100:.1f}%"


def get_confidence_color(confidence: float) -> str:
    """
    Get color code based on confidence level for UI display.

    Args:
        confidence: Confidence score (0.0 to 1.0)

    Returns:
        Color string for Streamlit markdown
    """
    if confidence >= 0.9:
        return "green"
    elif confidence >= DEFAULT_HITL_THRESHOLD:
        return "orange"
    else:
        return "red"
