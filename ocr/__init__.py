"""OCR module for text extraction from images."""

from ocr.vision_engine import VisionEngine

__all__ = ['VisionEngine']
