"""
Memory Module for Math Mentor
History of solved problems with the user's feedback.
"""

from .memory_store import MemoryStore

__all__ = [
    "MemoryStore",
]
