"""
Human review concurrency: the single-writer review lock.
"""

from .lock_manager import ReviewLockManager, ReviewNoteOutcome

__all__ = [
    'ReviewLockManager',
    'ReviewNoteOutcome',
]
