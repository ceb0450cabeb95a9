"""
LLM prompts for meeting extraction.
"""

from .extract_meeting import (
    CATEGORY_INSTRUCTIONS,
    EXTRACTION_SYSTEM_PROMPT,
    build_extraction_prompt,
    format_existing_items,
)

__all__ = [
    'CATEGORY_INSTRUCTIONS',
    'EXTRACTION_SYSTEM_PROMPT',
    'build_extraction_prompt',
    'format_existing_items',
]
