"""
Meeting extraction service.

Sends a transcript to OpenAI in JSON mode and returns the raw payload.
The payload is deliberately not validated here: the Contract Validator is
the single gate between model output and the project record.
"""

from typing import Any

from ..clients.openai_client import OpenAIClient
from ..errors import ModelInvocationError
from ..logging import get_logger
from ..models.entities import TrackedEntity
from ..models.enums import EntityKind, MeetingCategory
from ..prompts.extract_meeting import build_extraction_prompt

logger = get_logger(__name__)


class MeetingExtractor:
    """
    Runs the extraction model over a meeting transcript.

    Usage:
        extractor = MeetingExtractor(openai_client)
        payload = await extractor.run_extraction(text, MeetingCategory.PROJECT)
    """

    def __init__(self, openai_client: OpenAIClient, model: str | None = None):
        """
        Initialize the extractor.

        Args:
            openai_client: Configured OpenAI client
            model: Override the client's default chat model
        """
        self.openai_client = openai_client
        self.model = model

    async def run_extraction(
        self,
        transcript_text: str,
        category: MeetingCategory,
        existing: dict[EntityKind, list[TrackedEntity]] | None = None,
    ) -> dict[str, Any]:
        """
        Extract structured meeting facts from a transcript.

        Args:
            transcript_text: Plain transcript text
            category: Meeting category, drives the prompt focus
            existing: Open project items the model may update or close

        Returns:
            The model's JSON object (unvalidated)

        Raises:
            ModelTimeoutError: Call timed out
            ModelTransientError: Provider temporarily unavailable (retryable)
            ModelQuotaError: Quota or billing exhausted
            ModelInvocationError: Any other model failure
        """
        messages = build_extraction_prompt(transcript_text, category, existing)
        try:
            payload = await self.openai_client.chat_completion_json(
                messages=messages, model=self.model
            )
        except ModelInvocationError as e:
            logger.warning(
                'extractor.model_failed',
                reason_code=e.reason_code.value,
                retryable=e.retryable,
                error=e.message,
            )
            raise

        logger.info(
            'extractor.completed',
            category=category.value,
            action_items=len(payload.get('action_items') or []),
            decisions=len(payload.get('decisions') or []),
            risks=len(payload.get('risks') or []),
        )
        return payload
