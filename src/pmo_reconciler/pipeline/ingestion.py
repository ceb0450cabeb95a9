"""
Ingestion Pipeline Coordinator.

Turns a batch of source documents into processed meetings:

    text extraction -> skip checks -> meeting (Draft) -> Processing
        -> model extraction -> submit_extraction

Each item is isolated: one failing item never stops the others, and its
outcome (processed / skipped / failed) is kept with a reason in the
BatchSummary. Cancellation stops before the next item; meetings already
committed stay committed.

A document whose text cannot be extracted still produces a meeting, moved
straight to Failed with the extraction error as its reason.
"""

import asyncio
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable
from uuid import UUID

from ..config import config
from ..errors import (
    BatchSummary,
    ProjectNotFoundError,
    ReconcilerError,
    TextExtractionError,
)
from ..logging import get_logger, logging_context
from ..models.enums import MeetingCategory
from ..models.meeting import Meeting
from ..utils import content_fingerprint, utcnow

logger = get_logger(__name__)

DEFAULT_MEETING_TITLE = 'Imported Meeting'

_EXTENSION = re.compile(r'\.[^.]+$')
_ISO_DATE = re.compile(r'(\d{4}-\d{2}-\d{2})')
_NATURAL_DATE = re.compile(
    r'(January|February|March|April|May|June|July|August|September|October|November|December)'
    r'\s+(\d{1,2}),?\s+(\d{4})',
    re.IGNORECASE,
)
_TRAILING_SEPARATOR = re.compile(r'\s*[-–—_]\s*$')
_VTT_TIMING = re.compile(r'^\d{2}:\d{2}(:\d{2})?\.\d{3}\s+-->\s+')


@dataclass
class SourceItem:
    """One document handed to the ingestion coordinator."""

    item_id: str
    project_id: UUID
    file_name: str
    content_type: str
    content: bytes | str
    category: MeetingCategory | None = None
    actor_user_id: UUID | None = None
    received_at: datetime | None = None


@dataclass
class TextExtractionResult:
    success: bool
    text: str = ''
    error: str | None = None


class TextExtractor:
    """
    Base class for file to text converters.

    Subclasses list the content types they accept and implement extract_text.
    A failure is reported in the result, not raised.
    """

    content_types: frozenset[str] = frozenset()

    def supports(self, content_type: str) -> bool:
        return content_type.split(';')[0].strip().lower() in self.content_types

    async def extract_text(self, item: SourceItem) -> TextExtractionResult:
        raise NotImplementedError


class PlainTextExtractor(TextExtractor):
    """Plain text, Markdown and WebVTT caption files."""

    content_types = frozenset({'text/plain', 'text/markdown', 'text/vtt'})

    async def extract_text(self, item: SourceItem) -> TextExtractionResult:
        content = item.content
        if isinstance(content, bytes):
            try:
                content = content.decode('utf-8')
            except UnicodeDecodeError as e:
                return TextExtractionResult(success=False, error=f"Not UTF-8 text: {e}")
        if item.content_type.startswith('text/vtt'):
            content = _strip_vtt(content)
        return TextExtractionResult(success=True, text=content)


def _strip_vtt(content: str) -> str:
    """Drop the WEBVTT header, cue numbers and timing lines; keep spoken text."""
    lines = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith('WEBVTT') or stripped.isdigit():
            continue
        if _VTT_TIMING.match(stripped) or stripped.startswith('NOTE'):
            continue
        lines.append(stripped)
    return '\n'.join(lines)


def parse_meeting_filename(file_name: str, fallback_date: date) -> tuple[str, date]:
    """
    Derive a meeting title and date from a file name.

    Recognises `Steering Committee - 2024-05-01.txt` and
    `Steering Committee January 5, 2024.txt`; the title is the text before
    the date. Without a recognisable date the whole name is the title and
    fallback_date is used.
    """
    name = _EXTENSION.sub('', file_name)

    iso = _ISO_DATE.search(name)
    if iso:
        try:
            parsed = date.fromisoformat(iso.group(1))
        except ValueError:
            parsed = None
        if parsed is not None:
            title = name[: iso.start()] or name[iso.end():]
            return _clean_title(title), parsed

    natural = _NATURAL_DATE.search(name)
    if natural:
        month, day, year = natural.groups()
        try:
            parsed = datetime.strptime(f"{month} {day} {year}", '%B %d %Y').date()
        except ValueError:
            parsed = None
        if parsed is not None:
            return _clean_title(name[: natural.start()]), parsed

    return _clean_title(name), fallback_date


def _clean_title(title: str) -> str:
    title = _TRAILING_SEPARATOR.sub('', title.strip())
    title = re.sub(r'^\s*[-–—_]\s*', '', title).strip()
    return title or DEFAULT_MEETING_TITLE


class IngestionCoordinator:
    """
    Runs a batch of source items through extraction and reconciliation.

    Usage:
        coordinator = IngestionCoordinator(store, service)
        summary = await coordinator.ingest_batch(items, cancel_event)
        print(summary.to_dict())
    """

    def __init__(
        self,
        store: Any,
        service: Any,
        extractors: list[TextExtractor] | None = None,
        min_transcript_chars: int | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the coordinator.

        Args:
            store: MeetingStore (meeting creation and duplicate lookup)
            service: ReconciliationService (processing and commit)
            extractors: Text extractors tried in order (default: plain text)
            min_transcript_chars: Shorter transcripts are skipped
                                  (defaults to config.MIN_TRANSCRIPT_CHARS)
            clock: Returns the current time
        """
        self.store = store
        self.service = service
        self.extractors = extractors if extractors is not None else [PlainTextExtractor()]
        self.min_transcript_chars = (
            min_transcript_chars
            if min_transcript_chars is not None
            else config.MIN_TRANSCRIPT_CHARS
        )
        self.clock = clock

    def _extractor_for(self, content_type: str) -> TextExtractor | None:
        for extractor in self.extractors:
            if extractor.supports(content_type):
                return extractor
        return None

    async def ingest_batch(
        self,
        items: list[SourceItem],
        cancel_event: asyncio.Event | None = None,
    ) -> BatchSummary:
        """
        Ingest items one after another.

        Args:
            items: Source documents
            cancel_event: When set, remaining items are counted as cancelled

        Returns:
            BatchSummary with one result per item
        """
        summary = BatchSummary()
        logger.info('ingestion.batch_started', items=len(items))

        for index, item in enumerate(items):
            if cancel_event is not None and cancel_event.is_set():
                summary.cancelled = True
                for remaining in items[index:]:
                    summary.add_cancelled(remaining.item_id)
                logger.info('ingestion.batch_cancelled', remaining=len(items) - index)
                break

            with logging_context(project_id=str(item.project_id)):
                await self._ingest_item(item, summary)

        logger.info(
            'ingestion.batch_completed',
            processed=summary.processed_count,
            skipped=summary.skipped_count,
            failed=summary.failed_count,
            cancelled=summary.cancelled_count,
        )
        return summary

    def _new_meeting(self, item: SourceItem, text: str | None, fingerprint: str | None) -> Meeting:
        received = item.received_at or self.clock()
        title, meeting_date = parse_meeting_filename(item.file_name, received.date())
        return Meeting(
            project_id=item.project_id,
            title=title,
            date=meeting_date,
            category=item.category or MeetingCategory(config.DEFAULT_MEETING_CATEGORY),
            transcript_text=text,
            content_fingerprint=fingerprint,
            source_name=item.file_name,
        )

    async def _ingest_item(self, item: SourceItem, summary: BatchSummary) -> None:
        meeting_id: str | None = None
        try:
            extractor = self._extractor_for(item.content_type)
            if extractor is None:
                summary.add_skipped(item.item_id, f"Unsupported content type: {item.content_type}")
                return

            if await self.store.get_project(item.project_id) is None:
                raise ProjectNotFoundError(
                    'Project not found', context={'project_id': str(item.project_id)}
                )

            extraction = await extractor.extract_text(item)
            if not extraction.success:
                # An unreadable document still leaves a Failed meeting with the reason
                error = TextExtractionError(
                    extraction.error or 'Text extraction failed',
                    context={'item_id': item.item_id, 'file_name': item.file_name},
                )
                meeting = await self.store.create_meeting(self._new_meeting(item, None, None))
                meeting_id = str(meeting.id)
                await self.service.start_processing(meeting.id, item.actor_user_id)
                await self.service.fail_meeting(meeting.id, error, item.actor_user_id)
                raise error

            text = extraction.text.strip()
            if len(text) < self.min_transcript_chars:
                summary.add_skipped(item.item_id, 'Insufficient text content')
                return

            fingerprint = content_fingerprint(text)
            duplicate = await self.store.find_meeting_by_fingerprint(item.project_id, fingerprint)
            if duplicate is not None:
                summary.add_skipped(
                    item.item_id,
                    f"Duplicate of meeting {duplicate.id}",
                    meeting_id=str(duplicate.id),
                )
                return

            meeting = await self.store.create_meeting(self._new_meeting(item, text, fingerprint))
            meeting_id = str(meeting.id)

            await self.service.start_processing(meeting.id, item.actor_user_id)
            await self.service.process_meeting(meeting.id, item.actor_user_id)
        except ReconcilerError as e:
            logger.warning(
                'ingestion.item_failed',
                item_id=item.item_id,
                meeting_id=meeting_id,
                reason_code=e.reason_code.value,
                error=str(e),
            )
            summary.add_failure(item.item_id, e, meeting_id=meeting_id)
            return
        except Exception as e:
            logger.exception('ingestion.item_crashed', item_id=item.item_id, meeting_id=meeting_id)
            summary.add_failure(
                item.item_id,
                ReconcilerError(f"Unexpected error: {type(e).__name__}"),
                meeting_id=meeting_id,
            )
            return

        logger.info('ingestion.item_processed', item_id=item.item_id, meeting_id=meeting_id)
        summary.add_processed(item.item_id, meeting_id=meeting_id)
