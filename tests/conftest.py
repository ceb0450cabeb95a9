"""
Pytest configuration and shared fixtures.

Key fixtures:
- store: in-memory FakeMeetingStore with one project
- project_id / other_project_id: seeded projects
- embeddings: FakeEmbeddingClient (prefix-keyed vectors)
- engine: ReconciliationEngine over the fake embeddings
- service: ReconciliationService wired to the fakes
- processing_meeting: factory creating a meeting already in Processing

Tests that need real services (OpenAI, Postgres) read credentials from the
environment and skip when they are missing.
"""

import os
import sys
from pathlib import Path
from uuid import UUID

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / 'src'
sys.path.insert(0, str(src_path))

# Load environment variables
from dotenv import load_dotenv

env_file = Path(__file__).parent.parent / '.env'
if env_file.exists():
    load_dotenv(env_file)

from fakes import FakeAuthorizer, FakeEmbeddingClient, FakeMeetingStore

from pmo_reconciler.models.enums import MeetingCategory, MeetingStatus
from pmo_reconciler.models.meeting import Meeting, Project
from pmo_reconciler.pipeline.reconciler import ReconciliationEngine
from pmo_reconciler.pipeline.similarity import SimilarityService
from pmo_reconciler.service import ReconciliationService

PROJECT_ID = UUID('0190a1b2-0000-7000-8000-000000000001')
OTHER_PROJECT_ID = UUID('0190a1b2-0000-7000-8000-000000000002')
USER_ID = UUID('0190a1b2-0000-7000-8000-0000000000a1')
OTHER_USER_ID = UUID('0190a1b2-0000-7000-8000-0000000000a2')
ADMIN_ID = UUID('0190a1b2-0000-7000-8000-0000000000ad')


@pytest.fixture
def openai_api_key() -> str:
    """Get OpenAI API key from environment."""
    key = os.getenv('OPENAI_API_KEY')
    if not key:
        pytest.skip('OPENAI_API_KEY not set')
    return key


@pytest.fixture
def project_id() -> UUID:
    return PROJECT_ID


@pytest.fixture
def other_project_id() -> UUID:
    return OTHER_PROJECT_ID


@pytest.fixture
def store() -> FakeMeetingStore:
    store = FakeMeetingStore()
    store.projects[PROJECT_ID] = Project(id=PROJECT_ID, name='Core Platform')
    store.projects[OTHER_PROJECT_ID] = Project(id=OTHER_PROJECT_ID, name='Data Migration')
    return store


@pytest.fixture
def authorizer() -> FakeAuthorizer:
    return FakeAuthorizer(
        members={(USER_ID, PROJECT_ID), (OTHER_USER_ID, PROJECT_ID)},
        admins={ADMIN_ID},
    )


@pytest.fixture
def embeddings() -> FakeEmbeddingClient:
    return FakeEmbeddingClient()


@pytest.fixture
def engine(embeddings) -> ReconciliationEngine:
    return ReconciliationEngine(SimilarityService(embeddings, threshold=0.85))


@pytest.fixture
def service(store, engine, authorizer) -> ReconciliationService:
    return ReconciliationService(store, engine, authorizer)


@pytest.fixture
def processing_meeting(store):
    """Create a meeting in Processing (optionally another status or category)."""

    def _create(
        category: MeetingCategory = MeetingCategory.PROJECT,
        status: MeetingStatus = MeetingStatus.PROCESSING,
        project_id: UUID = PROJECT_ID,
    ) -> Meeting:
        meeting = Meeting(
            project_id=project_id,
            title='Weekly sync',
            category=category,
            status=status,
            transcript_text='Alex: I will fix the login bug by Friday. Sam: Agreed.',
        )
        store.meetings[meeting.id] = meeting
        return meeting

    return _create


@pytest.fixture
def sample_transcript() -> str:
    """Sample transcript for testing extraction and ingestion."""
    return """
Alex: Thanks for joining. We need to settle the release plan.
Sam: Agreed. I'll send over the updated rollout checklist by Friday.
Alex: And I'll book the security review with the platform team next week.
Jo: The vendor contract renewal is a risk if legal doesn't sign off in time.
""".strip()
