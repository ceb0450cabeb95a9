"""
Persistence for meetings, project entities and review locks.
"""

from .authorizer import Authorizer, PostgresAuthorizer
from .meeting_store import MeetingStore, StoreTransaction, evidence_key
from .schema import SCHEMA_STATEMENTS, setup_schema

__all__ = [
    'Authorizer',
    'PostgresAuthorizer',
    'MeetingStore',
    'StoreTransaction',
    'evidence_key',
    'SCHEMA_STATEMENTS',
    'setup_schema',
]
