#!/usr/bin/env python3
"""
One-time migration of legacy update logs into typed entity_updates rows.

Older deployments stored each action item's and risk's history as a JSON
string in an `updates` TEXT column. This script parses those blobs once and
writes one entity_updates row per entry. Entries keep their original id
when it is a UUID, so re-running the script inserts nothing new.

Entries that cannot be parsed are reported and left in place; the runtime
code never reads the legacy column.

Usage:
    python scripts/migrate_updates_log.py [--dry-run]
"""

import argparse
import asyncio
import json
import sys
from datetime import datetime
from pathlib import Path
from typing import Any

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / '.env')

from sqlalchemy import text

from pmo_reconciler.clients.postgres_client import PostgresClient
from pmo_reconciler.config import config
from pmo_reconciler.logging import get_logger
from pmo_reconciler.models.entities import EntityUpdate
from pmo_reconciler.utils import parse_uuid, utcnow, uuid7

logger = get_logger('migrate_updates_log')

LEGACY_TABLES = ('action_items', 'risks')
LEGACY_SOURCE = 'legacy_import'


# =============================================================================
# Parsing
# =============================================================================


def _parse_timestamp(value: Any, fallback: datetime) -> datetime:
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            pass
    return fallback


def parse_legacy_updates(
    blob: str | list | None, fallback_time: datetime | None = None
) -> tuple[list[EntityUpdate], list[str]]:
    """
    Turn one legacy updates blob into typed entries.

    Args:
        blob: JSON string (or already-decoded list) of update objects
        fallback_time: created_at for entries without a parseable timestamp

    Returns:
        (updates, problems): parsed entries in blob order, and a message per
        entry or blob that could not be converted
    """
    fallback_time = fallback_time or utcnow()
    if blob is None or blob == '':
        return [], []
    if isinstance(blob, str):
        try:
            entries = json.loads(blob)
        except json.JSONDecodeError as e:
            return [], [f"blob is not JSON: {e}"]
    else:
        entries = blob
    if not isinstance(entries, list):
        return [], ['blob is not a JSON array']

    updates: list[EntityUpdate] = []
    problems: list[str] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or not str(entry.get('content') or '').strip():
            problems.append(f"entry {index} has no content")
            continue
        updates.append(
            EntityUpdate(
                id=parse_uuid(entry.get('id')) or uuid7(),
                content=str(entry['content']).strip(),
                source=LEGACY_SOURCE,
                created_by_user_id=parse_uuid(entry.get('created_by_user_id')),
                created_at=_parse_timestamp(entry.get('created_at'), fallback_time),
            )
        )
    return updates, problems


# =============================================================================
# Migration
# =============================================================================


async def migrate_table(postgres: PostgresClient, table: str, dry_run: bool) -> dict[str, int]:
    stats = {'rows': 0, 'entries': 0, 'problems': 0, 'missing_entities': 0}

    async with postgres.engine.begin() as conn:
        result = await conn.execute(
            text(f"""
                SELECT l.id, l.updates, l.created_at, e.id AS entity_id
                FROM {table} l
                LEFT JOIN project_entities e ON e.id = l.id
                WHERE l.updates IS NOT NULL AND l.updates NOT IN ('', '[]')
            """)
        )
        rows = result.fetchall()

        for row in rows:
            data = row._mapping
            stats['rows'] += 1
            if data['entity_id'] is None:
                stats['missing_entities'] += 1
                logger.warning('migrate.entity_missing', table=table, legacy_id=str(data['id']))
                continue

            updates, problems = parse_legacy_updates(data['updates'], data['created_at'])
            for problem in problems:
                logger.warning('migrate.entry_skipped', table=table, legacy_id=str(data['id']), problem=problem)
            stats['problems'] += len(problems)
            stats['entries'] += len(updates)

            if dry_run:
                continue
            for update in updates:
                await conn.execute(
                    text("""
                        INSERT INTO entity_updates (
                            id, entity_id, content, source, meeting_id,
                            created_by_user_id, evidence_quote, created_at
                        ) VALUES (
                            :id, :entity_id, :content, :source, NULL,
                            :created_by_user_id, NULL, :created_at
                        )
                        ON CONFLICT (id) DO NOTHING
                    """),
                    {
                        'id': str(update.id),
                        'entity_id': str(data['entity_id']),
                        'content': update.content,
                        'source': update.source,
                        'created_by_user_id': (
                            str(update.created_by_user_id) if update.created_by_user_id else None
                        ),
                        'created_at': update.created_at,
                    },
                )

    logger.info('migrate.table_done', table=table, dry_run=dry_run, **stats)
    return stats


async def main():
    parser = argparse.ArgumentParser(description='Migrate legacy update blobs to entity_updates')
    parser.add_argument('--dry-run', action='store_true', help='Parse and report without writing')
    args = parser.parse_args()

    postgres = PostgresClient(config.DATABASE_URL)
    await postgres.connect()
    try:
        for table in LEGACY_TABLES:
            stats = await migrate_table(postgres, table, args.dry_run)
            print(f"{table}: {stats}")
    finally:
        await postgres.close()


if __name__ == '__main__':
    asyncio.run(main())
