"""
Supabase-backed record store and run storage.

Each user table is a real Postgres table; its name is looked up from the
`tables` registry (column `supabase_table`) by table ID.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import Client as SupabaseClient
from supabase import create_client

from .. import config
from ..errors import DataStoreError
from ..interfaces import AutomationDatabase, DataStore

logger = logging.getLogger(__name__)


def create_supabase_client(url: Optional[str] = None, key: Optional[str] = None) -> SupabaseClient:
    """Create a client from explicit credentials or SUPABASE_URL / SUPABASE_KEY."""
    url = url or config.SUPABASE_URL
    key = key or config.SUPABASE_KEY
    if not url or not key:
        raise DataStoreError("SUPABASE_URL and SUPABASE_KEY must be set")
    return create_client(url, key)


class SupabaseDataStore(DataStore):
    """DataStore over the app's Supabase tables."""

    def __init__(self, supabase: SupabaseClient):
        self.supabase = supabase
        self._table_names: Dict[str, str] = {}

    def _physical_table(self, table_id: str) -> str:
        if table_id in self._table_names:
            return self._table_names[table_id]
        result = self.supabase.table('tables').select('supabase_table').eq('id', table_id).execute()
        if not result.data:
            raise DataStoreError(f"Table {table_id} not found")
        name = result.data[0]['supabase_table']
        self._table_names[table_id] = name
        return name

    async def _run(self, description: str, func):
        try:
            return await asyncio.to_thread(func)
        except DataStoreError:
            raise
        except Exception as e:
            logger.error(f"Supabase {description} failed: {e}")
            raise DataStoreError(f"Failed to {description}: {e}") from e

    async def get_record(self, table_id: str, record_id: str) -> Optional[Dict[str, Any]]:
        def query():
            name = self._physical_table(table_id)
            return self.supabase.table(name).select('*').eq('id', record_id).execute()

        result = await self._run("load record", query)
        return result.data[0] if result.data else None

    async def update_record(self, table_id: str, record_id: str, fields: Dict[str, Any]) -> str:
        def query():
            name = self._physical_table(table_id)
            return self.supabase.table(name).update(fields).eq('id', record_id).execute()

        result = await self._run("update record", query)
        if not result.data:
            raise DataStoreError(f"Record {record_id} not found")
        return str(result.data[0].get('id', record_id))

    async def create_record(self, table_id: str, fields: Dict[str, Any]) -> str:
        def query():
            name = self._physical_table(table_id)
            return self.supabase.table(name).insert(fields).execute()

        result = await self._run("create record", query)
        if not result.data:
            raise DataStoreError("Insert returned no record")
        return str(result.data[0]['id'])

    async def delete_record(self, table_id: str, record_id: str) -> str:
        def query():
            name = self._physical_table(table_id)
            return self.supabase.table(name).delete().eq('id', record_id).execute()

        result = await self._run("delete record", query)
        if not result.data:
            raise DataStoreError(f"Record {record_id} not found")
        return str(record_id)


class SupabaseAutomationDatabase(AutomationDatabase):
    """Run history in `automation_runs`, suspended runs in `automation_continuations`."""

    def __init__(self, supabase: SupabaseClient):
        self.supabase = supabase

    async def log_run(self, automation_id: str, run: Dict[str, Any]) -> str:
        row = {
            'id': run['run_id'],
            'automation_id': automation_id,
            'status': run['status'],
            'error': run.get('error'),
            'duration_ms': run.get('duration_ms'),
            'trace': run,
        }
        try:
            result = await asyncio.to_thread(
                lambda: self.supabase.table('automation_runs').upsert(row).execute()
            )
        except Exception as e:
            raise DataStoreError(f"Failed to log run: {e}") from e
        return result.data[0]['id'] if result.data else run['run_id']

    async def save_continuation(self, continuation: Dict[str, Any]) -> str:
        row = {
            'run_id': continuation['run_id'],
            'automation_id': continuation['automation_id'],
            'resume_at': continuation['resume_at'],
            'payload': continuation,
        }
        try:
            await asyncio.to_thread(
                lambda: self.supabase.table('automation_continuations').upsert(row).execute()
            )
        except Exception as e:
            raise DataStoreError(f"Failed to save continuation: {e}") from e
        return continuation['run_id']

    async def due_continuations(self, now: datetime) -> List[Dict[str, Any]]:
        try:
            result = await asyncio.to_thread(
                lambda: self.supabase.table('automation_continuations').select('payload').lte(
                    'resume_at', now.isoformat()
                ).order('resume_at').execute()
            )
        except Exception as e:
            raise DataStoreError(f"Failed to load continuations: {e}") from e
        return [row['payload'] for row in result.data or []]

    async def delete_continuation(self, run_id: str) -> None:
        try:
            await asyncio.to_thread(
                lambda: self.supabase.table('automation_continuations').delete().eq('run_id', run_id).execute()
            )
        except Exception as e:
            raise DataStoreError(f"Failed to delete continuation: {e}") from e
