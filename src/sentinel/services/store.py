"""
Persistence for the pipeline: documents, chunks, rule versions, regulatory
sources, run logs, alerts and transaction lookup.

``SupabaseStore`` wraps the synchronous supabase-py client in worker threads.
``InMemoryStore`` keeps the same contract in process memory and is used when
Supabase is not configured (local runs, demos, tests).
"""

import asyncio
import uuid
from functools import lru_cache
from typing import Any, Dict, List, Optional

import structlog
from supabase import Client, create_client

from ..config import Settings, get_settings
from ..errors import ConfigError, PersistenceError
from ..models import utc_now_iso

logger = structlog.get_logger(__name__)


@lru_cache()
def get_supabase_client() -> Client:
    """
    Create the Supabase client from settings.

    Raises:
        ConfigError: If SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is not configured
    """
    settings = get_settings()
    if not settings.supabase_configured:
        raise ConfigError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be configured")

    logger.info("Initializing Supabase client", url=settings.SUPABASE_URL)
    return create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY)


def _without_none(row: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in row.items() if value is not None}


class SupabaseStore:
    """Supabase-backed implementation of the store contract."""

    def __init__(self, client: Optional[Client] = None):
        self.client: Client = client or get_supabase_client()

    async def get_transaction(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        try:
            response = await asyncio.to_thread(
                lambda: self.client.table("transactions")
                .select("*")
                .eq("id", transaction_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            logger.error("Failed to fetch transaction", transaction_id=transaction_id, error=str(e))
            raise PersistenceError(f"Failed to fetch transaction {transaction_id}: {e}") from e
        return response.data[0] if response.data else None

    async def upsert_document(self, record: Dict[str, Any]) -> str:
        row = _without_none(record)
        try:
            response = await asyncio.to_thread(
                lambda: self.client.table("documents")
                .upsert(row, on_conflict="url")
                .execute()
            )
        except Exception as e:
            logger.warning("Failed to upsert regulatory document", url=record.get("url"), error=str(e))
            raise PersistenceError(f"Failed to upsert document {record.get('url')}: {e}") from e

        if not response.data or not response.data[0].get("id"):
            raise PersistenceError(f"Document upsert returned no id for {record.get('url')}")
        return str(response.data[0]["id"])

    async def insert_chunks(self, document_id: str, chunks: List[Dict[str, Any]]) -> None:
        if not chunks:
            return
        rows = [_without_none({"document_id": document_id, **chunk}) for chunk in chunks]
        try:
            await asyncio.to_thread(
                lambda: self.client.table("document_chunks").insert(rows).execute()
            )
        except Exception as e:
            logger.warning("Failed to insert document chunks", document_id=document_id, error=str(e))
            raise PersistenceError(f"Failed to insert chunks for {document_id}: {e}") from e

    async def create_rule_version(self, record: Dict[str, Any]) -> str:
        row = _without_none(record)
        try:
            response = await asyncio.to_thread(
                lambda: self.client.table("rule_versions").insert(row).execute()
            )
        except Exception as e:
            logger.warning("Failed to create rule version", source_url=record.get("source_url"), error=str(e))
            raise PersistenceError(f"Failed to create rule version: {e}") from e

        if not response.data or not response.data[0].get("id"):
            raise PersistenceError("Rule version insert returned no id")
        return str(response.data[0]["id"])

    async def upsert_regulatory_source(self, record: Dict[str, Any]) -> None:
        row = _without_none(record)
        try:
            await asyncio.to_thread(
                lambda: self.client.table("regulatory_sources")
                .upsert(row, on_conflict="policy_url")
                .execute()
            )
        except Exception as e:
            logger.warning("Failed to upsert regulatory source", policy_url=record.get("policy_url"), error=str(e))
            raise PersistenceError(f"Failed to upsert regulatory source {record.get('policy_url')}: {e}") from e

    async def record_agent_run(self, record: Dict[str, Any]) -> None:
        row = _without_none(record)
        try:
            await asyncio.to_thread(lambda: self.client.table("agent_runs").insert(row).execute())
        except Exception as e:
            raise PersistenceError(f"Failed to record agent run: {e}") from e

    async def insert_alert(self, record: Dict[str, Any]) -> None:
        row = _without_none(record)
        try:
            await asyncio.to_thread(lambda: self.client.table("alerts").insert(row).execute())
        except Exception as e:
            raise PersistenceError(f"Failed to insert alert {record.get('id')}: {e}") from e


class InMemoryStore:
    """Process-local store with the same contract as ``SupabaseStore``."""

    def __init__(self, transactions: Optional[List[Dict[str, Any]]] = None):
        self.transactions: Dict[str, Dict[str, Any]] = {
            str(row.get("id") or row.get("transaction_id")): row for row in (transactions or [])
        }
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.regulatory_sources: Dict[str, Dict[str, Any]] = {}
        self.chunks: List[Dict[str, Any]] = []
        self.rule_versions: List[Dict[str, Any]] = []
        self.agent_runs: List[Dict[str, Any]] = []
        self.alerts: List[Dict[str, Any]] = []

    async def get_transaction(self, transaction_id: str) -> Optional[Dict[str, Any]]:
        return self.transactions.get(transaction_id)

    async def upsert_document(self, record: Dict[str, Any]) -> str:
        existing = self.documents.get(record["url"])
        document_id = (existing or {}).get("id") or record.get("id") or str(uuid.uuid4())
        self.documents[record["url"]] = {**(existing or {}), **_without_none(record), "id": document_id}
        return document_id

    async def insert_chunks(self, document_id: str, chunks: List[Dict[str, Any]]) -> None:
        self.chunks.extend({"document_id": document_id, **chunk} for chunk in chunks)

    async def create_rule_version(self, record: Dict[str, Any]) -> str:
        version_id = str(uuid.uuid4())
        self.rule_versions.append({**record, "id": version_id, "created_at": utc_now_iso()})
        return version_id

    async def upsert_regulatory_source(self, record: Dict[str, Any]) -> None:
        existing = self.regulatory_sources.get(record["policy_url"], {})
        self.regulatory_sources[record["policy_url"]] = {**existing, **_without_none(record)}

    async def record_agent_run(self, record: Dict[str, Any]) -> None:
        self.agent_runs.append({**record, "created_at": utc_now_iso()})

    async def insert_alert(self, record: Dict[str, Any]) -> None:
        self.alerts.append(record)


def build_store(settings: Optional[Settings] = None):
    """Supabase when configured, otherwise an in-memory store."""
    settings = settings or get_settings()
    if settings.supabase_configured:
        return SupabaseStore(create_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_ROLE_KEY))
    logger.warning("Supabase not configured; using in-memory store")
    return InMemoryStore()
