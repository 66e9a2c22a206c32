"""Test fixtures — mock Supabase client, fake model provider and wired-up services."""

from __future__ import annotations

import asyncio
import math
import threading
from datetime import datetime, timezone
from typing import Any, AsyncIterator
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from poiesis.core.admission import AdmissionController
from poiesis.core.assembler import PromptAssembler
from poiesis.core.broker import InMemoryStreamBroker
from poiesis.core.conversations import ConversationStore
from poiesis.core.errors import UpstreamFailure
from poiesis.core.finalizer import CompletionFinalizer
from poiesis.core.llm import ModelChunk, ModelProvider, TokenUsage
from poiesis.core.memory import MemoryStore
from poiesis.core.multiplexer import GenerationMultiplexer
from poiesis.core.pipeline import ChatPipeline
from poiesis.core.prompts import ActivePromptCache, ActivePromptStore
from poiesis.core.streams import StreamRegistry
from poiesis.core.usage import UsageLedger
from poiesis.db.client import SupabaseClient

EMBEDDING_DIMENSIONS = 3


def _comparable(value: Any) -> Any:
    """Parse ISO timestamps so range filters and ordering compare chronologically."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return value
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return value


class MockSupabaseClient(SupabaseClient):
    """In-memory mock of the Supabase client for testing.

    Emulates the store-side functions (prompt toggles, memory match) and can be
    told to fail reads or writes on given tables via ``failing_tables``.
    """

    def __init__(self):
        self._tables: dict[str, list[dict[str, Any]]] = {
            "chats": [],
            "messages": [],
            "votes": [],
            "streams": [],
            "token_usage": [],
            "admin_prompts": [],
            "memories": [],
        }
        self._rpc_lock = threading.Lock()
        self.failing_tables: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    @property
    def client(self):
        raise RuntimeError("MockSupabaseClient has no raw client")

    def _check(self, op: str, table: str) -> None:
        self.calls.append((op, table))
        if table in self.failing_tables:
            raise RuntimeError(f"simulated failure on {table}")

    def insert(self, table: str, data: dict[str, Any]) -> dict[str, Any]:
        self._check("insert", table)
        record = {
            "id": str(uuid4()),
            "created_at": datetime.now(timezone.utc).isoformat(),
            **data,
        }
        self._tables.setdefault(table, []).append(record)
        return record

    def upsert(self, table: str, data: dict[str, Any], on_conflict: str) -> dict[str, Any]:
        self._check("upsert", table)
        keys = [k.strip() for k in on_conflict.split(",")]
        for row in self._tables.setdefault(table, []):
            if all(str(row.get(k)) == str(data.get(k)) for k in keys):
                row.update(data)
                return row
        self._tables[table].append(dict(data))
        return self._tables[table][-1]

    def _matches(
        self,
        row: dict[str, Any],
        filters: dict[str, Any] | None,
        gte: dict[str, Any] | None = None,
        gt: dict[str, Any] | None = None,
        lt: dict[str, Any] | None = None,
        in_: dict[str, list[Any]] | None = None,
    ) -> bool:
        for key, value in (filters or {}).items():
            if row.get(key) != value and str(row.get(key)) != str(value):
                return False
        for key, value in (gte or {}).items():
            if not _comparable(row.get(key)) >= _comparable(value):
                return False
        for key, value in (gt or {}).items():
            if not _comparable(row.get(key)) > _comparable(value):
                return False
        for key, value in (lt or {}).items():
            if not _comparable(row.get(key)) < _comparable(value):
                return False
        for key, values in (in_ or {}).items():
            if str(row.get(key)) not in {str(v) for v in values}:
                return False
        return True

    def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
        limit: int | None = None,
        gte: dict[str, Any] | None = None,
        gt: dict[str, Any] | None = None,
        lt: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        self._check("select", table)
        rows = [
            r for r in self._tables.get(table, []) if self._matches(r, filters, gte, gt, lt)
        ]
        if order_by:
            rows = sorted(rows, key=lambda r: _comparable(r.get(order_by)), reverse=not ascending)
        if limit:
            rows = rows[:limit]
        return rows

    def update(self, table: str, id: str, data: dict[str, Any]) -> dict[str, Any] | None:
        self._check("update", table)
        for row in self._tables.get(table, []):
            if str(row["id"]) == str(id):
                row.update(data)
                return row
        return None

    def delete(self, table: str, id: str) -> dict[str, Any] | None:
        self._check("delete", table)
        for row in self._tables.get(table, []):
            if str(row.get("id")) == str(id):
                self._tables[table].remove(row)
                return row
        return None

    def delete_where(
        self,
        table: str,
        filters: dict[str, Any],
        in_: dict[str, list[Any]] | None = None,
    ) -> list[dict[str, Any]]:
        self._check("delete", table)
        rows = self._tables.get(table, [])
        deleted = [r for r in rows if self._matches(r, filters, in_=in_)]
        self._tables[table] = [r for r in rows if r not in deleted]
        return deleted

    def rpc(self, function: str, params: dict[str, Any]) -> Any:
        handler = getattr(self, f"_rpc_{function}")
        with self._rpc_lock:
            return handler(**params)

    def _rpc_create_admin_prompt(self, p_text: str, p_created_by: str | None, p_active: bool):
        self._check("rpc", "admin_prompts")
        if p_active:
            for row in self._tables["admin_prompts"]:
                row["active"] = False
        row = {
            "id": str(uuid4()),
            "text": p_text,
            "active": p_active,
            "version": 1,
            "created_by": p_created_by,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        self._tables["admin_prompts"].append(row)
        return [dict(row)]

    def _rpc_update_admin_prompt(self, p_id: str, p_text: str | None, p_active: bool | None):
        self._check("rpc", "admin_prompts")
        target = next((r for r in self._tables["admin_prompts"] if r["id"] == p_id), None)
        if target is None:
            return []
        if p_active:
            for row in self._tables["admin_prompts"]:
                if row["id"] != p_id:
                    row["active"] = False
        if p_text is not None:
            target["text"] = p_text
            target["version"] += 1
        if p_active is not None:
            target["active"] = p_active
        return [dict(target)]

    def _rpc_match_memories(self, query_embedding: list[float], match_user_id: str, match_count: int):
        self._check("rpc", "memories")
        matches = []
        for row in self._tables["memories"]:
            if row["user_id"] != match_user_id:
                continue
            distance = math.dist(row["embedding"], query_embedding)
            matches.append({**row, "distance": distance})
        matches.sort(key=lambda r: r["distance"])
        return matches[:match_count]

    def add_usage(self, user_id: str, prompt_tokens: int, completion_tokens: int, created_at: datetime):
        """Seed a usage record at an arbitrary time."""
        return self.insert(
            "token_usage",
            {
                "user_id": user_id,
                "chat_id": None,
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "created_at": created_at.isoformat(),
            },
        )

    def reset(self):
        for table in self._tables:
            self._tables[table] = []


class FakeModelProvider(ModelProvider):
    """Scripted model: streams ``chunks`` then reports ``usage``."""

    def __init__(
        self,
        chunks: list[str] | None = None,
        usage: TokenUsage | None = TokenUsage(prompt_tokens=10, completion_tokens=5),
        fail_after: int | None = None,
        delay: float = 0.0,
    ):
        super().__init__("http://gateway.test", embedding_dimensions=EMBEDDING_DIMENSIONS)
        self.chunks = chunks if chunks is not None else ["Hello", ", ", "world!"]
        self.usage = usage
        self.fail_after = fail_after
        self.delay = delay
        self.embeddings: dict[str, list[float]] = {}
        self.embed_error: Exception | None = None
        self.title = "A chat title"
        self.calls: list[dict[str, Any]] = []
        self.release = asyncio.Event()
        self.gated = False

    async def stream_chat(
        self, model_variant: str, system: str, messages: list[dict[str, str]]
    ) -> AsyncIterator[ModelChunk]:
        self.calls.append({"model": model_variant, "system": system, "messages": messages})
        for index, text in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise UpstreamFailure("model went away")
            if self.gated and index == 1:
                await self.release.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            yield ModelChunk(text=text)
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise UpstreamFailure("model went away")
        if self.usage is not None:
            yield ModelChunk(usage=self.usage)

    async def embed(self, text: str) -> list[float]:
        if self.embed_error is not None:
            raise self.embed_error
        return self.embeddings.get(text, [1.0, 0.0, 0.0])

    async def generate_title(self, message_text: str) -> str:
        return self.title


@pytest.fixture
def mock_db() -> MockSupabaseClient:
    """Fresh mock database for each test."""
    return MockSupabaseClient()


@pytest.fixture
def provider() -> FakeModelProvider:
    return FakeModelProvider()


@pytest.fixture
def prompt_cache() -> ActivePromptCache:
    return ActivePromptCache()


@pytest.fixture
def prompt_store(mock_db, prompt_cache) -> ActivePromptStore:
    return ActivePromptStore(mock_db, prompt_cache)


@pytest.fixture
def ledger(mock_db) -> UsageLedger:
    return UsageLedger(mock_db)


@pytest.fixture
def conversations(mock_db) -> ConversationStore:
    return ConversationStore(mock_db)


@pytest.fixture
def memory_store(mock_db, provider) -> MemoryStore:
    return MemoryStore(mock_db, provider, recall_limit=5)


@pytest.fixture
def assembler(prompt_store, memory_store) -> PromptAssembler:
    return PromptAssembler(prompt_store, memory_store)


@pytest.fixture
def broker() -> InMemoryStreamBroker:
    return InMemoryStreamBroker(retention_seconds=300)


@pytest.fixture
def multiplexer(broker) -> GenerationMultiplexer:
    return GenerationMultiplexer(broker)


@pytest.fixture
def pipeline(mock_db, provider, prompt_store, ledger, conversations, memory_store, assembler, multiplexer):
    return ChatPipeline(
        admission=AdmissionController(ledger, fail_open=True),
        conversations=conversations,
        streams=StreamRegistry(mock_db),
        assembler=assembler,
        memory=memory_store,
        provider=provider,
        multiplexer=multiplexer,
        finalizer=CompletionFinalizer(conversations, ledger),
        max_generation_seconds=5.0,
        resume_freshness_seconds=15.0,
    )


@pytest.fixture
def user_headers() -> dict[str, str]:
    return {"X-User-ID": "user-1", "X-User-Type": "regular"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-User-ID": "admin-1", "X-User-Type": "admin"}


@pytest.fixture
def app(mock_db, pipeline, prompt_store, ledger, conversations):
    """FastAPI test app with mocked dependencies."""
    from poiesis.core.conversations import get_conversation_store
    from poiesis.core.pipeline import get_pipeline
    from poiesis.core.prompts import get_prompt_store
    from poiesis.core.usage import get_usage_ledger
    from poiesis.main import app as _app

    _app.dependency_overrides[get_pipeline] = lambda: pipeline
    _app.dependency_overrides[get_conversation_store] = lambda: conversations
    _app.dependency_overrides[get_prompt_store] = lambda: prompt_store
    _app.dependency_overrides[get_usage_ledger] = lambda: ledger

    yield _app

    _app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """HTTP test client; the context keeps one event loop alive across requests."""
    with TestClient(app) as test_client:
        yield test_client
