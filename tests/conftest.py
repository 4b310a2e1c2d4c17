"""Shared fixtures: an in-memory Supabase table double and chat fixtures."""
import sys
from pathlib import Path
from types import SimpleNamespace

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent.parent / "backend"))

import pytest
from unittest.mock import Mock


class FakeQuery:
    """Chainable query mimicking the supabase-py builder on a list of rows."""

    def __init__(self, table):
        self.table = table
        self.action = "select"
        self.columns = "*"
        self.count_mode = None
        self.payload = None
        self.filters = []
        self.order_by = None
        self.row_limit = None

    def select(self, columns="*", count=None):
        self.action, self.columns, self.count_mode = "select", columns, count
        return self

    def insert(self, payload):
        self.action, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.action, self.payload = "update", payload
        return self

    def delete(self):
        self.action = "delete"
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def limit(self, count):
        self.row_limit = count
        return self

    def _matches(self, row):
        return all(row.get(column) == value for column, value in self.filters)

    def _project(self, row):
        if self.columns == "*":
            return dict(row)
        names = [name.strip() for name in self.columns.split(",")]
        return {name: row.get(name) for name in names}

    def execute(self):
        self.table.calls.append(self.action)
        if self.table.failures:
            raise self.table.failures.pop(0)

        if self.action == "insert":
            rows = self.payload if isinstance(self.payload, list) else [self.payload]
            self.table.rows.extend(dict(row) for row in rows)
            return SimpleNamespace(data=[dict(row) for row in rows], count=None)

        if self.action == "update":
            for hook in list(self.table.before_update):
                hook(self.table)
            updated = []
            for row in self.table.rows:
                if self._matches(row):
                    row.update(self.payload)
                    updated.append(dict(row))
            return SimpleNamespace(data=updated, count=None)

        if self.action == "delete":
            deleted = [row for row in self.table.rows if self._matches(row)]
            self.table.rows = [row for row in self.table.rows if not self._matches(row)]
            return SimpleNamespace(data=deleted, count=None)

        rows = [row for row in self.table.rows if self._matches(row)]
        if self.order_by:
            column, desc = self.order_by
            rows = sorted(rows, key=lambda row: row.get(column), reverse=desc)
        if self.row_limit is not None:
            rows = rows[:self.row_limit]
        count = len(rows) if self.count_mode == "exact" else None
        return SimpleNamespace(data=[self._project(row) for row in rows], count=count)


class FakeTable:
    def __init__(self):
        self.rows = []
        self.calls = []
        self.failures = []
        self.before_update = []


class FakeSupabase:
    """Stands in for a supabase Client: only table() is used by the services."""

    def __init__(self):
        self.tables = {}

    def table(self, name):
        return FakeQuery(self.tables.setdefault(name, FakeTable()))

    def get_table(self, name="ai_conversations"):
        return self.tables.setdefault(name, FakeTable())


@pytest.fixture
def fake_supabase():
    """In-memory Supabase client double."""
    return FakeSupabase()


def fake_auth_client(valid_token="valid-token", user_id="user-1"):
    """Supabase auth double accepting a single token."""
    auth_client = Mock()

    def get_user(token):
        if token != valid_token:
            raise Exception("invalid JWT")
        return SimpleNamespace(user=SimpleNamespace(id=user_id))

    auth_client.auth.get_user.side_effect = get_user
    return auth_client


@pytest.fixture
def chat_services(fake_supabase):
    """Real pipeline over in-memory doubles of the external services."""
    from models.knowledge import EmbeddingRecord, KnowledgeSource
    from services.chat_pipeline import ChatPipeline
    from services.context_assembler import ContextAssembler
    from services.conversation_manager import ConversationManager
    from services.llm_client import LLMResponse
    from services.retrieval_engine import RetrievalEngine
    from services.vector_store import InMemoryVectorStore

    embedding_model = Mock()
    embedding_model.embed_text.return_value = [1.0, 0.0]

    llm_client = Mock()
    llm_client.generate.return_value = LLMResponse(
        text="Let the breath guide you.",
        tokens_input=80,
        tokens_output=6,
        latency_ms=3,
        model_used="test-model"
    )

    knowledge = InMemoryVectorStore([
        EmbeddingRecord("k1", "Breath is the anchor.", KnowledgeSource.SHI_HENG_YI, embedding=[1.0, 0.0]),
    ])
    manager = ConversationManager(client=fake_supabase)
    pipeline = ChatPipeline(
        embedding_model=embedding_model,
        retrieval_engine=RetrievalEngine(knowledge),
        context_assembler=ContextAssembler(token_counter=lambda text: len(text.split())),
        llm_client=llm_client,
        conversation_manager=manager
    )
    return SimpleNamespace(pipeline=pipeline, manager=manager, llm_client=llm_client, supabase=fake_supabase)


@pytest.fixture
def chat_app(chat_services):
    """The FastAPI app with services injected (startup is not run)."""
    from services.auth import AuthContext
    import main

    main.chat_pipeline = chat_services.pipeline
    main.conversation_manager = chat_services.manager
    main.auth_context = AuthContext(client=fake_auth_client())
    yield main.app
    main.chat_pipeline = None
    main.conversation_manager = None
    main.auth_context = None
