import json
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4
import pytest
from postgrest.exceptions import APIError
from forkify_ingest.config import Config

FIXTURE_DIR = Path(__file__).parent / "fixtures"


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.order_by = None

    def select(self, *columns):
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def _matches(self, row):
        return all(row.get(column) == value for column, value in self.filters)

    def execute(self):
        self.db.calls.append((self.table, self.op))
        remaining = self.db.failures.get((self.table, self.op))
        if remaining is not None and remaining != 0:
            self.db.failures[(self.table, self.op)] = remaining - 1
            raise APIError({"message": f"{self.table} {self.op} rejected", "code": "XX000"})

        rows = self.db.tables.setdefault(self.table, [])
        if self.op == "insert":
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [
                {"id": str(uuid4()), "created_at": datetime.now(tz=timezone.utc).isoformat(), **p}
                for p in payload
            ]
            rows.extend(created)
            return FakeResponse(created)
        matched = [row for row in rows if self._matches(row)]
        if self.op == "update":
            for row in matched:
                row.update(self.payload)
            return FakeResponse(matched)
        if self.op == "delete":
            self.db.tables[self.table] = [row for row in rows if not self._matches(row)]
            if self.table == "recipes":
                ids = {row["id"] for row in matched}
                for child in ("recipe_ingredients", "recipe_steps", "recipe_tools", "recipe_collections"):
                    self.db.tables[child] = [
                        r for r in self.db.tables.get(child, []) if r.get("recipe_id") not in ids
                    ]
            return FakeResponse(matched)
        if self.order_by:
            column, desc = self.order_by
            matched = sorted(matched, key=lambda r: r.get(column) or 0, reverse=desc)
        return FakeResponse(matched)


class FakeBucket:
    def __init__(self, storage, name):
        self.storage = storage
        self.name = name

    def upload(self, path, file, file_options=None):
        if self.storage.fail_upload:
            raise RuntimeError("storage quota exceeded")
        self.storage.objects[path] = file
        return {"Key": f"{self.name}/{path}"}

    def create_signed_url(self, path, expires_in):
        if self.storage.sign_result == "raise":
            raise RuntimeError("signing key unavailable")
        if self.storage.sign_result == "empty":
            return {}
        self.storage.signed.append((path, expires_in))
        return {"signedURL": f"https://storage.test/sign/{self.name}/{path}?token=t0k3n"}

    def get_public_url(self, path):
        return f"https://storage.test/public/{self.name}/{path}"

    def remove(self, paths):
        for path in paths:
            self.storage.objects.pop(path, None)


class FakeStorage:
    def __init__(self):
        self.objects = {}
        self.signed = []
        self.fail_upload = False
        self.sign_result = "ok"

    def from_(self, name):
        return FakeBucket(self, name)


class FakeSupabase:
    """In-memory stand-in for the parts of supabase.Client the package uses."""

    def __init__(self):
        self.tables = {}
        self.calls = []
        self.failures = {}
        self.storage = FakeStorage()

    def table(self, name):
        return FakeQuery(self, name)

    def fail(self, table, op="insert", times=-1):
        """Make the next `times` operations on a table raise APIError (-1: always)."""
        self.failures[(table, op)] = times

    def rows(self, table):
        return self.tables.get(table, [])


@pytest.fixture
def config(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
    return Config(supabase_url="https://db.test", supabase_key="service-key", relay_timeout=1.0)


@pytest.fixture
def supabase():
    return FakeSupabase()


def anthropic_reply(payload, input_tokens=1200, output_tokens=350):
    text = payload if isinstance(payload, str) else json.dumps(payload)
    response = MagicMock()
    response.content = [MagicMock(text=text)]
    response.usage = MagicMock(input_tokens=input_tokens, output_tokens=output_tokens)
    return response


@pytest.fixture
def anthropic_client():
    """Mock AsyncAnthropic client; set `.messages.create.return_value` with anthropic_reply()."""
    client = MagicMock()
    client.messages.create = AsyncMock()
    return client


@pytest.fixture
def fixture_html():
    def _read(name):
        return (FIXTURE_DIR / name).read_text()

    return _read
