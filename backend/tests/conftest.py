"""Pytest configuration and fixtures."""

import os
import sys
import threading
import uuid
from collections import defaultdict
from decimal import Decimal

import pytest

TEST_ADMIN_TOKEN = "test-admin-token"
SOLANA_TREASURY = "TreasurySo1ana1111111111111111111111111111111"
BASE_TREASURY = "0x00000000000000000000000000000000000000aa"

# For unit tests, set mock values ONLY if not running integration tests
if not os.environ.get("RUN_INTEGRATION"):
    os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
    os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
    os.environ.setdefault("ADMIN_API_TOKEN", TEST_ADMIN_TOKEN)
    os.environ.setdefault("SOLANA_TREASURY_PUBKEY", SOLANA_TREASURY)
    os.environ.setdefault("BASE_TREASURY_ADDRESS", BASE_TREASURY)
else:
    # For integration tests, load from .env
    from pathlib import Path

    from dotenv import load_dotenv

    env_path = Path(__file__).parent.parent / ".env"

    # Safety check: require explicit confirmation for integration tests
    if not os.environ.get("CONFIRM_INTEGRATION_CREDENTIALS"):
        print(
            "\nIntegration tests will use REAL credentials and RPC endpoints from .env.\n"
            "Set CONFIRM_INTEGRATION_CREDENTIALS=yes to proceed.\n",
            file=sys.stderr,
        )
        pytest.exit(
            "Integration tests require CONFIRM_INTEGRATION_CREDENTIALS=yes",
            returncode=1,
        )

    load_dotenv(env_path, override=True)

from app.main import app  # noqa: E402
from app.payments.models import PaymentChain, PriceableResource, ResourceType  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from postgrest.exceptions import APIError  # noqa: E402

# =============================================================================
# In-memory PostgREST fake
# =============================================================================


class _FakeResult:
    def __init__(self, data: list[dict]):
        self.data = data


class _FakeQuery:
    """Supports the builder calls the ledger makes: select/eq/limit/insert/execute."""

    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._filters: list[tuple[str, object]] = []
        self._limit: int | None = None
        self._insert: dict | None = None

    def select(self, columns: str = "*"):
        return self

    def eq(self, column: str, value):
        self._filters.append((column, value))
        return self

    def limit(self, count: int):
        self._limit = count
        return self

    def insert(self, data: dict):
        self._insert = data
        return self

    def execute(self) -> _FakeResult:
        if self._insert is not None:
            return _FakeResult([self._db._insert(self._table, self._insert)])
        rows = self._db._select(self._table, self._filters)
        if self._limit is not None:
            rows = rows[: self._limit]
        return _FakeResult(rows)


class FakeSupabase:
    """Thread-safe stand-in for the Supabase client.

    Enforces UNIQUE (chain, transaction_signature) on payment_events the way
    Postgres does, raising a PostgREST ``APIError`` with code 23505.
    """

    UNIQUE_KEYS = {"payment_events": ("chain", "transaction_signature")}

    def __init__(self):
        self.tables: dict[str, list[dict]] = defaultdict(list)
        self.insert_attempts = 0
        self.fail_with: Exception | None = None
        self._lock = threading.Lock()

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)

    def _select(self, table: str, filters) -> list[dict]:
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            return [
                dict(row)
                for row in self.tables[table]
                if all(row.get(column) == value for column, value in filters)
            ]

    def _insert(self, table: str, data: dict) -> dict:
        if self.fail_with is not None:
            raise self.fail_with
        with self._lock:
            self.insert_attempts += 1
            key = self.UNIQUE_KEYS.get(table)
            if key is not None:
                for row in self.tables[table]:
                    if all(row.get(k) == data.get(k) for k in key):
                        raise APIError(
                            {
                                "code": "23505",
                                "message": "duplicate key value violates unique constraint "
                                '"unique_tx_per_chain"',
                                "details": None,
                                "hint": None,
                            }
                        )
            row = {"id": str(uuid.uuid4()), **data}
            self.tables[table].append(row)
            return dict(row)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def client():
    """Create a test client."""
    return TestClient(app)


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {TEST_ADMIN_TOKEN}"}


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def post_resource():
    """A $0.25 post payable on both chains."""
    return PriceableResource(
        resource_type=ResourceType.post,
        resource_id="post_abc",
        price_usdc=Decimal("0.25"),
        recipient_id="6f1c2a7e-0000-4000-8000-000000000001",
        recipient_address_by_chain={
            PaymentChain.solana: "AuthorSo1ana11111111111111111111111111111111",
            PaymentChain.base: "0x00000000000000000000000000000000000000bb",
        },
    )


@pytest.fixture
def spam_fee_resource():
    return PriceableResource(
        resource_type=ResourceType.spam_fee,
        resource_id="agent_1",
        price_usdc=Decimal("0.10"),
    )
