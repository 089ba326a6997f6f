"""Shared test fixtures."""
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from ordersync.models.sync import SyncLog  # noqa: F401
from ordersync.queue.durable_queue import DurableQueue
from ordersync.remote.gateway import RemoteGateway

SERVER_URL = "http://backend.test:3000"
TOKEN = "test-token"
FIXED_NOW = datetime(2026, 3, 10, 9, 30, tzinfo=timezone.utc)


# ─── Fake legacy store ────────────────────────────────────────────────────────

class FakeLegacyReader:
    """In-memory LegacyReader: returns ``rows`` or raises ``error``."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, available: bool = True):
        self.rows = list(rows or [])
        self.available = available
        self.error: Optional[Exception] = None
        self.queries: List[str] = []

    def is_available(self) -> bool:
        return self.available

    def query(self, sql: str) -> List[Dict[str, Any]]:
        self.queries.append(sql)
        if self.error is not None:
            raise self.error
        return list(self.rows)


# ─── Fake remote order API ────────────────────────────────────────────────────

class FakeOrderApi:
    """
    In-memory /api/os backend served through httpx.MockTransport.

    fail_methods: HTTP methods that raise a connect timeout.
    error_status: if set, every request answers with this status.
    """

    def __init__(self):
        self.orders: List[Dict[str, Any]] = []
        self.calls: List[tuple] = []
        self.headers: List[httpx.Headers] = []
        self.fail_methods: Set[str] = set()
        self.error_status: Optional[int] = None
        self._next_id = 1

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def gateway_factory(self, server_url: str, token: str, timeout: float) -> RemoteGateway:
        return RemoteGateway(server_url, token, timeout, transport=self.transport)

    def add_order(self, os_number: str, status: str, **extra) -> Dict[str, Any]:
        order = {
            "id": f"srv-{self._next_id}",
            "osNumber": os_number,
            "currentStatus": status,
            "optionalDescription": extra.pop("optionalDescription", None),
            **extra,
        }
        self._next_id += 1
        self.orders.append(order)
        return order

    def calls_for(self, method: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.calls.append((request.method, request.url.path, body))
        self.headers.append(request.headers)

        if request.method in self.fail_methods:
            raise httpx.ConnectTimeout("timed out", request=request)
        if self.error_status is not None:
            return httpx.Response(self.error_status, json={"error": "boom"})

        if request.method == "GET":
            search = request.url.params.get("search", "")
            found = [
                o for o in self.orders
                if search in str(o.get("osNumber") or "")
                or search in str(o.get("optionalDescription") or "")
            ]
            return httpx.Response(200, json={"orders": found})

        if request.method == "POST":
            created = self.add_order(
                body["osNumber"],
                body["currentStatus"],
                **{k: v for k, v in body.items() if k not in ("osNumber", "currentStatus")},
            )
            return httpx.Response(201, json=created)

        if request.method == "PUT":
            order_id = request.url.path.rsplit("/", 1)[-1]
            for order in self.orders:
                if order["id"] == order_id:
                    order.update(body)
                    return httpx.Response(200, json=order)
            return httpx.Response(404, json={"error": "not found"})

        return httpx.Response(405)


# ─── Fixtures ─────────────────────────────────────────────────────────────────

@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine for the audit log."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def queue_path(tmp_path):
    return tmp_path / "state" / "pending_queue.json"


@pytest.fixture
def queue(queue_path) -> DurableQueue:
    return DurableQueue(queue_path)


@pytest.fixture
def reader() -> FakeLegacyReader:
    return FakeLegacyReader()


@pytest.fixture
def api() -> FakeOrderApi:
    return FakeOrderApi()


def legacy_row(codigo: str = "42", **overrides) -> Dict[str, Any]:
    """A realistic legacy ORDEMS row joined with its client name."""
    row = {
        "CODIGO": codigo,
        "APARELHO": "Compressor",
        "MARCA": "Schulz",
        "MODELO": "CSL 10",
        "SERIE": "SN-9921",
        "PATRIMONIO": None,
        "ACESSORIO": "Mangueira",
        "DEFEITO": "Não liga",
        "OBS_SERVICO": "Cliente aguarda orçamento",
        "SITUACAO": "Em aberto",
        "PRONTO": "N",
        "PRIOR": None,
        "COD_CLIENTE": "117",
        "NOME_CLIENTE": "Oficina Central",
        "ENTRADA": "10/03/2026 00:00:00",
    }
    row.update(overrides)
    return row
