import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists() and str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


_configure_path()

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

import cashback_api.models  # noqa: E402,F401
from cashback_api.app import create_app  # noqa: E402
from cashback_api.db.base import Base  # noqa: E402
from cashback_api.db.session import get_session  # noqa: E402
from cashback_api.observability.rewards import get_reward_dispatch_store  # noqa: E402


def as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on read; every stored timestamp is UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def reset_reward_dispatch_store():
    store = get_reward_dispatch_store()
    store.reset()
    yield store
    store.reset()


def build_order_payload(
    *,
    order_id: int | str = 5001,
    name: str = "#1001",
    email: str | None = "jane@example.com",
    total_price: str = "100.00",
    customer_id: int | None = 42,
    first_name: str | None = "Jane",
    created_at: str = "2026-01-01T10:00:00Z",
    protection: bool = True,
    cashback_amount: str | None = None,
    line_items: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    note_attributes: list[dict[str, Any]] = []
    if protection:
        note_attributes.append({"name": "_protection_enabled", "value": "true"})
    if cashback_amount is not None:
        note_attributes.append({"name": "_cashback_amount", "value": cashback_amount})

    payload: dict[str, Any] = {
        "id": order_id,
        "name": name,
        "email": email,
        "total_price": total_price,
        "currency": "USD",
        "created_at": created_at,
        "note_attributes": note_attributes,
        "line_items": line_items if line_items is not None else [{"title": "Linen shirt", "name": "Linen shirt - M"}],
        "customer": None,
    }
    if customer_id is not None or first_name is not None:
        payload["customer"] = {"id": customer_id, "first_name": first_name, "email": email}
    return payload


@pytest.fixture
def order_payload() -> Callable[..., dict[str, Any]]:
    return build_order_payload


class ShopifyStub:
    """MockTransport handler emulating the Admin GraphQL endpoint."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []
        self.headers: list[httpx.Headers] = []
        self.urls: list[str] = []
        self.discount_responses: list[Any] = []
        self.tag_responses: list[Any] = []

    @property
    def discount_requests(self) -> list[dict[str, Any]]:
        return [body for body in self.requests if "discountCodeBasicCreate" in body["query"]]

    @property
    def tag_requests(self) -> list[dict[str, Any]]:
        return [body for body in self.requests if "tagsAdd" in body["query"]]

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        self.headers.append(request.headers)
        self.urls.append(str(request.url))

        queue = self.tag_responses if "tagsAdd" in body["query"] else self.discount_responses
        if queue:
            queued = queue.pop(0)
            if isinstance(queued, BaseException):
                raise queued
            if isinstance(queued, httpx.Response):
                return queued
            return httpx.Response(200, json=queued)

        if "tagsAdd" in body["query"]:
            return httpx.Response(
                200,
                json={"data": {"tagsAdd": {"node": {"id": body["variables"]["id"]}, "userErrors": []}}},
            )
        return httpx.Response(200, json=discount_success(body["variables"]["basicCodeDiscount"]["code"]))

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def discount_success(code: str, node_id: str = "gid://shopify/DiscountCodeNode/900") -> dict[str, Any]:
    return {
        "data": {
            "discountCodeBasicCreate": {
                "codeDiscountNode": {
                    "id": node_id,
                    "codeDiscount": {
                        "title": "Cashback",
                        "status": "ACTIVE",
                        "codes": {"nodes": [{"code": code}]},
                    },
                },
                "userErrors": [],
            }
        }
    }


def discount_user_errors(*errors: dict[str, Any]) -> dict[str, Any]:
    return {"data": {"discountCodeBasicCreate": {"codeDiscountNode": None, "userErrors": list(errors)}}}


INVALID_CUSTOMER_ERROR = {
    "field": ["basicCodeDiscount", "context", "customers", "add"],
    "message": "Customer is invalid",
    "code": "INVALID",
}


@pytest.fixture
def shopify_stub() -> ShopifyStub:
    return ShopifyStub()
