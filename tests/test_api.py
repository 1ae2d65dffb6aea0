import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from papertrade.context import TradingContext
from papertrade.db import Base, get_session, import_models
from papertrade.main import app
from papertrade.pipeline import PriceTickHandler


@pytest_asyncio.fixture
async def client(tmp_path):
    import_models()
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    Session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_session():
        async with Session() as s:
            yield s

    ctx = TradingContext()
    sub = ctx.feed.subscribe(PriceTickHandler(ctx, Session))
    app.dependency_overrides[get_session] = override_session
    app.state.trading = ctx

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    sub.unsubscribe()
    app.dependency_overrides.clear()
    await engine.dispose()


@pytest.mark.asyncio
async def test_health(client):
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"message": "OK"}


@pytest.mark.asyncio
async def test_trading_flow_over_http(client):
    resp = await client.post("/v1/accounts", json={"owner_name": "bob", "initial_deposit": 50000})
    assert resp.status_code == 201
    account_id = resp.json()["id"]

    order = {"symbol": "EURUSD", "side": "buy", "quantity": 1.0, "stop_loss": 1.0980}
    await client.post("/v1/prices", json={"prices": {"EURUSD": 1.1}})

    resp = await client.post(f"/v1/orders/{account_id}", json=order)
    assert resp.status_code == 422
    assert resp.json()["detail"]["code"] == "risk_limit_exceeded"

    resp = await client.post(f"/v1/accounts/{account_id}/kyc", json={"status": "approved"})
    assert resp.json()["kyc_status"] == "approved"

    resp = await client.post(f"/v1/orders/{account_id}", json=order)
    assert resp.status_code == 201
    position_id = resp.json()["position_id"]

    resp = await client.post("/v1/prices", json={"prices": {"EURUSD": 1.1005}})
    assert resp.json()["subscribers"] == 1

    snapshot = (await client.get(f"/v1/accounts/{account_id}/snapshot")).json()
    assert snapshot["unrealized_pnl"] == pytest.approx(5.0)
    assert snapshot["equity"] == pytest.approx(50005.0)
    assert snapshot["margin_level"] == pytest.approx(50005.0 / 1100.0 * 100.0)

    resp = await client.post(f"/v1/positions/{account_id}/{position_id}/close", json={})
    assert resp.status_code == 200
    assert resp.json()["realized_pnl"] == pytest.approx(5.0)

    resp = await client.post(f"/v1/positions/{account_id}/{position_id}/close", json={})
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "already_closed"

    verify = (await client.get(f"/v1/ledger/{account_id}/verify")).json()
    assert verify["consistent"] is True


@pytest.mark.asyncio
async def test_admin_fund_ceiling_over_http(client):
    account_id = (await client.post("/v1/accounts", json={})).json()["id"]

    resp = await client.post(
        f"/v1/ledger/{account_id}/fund",
        json={"amount": 100001, "description": "prize", "admin_id": "admin-1"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "invalid_amount"

    account = (await client.get(f"/v1/accounts/{account_id}")).json()
    assert account["balance"] == 0.0
    assert (await client.get(f"/v1/ledger/{account_id}/entries")).json() == []


@pytest.mark.asyncio
async def test_unknown_account_is_404(client):
    resp = await client.get("/v1/accounts/4242")
    assert resp.status_code == 404
    assert resp.json()["detail"]["code"] == "not_found"


@pytest.mark.asyncio
async def test_bad_price_is_rejected(client):
    resp = await client.post("/v1/prices", json={"prices": {"EURUSD": -1}})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_partial_close_retry_and_swaps_over_http(client):
    account_id = (await client.post("/v1/accounts", json={"initial_deposit": 50000})).json()["id"]
    await client.post(f"/v1/accounts/{account_id}/kyc", json={"status": "approved"})
    await client.post("/v1/prices", json={"prices": {"EURUSD": 1.1}})

    order = {"symbol": "EURUSD", "side": "buy", "quantity": 1.0, "stop_loss": 1.0980, "idempotency_key": "ticket-7"}
    first = (await client.post(f"/v1/orders/{account_id}", json=order)).json()
    retry = (await client.post(f"/v1/orders/{account_id}", json=order)).json()
    assert retry["id"] == first["id"]
    assert len((await client.get(f"/v1/positions/{account_id}")).json()) == 1
    position_id = first["position_id"]

    resp = await client.post("/v1/positions/swaps")
    assert resp.status_code == 200
    assert [c["amount"] for c in resp.json()] == [pytest.approx(-0.75)]

    resp = await client.post(f"/v1/positions/{account_id}/{position_id}/close", json={"quantity": 0.25})
    assert resp.status_code == 200
    assert resp.json()["quantity"] == pytest.approx(0.25)

    positions = (await client.get(f"/v1/positions/{account_id}")).json()
    assert positions[0]["quantity"] == pytest.approx(0.75)

    resp = await client.post(f"/v1/positions/{account_id}/{position_id}/close", json={"quantity": 0})
    assert resp.status_code == 422
