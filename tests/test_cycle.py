"""Tests for the cycle runner: overlap, timeout, stop conditions and end-to-end flow."""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from dualinvest.config import Settings
from dualinvest.engine.cycle import CycleRunner
from dualinvest.engine.scheduler import JOB_ID, CycleScheduler
from dualinvest.schemas.hedge import HedgeRecord, HedgeStatus
from dualinvest.schemas.strategy import StrategyConfig
from dualinvest.services.binance_client import OrderResult, SubscribeResult
from dualinvest.services.ledger import PositionLedger
from tests.factories import flat_policy, make_position, make_product


def _settings(tmp_path, **overrides) -> Settings:
    values = dict(
        api_key="key",
        api_secret="secret",
        ledger_path=str(tmp_path / "positions.json"),
        cycle_timeout_seconds=5.0,
    )
    values.update(overrides)
    return Settings(**values)


def _client():
    client = AsyncMock()
    client.fetch_positions.return_value = []
    client.fetch_dual_investment_products.return_value = []
    client.fetch_spot_prices.return_value = {}
    client.fetch_spot_balances.return_value = {}
    client.fetch_current_price.return_value = None
    return client


def _runner(tmp_path, journal, client, on_stop=None, **settings_overrides) -> CycleRunner:
    settings = _settings(tmp_path, **settings_overrides)
    return CycleRunner(
        settings=settings,
        strategy=StrategyConfig(),
        ledger=PositionLedger(settings.ledger_path),
        journal=journal,
        client_factory=lambda: client,
        policy=flat_policy(),
        on_stop=on_stop,
    )


# ---------------------------------------------------------------------------
# 1. Concurrency guards
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_overlapping_cycle_is_skipped(tmp_path, journal):
    gate = asyncio.Event()
    client = _client()

    async def slow_positions():
        await gate.wait()
        return []

    client.fetch_positions.side_effect = slow_positions
    runner = _runner(tmp_path, journal, client)

    first = asyncio.create_task(runner.run_cycle())
    for _ in range(10):
        await asyncio.sleep(0)
    assert runner.running

    skipped = await runner.run_cycle()
    assert skipped.status == "skipped"

    gate.set()
    result = await first
    assert result.status == "success"
    assert [c.status for c in journal.recent_cycles()] == ["success", "skipped"]


@pytest.mark.asyncio
async def test_timed_out_cycle_releases_lock(tmp_path, journal):
    client = _client()

    async def hanging_positions():
        await asyncio.sleep(10)

    client.fetch_positions.side_effect = hanging_positions
    runner = _runner(tmp_path, journal, client, cycle_timeout_seconds=0.05)

    result = await runner.run_cycle()

    assert result.status == "timeout"
    assert not runner.running
    client.close.assert_awaited()

    client.fetch_positions.side_effect = None
    assert (await runner.run_cycle()).status == "success"


@pytest.mark.asyncio
async def test_missing_credentials_abort_cycle(tmp_path, journal):
    factory = MagicMock()
    settings = _settings(tmp_path, api_key="", api_secret="")
    runner = CycleRunner(
        settings=settings,
        strategy=StrategyConfig(),
        ledger=PositionLedger(settings.ledger_path),
        journal=journal,
        client_factory=factory,
    )

    result = await runner.run_cycle()

    assert result.status == "error"
    assert result.action == "missing_credentials"
    factory.assert_not_called()
    assert journal.recent_cycles()[0].status == "error"


# ---------------------------------------------------------------------------
# 2. Stop conditions
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_position_cap_stops_after_hedge_pass(tmp_path, journal):
    client = _client()
    client.fetch_positions.return_value = [make_position(id=str(i)) for i in range(30)]
    stops = []
    runner = _runner(tmp_path, journal, client, on_stop=stops.append)

    result = await runner.run_cycle()

    assert result.status == "stopped"
    client.fetch_dual_investment_products.assert_not_awaited()
    client.subscribe.assert_not_awaited()
    assert client.fetch_current_price.await_count == 30
    assert len(stops) == 1
    assert "max total positions" in stops[0]


@pytest.mark.asyncio
async def test_hedged_cap_stops(tmp_path, journal):
    client = _client()
    positions = [make_position(id=str(i)) for i in range(3)]
    client.fetch_positions.return_value = positions
    settings = _settings(tmp_path)
    ledger = PositionLedger(settings.ledger_path)
    now = datetime.now(timezone.utc)
    ledger.reconcile(positions, now)
    for p in positions[:2]:
        ledger.persist(p, HedgeRecord().advance(HedgeStatus.STEP1, now), now)

    stops = []
    runner = CycleRunner(
        settings=settings,
        strategy=StrategyConfig(max_hedged_positions=2),
        ledger=ledger,
        journal=journal,
        client_factory=lambda: client,
        on_stop=stops.append,
    )
    result = await runner.run_cycle()

    assert result.status == "stopped"
    assert "max hedged positions" in stops[0]


# ---------------------------------------------------------------------------
# 3. End to end
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cycle_subscribes_to_ranked_product(tmp_path, journal):
    now = datetime.now(timezone.utc)
    client = _client()
    client.fetch_dual_investment_products.return_value = [make_product(now=now)]
    client.fetch_spot_prices.return_value = {"BTCUSDT": 60500.0}
    client.fetch_spot_balances.return_value = {"USDT": 5000.0}
    client.subscribe.return_value = SubscribeResult(success=True, position_id="555")
    runner = _runner(tmp_path, journal, client)

    result = await runner.run_cycle()

    assert result.status == "success"
    assert result.candidates == 1
    assert result.subscriptions == 1
    rows = journal.subscriptions()
    assert [(r.product_id, r.status) for r in rows] == [("p1", "success")]


@pytest.mark.asyncio
async def test_dry_run_never_subscribes(tmp_path, journal):
    now = datetime.now(timezone.utc)
    client = _client()
    client.fetch_dual_investment_products.return_value = [make_product(now=now)]
    client.fetch_spot_prices.return_value = {"BTCUSDT": 60500.0}
    client.fetch_spot_balances.return_value = {"USDT": 5000.0}
    runner = _runner(tmp_path, journal, client, dry_run=True)

    await runner.run_cycle()

    client.subscribe.assert_not_awaited()
    assert journal.subscriptions()[0].status == "mock"


@pytest.mark.asyncio
async def test_persisted_breach_timer_triggers_hedge(tmp_path, journal):
    now = datetime.now(timezone.utc)
    position = make_position(id="42", now=now)
    settings = _settings(tmp_path)
    seeded = PositionLedger(settings.ledger_path)
    seeded.reconcile([position], now - timedelta(minutes=6))
    seeded.persist(position, HedgeRecord(first_breach_at=now - timedelta(minutes=6)), now - timedelta(minutes=6))

    client = _client()
    client.fetch_positions.return_value = [position]
    client.fetch_current_price.return_value = 59000.0
    client.open_margin_position.return_value = OrderResult(success=True, order_id="9", filled_quantity=0.05)
    runner = _runner(tmp_path, journal, client)

    result = await runner.run_cycle()

    assert result.hedges == 1
    symbol, side, quantity = client.open_margin_position.call_args.args
    assert (symbol, side) == ("BTCUSDT", "SELL")
    assert quantity == pytest.approx(0.05)
    assert PositionLedger(settings.ledger_path).get_hedge_status("42") is HedgeStatus.STEP1
    assert journal.hedge_actions("42")[0].success


@pytest.mark.asyncio
async def test_failed_hedge_keeps_status_and_timer(tmp_path, journal):
    now = datetime.now(timezone.utc)
    breach_at = now - timedelta(minutes=6)
    position = make_position(id="43", now=now)
    settings = _settings(tmp_path)
    seeded = PositionLedger(settings.ledger_path)
    seeded.reconcile([position], breach_at)
    seeded.persist(position, HedgeRecord(first_breach_at=breach_at), breach_at)

    client = _client()
    client.fetch_positions.return_value = [position]
    client.fetch_current_price.return_value = 59000.0
    client.open_margin_position.return_value = OrderResult(success=False, error="insufficient margin")
    runner = _runner(tmp_path, journal, client)

    await runner.run_cycle()

    entry = PositionLedger(settings.ledger_path).get_entry("43")
    assert entry.hedge_status is HedgeStatus.NONE
    assert entry.first_breach_at == breach_at
    assert not journal.hedge_actions("43")[0].success


# ---------------------------------------------------------------------------
# 4. Scheduler
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_scheduler_registers_single_interval_job(tmp_path, journal):
    runner = _runner(tmp_path, journal, _client())
    scheduler = CycleScheduler(runner, interval_minutes=3)
    scheduler.start()
    try:
        status = scheduler.get_status()
        assert status["running"]
        assert [j["id"] for j in status["jobs"]] == [JOB_ID]
        job = scheduler.scheduler.get_job(JOB_ID)
        assert job.max_instances == 1
        assert job.coalesce is True
    finally:
        scheduler.stop()
