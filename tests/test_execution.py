"""Tests for the subscription dispatcher."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from dualinvest.schemas.strategy import StrategyConfig
from dualinvest.services.binance_client import SubscribeResult
from dualinvest.services.collateral import BorrowResult
from dualinvest.services.execution import ExecutionDispatcher, calculate_allocation, is_replacement
from dualinvest.services.product_filter import score_product
from tests.factories import NOW, flat_policy, make_product


def _scored(product):
    return score_product(product, StrategyConfig(), flat_policy(), False, NOW).scored


def _dispatcher(client=None, resolver=None, journal=None, strategy=None):
    client = client or AsyncMock()
    resolver = resolver or AsyncMock()
    journal = journal or MagicMock()
    return ExecutionDispatcher(client, resolver, journal, strategy or StrategyConfig())


APR_CHANGED = SubscribeResult(success=False, error="The APY has been updated, please retry", code=-9000)


# ---------------------------------------------------------------------------
# 1. Allocation
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "balance,put,call",
    [
        (-1.0, 0.0, 1000.0),
        (-0.5, 500.0, 1000.0),
        (0.0, 1000.0, 1000.0),
        (1.0, 1000.0, 0.0),
    ],
)
def test_calculate_allocation(balance, put, call):
    allocation = calculate_allocation(balance, 1000)
    assert allocation.put == pytest.approx(put)
    assert allocation.call == pytest.approx(call)


def test_replacement_requires_same_contract_and_better_rate():
    original = make_product(id="a", apr=1.0)
    assert is_replacement(make_product(id="b", apr=1.1), original)
    assert not is_replacement(make_product(id="c", apr=0.9), original)
    assert not is_replacement(make_product(id="d", apr=1.1, hours=96), original)


# ---------------------------------------------------------------------------
# 2. Dispatch
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_put_subscribes_allocation_from_balance():
    client = AsyncMock()
    client.subscribe.return_value = SubscribeResult(success=True, position_id="900")
    dispatcher = _dispatcher(client=client)

    result = await dispatcher.execute([_scored(make_product())], balances={"USDT": 2000.0})

    # 10000 * 0.1 with balance -0.5 -> 500 to PUT
    client.subscribe.assert_awaited_once()
    product, amount = client.subscribe.call_args.args
    assert product.id == "p1"
    assert amount == pytest.approx(500)
    assert result.subscribed == 1
    assert result.balances["USDT"] == pytest.approx(1500)


@pytest.mark.asyncio
async def test_call_converts_allocation_to_coin_amount():
    client = AsyncMock()
    client.fetch_current_price.return_value = 50000.0
    client.subscribe.return_value = SubscribeResult(success=True, position_id="901")
    dispatcher = _dispatcher(client=client)

    product = make_product(option_type="CALL", spot=59500)
    await dispatcher.execute([_scored(product)], balances={"BTC": 1.0})

    _, amount = client.subscribe.call_args.args
    assert amount == pytest.approx(0.02)


@pytest.mark.asyncio
async def test_insufficient_balance_borrows_then_subscribes():
    client = AsyncMock()
    client.subscribe.return_value = SubscribeResult(success=True, position_id="902")
    resolver = AsyncMock()
    resolver.borrow.return_value = BorrowResult("USDT", 500, "BTC", 0.0134, {"ok": True})
    dispatcher = _dispatcher(client=client, resolver=resolver)

    result = await dispatcher.execute([_scored(make_product())], balances={})

    resolver.borrow.assert_awaited_once_with("USDT", 500)
    client.subscribe.assert_awaited_once()
    assert result.balances["USDT"] == pytest.approx(0)


@pytest.mark.asyncio
async def test_failed_borrow_skips_product():
    client = AsyncMock()
    resolver = AsyncMock()
    resolver.borrow.return_value = None
    journal = MagicMock()
    dispatcher = _dispatcher(client=client, resolver=resolver, journal=journal)

    result = await dispatcher.execute([_scored(make_product())], balances={"USDT": 10.0})

    client.subscribe.assert_not_awaited()
    assert result.skipped == 1
    assert journal.record_subscription.call_args.kwargs["status"] == "skipped"


@pytest.mark.asyncio
async def test_mock_mode_does_not_subscribe():
    client = AsyncMock()
    journal = MagicMock()
    dispatcher = _dispatcher(client=client, journal=journal)

    result = await dispatcher.execute([_scored(make_product())], mock=True, balances={"USDT": 2000.0})

    client.subscribe.assert_not_awaited()
    assert result.subscribed == 1
    assert journal.record_subscription.call_args.kwargs["status"] == "mock"


@pytest.mark.asyncio
async def test_unknown_asset_skipped():
    client = AsyncMock()
    dispatcher = _dispatcher(client=client)
    product = make_product(base="DOGE")
    result = await dispatcher.execute([_scored(product)], balances={"USDT": 2000.0})
    client.subscribe.assert_not_awaited()
    assert result.skipped == 1


# ---------------------------------------------------------------------------
# 3. Rate-change retry
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_apr_change_retries_with_replacement():
    original = make_product(id="old", apr=1.0)
    replacement = make_product(id="new", apr=1.05)
    client = AsyncMock()
    client.subscribe.side_effect = [APR_CHANGED, SubscribeResult(success=True, position_id="903")]
    client.fetch_products_by_meta.return_value = [make_product(id="worse", apr=0.9), replacement]
    journal = MagicMock()
    dispatcher = _dispatcher(client=client, journal=journal)

    result = await dispatcher.execute([_scored(original)], balances={"USDT": 2000.0})

    assert result.subscribed == 1
    assert [c.args[0].id for c in client.subscribe.call_args_list] == ["old", "new"]
    assert journal.record_subscription.call_args.kwargs["is_retry"] is True


@pytest.mark.asyncio
async def test_apr_change_retried_at_most_once():
    client = AsyncMock()
    client.subscribe.side_effect = [APR_CHANGED, APR_CHANGED, APR_CHANGED]
    client.fetch_products_by_meta.return_value = [make_product(id="new", apr=1.05)]
    dispatcher = _dispatcher(client=client)

    result = await dispatcher.execute([_scored(make_product(id="old"))], balances={"USDT": 2000.0})

    assert client.subscribe.await_count == 2
    assert result.failed == 1


@pytest.mark.asyncio
async def test_other_errors_not_retried():
    client = AsyncMock()
    client.subscribe.return_value = SubscribeResult(success=False, error="Insufficient balance", code=-2010)
    dispatcher = _dispatcher(client=client)

    await dispatcher.execute([_scored(make_product())], balances={"USDT": 2000.0})

    assert client.subscribe.await_count == 1
    client.fetch_products_by_meta.assert_not_awaited()


@pytest.mark.asyncio
async def test_mock_mode_spends_balance_before_next_product():
    resolver = AsyncMock()
    resolver.borrow.return_value = BorrowResult("USDT", 500, "BTC", 0.0134, {"ok": True})
    dispatcher = _dispatcher(resolver=resolver)
    products = [_scored(make_product(id="a")), _scored(make_product(id="b", base="ETH"))]

    result = await dispatcher.execute(products, mock=True, balances={"USDT": 700.0})

    # 700 covers the first 500 deposit only; the second must borrow
    assert result.subscribed == 2
    resolver.borrow.assert_awaited_once_with("USDT", 500)
    assert result.balances["USDT"] == pytest.approx(200)
