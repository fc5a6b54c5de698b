"""Tests for CLI maintenance commands and the journal."""

from datetime import datetime, timedelta, timezone

import pytest

from dualinvest import cli
from dualinvest.schemas.hedge import HedgeRecord, HedgeStatus
from dualinvest.schemas.strategy import StrategyConfig
from dualinvest.services.ledger import ActivePosition, PositionLedger
from dualinvest.services.stop_conditions import check_stop_conditions
from tests.factories import make_position


def test_prune_ledger_drops_old_closed_entries(tmp_path, monkeypatch):
    path = tmp_path / "positions.json"
    monkeypatch.setattr(cli.settings, "ledger_path", str(path))
    now = datetime.now(timezone.utc)
    ledger = PositionLedger(path)
    ledger.reconcile([make_position(id="old"), make_position(id="open")], now - timedelta(days=40))
    ledger.reconcile([make_position(id="open")], now - timedelta(days=35))

    assert cli.prune_ledger(30) == 1

    entries = PositionLedger(path).entries()
    assert set(entries) == {"open"}


def test_main_without_command_exits(monkeypatch):
    monkeypatch.setattr("sys.argv", ["dualinvest"])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 1


def _subscription(product_id: str, status: str) -> dict:
    return dict(
        product_id=product_id,
        pair="BTCUSDT",
        option_type="PUT",
        strike_price=60000.0,
        apr=0.5,
        settle_date=1_800_000_000_000,
        deposit_coin="USDT",
        deposit_amount=500.0,
        status=status,
    )


def test_journal_records_and_filters(journal):
    journal.log_cycle("success", action="no_products", active_positions=3)
    journal.record_subscription(**_subscription("p1", "success"))
    journal.record_subscription(**_subscription("p2", "failed"))
    journal.record_hedge(
        position_id="7", symbol="BTCUSDT", option_type="PUT", from_status="NONE", target_status="STEP1",
        side="SELL", fraction=0.5, quantity=0.05, spot_price=59000.0, break_even=59901.6, success=True,
    )

    cycle = journal.recent_cycles()[0]
    assert (cycle.status, cycle.action, cycle.active_positions) == ("success", "no_products", 3)
    assert [s.status for s in journal.subscriptions("p2")] == ["failed"]
    assert len(journal.subscriptions()) == 2
    assert journal.hedge_actions("7")[0].target_status == "STEP1"


def test_journal_write_failure_is_logged_not_raised(journal, caplog):
    journal.record_subscription(product_id="p3", status="success")
    assert journal.subscriptions("p3") == []
    assert "Failed to write SubscriptionLog" in caplog.text


def test_stop_conditions_total_then_hedged():
    now = datetime.now(timezone.utc)
    unhedged = ActivePosition(make_position(id="1"), HedgeRecord())
    hedged = ActivePosition(make_position(id="2"), HedgeRecord().advance(HedgeStatus.STEP1, now))

    assert check_stop_conditions([unhedged], StrategyConfig(max_total_positions=2)) is None
    assert "total" in check_stop_conditions([unhedged, hedged], StrategyConfig(max_total_positions=2))
    assert "hedged" in check_stop_conditions([unhedged, hedged], StrategyConfig(max_hedged_positions=1))
