"""Tests for the scheduled sweeps."""

import pytest
from sqlalchemy.exc import IntegrityError

from events.models import SqlEventStore
from jobs import poll_events, start_scheduler, sweep_defaults, sweep_grace_period
from ledger_sdk.contracts import DecodedLog

from conftest import TOKEN, make_loan


class TestSweeps:
    def test_defaults_notified_once(self, app, ledger, channel) -> None:
        ledger.now = 1000
        ledger.add(make_loan(1))
        assert sweep_defaults() == 1
        assert sweep_defaults() == 0
        assert len(channel.sent) == 2

    def test_default_renotified_after_failed_delivery(self, app, ledger, channel) -> None:
        ledger.now = 1000
        ledger.add(make_loan(1))
        channel.reject = {"MarkdownV2", "HTML", None}
        sweep_defaults()
        channel.reject = set()
        assert sweep_defaults() == 1

    def test_grace_period_sweep(self, app, ledger, channel) -> None:
        ledger.now = 600
        ledger.add(make_loan(1), balance=TOKEN)
        ledger.add(make_loan(2))
        ledger.failing = {2}
        assert sweep_grace_period() == 1
        assert len(channel.sent) == 1

    def test_poll_events_advances_cursor(self, app, ledger) -> None:
        ledger.block_number = 300
        assert poll_events() == 0
        assert SqlEventStore().get_cursor("lending_market") == 300


def test_scheduler_disabled_by_default(app) -> None:
    assert start_scheduler(app) is None


class TestSqlEventStore:
    def test_duplicate_log_rolls_back(self, app) -> None:
        store = SqlEventStore()
        log = DecodedLog("MembershipSuspended", {}, "0xABC", 0, 40)
        store.mark_processed(log, 1)
        with pytest.raises(IntegrityError):
            store.mark_processed(log, 1)
        store.set_cursor("lending_market", 40)
        assert store.is_processed("0xabc", 0)
        assert store.get_cursor("lending_market") == 40
