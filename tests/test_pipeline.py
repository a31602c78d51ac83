"""
Tests for the delivery ingestion pipeline: filtering, dedup, valuation,
notifications and hedge trades.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from core.models import MonitoredAddress
from core.pipeline import IngestionPipeline, extract_transfers, is_verification_ping

from conftest import (
    OTHER_WALLET, TOKEN, WALLET, make_delivery, make_erc20_transfer, make_transfer_log
)

BIG_VALUE = 1000 * 10 ** 18  # 1000 tokens at $2 = $2000


class TestDeliveryFilters:
    """Tests for ping detection and transfer extraction."""

    def test_verification_ping(self):
        assert is_verification_ping(make_delivery())
        assert not is_verification_ping(make_delivery(logs=[make_transfer_log("0x1")]))
        assert not is_verification_ping({"confirmed": True, "logs": []})

    def test_extract_transfers_skips_bad_entries(self):
        broken = make_erc20_transfer("0x1")
        del broken["to"]
        approval = make_transfer_log("0x2")
        approval["topic0"] = "0x8c5be1e5ebec7d5bd14f71427d1e84f3dd0314c0f7b2291e5b200ac8c7c3b925"

        events = extract_transfers(make_delivery(
            transfers=[broken, make_erc20_transfer("0x3")],
            logs=[approval, make_transfer_log("0x4")]
        ))

        assert [e.tx_hash for e in events] == ["0x3", "0x4"]


class TestSmallTransfer:
    """A transfer below the wallet threshold is recorded and announced only."""

    @pytest.mark.asyncio
    async def test_transfer_log_below_threshold(self, pipeline, db, wallet, notifier, trade_client, price_service):
        records = await pipeline.handle_delivery(make_delivery(logs=[make_transfer_log("0xabc")]))

        assert len(records) == 1
        stored = await db.get_transaction_by_hash("0xabc")
        assert stored.wallet_id == wallet.id
        assert stored.amount == "5.0"
        assert stored.amount_usd == pytest.approx(10.0)
        assert stored.token_symbol == "CAKE"
        assert stored.block_number == 41000000
        assert stored.trade_triggered is False

        assert len(notifier.transfers) == 1
        assert notifier.transfers[0][0] == 42
        assert notifier.trades == []
        assert trade_client.lookups == []
        # Logs carry no symbol, so it is resolved from the contract
        assert price_service.symbol_calls == [TOKEN]

    @pytest.mark.asyncio
    async def test_structured_transfer_uses_payload_symbol(self, pipeline, db, wallet, price_service):
        await pipeline.handle_delivery(make_delivery(transfers=[make_erc20_transfer("0xdef")]))

        assert (await db.get_transaction_by_hash("0xdef")).token_symbol == "CAKE"
        assert price_service.symbol_calls == []

    @pytest.mark.asyncio
    async def test_token_decimals_are_applied(self, pipeline, db, wallet):
        await pipeline.handle_delivery(make_delivery(
            transfers=[make_erc20_transfer("0x6dec", value=2_500_000, decimals="6")]
        ))

        stored = await db.get_transaction_by_hash("0x6dec")
        assert stored.amount == "2.5"
        assert stored.amount_usd == pytest.approx(5.0)


class TestThresholdTrade:
    """A transfer at or above the threshold triggers a hedge."""

    @pytest.mark.asyncio
    async def test_trade_placed_and_flagged(self, pipeline, db, wallet, notifier, trade_client):
        await pipeline.handle_delivery(make_delivery(
            transfers=[make_erc20_transfer("0xbig", value=BIG_VALUE)]
        ))

        stored = await db.get_transaction_by_hash("0xbig")
        assert stored.amount_usd == pytest.approx(2000.0)
        assert stored.trade_triggered is True

        assert len(trade_client.orders) == 1
        pair, amount = trade_client.orders[0]
        assert pair == "CAKE_USDT"
        assert amount == pytest.approx(20.0)

        assert len(notifier.transfers) == 1
        assert len(notifier.trades) == 1
        assert notifier.trades[0][2] == pytest.approx(20.0)

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self, pipeline, db, wallet, trade_client):
        await db.update_threshold(42, 10.0)

        await pipeline.handle_delivery(make_delivery(logs=[make_transfer_log("0xeq")]))

        assert (await db.get_transaction_by_hash("0xeq")).trade_triggered is True
        assert len(trade_client.orders) == 1

    @pytest.mark.asyncio
    async def test_no_market_for_token(self, pipeline, db, wallet, notifier, trade_client):
        await pipeline.handle_delivery(make_delivery(
            transfers=[make_erc20_transfer("0xfoo", value=BIG_VALUE, symbol="FOO")]
        ))

        assert (await db.get_transaction_by_hash("0xfoo")).trade_triggered is False
        assert trade_client.lookups == ["FOO"]
        assert trade_client.orders == []
        assert len(notifier.transfers) == 1
        assert notifier.trades == []

    @pytest.mark.asyncio
    async def test_order_failure_is_not_fatal(self, pipeline, db, wallet, notifier, trade_client):
        trade_client.fail_orders = True

        records = await pipeline.handle_delivery(make_delivery(
            transfers=[make_erc20_transfer("0xfail", value=BIG_VALUE)]
        ))

        assert len(records) == 1
        assert (await db.get_transaction_by_hash("0xfail")).trade_triggered is False
        assert len(notifier.transfers) == 1
        assert notifier.trades == []

    @pytest.mark.asyncio
    async def test_trading_disabled(self, db, wallet, price_service, notifier):
        pipeline = IngestionPipeline(db, price_service, notifier, trade_client=None)

        await pipeline.handle_delivery(make_delivery(
            transfers=[make_erc20_transfer("0xoff", value=BIG_VALUE)]
        ))

        assert (await db.get_transaction_by_hash("0xoff")).trade_triggered is False
        assert len(notifier.transfers) == 1

    @pytest.mark.asyncio
    async def test_flag_update_refused(self, pipeline, db, wallet, notifier, trade_client, monkeypatch):
        """No follow-up message when the trade flag could not be set."""
        monkeypatch.setattr(db, "mark_trade_triggered", AsyncMock(return_value=False))

        records = await pipeline.handle_delivery(make_delivery(
            transfers=[make_erc20_transfer("0xflag", value=BIG_VALUE)]
        ))

        assert len(trade_client.orders) == 1
        assert records[0].trade_triggered is False
        assert notifier.trades == []

    @pytest.mark.asyncio
    async def test_zero_threshold_with_unknown_price_does_not_trade(self, pipeline, db, wallet, trade_client):
        """$0 meets a $0 threshold, but an empty order is never sent."""
        await db.update_threshold(42, 0.0)

        await pipeline.handle_delivery(make_delivery(
            transfers=[make_erc20_transfer("0xzero", token="0x" + "9" * 40)]
        ))

        assert (await db.get_transaction_by_hash("0xzero")).amount_usd == 0.0
        assert trade_client.orders == []


class TestDuplicates:
    """The same transaction hash is processed once."""

    @pytest.mark.asyncio
    async def test_redelivery_is_ignored(self, pipeline, db, wallet, notifier):
        delivery = make_delivery(logs=[make_transfer_log("0xdup")])

        first = await pipeline.handle_delivery(delivery)
        second = await pipeline.handle_delivery(delivery)

        assert len(first) == 1
        assert second == []
        assert len(notifier.transfers) == 1
        assert (await db.get_stats())['total_transactions'] == 1

    @pytest.mark.asyncio
    async def test_concurrent_redelivery_is_ignored(self, pipeline, db, wallet, notifier):
        delivery = make_delivery(logs=[make_transfer_log("0xrace")])

        pipeline.submit(delivery)
        pipeline.submit(delivery)
        await pipeline.drain()

        assert len(notifier.transfers) == 1
        assert (await db.get_stats())['total_transactions'] == 1

    @pytest.mark.asyncio
    async def test_hash_seen_twice_in_one_delivery(self, pipeline, db, wallet, notifier):
        """The decoded transfer and its raw log describe the same transfer."""
        await pipeline.handle_delivery(make_delivery(
            transfers=[make_erc20_transfer("0xsame")],
            logs=[make_transfer_log("0xsame")]
        ))

        assert len(notifier.transfers) == 1


class TestDiscards:
    """Deliveries and entries that produce no transaction."""

    @pytest.mark.asyncio
    async def test_unconfirmed_delivery(self, pipeline, db, wallet, notifier, price_service):
        records = await pipeline.handle_delivery(
            make_delivery(logs=[make_transfer_log("0xunconf")], confirmed=False)
        )

        assert records == []
        assert await db.get_transaction_by_hash("0xunconf") is None
        assert notifier.transfers == []
        assert price_service.price_calls == []

    @pytest.mark.asyncio
    async def test_verification_ping(self, pipeline, db, wallet, notifier):
        assert await pipeline.handle_delivery(make_delivery()) == []
        assert (await db.get_stats())['total_transactions'] == 0

    @pytest.mark.asyncio
    async def test_non_object_payload(self, pipeline):
        assert await pipeline.handle_delivery(["not", "a", "delivery"]) == []

    @pytest.mark.asyncio
    async def test_unknown_wallet(self, pipeline, db, wallet, notifier, price_service):
        await pipeline.handle_delivery(make_delivery(
            logs=[make_transfer_log("0xstranger", to_address=OTHER_WALLET)]
        ))

        assert await db.get_transaction_by_hash("0xstranger") is None
        assert notifier.transfers == []
        assert price_service.price_calls == []

    @pytest.mark.asyncio
    async def test_inactive_wallet(self, pipeline, db, notifier):
        await db.add_wallet(MonitoredAddress(address=OTHER_WALLET, chat_id=7, active=False))

        await pipeline.handle_delivery(make_delivery(
            logs=[make_transfer_log("0xpaused", to_address=OTHER_WALLET)]
        ))

        assert await db.get_transaction_by_hash("0xpaused") is None
        assert notifier.transfers == []

    @pytest.mark.asyncio
    async def test_price_failure_values_at_zero(self, pipeline, db, wallet, notifier, price_service):
        price_service.fail = True

        await pipeline.handle_delivery(make_delivery(logs=[make_transfer_log("0xnoprice")]))

        stored = await db.get_transaction_by_hash("0xnoprice")
        assert stored.amount == "5.0"
        assert stored.amount_usd == 0.0
        assert len(notifier.transfers) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field, value", [
        ("topic2", 12345),
        ("data", ["0x01"]),
        ("address", {"token": "cake"}),
    ])
    async def test_malformed_log_next_to_valid_one(self, pipeline, db, wallet, notifier, field, value):
        bad = make_transfer_log("0xbad")
        bad[field] = value

        pipeline.submit(make_delivery(logs=[bad, make_transfer_log("0xgood")]))
        await pipeline.drain()

        assert await db.get_transaction_by_hash("0xbad") is None
        assert await db.get_transaction_by_hash("0xgood") is not None
        assert len(notifier.transfers) == 1

    @pytest.mark.asyncio
    async def test_entry_lists_of_wrong_type(self, pipeline, db, wallet):
        delivery = make_delivery(logs=[make_transfer_log("0xlisted")])
        delivery["erc20Transfers"] = 5

        records = await pipeline.handle_delivery(delivery)

        assert [r.tx_hash for r in records] == ["0xlisted"]

    @pytest.mark.asyncio
    async def test_failing_notification_still_trades(self, db, wallet, price_service, trade_client):
        class DownNotifier:
            def __init__(self):
                self.trades = []

            async def notify_transfer(self, wallet, record):
                raise RuntimeError("telegram down")

            async def notify_trade(self, wallet, record, order_amount_usd):
                self.trades.append(record.tx_hash)

        notifier = DownNotifier()
        pipeline = IngestionPipeline(db, price_service, notifier, trade_client)

        await pipeline.handle_delivery(make_delivery(
            transfers=[make_erc20_transfer("0xquiet", value=BIG_VALUE)]
        ))

        assert len(trade_client.orders) == 1
        assert (await db.get_transaction_by_hash("0xquiet")).trade_triggered is True
        assert notifier.trades == ["0xquiet"]

    @pytest.mark.asyncio
    async def test_failing_entry_does_not_stop_delivery(self, db, wallet, price_service, trade_client):
        class FlakyNotifier:
            def __init__(self):
                self.sent = []

            async def notify_transfer(self, wallet, record):
                if record.tx_hash == "0xboom":
                    raise RuntimeError("telegram down")
                self.sent.append(record.tx_hash)

            async def notify_trade(self, wallet, record, order_amount_usd):
                pass

        notifier = FlakyNotifier()
        pipeline = IngestionPipeline(db, price_service, notifier, trade_client)

        await pipeline.handle_delivery(make_delivery(
            logs=[make_transfer_log("0xboom"), make_transfer_log("0xfine")]
        ))

        assert notifier.sent == ["0xfine"]
        assert await db.get_transaction_by_hash("0xboom") is not None


class TestSubmit:
    """Tests for background scheduling."""

    @pytest.mark.asyncio
    async def test_submit_returns_before_processing(self, pipeline, db, wallet):
        task = pipeline.submit(make_delivery(logs=[make_transfer_log("0xbg")]))

        assert isinstance(task, asyncio.Task)
        assert pipeline.pending_count == 1

        await pipeline.drain()

        assert pipeline.pending_count == 0
        assert await db.get_transaction_by_hash("0xbg") is not None

    @pytest.mark.asyncio
    async def test_errors_stay_inside_the_task(self, price_service, notifier):
        class BrokenDb:
            async def get_wallet_by_address(self, address):
                raise RuntimeError("disk gone")

        pipeline = IngestionPipeline(BrokenDb(), price_service, notifier)

        task = pipeline.submit(make_delivery(logs=[make_transfer_log("0xerr")]))
        await pipeline.drain()

        assert task.exception() is None
        assert notifier.transfers == []
