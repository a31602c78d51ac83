"""
Shared fixtures: in-memory database and recording fakes for the
price, notification and trading collaborators.
"""
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from core.database import Database
from core.models import MonitoredAddress
from core.normalizer import TRANSFER_TOPIC
from core.pipeline import IngestionPipeline

WALLET = "0x" + "0" * 37 + "abc"
OTHER_WALLET = "0x1111111111111111111111111111111111111111"
TOKEN = "0x0e09fabb73bd3ade0a17ecc321fd13a19e81ce82"


class FakePriceService:
    """Returns fixed prices and symbols, records lookups."""

    def __init__(self, prices: Optional[Dict[str, float]] = None, symbols: Optional[Dict[str, str]] = None):
        self.prices = prices or {}
        self.symbols = symbols or {}
        self.price_calls: List[str] = []
        self.symbol_calls: List[str] = []
        self.fail = False

    async def get_token_price_in_usd(self, token_address: str) -> float:
        self.price_calls.append(token_address)
        if self.fail:
            raise RuntimeError("price API down")
        return self.prices.get(token_address, 0.0)

    async def get_token_symbol(self, token_address: str) -> str:
        self.symbol_calls.append(token_address)
        return self.symbols.get(token_address, "UNKNOWN")


class FakeNotifier:
    """Collects notifications instead of sending them."""

    def __init__(self):
        self.transfers = []
        self.trades = []

    async def notify_transfer(self, wallet, record) -> bool:
        self.transfers.append((wallet.chat_id, record))
        return True

    async def notify_trade(self, wallet, record, order_amount_usd) -> bool:
        self.trades.append((wallet.chat_id, record, order_amount_usd))
        return True


class FakeTradeClient:
    """Gate.io stand-in with a fixed set of listed symbols."""

    def __init__(self, pairs: Optional[Dict[str, str]] = None):
        self.pairs = pairs or {}
        self.lookups: List[str] = []
        self.orders = []
        self.fail_orders = False

    async def find_trading_pair(self, token_symbol: str) -> Optional[str]:
        self.lookups.append(token_symbol)
        return self.pairs.get(token_symbol.upper())

    async def open_short_position(self, trading_pair: str, amount: float) -> dict:
        if self.fail_orders:
            raise RuntimeError("order rejected")
        self.orders.append((trading_pair, amount))
        return {"id": str(len(self.orders)), "status": "closed"}


@pytest_asyncio.fixture
async def db():
    database = Database(":memory:")
    await database.connect()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def wallet(db):
    return await db.add_wallet(MonitoredAddress(address=WALLET, chat_id=42, threshold_usd=1000.0))


@pytest.fixture
def price_service():
    return FakePriceService(prices={TOKEN: 2.0}, symbols={TOKEN: "CAKE"})


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def trade_client():
    return FakeTradeClient(pairs={"CAKE": "CAKE_USDT"})


@pytest.fixture
def pipeline(db, price_service, notifier, trade_client):
    return IngestionPipeline(
        db=db,
        price_service=price_service,
        notifier=notifier,
        trade_client=trade_client,
        trade_size_fraction=0.01
    )


def make_transfer_log(tx_hash: str, to_address: str = WALLET, value: int = 5 * 10 ** 18,
                      token: str = TOKEN) -> dict:
    """Raw Moralis log entry for an ERC-20 Transfer."""
    return {
        "logIndex": "0",
        "transactionHash": tx_hash,
        "address": token,
        "data": "0x" + format(value, "064x"),
        "topic0": TRANSFER_TOPIC,
        "topic1": "0x" + "0" * 24 + "2" * 40,
        "topic2": "0x" + "0" * 24 + to_address[2:],
        "topic3": None
    }


def make_erc20_transfer(tx_hash: str, to_address: str = WALLET, value: int = 5 * 10 ** 18,
                        token: str = TOKEN, symbol: str = "CAKE", decimals: str = "18") -> dict:
    """Decoded Moralis erc20Transfers entry."""
    return {
        "transactionHash": tx_hash,
        "logIndex": "3",
        "contract": token,
        "from": "0x2222222222222222222222222222222222222222",
        "to": to_address,
        "value": str(value),
        "tokenName": "PancakeSwap Token",
        "tokenSymbol": symbol,
        "tokenDecimals": decimals,
        "valueWithDecimals": None
    }


def make_delivery(transfers=None, logs=None, confirmed=True, block_number="41000000") -> dict:
    """Moralis stream delivery wrapping the given entries."""
    return {
        "confirmed": confirmed,
        "chainId": "0x38",
        "streamId": "c28d9e2e-ae9d-4c20-b4ed-d6a0e4c5f9f1",
        "tag": "wallet_1",
        "block": {"number": block_number, "hash": "0xblock", "timestamp": "1700000000"},
        "logs": logs or [],
        "erc20Transfers": transfers or [],
        "txs": [],
        "txsInternal": [],
        "abi": []
    }
