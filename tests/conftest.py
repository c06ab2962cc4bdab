"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
from pathlib import Path

# Minimal environment for settings
os.environ.setdefault("XMR_DAEMON_URI", "http://127.0.0.1:18081")
os.environ.setdefault("XMR_WALLET_DAEMON_URI", "http://127.0.0.1:18082")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_FILE", "")

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
from unittest.mock import AsyncMock, MagicMock

from loguru import logger

from tests.factories import InMemoryStore, RecordingPublisher
from xmrpay.rpc.client import TransferLookup
from xmrpay.services.payment_reconciler import PaymentReconciler


@pytest.fixture
def store():
    """Empty in-memory invoice/payment store."""
    return InMemoryStore()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def wallet():
    """
    Mock wallet RPC.

    Returns:
        MagicMock with no transfers, a single account and no known transactions
    """
    rpc = MagicMock()
    rpc.get_transfers = AsyncMock(return_value=[])
    rpc.get_accounts = AsyncMock(return_value=[0])
    rpc.get_transfer_by_txid = AsyncMock(return_value=TransferLookup.not_found())
    return rpc


@pytest.fixture
def reconciler(wallet, store, publisher):
    """Reconciler wired to the mock wallet and the in-memory store."""
    return PaymentReconciler(
        wallet_rpc_clients={"XMR": wallet},
        invoice_store=store,
        payment_store=store,
        publisher=publisher,
    )


@pytest.fixture
def log_records():
    """Capture loguru records emitted during the test."""
    records: list = []
    handler_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(handler_id)
