"""
Tests for payment reconciliation.

Covers:
- Bulk scan: one query per account, matching, create then update
- Single transaction scan: account probing, per-address grouping
- Idempotent upsert keyed by transaction, account and address
- Batched updates with one notification per invoice
- Payment method re-activation after partial payments
- Invariant violations and concurrent passes
- Cancellation while the payment batch is written
"""

import asyncio
from decimal import Decimal

import pytest

from tests.factories import (
    InMemoryStore,
    address_for,
    found_lookup,
    make_invoice,
    make_payment,
    make_transfer,
)
from xmrpay.models import InvoiceStatus, PaymentStatus, SpeedPolicy
from xmrpay.rpc.client import TransferLookup
from xmrpay.services.events import InvoiceNeedsUpdate, PaymentReceived
from xmrpay.services.payment_reconciler import (
    ObservedTransfer,
    PaymentReconciler,
    merge_observations,
)
from xmrpay.utils.exceptions import (
    ListenerError,
    MalformedRpcDataError,
    PaymentInvariantError,
    WalletRpcTransportError,
)


PMID = "XMR-CHAIN"


class TestBulkScan:
    """Test update_any_pending_payment / reconcile_all."""

    @pytest.mark.asyncio
    async def test_settles_after_threshold(self, reconciler, store, wallet, publisher):
        """Threshold 10: 3 confirmations process, 10 settle the same payment."""
        store.add_invoice(make_invoice("inv-1", threshold=10))

        wallet.get_transfers.return_value = [make_transfer("tx-1", confirmations=3)]
        first = await reconciler.update_any_pending_payment("XMR")

        assert len(first.created) == 1
        assert first.created[0].id == "tx-1#0#1"
        assert first.created[0].status == PaymentStatus.PROCESSING

        wallet.get_transfers.return_value = [make_transfer("tx-1", confirmations=10)]
        second = await reconciler.update_any_pending_payment("XMR")

        assert second.created == []
        assert [p.id for p, _ in second.updated] == ["tx-1#0#1"]

        rows = store.payment_rows("inv-1")
        assert len(rows) == 1
        assert rows[0]["id"] == "tx-1#0#1"
        assert rows[0]["status"] == PaymentStatus.SETTLED
        assert rows[0]["details"]["confirmation_count"] == 10
        assert rows[0]["details"]["invoice_settled_confirmation_threshold"] == 10

    @pytest.mark.asyncio
    async def test_low_speed_policy(self, reconciler, store, wallet):
        """Low speed settles at 6 confirmations."""
        store.add_invoice(make_invoice("inv-1", speed_policy=SpeedPolicy.LOW_SPEED))

        wallet.get_transfers.return_value = [make_transfer("tx-1", confirmations=5)]
        await reconciler.update_any_pending_payment("XMR")
        assert store.payment_rows()[0]["status"] == PaymentStatus.PROCESSING

        wallet.get_transfers.return_value = [make_transfer("tx-1", confirmations=6)]
        await reconciler.update_any_pending_payment("XMR")
        assert store.payment_rows()[0]["status"] == PaymentStatus.SETTLED

    @pytest.mark.asyncio
    async def test_unmatched_transfer_ignored(self, reconciler, store, wallet, publisher):
        """A transfer to an address of no activated prompt creates nothing."""
        store.add_invoice(make_invoice("inv-1", address_index=1))
        wallet.get_transfers.return_value = [make_transfer("tx-1", address_index=9)]

        result = await reconciler.update_any_pending_payment("XMR")

        assert result.created == []
        assert result.updated == []
        assert store.payment_rows() == []
        assert store.add_calls == []
        assert publisher.notifications == []

    @pytest.mark.asyncio
    async def test_one_query_per_account(self, reconciler, store, wallet):
        """Invoices sharing an account are covered by a single query."""
        store.add_invoice(make_invoice("inv-1", account_index=0, address_index=2))
        store.add_invoice(make_invoice("inv-2", account_index=0, address_index=1))
        store.add_invoice(make_invoice("inv-3", account_index=1, address_index=3))

        await reconciler.update_any_pending_payment("XMR")

        calls = {call.args[0]: call.args for call in wallet.get_transfers.await_args_list}
        assert wallet.get_transfers.await_count == 2
        assert calls[0] == (0, True, [1, 2])
        assert calls[1] == (1, True, [3])

    @pytest.mark.asyncio
    async def test_query_includes_used_subaddresses(self, reconciler, store, wallet):
        """Sub-addresses of existing payments are queried too."""
        store.add_invoice(
            make_invoice(
                "inv-1",
                address_index=1,
                payments=[make_payment("inv-1", "tx-0", address_index=4)],
            )
        )

        await reconciler.update_any_pending_payment("XMR")

        wallet.get_transfers.assert_awaited_once_with(0, True, [1, 4])

    @pytest.mark.asyncio
    async def test_only_activated_monitored_invoices(self, reconciler, store, wallet):
        """Settled invoices and inactive prompts are not scanned."""
        store.add_invoice(make_invoice("inv-1", status=InvoiceStatus.SETTLED))
        store.add_invoice(make_invoice("inv-2", address_index=2, activated=False))

        result = await reconciler.update_any_pending_payment("XMR")

        assert result.created == []
        wallet.get_transfers.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rescan_is_idempotent(self, reconciler, store, wallet, publisher):
        """Re-observing a transfer never adds a second payment."""
        store.add_invoice(make_invoice("inv-1"))
        wallet.get_transfers.return_value = [make_transfer("tx-1", confirmations=0)]

        for _ in range(3):
            await reconciler.update_any_pending_payment("XMR")

        assert len(store.payment_rows()) == 1
        assert len(publisher.of_type(PaymentReceived)) == 1
        assert store.update_calls == [["tx-1#0#1"], ["tx-1#0#1"]]

    @pytest.mark.asyncio
    async def test_updates_batched_per_pass(self, reconciler, store, wallet, publisher):
        """All updated payments are written at once and each invoice notified once."""
        store.add_invoice(
            make_invoice(
                "inv-1",
                due=Decimal("2"),
                payments=[
                    make_payment("inv-1", "tx-1"),
                    make_payment("inv-1", "tx-2"),
                ],
            )
        )
        store.add_invoice(
            make_invoice(
                "inv-2",
                address_index=2,
                payments=[make_payment("inv-2", "tx-3", address_index=2)],
            )
        )
        wallet.get_transfers.return_value = [
            make_transfer("tx-1", confirmations=2),
            make_transfer("tx-2", confirmations=2),
            make_transfer("tx-3", address_index=2, confirmations=2),
        ]

        result = await reconciler.update_any_pending_payment("XMR")

        assert len(store.update_calls) == 1
        assert sorted(store.update_calls[0]) == ["tx-1#0#1", "tx-2#0#1", "tx-3#0#2"]
        notified = [n.invoice_id for n in publisher.of_type(InvoiceNeedsUpdate)]
        assert sorted(notified) == ["inv-1", "inv-2"]
        assert result.touched_invoice_ids == notified
        assert all(row["status"] == PaymentStatus.SETTLED for row in store.payment_rows())

    @pytest.mark.asyncio
    async def test_failed_account_skipped(self, reconciler, store, wallet, log_records):
        """A failing account is skipped; other accounts are still applied."""
        store.add_invoice(make_invoice("inv-1", account_index=0, address_index=1))
        store.add_invoice(make_invoice("inv-2", account_index=1, address_index=1))

        async def get_transfers(account_index, incoming_only, subaddr_indices):
            if account_index == 1:
                raise WalletRpcTransportError("connection reset")
            return [make_transfer("tx-1", account_index=0, address_index=1)]

        wallet.get_transfers.side_effect = get_transfers

        result = await reconciler.update_any_pending_payment("XMR")

        assert result.failed_accounts == [1]
        assert [p.invoice_id for p in result.created] == ["inv-1"]
        assert any(
            r["level"].name == "ERROR" and "account 1" in r["message"] for r in log_records
        )

    @pytest.mark.asyncio
    async def test_outputs_sharing_key_are_summed(self, reconciler, store, wallet):
        """Two outputs of one transaction to one sub-address make one payment."""
        store.add_invoice(make_invoice("inv-1"))
        wallet.get_transfers.return_value = [
            make_transfer("tx-1", amount=300_000_000_000),
            make_transfer("tx-1", amount=200_000_000_000),
        ]

        result = await reconciler.update_any_pending_payment("XMR")

        assert len(result.created) == 1
        assert result.created[0].amount == Decimal("0.5")

    @pytest.mark.asyncio
    async def test_destination_mismatch_raises(self, reconciler, store, wallet):
        """A payment key recorded for another destination is an invariant violation."""
        store.add_invoice(
            make_invoice(
                "inv-1",
                payments=[make_payment("inv-1", "tx-1", destination="8somewhere-else")],
            )
        )
        wallet.get_transfers.return_value = [make_transfer("tx-1")]

        with pytest.raises(PaymentInvariantError, match="8somewhere-else"):
            await reconciler.update_any_pending_payment("XMR")

    @pytest.mark.asyncio
    async def test_shared_destination_skips_only_that_transfer(
        self, reconciler, store, wallet, publisher, log_records
    ):
        """A transfer claimed by two invoices is skipped; other invoices still settle."""
        store.add_invoice(make_invoice("inv-a", address_index=7))
        store.add_invoice(make_invoice("inv-b", address_index=7))
        store.add_invoice(
            make_invoice(
                "inv-c",
                address_index=3,
                payments=[make_payment("inv-c", "tx-c", address_index=3)],
            )
        )
        wallet.get_transfers.return_value = [
            make_transfer("tx-x", address_index=7),
            make_transfer("tx-c", address_index=3, confirmations=5),
        ]

        result = await reconciler.update_any_pending_payment("XMR")

        assert result.skipped_tx_ids == ["tx-x"]
        assert store.payment_rows("inv-a") == []
        assert store.payment_rows("inv-b") == []
        assert store.payment_rows("inv-c")[0]["status"] == PaymentStatus.SETTLED
        assert [n.invoice_id for n in publisher.of_type(InvoiceNeedsUpdate)] == ["inv-c"]
        assert any(
            r["level"].name == "CRITICAL"
            and "tx-x" in r["message"]
            and address_for(0, 7) in r["message"]
            for r in log_records
        )

    @pytest.mark.asyncio
    async def test_cancel_during_batch_write_completes_batch(self, wallet, publisher):
        """Cancelling a pass while the batch is written still writes every update."""
        writing = asyncio.Event()
        release = asyncio.Event()
        written = asyncio.Event()

        class SlowWriteStore(InMemoryStore):
            async def update_payments(self, payments):
                writing.set()
                await release.wait()
                await super().update_payments(payments)
                written.set()

        store = SlowWriteStore()
        store.add_invoice(
            make_invoice(
                "inv-1",
                due=Decimal("2"),
                payments=[make_payment("inv-1", "tx-1"), make_payment("inv-1", "tx-2")],
            )
        )
        reconciler = PaymentReconciler({"XMR": wallet}, store, store, publisher)
        wallet.get_transfers.return_value = [
            make_transfer("tx-1", confirmations=10),
            make_transfer("tx-2", confirmations=10),
        ]

        task = asyncio.create_task(reconciler.update_any_pending_payment("XMR"))
        await asyncio.wait_for(writing.wait(), timeout=1)
        task.cancel()
        release.set()

        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.wait_for(written.wait(), timeout=1)

        assert store.update_calls == [["tx-1#0#1", "tx-2#0#1"]]
        assert all(row["status"] == PaymentStatus.SETTLED for row in store.payment_rows("inv-1"))
        assert publisher.of_type(InvoiceNeedsUpdate) == []


class TestPaymentActivation:
    """Test re-activation of the payment method after a payment."""

    @pytest.mark.asyncio
    async def test_partial_payment_activates(self, reconciler, store, wallet, publisher):
        """Money still due after the payment re-activates the payment method."""
        store.add_invoice(make_invoice("inv-1", due=Decimal("1")))
        wallet.get_transfers.return_value = [make_transfer("tx-1", amount=400_000_000_000)]

        await reconciler.update_any_pending_payment("XMR")

        assert store.activations == [("inv-1", PMID)]
        received = publisher.of_type(PaymentReceived)
        assert len(received) == 1
        assert received[0].invoice.id == "inv-1"
        assert received[0].payment.amount == Decimal("0.4")

    @pytest.mark.asyncio
    async def test_full_payment_does_not_activate(self, reconciler, store, wallet, publisher):
        """Nothing left due means no activation."""
        store.add_invoice(make_invoice("inv-1", due=Decimal("1")))
        wallet.get_transfers.return_value = [make_transfer("tx-1", amount=1_000_000_000_000)]

        await reconciler.update_any_pending_payment("XMR")

        assert store.activations == []
        assert len(publisher.of_type(PaymentReceived)) == 1

    @pytest.mark.asyncio
    async def test_overpaid_invoice_rejects_new_payment(self, reconciler, store, wallet, publisher):
        """The store refuses payments once nothing is due."""
        store.add_invoice(
            make_invoice(
                "inv-1",
                due=Decimal("0.5"),
                payments=[make_payment("inv-1", "tx-1", amount=Decimal("0.5"))],
            )
        )
        wallet.get_transfers.return_value = [
            make_transfer("tx-1"),
            make_transfer("tx-2"),
        ]

        result = await reconciler.update_any_pending_payment("XMR")

        assert result.created == []
        assert "tx-2#0#1" in store.add_calls
        assert len(store.payment_rows()) == 1
        assert publisher.of_type(PaymentReceived) == []


class TestSingleTransactionScan:
    """Test reconcile_one and account probing."""

    @pytest.mark.asyncio
    async def test_first_owning_account_wins(self, reconciler, store, wallet):
        """Probing stops at the first account that knows the transaction."""
        store.add_invoice(make_invoice("inv-1", account_index=1, address_index=2))
        wallet.get_accounts.return_value = [0, 1, 2]
        lookups = {
            0: TransferLookup.not_found(),
            1: found_lookup(make_transfer("tx-1", account_index=1, address_index=2)),
            2: found_lookup(make_transfer("tx-1", account_index=2, address_index=2)),
        }
        wallet.get_transfer_by_txid.side_effect = lambda tx_id, account: lookups[account]

        result = await reconciler.reconcile_one("XMR", "tx-1")

        assert [call.args for call in wallet.get_transfer_by_txid.await_args_list] == [
            ("tx-1", 0),
            ("tx-1", 1),
        ]
        assert [p.id for p in result.created] == ["tx-1#1#2"]

    @pytest.mark.asyncio
    async def test_wallet_without_accounts(self, reconciler, wallet):
        """With no accounts the default account is probed."""
        wallet.get_accounts.return_value = []

        await reconciler.reconcile_one("XMR", "tx-1")

        wallet.get_transfer_by_txid.assert_awaited_once_with("tx-1", None)

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_noop(self, reconciler, store, publisher):
        """A transaction the wallet does not know changes nothing."""
        store.add_invoice(make_invoice("inv-1"))

        result = await reconciler.reconcile_one("XMR", "tx-1")

        assert result.created == []
        assert store.add_calls == []
        assert publisher.notifications == []

    @pytest.mark.asyncio
    async def test_transient_failure_on_one_account(self, reconciler, store, wallet, log_records):
        """A failing account is skipped when another owns the transaction."""
        store.add_invoice(make_invoice("inv-1", account_index=1, address_index=1))
        wallet.get_accounts.return_value = [0, 1]
        wallet.get_transfer_by_txid.side_effect = [
            TransferLookup.failed(WalletRpcTransportError("timeout")),
            found_lookup(make_transfer("tx-1", account_index=1, address_index=1)),
        ]

        result = await reconciler.reconcile_one("XMR", "tx-1")

        assert len(result.created) == 1
        assert any(r["level"].name == "WARNING" for r in log_records)

    @pytest.mark.asyncio
    async def test_transient_failure_without_match_raises(self, reconciler, wallet):
        """Failed probes and no owner make the scan fail as transient."""
        wallet.get_accounts.return_value = [0, 1]
        wallet.get_transfer_by_txid.side_effect = [
            TransferLookup.not_found(),
            TransferLookup.failed(WalletRpcTransportError("timeout")),
        ]

        with pytest.raises(WalletRpcTransportError):
            await reconciler.reconcile_one("XMR", "tx-1")

    @pytest.mark.asyncio
    async def test_malformed_lookup_propagates(self, reconciler, store, wallet):
        """Unparseable wallet data fails the scan instead of looking transient."""
        store.add_invoice(make_invoice("inv-1"))
        wallet.get_transfer_by_txid.side_effect = MalformedRpcDataError(
            "get_transfer_by_txid returned malformed data"
        )

        with pytest.raises(MalformedRpcDataError):
            await reconciler.reconcile_one("XMR", "tx-1")

        assert store.add_calls == []

    @pytest.mark.asyncio
    async def test_outputs_grouped_by_address(self, reconciler, store, wallet, publisher):
        """Outputs to one address are summed; each address goes to its own invoice."""
        store.add_invoice(make_invoice("inv-1", address_index=1))
        store.add_invoice(make_invoice("inv-2", address_index=2))
        wallet.get_transfer_by_txid.return_value = found_lookup(
            make_transfer("tx-1", address_index=1, amount=100_000_000_000),
            make_transfer("tx-1", address_index=1, amount=150_000_000_000),
            make_transfer("tx-1", address_index=2, amount=700_000_000_000),
            make_transfer("tx-1", address_index=8, amount=1),
        )

        result = await reconciler.reconcile_one("XMR", "tx-1")

        amounts = {p.invoice_id: p.amount for p in result.created}
        assert amounts == {"inv-1": Decimal("0.25"), "inv-2": Decimal("0.7")}
        assert len(publisher.of_type(PaymentReceived)) == 2

    @pytest.mark.asyncio
    async def test_update_from_notification(self, reconciler, store, wallet, publisher):
        """A known transaction is updated and its invoice notified."""
        store.add_invoice(make_invoice("inv-1", payments=[make_payment("inv-1", "tx-1")]))
        wallet.get_transfer_by_txid.return_value = found_lookup(
            make_transfer("tx-1", confirmations=1)
        )

        result = await reconciler.reconcile_one("XMR", "tx-1")

        assert result.created == []
        assert store.payment_rows()[0]["status"] == PaymentStatus.SETTLED
        assert [n.invoice_id for n in publisher.of_type(InvoiceNeedsUpdate)] == ["inv-1"]

    @pytest.mark.asyncio
    async def test_concurrent_scans_create_one_payment(self, reconciler, store, wallet):
        """Concurrent passes over one transaction never duplicate the payment."""
        store.add_invoice(make_invoice("inv-1"))
        wallet.get_transfer_by_txid.return_value = found_lookup(make_transfer("tx-1"))

        results = await asyncio.gather(
            reconciler.reconcile_one("XMR", "tx-1"),
            reconciler.reconcile_one("XMR", "tx-1"),
            reconciler.reconcile_one("XMR", "tx-1"),
        )

        assert sum(len(r.created) for r in results) == 1
        assert sum(len(r.updated) for r in results) == 2
        assert len(store.payment_rows()) == 1
        assert len(reconciler.locks) == 0

    @pytest.mark.asyncio
    async def test_unknown_currency(self, reconciler):
        """Scanning a currency without a wallet fails."""
        with pytest.raises(ListenerError, match="WOW"):
            await reconciler.reconcile_one("WOW", "tx-1")


class TestMergeObservations:
    """Test merging of observations sharing a payment key."""

    @staticmethod
    def _observed(tx_id: str, address_index: int, amount: int) -> ObservedTransfer:
        return ObservedTransfer(
            destination=address_for(0, address_index),
            amount=amount,
            account_index=0,
            address_index=address_index,
            tx_id=tx_id,
            confirmations=1,
            block_height=100,
            lock_time=0,
        )

    def test_same_key_summed(self):
        merged = merge_observations(
            [self._observed("tx-1", 1, 5), self._observed("tx-1", 1, 7)]
        )

        assert len(merged) == 1
        assert merged[0].amount == 12

    def test_distinct_keys_kept(self):
        merged = merge_observations(
            [
                self._observed("tx-1", 1, 5),
                self._observed("tx-1", 2, 7),
                self._observed("tx-2", 1, 9),
            ]
        )

        assert [o.key for o in merged] == ["tx-1#0#1", "tx-1#0#2", "tx-2#0#1"]


@pytest.fixture
def store_with_disappearing_invoice():
    """Store whose invoice vanishes between listing and locking."""

    class DisappearingStore(InMemoryStore):
        async def get_invoice(self, invoice_id):
            return None

    store = DisappearingStore()
    store.add_invoice(make_invoice("inv-1"))
    return store


@pytest.mark.asyncio
async def test_vanished_invoice_skipped(wallet, publisher, store_with_disappearing_invoice):
    """Transfers of an invoice deleted mid-pass are dropped."""
    reconciler = PaymentReconciler(
        wallet_rpc_clients={"XMR": wallet},
        invoice_store=store_with_disappearing_invoice,
        payment_store=store_with_disappearing_invoice,
        publisher=publisher,
    )
    wallet.get_transfers.return_value = [make_transfer("tx-1")]

    result = await reconciler.update_any_pending_payment("XMR")

    assert result.created == []
    assert store_with_disappearing_invoice.add_calls == []
