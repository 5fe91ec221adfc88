"""Core Lightning node adapter.

Wraps the two JSON-RPC calls the zapper needs:
  - listinvoices label=...       -> get_invoice_by_label
  - waitanyinvoice lastpay_index -> wait_for_payment_after (blocking)

Invoices are returned as a typed, read-only Invoice. A notification that
cannot be turned into a paid Invoice raises InvalidPaymentNotification so
the payment loop can stop instead of spinning on a broken feed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pyln.client import LightningRpc, RpcError

log = logging.getLogger(__name__)

# lightningd error code for a waitanyinvoice that hit its timeout
WAIT_TIMED_OUT_CODE = 904


class LightningNodeError(Exception):
    """The node could not be queried."""


class InvalidPaymentNotification(LightningNodeError):
    """waitanyinvoice returned something that is not a paid invoice."""


class PaymentWaitTimeout(LightningNodeError):
    """waitanyinvoice returned without a payment before its timeout."""


@dataclass(frozen=True)
class Invoice:
    """The subset of a listinvoices/waitanyinvoice entry we use."""

    label: str
    bolt11: str | None
    description: str | None
    payment_preimage: str | None
    paid_at: int | None
    pay_index: int | None

    @classmethod
    def from_rpc(cls, data: dict[str, Any]) -> Invoice:
        paid_at = data.get("paid_at")
        pay_index = data.get("pay_index")
        return cls(
            label=str(data.get("label", "")),
            bolt11=data.get("bolt11"),
            description=data.get("description"),
            payment_preimage=data.get("payment_preimage"),
            paid_at=paid_at if isinstance(paid_at, int) else None,
            pay_index=pay_index if isinstance(pay_index, int) else None,
        )


class LightningNode:
    """Thin synchronous wrapper over a pyln LightningRpc-compatible object."""

    def __init__(self, rpc: Any) -> None:
        self._rpc = rpc

    @classmethod
    def connect(cls, socket_path: str) -> LightningNode:
        """Build a node bound to lightningd's unix RPC socket."""
        return cls(LightningRpc(socket_path))

    def get_invoice_by_label(self, label: str) -> Invoice | None:
        """Look up one invoice by label. Returns None if it does not exist."""
        try:
            result = self._rpc.listinvoices(label=label)
        except (RpcError, OSError) as exc:
            raise LightningNodeError(f"listinvoices failed for {label}: {exc}") from exc

        invoices = result.get("invoices") if isinstance(result, dict) else None
        if not invoices:
            return None
        return Invoice.from_rpc(invoices[0])

    def wait_for_payment_after(self, index: int, timeout: int | None = None) -> Invoice:
        """Block until an invoice with pay_index > index is paid.

        Raises PaymentWaitTimeout if timeout (seconds) elapses first,
        InvalidPaymentNotification if the node answers with anything but
        a paid invoice that advances the index, and LightningNodeError on
        any other RPC failure.
        """
        try:
            if timeout is None:
                result = self._rpc.waitanyinvoice(lastpay_index=index)
            else:
                result = self._rpc.waitanyinvoice(lastpay_index=index, timeout=timeout)
        except RpcError as exc:
            error = exc.error if isinstance(exc.error, dict) else {}
            if error.get("code") == WAIT_TIMED_OUT_CODE:
                raise PaymentWaitTimeout(f"no payment after index {index} within {timeout}s") from exc
            raise LightningNodeError(f"waitanyinvoice failed: {exc}") from exc
        except OSError as exc:
            raise LightningNodeError(f"waitanyinvoice failed: {exc}") from exc

        if not isinstance(result, dict) or not result:
            raise InvalidPaymentNotification(f"empty payment notification after index {index}")

        invoice = Invoice.from_rpc(result)
        if not invoice.label:
            raise InvalidPaymentNotification(f"payment notification without label after index {index}")
        status = result.get("status")
        if status is not None and status != "paid":
            raise InvalidPaymentNotification(
                f"invoice {invoice.label} has status {status!r}, expected 'paid'"
            )
        if invoice.pay_index is None or invoice.pay_index <= index:
            raise InvalidPaymentNotification(
                f"invoice {invoice.label} pay_index {invoice.pay_index} does not advance past {index}"
            )
        return invoice
