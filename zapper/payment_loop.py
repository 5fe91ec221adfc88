"""Paid invoice -> zap receipt loop.

One payment at a time:
  WAITING_PAYMENT  waitanyinvoice lastpay_index=<checkpoint>
  PROCESSING       extract 9734 -> build 9735 -> broadcast
  CHECKPOINTING    persist the invoice's pay_index

step() handles exactly one payment and reports the outcome as a
StepResult. Fatal conditions are returned, not raised; the caller decides
what to do with them (zapper.main() maps them to process exit codes).
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field

from checkpoint import CheckpointStore
from config import ZapperContext
from lightning_node import (
    Invoice,
    InvalidPaymentNotification,
    LightningNode,
    LightningNodeError,
    PaymentWaitTimeout,
)
from relay_broadcast import RelayBroadcaster, RelayOutcome
from zap_receipt import ZapReceipt, build_zap_receipt
from zap_request import extract_zap_request

log = logging.getLogger(__name__)


class FatalKind(enum.Enum):
    FEED_INVALID = "feed_invalid"
    PROCESSING_ERROR = "processing_error"
    CHECKPOINT_WRITE = "checkpoint_write"


# Distinct codes so a supervisor can choose a restart strategy per cause.
EXIT_CODES: dict[FatalKind, int] = {
    FatalKind.FEED_INVALID: 2,
    FatalKind.PROCESSING_ERROR: 3,
    FatalKind.CHECKPOINT_WRITE: 4,
}


@dataclass(frozen=True)
class ProcessedPayment:
    """What happened to one paid invoice."""

    label: str
    receipt: ZapReceipt | None
    outcomes: list[RelayOutcome] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return self.receipt is None


@dataclass(frozen=True)
class StepResult:
    """Outcome of one loop iteration.

    next_index is the checkpoint to wait on next. It equals the input
    index when nothing was consumed (wait timeout or a fatal result).
    """

    next_index: int
    payment: ProcessedPayment | None = None
    fatal: FatalKind | None = None
    error: BaseException | None = None


async def process_invoice(
    ctx: ZapperContext,
    invoice: Invoice,
    broadcaster: RelayBroadcaster,
) -> ProcessedPayment:
    """Run extract -> build -> broadcast for one paid invoice.

    Invoices that are not valid zaps are skipped (logged by the extractor).
    Signing errors propagate.
    """
    request = extract_zap_request(invoice.description, invoice.label)
    if request is None:
        return ProcessedPayment(label=invoice.label, receipt=None)

    receipt = build_zap_receipt(request, invoice, ctx.keypair)
    log.info(
        "Invoice %s: built zap receipt %s for %s",
        invoice.label, receipt.id[:16], request.p_tag.pubkey[:16],
    )

    if not request.relays.urls:
        log.warning("Invoice %s: zap request lists no websocket relays, not publishing", invoice.label)
        return ProcessedPayment(label=invoice.label, receipt=receipt)

    outcomes = await broadcaster.broadcast(
        request.relays.urls, receipt, ctx.config.relay_timeout_ms
    )
    return ProcessedPayment(label=invoice.label, receipt=receipt, outcomes=outcomes)


class PaymentLoop:
    def __init__(
        self,
        ctx: ZapperContext,
        node: LightningNode,
        checkpoint: CheckpointStore,
        broadcaster: RelayBroadcaster,
        checkpoint_retry_seconds: float = 1.0,
    ) -> None:
        self._ctx = ctx
        self._node = node
        self._checkpoint = checkpoint
        self._broadcaster = broadcaster
        self._checkpoint_retry_seconds = checkpoint_retry_seconds

    async def _wait_for_payment(self, index: int) -> Invoice:
        """Run the blocking waitanyinvoice call off the event loop."""
        return await asyncio.get_running_loop().run_in_executor(
            None,
            self._node.wait_for_payment_after,
            index,
            self._ctx.config.wait_timeout_seconds,
        )

    async def _persist(self, index: int) -> bool:
        """Write the checkpoint, retrying a bounded number of times."""
        attempts = self._ctx.config.checkpoint_write_attempts
        for attempt in range(1, attempts + 1):
            try:
                self._checkpoint.write(index)
                return True
            except OSError as exc:
                log.error(
                    "Checkpoint write %d/%d to %s failed: %s",
                    attempt, attempts, self._checkpoint.path, exc,
                )
                if attempt < attempts:
                    await asyncio.sleep(self._checkpoint_retry_seconds)
        return False

    async def step(self, index: int) -> StepResult:
        """Wait for, process and checkpoint the next payment after index."""
        # -- WAITING_PAYMENT --
        try:
            invoice = await self._wait_for_payment(index)
        except PaymentWaitTimeout:
            log.debug("No payment after index %d yet, waiting again", index)
            return StepResult(next_index=index)
        except InvalidPaymentNotification as exc:
            log.error("Invalid payment notification: %s", exc)
            return StepResult(next_index=index, fatal=FatalKind.FEED_INVALID, error=exc)
        except LightningNodeError as exc:
            log.error("Lightning node unavailable: %s", exc)
            return StepResult(next_index=index, fatal=FatalKind.FEED_INVALID, error=exc)

        log.info("Invoice %s paid (pay_index %d)", invoice.label, invoice.pay_index)

        # -- PROCESSING --
        try:
            payment = await process_invoice(self._ctx, invoice, self._broadcaster)
        except Exception as exc:
            log.exception("Invoice %s: error processing payment", invoice.label)
            return StepResult(next_index=index, fatal=FatalKind.PROCESSING_ERROR, error=exc)

        # -- CHECKPOINTING --
        next_index = invoice.pay_index
        if not await self._persist(next_index):
            log.critical(
                "Invoice %s processed but checkpoint %d could not be saved",
                invoice.label, next_index,
            )
            return StepResult(next_index=index, payment=payment, fatal=FatalKind.CHECKPOINT_WRITE)

        return StepResult(next_index=next_index, payment=payment)

    async def run(self) -> StepResult:
        """Loop forever; returns only with a fatal StepResult."""
        index = self._checkpoint.read()
        log.info("Waiting for payments after pay_index %d", index)
        while True:
            result = await self.step(index)
            if result.fatal is not None:
                return result
            index = result.next_index
