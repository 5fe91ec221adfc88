"""cln-zapper: main entry point.

Publishes NIP-57 zap receipts for invoices paid on a Core Lightning node.

Usage:
    cln-zapper                  follow waitanyinvoice from the saved checkpoint
    cln-zapper --label LABEL    publish the receipt for one invoice and exit

Loads config from ~/.cln-zapper/zapper.env and the environment.
Exit codes: 1 config/startup error, 2 invalid payment feed,
3 processing error, 4 checkpoint write failure.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from checkpoint import CheckpointStore
from config import Config, ZapperContext
from lightning_node import LightningNode, LightningNodeError
from payment_loop import EXIT_CODES, PaymentLoop, process_invoice
from relay_broadcast import RelayBroadcaster
from signing import SigningError

log = logging.getLogger(__name__)

EXIT_STARTUP_ERROR = 1


def configure_logging(config: Config) -> None:
    """Log to stderr, and also to LOG_FILE when configured."""
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        handlers.append(logging.FileHandler(config.log_file))
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
    )


async def run(ctx: ZapperContext, node: LightningNode) -> int:
    """Follow paid invoices until a fatal condition; return its exit code."""
    checkpoint = CheckpointStore(ctx.config.checkpoint_path)
    broadcaster = RelayBroadcaster(ctx.config.relay_timeout_ms)
    loop = PaymentLoop(ctx, node, checkpoint, broadcaster)

    log.info("Zapper running (pubkey: %s)", ctx.keypair.pubkey)
    result = await loop.run()

    code = EXIT_CODES[result.fatal]
    log.critical(
        "Stopping on %s at pay_index %d (exit %d)",
        result.fatal.value, result.next_index, code,
    )
    return code


async def run_label(ctx: ZapperContext, node: LightningNode, label: str) -> int:
    """Process a single invoice by label, without touching the checkpoint."""
    try:
        invoice = node.get_invoice_by_label(label)
    except LightningNodeError as exc:
        log.error("Could not look up invoice %s: %s", label, exc)
        return EXIT_STARTUP_ERROR
    if invoice is None:
        log.error("Could not find invoice %s", label)
        return EXIT_STARTUP_ERROR

    payment = await process_invoice(ctx, invoice, RelayBroadcaster(ctx.config.relay_timeout_ms))
    if payment.receipt is not None:
        print(payment.receipt.to_json())
    return 0


def main() -> None:
    """Load config, configure logging, run the zapper."""
    parser = argparse.ArgumentParser(
        description="Publish NIP-57 zap receipts for paid Core Lightning invoices"
    )
    parser.add_argument("--label", help="Process one invoice by label and exit")
    args = parser.parse_args()

    try:
        config = Config.load()
    except ValueError as exc:
        print(f"cln-zapper: {exc}", file=sys.stderr)
        sys.exit(EXIT_STARTUP_ERROR)

    configure_logging(config)

    try:
        ctx = ZapperContext.from_config(config)
    except SigningError as exc:
        log.critical("%s", exc)
        sys.exit(EXIT_STARTUP_ERROR)

    node = LightningNode.connect(config.lightning_rpc)

    try:
        if args.label:
            code = asyncio.run(run_label(ctx, node, args.label))
        else:
            code = asyncio.run(run(ctx, node))
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
