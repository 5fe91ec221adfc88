"""Core Lightning plugin front end.

Runs inside lightningd instead of following waitanyinvoice:
  - option nostr-key:            receipt signing key (hex or nsec), required
  - option zapper-relay-timeout: per-relay publish timeout in milliseconds
  - subscription invoice_payment: look the invoice up by label and run the
    same extract -> build -> broadcast pipeline as the standalone loop

lightningd delivers each notification once, so plugin mode keeps no
checkpoint. Errors are logged and the plugin keeps serving.
"""

from __future__ import annotations

import asyncio
import logging
import os

from pyln.client import Plugin

from config import DEFAULT_RELAY_TIMEOUT_MS, Config, ZapperContext
from lightning_node import LightningNode, LightningNodeError
from payment_loop import ProcessedPayment, process_invoice
from relay_broadcast import RelayBroadcaster
from signing import SigningError

log = logging.getLogger(__name__)


class ZapperPlugin:
    """Plugin state, filled in by lightningd's init call."""

    def __init__(self) -> None:
        self.ctx: ZapperContext | None = None
        self.node: LightningNode | None = None

    def setup(self, options: dict, configuration: dict, rpc) -> str | None:
        """Build context from plugin options. Returns a disable reason on error."""
        rpc_path = os.path.join(configuration["lightning-dir"], configuration["rpc-file"])
        try:
            timeout_ms = int(options.get("zapper-relay-timeout") or DEFAULT_RELAY_TIMEOUT_MS)
            config = Config.for_plugin(
                options.get("nostr-key") or "", rpc_path, relay_timeout_ms=timeout_ms
            )
            self.ctx = ZapperContext.from_config(config)
        except (ValueError, SigningError) as exc:
            return str(exc)
        self.node = LightningNode(rpc)
        log.info("Zapper plugin ready (pubkey: %s)", self.ctx.keypair.pubkey)
        return None

    async def handle_invoice_payment(self, label: str) -> ProcessedPayment | None:
        """Publish the receipt for a freshly paid invoice."""
        if self.ctx is None or self.node is None:
            log.error("invoice_payment for %s before plugin init", label)
            return None
        if not label:
            return None

        try:
            invoice = self.node.get_invoice_by_label(label)
        except LightningNodeError as exc:
            log.error("Could not look up invoice %s: %s", label, exc)
            return None
        if invoice is None:
            log.warning("Could not find invoice %s", label)
            return None

        return await process_invoice(
            self.ctx, invoice, RelayBroadcaster(self.ctx.config.relay_timeout_ms)
        )


def build_plugin(zapper: ZapperPlugin | None = None) -> Plugin:
    """Create the pyln Plugin with options, init hook and subscription."""
    zapper = zapper or ZapperPlugin()
    plugin = Plugin()
    plugin.add_option("nostr-key", None, "hexstr of a 32byte key (or nsec) for signing zap receipts")
    plugin.add_option(
        "zapper-relay-timeout",
        str(DEFAULT_RELAY_TIMEOUT_MS),
        "milliseconds to wait for each relay to acknowledge a zap receipt",
    )

    @plugin.init()
    def init(options, configuration, plugin, **kwargs):
        reason = zapper.setup(options, configuration, plugin.rpc)
        if reason is not None:
            log.error("Disabling zapper plugin: %s", reason)
            return {"disable": reason}
        return None

    @plugin.subscribe("invoice_payment")
    def on_invoice_payment(plugin, invoice_payment, **kwargs):
        label = invoice_payment.get("label", "")
        try:
            asyncio.run(zapper.handle_invoice_payment(label))
        except Exception:
            log.exception("Error publishing zap receipt for invoice %s", label)

    return plugin


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    build_plugin().run()


if __name__ == "__main__":
    main()
