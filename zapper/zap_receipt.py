"""Kind 9735 zap receipt construction.

build_zap_receipt is pure apart from the clock fallback: the same request,
invoice and keypair always produce the same id and sig.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass

from lightning_node import Invoice
from signing import KeyPair, event_id, sign_event_id
from zap_request import ZapRequest

ZAP_RECEIPT_KIND = 9735


@dataclass(frozen=True)
class ZapReceipt:
    id: str
    pubkey: str
    created_at: int
    kind: int
    content: str
    tags: tuple[tuple[str, ...], ...]
    sig: str

    def to_dict(self) -> dict:
        """NIP-01 wire representation."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)


def receipt_tags(request: ZapRequest, invoice: Invoice) -> list[list[str]]:
    """p, optional e, then bolt11, description (raw) and preimage."""
    tags = [request.p_tag.to_list()]
    if request.e_tag is not None:
        tags.append(request.e_tag.to_list())
    tags.append(["bolt11", invoice.bolt11 or ""])
    tags.append(["description", invoice.description or ""])
    tags.append(["preimage", invoice.payment_preimage or ""])
    return tags


def build_zap_receipt(
    request: ZapRequest,
    invoice: Invoice,
    keypair: KeyPair,
    now: int | None = None,
) -> ZapReceipt:
    """Assemble and sign the zap receipt for a paid invoice.

    created_at is the invoice's paid_at; an invoice without one (a label
    looked up outside waitanyinvoice) falls back to now, or the current
    time if now is not given. Raises SigningError if signing fails.
    """
    if invoice.paid_at is not None:
        created_at = invoice.paid_at
    else:
        created_at = now if now is not None else int(time.time())

    tags = receipt_tags(request, invoice)
    receipt_id = event_id(keypair.pubkey, created_at, ZAP_RECEIPT_KIND, tags, request.content)

    return ZapReceipt(
        id=receipt_id,
        pubkey=keypair.pubkey,
        created_at=created_at,
        kind=ZAP_RECEIPT_KIND,
        content=request.content,
        tags=tuple(tuple(tag) for tag in tags),
        sig=sign_event_id(keypair.privkey, receipt_id),
    )
