"""Redemption approval message and signature format checks."""

from __future__ import annotations

import base64
import json
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from rcn_api.domain.errors import LedgerValidationError

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_SIGNATURE_RE = re.compile(r"^[a-fA-F0-9]{130}$")
QR_PREFIX = "rcn:redeem:"


def normalize_address(address: str) -> str:
    """Lower-case a wallet address after validating its shape."""

    candidate = (address or "").strip()
    if not _ADDRESS_RE.match(candidate):
        raise LedgerValidationError("Invalid wallet address format", address=address)
    return candidate.lower()


def approval_message(
    *,
    session_id: str,
    customer_address: str,
    shop_id: str,
    amount: Decimal,
    expires_at: datetime,
) -> str:
    """Canonical text a customer wallet signs to approve a redemption."""

    expires = expires_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    return (
        "RepairCoin Redemption Request\n\n"
        f"Session ID: {session_id}\n"
        f"Customer: {customer_address}\n"
        f"Shop: {shop_id}\n"
        f"Amount: {amount} RCN\n"
        f"Expires: {expires}\n\n"
        f"By signing this message, I approve the redemption of {amount} RCN tokens at the specified shop."
    )


def normalize_signature(signature: str) -> str:
    """Return the ``0x``-prefixed signature or raise on a malformed value.

    Only the 65-byte hex shape is checked; signer recovery happens in the
    wallet layer.
    """

    raw = (signature or "").strip()
    body = raw[2:] if raw.lower().startswith("0x") else raw
    if not _SIGNATURE_RE.match(body):
        raise LedgerValidationError(
            "Invalid customer signature. Please sign with the correct wallet.",
            expected_length=130,
            received_length=len(body),
        )
    return "0x" + body.lower()


def encode_qr_payload(
    *,
    session_id: str,
    customer_address: str,
    shop_id: str,
    amount: Decimal,
    expires_at: datetime,
) -> str:
    document = {
        "type": "rcn_redemption",
        "sessionId": session_id,
        "customer": customer_address,
        "shop": shop_id,
        "amount": str(amount),
        "expiresAt": expires_at.astimezone(timezone.utc).isoformat(),
    }
    encoded = base64.urlsafe_b64encode(json.dumps(document, separators=(",", ":")).encode("utf-8"))
    return QR_PREFIX + encoded.decode("ascii")


def decode_qr_payload(payload: str) -> dict[str, Any]:
    if not payload or not payload.startswith(QR_PREFIX):
        raise LedgerValidationError("Unrecognized redemption QR code")
    try:
        document = json.loads(base64.urlsafe_b64decode(payload[len(QR_PREFIX):].encode("ascii")))
    except (ValueError, UnicodeError) as exc:
        raise LedgerValidationError("Corrupted redemption QR code") from exc
    if not isinstance(document, dict) or document.get("type") != "rcn_redemption" or "sessionId" not in document:
        raise LedgerValidationError("Unrecognized redemption QR code")
    return document


__all__ = [
    "QR_PREFIX",
    "approval_message",
    "decode_qr_payload",
    "encode_qr_payload",
    "normalize_address",
    "normalize_signature",
]
