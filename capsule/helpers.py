import base64
import re
from datetime import datetime, timezone

from bleach import clean, linkify
from flask import current_app, jsonify, request
from markdown import markdown
from nectar.account import Account
from nectargraphenebase.account import PublicKey
from nectargraphenebase.ecdsasig import verify_message

from .extensions import cache

ALLOWED_TAGS = {"p", "br", "em", "strong", "code", "pre", "blockquote", "a"}
ALLOWED_ATTRS = {"a": ["href", "title", "rel"], "code": ["class"], "pre": ["class"]}
ALLOWED_PROTOCOLS = ["http", "https", "mailto"]


def _utcnow_naive() -> datetime:
    """Return current UTC time as a naive datetime (no tzinfo)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_timestamp(ts: str) -> datetime:
    """Parse an ISO-8601 timestamp (optionally 'Z'-suffixed) to naive UTC.

    Raises ValueError on malformed input; login proofs must carry a real time.
    """
    if ts.endswith("Z"):
        ts = ts[:-1]
    parsed = datetime.fromisoformat(ts)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def markdown_render(content: str) -> str:
    """Render message content as sanitized HTML (minimal inline subset).
    - Render with Python-Markdown (fenced code only).
    - Sanitize with Bleach, then auto-link bare URLs.
    - Force rel="nofollow noopener noreferrer" on every anchor.
    """
    html = markdown(content or "", extensions=["fenced_code"], output_format="html5")
    safe = clean(
        html,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRS,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
    )
    safe = linkify(safe)

    def _add_rel(m):
        tag_open = m.group(0)
        return tag_open[:-1] + ' rel="nofollow noopener noreferrer">'

    return re.sub(r"<a\b(?![^>]*\brel=)[^>]*>", _add_rel, safe)


def _parse_login_payload():
    """Parse and normalize login payload from JSON body.
    Accepts alternative keys often used by clients.
    Returns tuple (signature_hex, username, pubkey, message, error_json_or_none, status_code).
    """
    data = request.get_json(silent=True) or {}
    signature = data.get("challenge") or data.get("signature") or data.get("sig")
    username = data.get("username") or data.get("user")
    pubkey = data.get("pubkey") or data.get("public_key") or data.get("key")
    message = data.get("proof") or data.get("message") or data.get("msg")

    missing = [
        k
        for k, v in {
            "signature": signature,
            "username": username,
            "pubkey": pubkey,
            "message": message,
        }.items()
        if v in (None, "")
    ]
    if missing:
        return (
            None,
            None,
            None,
            None,
            jsonify(
                {
                    "success": False,
                    "error": "Missing required fields",
                    "missing": missing,
                }
            ),
            400,
        )

    # Clean signature (strip optional 0x)
    if isinstance(signature, str) and signature.startswith("0x"):
        signature = signature[2:]

    return signature, str(username).strip().lower(), pubkey, message, None, 200


def _get_posting_keys(username: str) -> list[str]:
    """Posting public keys for an account, cached briefly."""
    cache_key = f"posting_keys:{username}"
    cached = cache.get(cache_key)
    if cached is not None:
        return cached
    account = Account(username)
    posting = account.get("posting")
    if isinstance(posting, dict) and "key_auths" in posting:
        keys = [
            auth[0] if isinstance(auth, (list, tuple)) else auth.get("key")
            for auth in posting["key_auths"]
        ]
    elif isinstance(posting, list):
        keys = list(posting)
    else:
        raise ValueError(f"Unexpected posting structure: {type(posting)} {posting}")
    current_app.logger.info(
        "[login] fetched %d posting keys for user=%s", len(keys), username
    )
    cache.set(cache_key, keys, timeout=60)
    return keys


def _verify_signature_and_key(
    username: str, pubkey: str, message: str, signature_hex: str
):
    """Verify signature and ensure pubkey belongs to account."""
    if pubkey not in _get_posting_keys(username):
        return False, {
            "success": False,
            "error": "Provided public key is not a valid posting key for this account.",
            "account": username,
            "pubkey": pubkey,
        }

    # Signature may be hex or base64; try hex first
    try:
        sig_bytes = bytes.fromhex(signature_hex)
    except ValueError:
        try:
            sig_bytes = base64.b64decode(signature_hex, validate=True)
        except ValueError:
            raise ValueError("Signature is neither valid hex nor base64")

    recovered_pubkey_bytes = verify_message(message, sig_bytes)
    recovered_pubkey_str = str(PublicKey(recovered_pubkey_bytes.hex(), prefix="STM"))
    return recovered_pubkey_str == pubkey, {
        "success": False,
        "error": "Signature is invalid.",
    }
