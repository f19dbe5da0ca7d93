from flask import Blueprint, current_app, jsonify, request, session

from .clock import current_height
from .errors import HTTP_STATUS, ErrorCode
from .helpers import (
    _parse_login_payload,
    _parse_timestamp,
    _utcnow_naive,
    _verify_signature_and_key,
    markdown_render,
)
from .ledger import Ledger
from .models import db

api_bp = Blueprint("api", __name__)


def _ledger() -> Ledger:
    return Ledger(db.session, current_app.config.get("DISCOVERY_SELECTOR"))


def _caller() -> str | None:
    uname = session.get("username")
    return uname.lower() if uname else None


def _unauthorized():
    return jsonify({"success": False, "error": "unauthorized"}), 401


def _fail(code: ErrorCode):
    return (
        jsonify({"success": False, "error": code.slug, "code": int(code)}),
        HTTP_STATUS[code],
    )


def _message_payload(m) -> dict:
    return {
        "id": m.id,
        "author": m.author,
        "content_hash": m.content_hash,
        "activation_point": m.activation_point,
        "is_private": bool(m.is_private),
        "target_user": m.target_user,
        "is_processed": bool(m.is_processed),
        "is_disabled": bool(m.is_disabled),
        "upvotes": m.upvotes,
        "downvotes": m.downvotes,
        "type": m.msg_type,
    }


def _message_info_payload(m) -> dict:
    item = _message_payload(m)
    d = m.details
    item.update(
        {
            "subject": d.subject,
            "content": d.content,
            "html": markdown_render(d.content),
            "creation_block": d.creation_block,
            "last_update": d.last_update,
            "tags": d.tag_list,
        }
    )
    return item


@api_bp.route("/login", methods=["POST"])
def login():
    signature, username, pubkey, message, err, status = _parse_login_payload()
    if err is not None:
        return err, status
    # Enforce freshness window on the signed message (ISO timestamp)
    try:
        msg_dt = _parse_timestamp(str(message))
    except ValueError:
        return jsonify({"success": False, "error": "Invalid proof timestamp."}), 400
    skew = abs((_utcnow_naive() - msg_dt).total_seconds())
    if skew > int(current_app.config.get("LOGIN_MAX_SKEW", 120)):
        return jsonify({"success": False, "error": "Stale or future-dated proof."}), 400

    try:
        valid, invalid_resp = _verify_signature_and_key(
            username, pubkey, message, signature
        )
    except Exception as e:
        current_app.logger.warning("[login] verification error for %s: %s", username, e)
        return jsonify(
            {"success": False, "error": f"Verification error: {str(e)}"}
        ), 400
    if not valid:
        return jsonify(invalid_resp), 401

    session["username"] = username
    session.permanent = True
    return jsonify({"success": True, "username": username})


@api_bp.route("/logout", methods=["POST"])
def logout():
    session.pop("username", None)
    return jsonify({"success": True})


@api_bp.route("/messages", methods=["POST"])
def create_message():
    caller = _caller()
    if caller is None:
        return _unauthorized()
    data = request.get_json(force=True, silent=True)
    if not isinstance(data, dict):
        data = {}
    target = data.get("target_user")
    if isinstance(target, str):
        target = target.strip().lower() or None
    tags = data.get("tags")
    if tags is None:
        tags = []
    res = _ledger().create_message(
        caller,
        current_height(),
        content_hash=data.get("content_hash"),
        subject=data.get("subject"),
        content=data.get("content"),
        msg_type=data.get("type"),
        timeout_period=data.get("timeout"),
        is_private=data.get("is_private"),
        target_user=target,
        tags=tags,
    )
    if not res.ok:
        return _fail(res.error)
    return jsonify({"success": True, "id": res.value}), 201


def _message_action(message_id: int, action: str):
    caller = _caller()
    if caller is None:
        return _unauthorized()
    ledger = _ledger()
    op = {
        "process": ledger.process_message,
        "upvote": ledger.upvote_message,
        "report": ledger.report_message,
        "disable": ledger.disable_message,
    }[action]
    res = op(caller, current_height(), message_id)
    if not res.ok:
        return _fail(res.error)
    return jsonify({"success": bool(res.value)})


@api_bp.route("/messages/<int:message_id>/process", methods=["POST"])
def process_message(message_id: int):
    return _message_action(message_id, "process")


@api_bp.route("/messages/<int:message_id>/upvote", methods=["POST"])
def upvote_message(message_id: int):
    return _message_action(message_id, "upvote")


@api_bp.route("/messages/<int:message_id>/report", methods=["POST"])
def report_message(message_id: int):
    return _message_action(message_id, "report")


@api_bp.route("/messages/<int:message_id>/disable", methods=["POST"])
def disable_message(message_id: int):
    return _message_action(message_id, "disable")


@api_bp.route("/admin/pause", methods=["POST"])
def toggle_pause():
    caller = _caller()
    if caller is None:
        return _unauthorized()
    res = _ledger().toggle_pause(caller, current_height())
    if not res.ok:
        return _fail(res.error)
    return jsonify({"success": True, "paused": res.value})


@api_bp.route("/discover", methods=["POST"])
def discover():
    caller = _caller()
    if caller is None:
        return _unauthorized()
    res = _ledger().discover(caller, current_height())
    if not res.ok:
        return _fail(res.error)
    return jsonify({"success": True, "item": _message_payload(res.value)})


@api_bp.route("/messages/<int:message_id>")
def message_info(message_id: int):
    res = _ledger().get_message_info(current_height(), message_id)
    if not res.ok:
        return _fail(res.error)
    return jsonify({"item": _message_info_payload(res.value)})


@api_bp.route("/messages/count")
def total_messages():
    res = _ledger().get_total_messages()
    return jsonify({"count": res.value})


@api_bp.route("/messages/<int:message_id>/upvoted/<username>")
def upvoted_by_user(message_id: int, username: str):
    uname = (username or "").strip().lower()
    res = _ledger().is_message_upvoted_by_user(message_id, uname)
    return jsonify({"id": message_id, "username": uname, "upvoted": res.value})


@api_bp.route("/users/<username>/stats")
def user_stats(username: str):
    uname = (username or "").strip().lower()
    stats = _ledger().get_user_stats(uname).value
    return jsonify({"username": uname, **stats._asdict()})


@api_bp.route("/messages/<int:message_id>/moderation")
def moderation_log(message_id: int):
    caller = _caller()
    if caller is None:
        return _unauthorized()
    res = _ledger().get_moderation_log(caller, message_id)
    if not res.ok:
        return _fail(res.error)
    items = [
        {
            "id": a.id,
            "message_id": a.message_id,
            "actor": a.actor,
            "action": a.action,
            "block_num": a.block_num,
        }
        for a in res.value
    ]
    return jsonify({"items": items})


@api_bp.route("/status")
def api_status():
    status = _ledger().get_network_status().value
    return jsonify(
        {
            "admin": status.admin,
            "paused": status.paused,
            "messages": status.total_messages,
            "height": current_height(),
        }
    )
