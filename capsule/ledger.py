"""
State-transition engine for time-delayed messages.

Every operation takes the caller identity and the current clock height
explicitly and returns a ``Result``. Guards raise ``LedgerError``; the
``_operation`` wrapper rolls the session back and turns it into a failed
Result, so a failing call never leaves partial writes behind.

Usage:
    ledger = Ledger(db.session)
    res = ledger.create_message("alice", 100, content_hash="...", ...)
    if res.ok:
        msg_id = res.value
"""

import enum
import functools
import json
import logging
from typing import Any, NamedTuple

from sqlalchemy import text

from .errors import ErrorCode, LedgerError
from .models import (
    Message,
    MessageDetails,
    MessageType,
    ModerationAction,
    NetworkState,
    Upvote,
    UserActivity,
)
from .selector import RandomSelector, SeedSelector

log = logging.getLogger(__name__)

MAX_HASH_LEN = 256
MAX_SUBJECT_LEN = 64
MAX_CONTENT_LEN = 256
MAX_TAGS = 5
MAX_TAG_LEN = 32
MIN_TIMEOUT = 1
MAX_TIMEOUT = 52560  # about a year of 10-minute blocks

NETWORK_ROW_ID = 1


class Activity(enum.Enum):
    POSTED = "posted"
    CLAIMED = "claimed"
    UPVOTED = "upvoted"


class Result(NamedTuple):
    value: Any = None
    error: ErrorCode | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class UserStats(NamedTuple):
    messages_posted: int = 0
    messages_claimed: int = 0
    upvotes_given: int = 0


class NetworkStatus(NamedTuple):
    admin: str
    paused: bool
    total_messages: int


def _operation(mutating: bool = True):
    """Run a ledger method as one all-or-nothing unit of work."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(self, *args, **kwargs):
            try:
                if mutating:
                    self._begin_serialized()
                value = fn(self, *args, **kwargs)
                if mutating:
                    self.session.commit()
            except LedgerError as err:
                self.session.rollback()
                log.debug("[ledger] %s rejected: %s", fn.__name__, err.code.slug)
                return Result(error=err.code)
            except Exception:
                self.session.rollback()
                log.exception("[ledger] %s failed; rolled back", fn.__name__)
                raise
            return Result(value=value)

        return wrapper

    return decorator


def bootstrap_network(session, admin: str) -> NetworkState:
    """Create the network singleton on first run.

    The admin is fixed at creation: a later call with a different admin keeps
    the stored one and only logs a warning.
    """
    state = session.get(NetworkState, NETWORK_ROW_ID)
    if state is None:
        state = NetworkState(
            id=NETWORK_ROW_ID,
            network_admin=admin,
            network_paused=False,
            message_counter=0,
            random_seed=0,
        )
        session.add(state)
        session.commit()
        log.info("[ledger] network created with admin=%s", admin)
    elif admin and state.network_admin != admin:
        log.warning(
            "[ledger] ignoring admin=%s; network admin is fixed to %s",
            admin,
            state.network_admin,
        )
    return state


class Ledger:
    def __init__(self, session, selector: RandomSelector | None = None):
        self.session = session
        self.selector = selector or SeedSelector()

    def _begin_serialized(self) -> None:
        """Open a write transaction that excludes every other mutating call.

        Web workers share one database, so the lock lives there: SQLite takes
        its RESERVED lock up front with BEGIN IMMEDIATE, other backends lock
        the network row with SELECT ... FOR UPDATE.
        """
        # Ends any read transaction the caller left open (e.g. the clock read)
        self.session.commit()
        if self.session.get_bind().dialect.name == "sqlite":
            self.session.execute(text("BEGIN IMMEDIATE"))
        (
            self.session.query(NetworkState)
            .filter(NetworkState.id == NETWORK_ROW_ID)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )

    # --- internal guards ---

    def _network(self) -> NetworkState:
        state = self.session.get(NetworkState, NETWORK_ROW_ID)
        if state is None:
            raise RuntimeError("network not bootstrapped; call bootstrap_network()")
        return state

    def _require_running(self) -> NetworkState:
        state = self._network()
        if state.network_paused:
            raise LedgerError(ErrorCode.NETWORK_PAUSED)
        return state

    def _message(self, message_id: int) -> Message:
        msg = self.session.get(Message, message_id)
        if msg is None:
            raise LedgerError(ErrorCode.MISSING)
        return msg

    def _active_message(self, message_id: int, height: int) -> Message:
        """Message that exists, network running, not disabled and activated."""
        msg = self._message(message_id)
        self._require_running()
        if msg.is_disabled:
            raise LedgerError(ErrorCode.DISABLED)
        if height < msg.activation_point:
            raise LedgerError(ErrorCode.STILL_PENDING)
        return msg

    def _record_activity(self, username: str, activity: Activity) -> None:
        row = self.session.get(UserActivity, username)
        if row is None:
            row = UserActivity(
                username=username,
                messages_posted=0,
                messages_claimed=0,
                upvotes_given=0,
            )
            self.session.add(row)
        if activity is Activity.POSTED:
            field = "messages_posted"
        elif activity is Activity.CLAIMED:
            field = "messages_claimed"
        elif activity is Activity.UPVOTED:
            field = "upvotes_given"
        if row in self.session.new:
            setattr(row, field, getattr(row, field) + 1)
        else:
            setattr(row, field, getattr(UserActivity, field) + 1)

    @staticmethod
    def _validate_create(
        content_hash,
        subject,
        content,
        msg_type,
        timeout_period,
        is_private,
        target_user,
        tags,
    ) -> None:
        if not isinstance(content_hash, str) or len(content_hash) > MAX_HASH_LEN:
            raise LedgerError(ErrorCode.INVALID_HASH)
        if not isinstance(subject, str) or len(subject) > MAX_SUBJECT_LEN:
            raise LedgerError(ErrorCode.INVALID_SUBJECT_LENGTH)
        if not isinstance(content, str) or len(content) > MAX_CONTENT_LEN:
            raise LedgerError(ErrorCode.INVALID_CONTENT_LENGTH)
        if not isinstance(msg_type, str) or msg_type not in {t.value for t in MessageType}:
            raise LedgerError(ErrorCode.INVALID_TYPE)
        if (
            isinstance(timeout_period, bool)
            or not isinstance(timeout_period, int)
            or not MIN_TIMEOUT <= timeout_period <= MAX_TIMEOUT
        ):
            raise LedgerError(ErrorCode.INVALID_TIMEOUT)
        if not isinstance(tags, (list, tuple)) or len(tags) > MAX_TAGS:
            raise LedgerError(ErrorCode.INVALID_TAGS)
        for tag in tags:
            if not isinstance(tag, str) or len(tag) > MAX_TAG_LEN:
                raise LedgerError(ErrorCode.INVALID_TAGS)
        if not isinstance(is_private, bool):
            raise LedgerError(ErrorCode.INVALID_PRIVATE_FLAG)
        if target_user is not None and (
            not is_private or not isinstance(target_user, str) or not target_user
        ):
            raise LedgerError(ErrorCode.INVALID_TARGET)

    # --- mutating operations ---

    @_operation()
    def create_message(
        self,
        caller: str,
        height: int,
        *,
        content_hash: str,
        subject: str,
        content: str,
        msg_type: str,
        timeout_period: int,
        is_private: bool,
        target_user: str | None = None,
        tags: list[str] | tuple[str, ...] = (),
    ) -> int:
        state = self._require_running()
        if isinstance(msg_type, MessageType):
            msg_type = msg_type.value
        self._validate_create(
            content_hash,
            subject,
            content,
            msg_type,
            timeout_period,
            is_private,
            target_user,
            tags,
        )
        message_id = state.message_counter
        msg = Message(
            id=message_id,
            author=caller,
            content_hash=content_hash,
            activation_point=height + timeout_period,
            is_private=is_private,
            target_user=target_user,
            is_processed=False,
            is_disabled=False,
            upvotes=0,
            downvotes=0,
            msg_type=msg_type,
            details=MessageDetails(
                subject=subject,
                content=content,
                creation_block=height,
                last_update=height,
                tags=json.dumps(list(tags)) if tags else None,
            ),
        )
        self.session.add(msg)
        self._record_activity(caller, Activity.POSTED)
        state.message_counter = NetworkState.message_counter + 1
        log.info(
            "[ledger] created id=%s author=%s activation=%s",
            message_id,
            caller,
            msg.activation_point,
        )
        return message_id

    @_operation()
    def process_message(self, caller: str, height: int, message_id: int) -> bool:
        msg = self._active_message(message_id, height)
        if msg.is_processed:
            raise LedgerError(ErrorCode.ALREADY_PROCESSED)
        # Self-claims are allowed; SELF_INTERACTION stays reserved
        if msg.target_user is not None and msg.target_user != caller:
            raise LedgerError(ErrorCode.LOCKED)
        msg.is_processed = True
        self._record_activity(caller, Activity.CLAIMED)
        return True

    @_operation()
    def upvote_message(self, caller: str, height: int, message_id: int) -> bool:
        msg = self._active_message(message_id, height)
        if self._has_upvote(message_id, caller):
            raise LedgerError(ErrorCode.ALREADY_PROCESSED)
        msg.upvotes = Message.upvotes + 1
        self.session.add(Upvote(message_id=message_id, username=caller, block_num=height))
        self._record_activity(caller, Activity.UPVOTED)
        return True

    @_operation()
    def report_message(self, caller: str, height: int, message_id: int) -> bool:
        # Any caller, any number of times, before or after activation
        msg = self._message(message_id)
        self._require_running()
        if msg.is_disabled:
            raise LedgerError(ErrorCode.DISABLED)
        msg.downvotes = Message.downvotes + 1
        self.session.add(
            ModerationAction(
                message_id=message_id, actor=caller, action="report", block_num=height
            )
        )
        return True

    @_operation()
    def disable_message(self, caller: str, height: int, message_id: int) -> bool:
        msg = self._message(message_id)
        if caller != msg.author and caller != self._network().network_admin:
            raise LedgerError(ErrorCode.NOT_ADMIN)
        if not msg.is_disabled:
            msg.is_disabled = True
            log.info("[ledger] disabled id=%s by=%s", message_id, caller)
        self.session.add(
            ModerationAction(
                message_id=message_id, actor=caller, action="disable", block_num=height
            )
        )
        return True

    @_operation()
    def toggle_pause(self, caller: str, height: int) -> bool:
        state = self._network()
        if caller != state.network_admin:
            raise LedgerError(ErrorCode.NOT_ADMIN)
        state.network_paused = not state.network_paused
        log.warning(
            "[ledger] network %s by %s at height=%s",
            "paused" if state.network_paused else "resumed",
            caller,
            height,
        )
        return state.network_paused

    @_operation()
    def discover(self, caller: str, height: int) -> Message:
        state = self._require_running()
        total = state.message_counter
        if total <= 0:
            raise LedgerError(ErrorCode.MISSING)
        next_seed, index = self.selector.select(state.random_seed, height, total)
        msg = self.session.get(Message, index)
        if msg is None:
            raise LedgerError(ErrorCode.MISSING)
        state.random_seed = next_seed
        return msg

    # --- reads ---

    def _has_upvote(self, message_id: int, username: str) -> bool:
        return (
            self.session.query(Upvote.id)
            .filter(Upvote.message_id == message_id, Upvote.username == username)
            .first()
            is not None
        )

    @_operation(mutating=False)
    def get_message_info(self, height: int, message_id: int) -> Message:
        msg = self._message(message_id)
        if msg.is_disabled:
            raise LedgerError(ErrorCode.DISABLED)
        if height < msg.activation_point:
            raise LedgerError(ErrorCode.STILL_PENDING)
        return msg

    @_operation(mutating=False)
    def get_user_stats(self, username: str) -> UserStats:
        row = self.session.get(UserActivity, username)
        if row is None:
            return UserStats()
        return UserStats(row.messages_posted, row.messages_claimed, row.upvotes_given)

    @_operation(mutating=False)
    def get_total_messages(self) -> int:
        return self._network().message_counter

    @_operation(mutating=False)
    def is_message_upvoted_by_user(self, message_id: int, username: str) -> bool:
        return self._has_upvote(message_id, username)

    @_operation(mutating=False)
    def get_network_status(self) -> NetworkStatus:
        state = self._network()
        return NetworkStatus(
            state.network_admin, bool(state.network_paused), state.message_counter
        )

    @_operation(mutating=False)
    def get_moderation_log(self, caller: str, message_id: int) -> list[ModerationAction]:
        self._message(message_id)
        if caller != self._network().network_admin:
            raise LedgerError(ErrorCode.NOT_ADMIN)
        return (
            self.session.query(ModerationAction)
            .filter(ModerationAction.message_id == message_id)
            .order_by(ModerationAction.id.asc())
            .all()
        )
