import threading

import pytest

from capsule import create_app
from capsule.errors import ErrorCode
from capsule.ledger import Ledger, UserStats, bootstrap_network
from capsule.models import Message, ModerationAction, NetworkState, Upvote, db
from capsule.selector import RandomSelector

ADMIN = "admin"


def _create(ledger, message_kwargs, caller="alice", height=100, **overrides):
    res = ledger.create_message(caller, height, **message_kwargs(**overrides))
    assert res.ok, res.error
    return res.value


def _message(message_id):
    return db.session.get(Message, message_id)


class TestCreate:
    def test_returns_counter_and_increments_it(self, ledger, message_kwargs):
        assert ledger.get_total_messages().value == 0
        assert _create(ledger, message_kwargs) == 0
        assert _create(ledger, message_kwargs, caller="bob") == 1
        assert ledger.get_total_messages().value == 2

    def test_stores_record_and_details(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, height=100, timeout_period=7)
        msg = _message(msg_id)
        assert msg.author == "alice"
        assert msg.activation_point == 107
        assert (msg.is_processed, msg.is_disabled) == (False, False)
        assert (msg.upvotes, msg.downvotes) == (0, 0)
        assert msg.details.creation_block == 100
        assert msg.details.last_update == 100
        assert msg.details.tag_list == ["intro"]

    def test_counts_posted_activity(self, ledger, message_kwargs):
        _create(ledger, message_kwargs)
        _create(ledger, message_kwargs)
        assert ledger.get_user_stats("alice").value == UserStats(2, 0, 0)

    def test_boundaries_are_accepted(self, ledger, message_kwargs):
        res = ledger.create_message(
            "alice",
            1,
            **message_kwargs(
                content_hash="h" * 256,
                subject="s" * 64,
                content="c" * 256,
                msg_type="voice",
                timeout_period=52560,
                tags=["t" * 32] * 5,
            ),
        )
        assert res.ok

    @pytest.mark.parametrize(
        "overrides, code",
        [
            ({"content_hash": "h" * 257}, ErrorCode.INVALID_HASH),
            ({"subject": "s" * 65}, ErrorCode.INVALID_SUBJECT_LENGTH),
            ({"content": "c" * 257}, ErrorCode.INVALID_CONTENT_LENGTH),
            ({"msg_type": "video"}, ErrorCode.INVALID_TYPE),
            ({"timeout_period": 0}, ErrorCode.INVALID_TIMEOUT),
            ({"timeout_period": 52561}, ErrorCode.INVALID_TIMEOUT),
            ({"timeout_period": "10"}, ErrorCode.INVALID_TIMEOUT),
            ({"timeout_period": True}, ErrorCode.INVALID_TIMEOUT),
            ({"tags": ["a"] * 6}, ErrorCode.INVALID_TAGS),
            ({"tags": ["t" * 33]}, ErrorCode.INVALID_TAGS),
            ({"is_private": "yes"}, ErrorCode.INVALID_PRIVATE_FLAG),
            ({"target_user": "bob"}, ErrorCode.INVALID_TARGET),
        ],
    )
    def test_rejects_invalid_input_without_writing(
        self, ledger, message_kwargs, overrides, code
    ):
        res = ledger.create_message("alice", 100, **message_kwargs(**overrides))
        assert res.error == code
        assert ledger.get_total_messages().value == 0
        assert db.session.query(Message).count() == 0
        assert ledger.get_user_stats("alice").value == UserStats()

    def test_paused_network_rejects_before_validation(self, ledger, message_kwargs):
        ledger.toggle_pause(ADMIN, 1)
        res = ledger.create_message("alice", 100, **message_kwargs(subject="s" * 99))
        assert res.error == ErrorCode.NETWORK_PAUSED


class TestLifecycle:
    def test_message_info_pending_until_activation(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, height=100, timeout_period=5)
        assert ledger.get_message_info(104, msg_id).error == ErrorCode.STILL_PENDING
        res = ledger.get_message_info(105, msg_id)
        assert res.ok
        assert res.value.details.subject == "hello"

    def test_message_info_missing(self, ledger):
        assert ledger.get_message_info(10, 42).error == ErrorCode.MISSING

    def test_process_after_activation_point(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, height=100, timeout_period=1)
        assert _message(msg_id).activation_point == 101
        assert ledger.process_message("bob", 100, msg_id).error == ErrorCode.STILL_PENDING
        assert ledger.process_message("bob", 101, msg_id).ok
        assert _message(msg_id).is_processed is True

    def test_process_only_once(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, timeout_period=1)
        assert ledger.process_message("bob", 200, msg_id).ok
        res = ledger.process_message("carol", 200, msg_id)
        assert res.error == ErrorCode.ALREADY_PROCESSED
        assert ledger.get_user_stats("bob").value.messages_claimed == 1
        assert ledger.get_user_stats("carol").value.messages_claimed == 0

    def test_private_message_only_claimable_by_target(self, ledger, message_kwargs):
        msg_id = _create(
            ledger, message_kwargs, timeout_period=1, is_private=True, target_user="bob"
        )
        assert ledger.process_message("carol", 200, msg_id).error == ErrorCode.LOCKED
        assert ledger.process_message("alice", 200, msg_id).error == ErrorCode.LOCKED
        assert ledger.process_message("bob", 200, msg_id).ok

    def test_author_may_claim_own_public_message(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, timeout_period=1)
        assert ledger.process_message("alice", 200, msg_id).ok

    def test_private_message_without_target_is_open_to_anyone(
        self, ledger, message_kwargs
    ):
        msg_id = _create(ledger, message_kwargs, timeout_period=1, is_private=True)
        assert _message(msg_id).target_user is None
        assert ledger.process_message("carol", 200, msg_id).ok
        assert ledger.get_user_stats("carol").value.messages_claimed == 1

    def test_process_missing(self, ledger):
        assert ledger.process_message("bob", 10, 3).error == ErrorCode.MISSING

    @pytest.mark.parametrize(
        "action", ["upvote_message", "report_message", "disable_message"]
    )
    def test_actions_on_missing_message(self, ledger, action):
        res = getattr(ledger, action)(ADMIN, 10, 3)
        assert res.error == ErrorCode.MISSING
        assert db.session.query(ModerationAction).count() == 0


class TestVoting:
    def test_two_users_then_duplicate(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, timeout_period=1)
        assert ledger.upvote_message("bob", 200, msg_id).ok
        assert ledger.upvote_message("carol", 200, msg_id).ok
        res = ledger.upvote_message("bob", 201, msg_id)
        assert res.error == ErrorCode.ALREADY_PROCESSED
        assert _message(msg_id).upvotes == 2
        assert ledger.get_user_stats("bob").value.upvotes_given == 1

    def test_upvote_record_lookup(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, timeout_period=1)
        assert ledger.is_message_upvoted_by_user(msg_id, "bob").value is False
        ledger.upvote_message("bob", 200, msg_id)
        assert ledger.is_message_upvoted_by_user(msg_id, "bob").value is True
        assert ledger.is_message_upvoted_by_user(msg_id, "carol").value is False

    def test_self_upvote_allowed(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, timeout_period=1)
        assert ledger.upvote_message("alice", 200, msg_id).ok

    def test_upvote_before_activation(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, height=100, timeout_period=50)
        res = ledger.upvote_message("bob", 120, msg_id)
        assert res.error == ErrorCode.STILL_PENDING
        assert ledger.is_message_upvoted_by_user(msg_id, "bob").value is False


class TestModeration:
    def test_report_not_deduplicated(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, timeout_period=100)
        for _ in range(4):
            # before activation on purpose
            assert ledger.report_message("bob", 101, msg_id).ok
        assert _message(msg_id).downvotes == 4

    def test_disable_by_author_is_permanent_and_idempotent(
        self, ledger, message_kwargs
    ):
        msg_id = _create(ledger, message_kwargs, timeout_period=1)
        assert ledger.disable_message("alice", 200, msg_id).ok
        assert ledger.disable_message("alice", 201, msg_id).ok
        assert _message(msg_id).is_disabled is True
        assert ledger.process_message("bob", 300, msg_id).error == ErrorCode.DISABLED
        assert ledger.upvote_message("bob", 300, msg_id).error == ErrorCode.DISABLED
        assert ledger.report_message("bob", 300, msg_id).error == ErrorCode.DISABLED
        assert ledger.get_message_info(300, msg_id).error == ErrorCode.DISABLED

    def test_disable_by_admin(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs)
        assert ledger.disable_message(ADMIN, 100, msg_id).ok

    def test_disable_by_stranger(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs)
        assert ledger.disable_message("mallory", 100, msg_id).error == ErrorCode.NOT_ADMIN
        assert _message(msg_id).is_disabled is False

    def test_disable_ignores_pause(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs)
        ledger.toggle_pause(ADMIN, 100)
        assert ledger.disable_message("alice", 100, msg_id).ok

    def test_moderation_log_is_admin_only(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs)
        ledger.report_message("bob", 100, msg_id)
        ledger.disable_message("alice", 102, msg_id)
        assert ledger.get_moderation_log("bob", msg_id).error == ErrorCode.NOT_ADMIN
        rows = ledger.get_moderation_log(ADMIN, msg_id).value
        assert [(r.actor, r.action, r.block_num) for r in rows] == [
            ("bob", "report", 100),
            ("alice", "disable", 102),
        ]


class TestPause:
    def test_only_admin_toggles(self, ledger):
        assert ledger.toggle_pause("alice", 1).error == ErrorCode.NOT_ADMIN
        assert ledger.toggle_pause(ADMIN, 1).value is True
        assert ledger.toggle_pause(ADMIN, 2).value is False

    def test_gates_mutations_but_not_reads(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, timeout_period=1)
        ledger.upvote_message("bob", 200, msg_id)
        ledger.toggle_pause(ADMIN, 200)

        assert ledger.process_message("bob", 200, msg_id).error == ErrorCode.NETWORK_PAUSED
        assert ledger.upvote_message("carol", 200, msg_id).error == ErrorCode.NETWORK_PAUSED
        assert ledger.report_message("carol", 200, msg_id).error == ErrorCode.NETWORK_PAUSED
        assert ledger.discover("carol", 200).error == ErrorCode.NETWORK_PAUSED

        assert ledger.get_message_info(200, msg_id).ok
        assert ledger.get_total_messages().value == 1
        assert ledger.get_user_stats("bob").value.upvotes_given == 1
        assert ledger.is_message_upvoted_by_user(msg_id, "bob").value is True
        assert ledger.get_network_status().value.paused is True

    def test_missing_checked_before_pause(self, ledger):
        ledger.toggle_pause(ADMIN, 1)
        assert ledger.process_message("bob", 1, 9).error == ErrorCode.MISSING


class TestDiscover:
    def test_empty_ledger_fails(self, ledger):
        assert ledger.discover("bob", 10).error == ErrorCode.MISSING
        assert db.session.get(NetworkState, 1).random_seed == 0

    def test_seed_walk_is_deterministic(self, ledger, message_kwargs):
        for _ in range(3):
            _create(ledger, message_kwargs)
        picks = []
        for height in (10, 11, 12):
            picks.append(ledger.discover("bob", height).value.id)
        # seed 0 -> 10 -> 21 -> 33
        assert picks == [0, 1, 0]
        assert db.session.get(NetworkState, 1).random_seed == 33

    def test_returns_disabled_and_pending_records(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs, timeout_period=500)
        ledger.disable_message("alice", 100, msg_id)
        res = ledger.discover("bob", 101)
        assert res.ok
        assert res.value.is_disabled is True

    def test_selector_can_be_swapped(self, ctx, message_kwargs):
        class LastSelector(RandomSelector):
            def select(self, seed, height, total):
                return seed, total - 1

        ledger = Ledger(db.session, LastSelector())
        for _ in range(4):
            _create(ledger, message_kwargs)
        assert ledger.discover("bob", 50).value.id == 3

    def test_selector_must_implement_select(self):
        class Incomplete(RandomSelector):
            pass

        with pytest.raises(TypeError):
            Incomplete()


class TestNetwork:
    def test_admin_is_fixed_after_creation(self, ledger):
        state = bootstrap_network(db.session, "someone-else")
        assert state.network_admin == ADMIN
        assert ledger.toggle_pause("someone-else", 1).error == ErrorCode.NOT_ADMIN

    def test_unknown_user_stats_are_zero(self, ledger):
        assert ledger.get_user_stats("nobody").value == UserStats(0, 0, 0)

    def test_failed_operation_leaves_no_audit_rows(self, ledger, message_kwargs):
        msg_id = _create(ledger, message_kwargs)
        ledger.toggle_pause(ADMIN, 100)
        ledger.report_message("bob", 100, msg_id)
        assert db.session.query(ModerationAction).count() == 0


class TestConcurrentWriters:
    """Two threads, each with its own session on a shared SQLite file."""

    @pytest.fixture
    def file_app(self, tmp_path):
        app = create_app(
            {
                "TESTING": True,
                "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'ledger.db'}",
                "CACHE_TYPE": "SimpleCache",
                "CLOCK_WATCHER": False,
                "CSRF_ENABLED": False,
                "NETWORK_ADMIN": ADMIN,
            }
        )
        yield app
        with app.app_context():
            db.session.remove()
            db.drop_all()
            db.engine.dispose()

    @staticmethod
    def _run_pair(app, call):
        """Run `call(ledger, username)` for bob and carol at the same time."""
        results, errors = {}, []

        def worker(username):
            try:
                with app.app_context():
                    results[username] = call(Ledger(db.session), username)
                    db.session.remove()
            except Exception as exc:
                errors.append(exc)

        threads = [
            threading.Thread(target=worker, args=(u,)) for u in ("bob", "carol")
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=20)
        assert not errors
        return results

    @staticmethod
    def _rendezvous(monkeypatch, name):
        """Make both threads meet inside `Ledger.<name>` when they can."""
        barrier = threading.Barrier(2)
        original = getattr(Ledger, name)

        def meet(self, *args, **kwargs):
            try:
                barrier.wait(timeout=0.5)
            except threading.BrokenBarrierError:
                pass
            return original(self, *args, **kwargs)

        monkeypatch.setattr(Ledger, name, meet)

    def test_overlapping_upvotes_both_count(
        self, file_app, message_kwargs, monkeypatch
    ):
        with file_app.app_context():
            msg_id = _create(Ledger(db.session), message_kwargs, timeout_period=1)
        self._rendezvous(monkeypatch, "_has_upvote")

        results = self._run_pair(
            file_app, lambda ledger, u: ledger.upvote_message(u, 200, msg_id)
        )

        assert all(r.ok for r in results.values())
        with file_app.app_context():
            assert _message(msg_id).upvotes == 2
            assert db.session.query(Upvote).count() == 2

    def test_overlapping_creates_get_distinct_ids(
        self, file_app, message_kwargs, monkeypatch
    ):
        self._rendezvous(monkeypatch, "_record_activity")

        results = self._run_pair(
            file_app,
            lambda ledger, u: ledger.create_message(u, 100, **message_kwargs()),
        )

        assert sorted(r.value for r in results.values()) == [0, 1]
        with file_app.app_context():
            ledger = Ledger(db.session)
            assert ledger.get_total_messages().value == 2
            assert ledger.get_user_stats("bob").value.messages_posted == 1
            assert ledger.get_user_stats("carol").value.messages_posted == 1
