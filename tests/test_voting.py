"""Tests for submitting priorities and the vote write."""

from unittest.mock import MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import DuplicateKeyError, PyMongoError

import voting
from conftest import OverrideDb
from database import PRIORITIES, VOTES, Store
from errors import AlreadyVoted, NotFound, NotSignedIn, StoreUnavailable, ValidationFailed
from feed import MODIFIED
from schemas import Identity, PriorityCreate


def _votes_for(store, priority_id):
    return store[VOTES].count_documents({"priorityId": priority_id})


def _counter(store, priority_id):
    return store[PRIORITIES].find_one({"_id": ObjectId(priority_id)})["votes"]


class TestVoteId:
    def test_is_deterministic(self):
        assert voting.vote_id("u1", "p1") == voting.vote_id("u1", "p1")

    def test_differs_per_pair(self):
        ids = {
            voting.vote_id("u1", "p1"),
            voting.vote_id("u1", "p2"),
            voting.vote_id("u2", "p1"),
        }
        assert len(ids) == 3


class TestCastVote:
    def test_increments_counter_and_records_vote(self, store, alice, make_priority):
        pid = make_priority()

        updated = voting.cast_vote(store, alice, pid)

        assert updated["votes"] == 1
        assert "lastVoteAt" in updated
        assert _votes_for(store, pid) == 1
        vote = store[VOTES].find_one({"priorityId": pid})
        assert vote["userId"] == "u-alice"
        assert vote["_id"] == voting.vote_id("u-alice", pid)
        assert pid in alice.voted

    def test_second_vote_in_session_is_rejected_without_a_write(
        self, store, alice, make_priority, monkeypatch
    ):
        pid = make_priority()
        voting.cast_vote(store, alice, pid)

        record = MagicMock()
        monkeypatch.setattr(store, "record_vote", record)
        with pytest.raises(AlreadyVoted):
            voting.cast_vote(store, alice, pid)

        record.assert_not_called()
        assert _counter(store, pid) == 1

    def test_duplicate_from_another_device_is_caught_by_the_store(
        self, store, sessions, alice, make_priority
    ):
        pid = make_priority()
        voting.cast_vote(store, alice, pid)
        # same identity, fresh session whose cache was never seeded
        other_device = sessions.open(alice.identity)

        with pytest.raises(AlreadyVoted):
            voting.cast_vote(store, other_device, pid)

        assert _counter(store, pid) == 1
        assert _votes_for(store, pid) == 1
        assert pid in other_device.voted

    def test_counter_equals_number_of_vote_documents(self, store, sessions, make_priority):
        pid = make_priority()
        voters = [sessions.open(Identity(uid=f"user-{i}")) for i in range(7)]

        for session in voters:
            voting.cast_vote(store, session, pid)

        assert _counter(store, pid) == 7
        assert _votes_for(store, pid) == 7

    def test_votes_on_different_priorities_are_independent(self, store, alice, make_priority):
        first, second = make_priority(), make_priority()

        voting.cast_vote(store, alice, first)
        voting.cast_vote(store, alice, second)

        assert _counter(store, first) == 1
        assert _counter(store, second) == 1
        assert alice.voted == {first, second}

    @pytest.mark.parametrize("status", ["pending", "rejected"])
    def test_priority_not_open_for_voting(self, store, alice, make_priority, status):
        pid = make_priority(status=status)

        with pytest.raises(NotFound):
            voting.cast_vote(store, alice, pid)

        assert _counter(store, pid) == 0
        assert _votes_for(store, pid) == 0
        assert pid not in alice.voted

    @pytest.mark.parametrize("pid", ["not-an-object-id", str(ObjectId())])
    def test_unknown_priority(self, store, alice, pid):
        with pytest.raises(NotFound):
            voting.cast_vote(store, alice, pid)
        assert store[VOTES].count_documents({}) == 0

    def test_requires_a_session(self, store, make_priority):
        with pytest.raises(NotSignedIn):
            voting.cast_vote(store, None, make_priority())

    def test_failed_increment_leaves_no_vote_behind(self, store, alice, make_priority, monkeypatch):
        pid = make_priority()

        def broken(*args, **kwargs):
            raise PyMongoError("connection reset")

        monkeypatch.setattr(store, "_bump_counter", broken)
        with pytest.raises(StoreUnavailable):
            voting.cast_vote(store, alice, pid)

        assert _counter(store, pid) == 0
        assert _votes_for(store, pid) == 0
        assert alice.voted == set()

    def test_case_variant_id_is_the_same_priority(self, store, alice, make_priority):
        pid = make_priority()
        voting.cast_vote(store, alice, pid)

        with pytest.raises(AlreadyVoted):
            voting.cast_vote(store, alice, pid.upper())

        assert _counter(store, pid) == 1
        assert store[VOTES].count_documents({}) == 1
        assert alice.voted == {pid}

    def test_case_variant_id_is_stored_canonically(self, store, alice, make_priority):
        pid = make_priority()

        updated = voting.cast_vote(store, alice, pid.upper())

        assert updated["id"] == pid
        assert _votes_for(store, pid) == 1
        assert alice.voted == {pid}

    def test_vote_inserted_after_the_check_is_a_duplicate(self, store, alice, make_priority):
        pid = make_priority()
        store[VOTES].insert_one(
            {"_id": voting.vote_id("u-alice", pid), "userId": "u-alice", "priorityId": pid}
        )
        # the existence check misses it, as if the other write landed just after
        racing = Store(OverrideDb(store.db, VOTES, find_one=lambda *args, **kwargs: None))

        with pytest.raises(AlreadyVoted):
            voting.cast_vote(racing, alice, pid)

        assert _counter(store, pid) == 0
        assert _votes_for(store, pid) == 1
        assert pid in alice.voted

    def test_failed_reload_still_counts_the_vote(self, store, alice, make_priority, feed):
        pid = make_priority()
        seen = []
        feed.subscribe(seen.append)

        def broken(*args, **kwargs):
            raise PyMongoError("connection reset")

        flaky = Store(OverrideDb(store.db, PRIORITIES, find_one=broken))

        assert voting.cast_vote(flaky, alice, pid, feed) is None

        assert _counter(store, pid) == 1
        assert _votes_for(store, pid) == 1
        assert pid in alice.voted
        assert [(c.kind, c.priority_id) for c in seen] == [(MODIFIED, pid)]

    def test_publishes_a_change(self, store, alice, make_priority, feed):
        pid = make_priority()
        seen = []
        feed.subscribe(seen.append)

        voting.cast_vote(store, alice, pid, feed)

        assert [(c.kind, c.priority_id) for c in seen] == [(MODIFIED, pid)]


class TestTransactionalWrite:
    @pytest.fixture
    def collections(self):
        votes, priorities = MagicMock(), MagicMock()
        priorities.update_one.return_value.matched_count = 1
        return {VOTES: votes, PRIORITIES: priorities}

    @pytest.fixture
    def tx_store(self, collections):
        session = MagicMock()
        session.with_transaction.side_effect = lambda callback: callback(session)
        client = MagicMock()
        client.start_session.return_value.__enter__.return_value = session
        db = MagicMock()
        db.__getitem__.side_effect = collections.__getitem__
        store = Store(db, client=client, transactional=True)
        store.session = session
        return store

    def test_both_writes_share_the_transaction(self, tx_store, collections):
        vote = {"_id": "v1", "userId": "u1", "priorityId": "p1"}

        tx_store.record_vote(vote, {"_id": "p1", "status": "approved"}, now=None)

        collections[VOTES].insert_one.assert_called_once_with(vote, session=tx_store.session)
        _, kwargs = collections[PRIORITIES].update_one.call_args
        assert kwargs["session"] is tx_store.session

    def test_duplicate_key_aborts_as_already_voted(self, tx_store, collections):
        collections[VOTES].insert_one.side_effect = DuplicateKeyError("dup")

        with pytest.raises(AlreadyVoted):
            tx_store.record_vote({"_id": "v1"}, {"_id": "p1"}, now=None)

        collections[PRIORITIES].update_one.assert_not_called()

    def test_missing_priority_aborts(self, tx_store, collections):
        collections[PRIORITIES].update_one.return_value.matched_count = 0

        with pytest.raises(NotFound):
            tx_store.record_vote({"_id": "v1"}, {"_id": "p1"}, now=None)


class TestLoadUserVotes:
    def test_yields_priority_ids_for_the_user(self, store, alice, bob, make_priority):
        first, second, third = make_priority(), make_priority(), make_priority()
        voting.cast_vote(store, alice, first)
        voting.cast_vote(store, alice, third)
        voting.cast_vote(store, bob, second)

        assert set(voting.load_user_votes(store, "u-alice")) == {first, third}
        assert list(voting.load_user_votes(store, "u-nobody")) == []


class TestSubmitPriority:
    def test_creates_pending_priority(self, store, alice):
        payload = PriorityCreate(
            title="Clean water access",
            description="Safe drinking water for every community.",
            category="Health",
        )

        doc = voting.submit_priority(store, alice, payload)

        assert doc["status"] == "pending"
        assert doc["votes"] == 0
        assert doc["submittedBy"] == "u-alice"
        assert doc["submittedByEmail"] == "alice@example.org"
        assert doc["submittedByName"] == "Alice"
        assert doc["createdAt"]
        assert store[PRIORITIES].count_documents({"status": "pending"}) == 1

    def test_name_falls_back_to_email_local_part(self, store, bob):
        payload = PriorityCreate(title="t", description="d", category="c")

        doc = voting.submit_priority(store, bob, payload)

        assert doc["submittedByName"] == "bob"

    def test_blank_fields_fail_validation(self, store, alice):
        payload = PriorityCreate.model_construct(title="  ", description="d", category="c")

        with pytest.raises(ValidationFailed):
            voting.submit_priority(store, alice, payload)
        assert store[PRIORITIES].count_documents({}) == 0

    def test_requires_a_session(self, store):
        payload = PriorityCreate(title="t", description="d", category="c")
        with pytest.raises(NotSignedIn):
            voting.submit_priority(store, None, payload)
