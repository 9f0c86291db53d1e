"""
Tests for the admission engine.

Covers promotion, the quorum rule as applied to recorded votes, the order
of the pre-vote checks, credits, admin overrides, the pending-review queue
and the all-or-nothing vote transaction.
"""
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Query

import forvm.database as db_module
from conftest import get_post_row, get_score, make_agent, make_post
from forvm.config import get_admission_policy
from forvm.errors import (
    AlreadyTerminalError,
    DependencyError,
    DuplicateReviewError,
    InvalidTransitionError,
    NotFoundError,
    PostNotOpenForReviewError,
    SelfReviewError,
    ValidationError,
)
from forvm.models import (
    Review,
    STATUS_ACCEPTED,
    STATUS_IN_REVIEW,
    STATUS_PENDING,
    STATUS_REJECTED,
)
from forvm.services.admission_service import (
    _apply_decision,
    admin_approve,
    admin_reject,
    get_pending_for_review,
    record_review,
    submit_for_review,
)


# ── Helpers ──────────────────────────────────────────────────────────

def _open_post(session, **fields):
    """Create an author and an in_review post; return (author_id, post_id)."""
    author = make_agent(session)
    post_id = make_post(session, author, status=STATUS_IN_REVIEW, **fields)
    return author, post_id


def _vote_all(post_id, votes, session):
    """Cast votes from fresh reviewers; return the list of results."""
    results = []
    for vote in votes:
        reviewer = make_agent(session)
        results.append(record_review(post_id, reviewer, vote))
    return results


def _assert_tally_consistent(post):
    assert post.review_count == post.accept_count + post.reject_count


def _ledger_count(session, post_id):
    return session.query(Review).filter(Review.post_id == post_id).count()


# ── Test Classes ─────────────────────────────────────────────────────

class TestSubmitForReview:
    """pending -> in_review promotion."""

    def test_promotes_pending_post(self, db_session):
        author = make_agent(db_session)
        post_id = make_post(db_session, author)

        result = submit_for_review(post_id)

        assert result["status"] == STATUS_IN_REVIEW
        assert get_post_row(db_session, post_id).status == STATUS_IN_REVIEW

    @pytest.mark.parametrize("status", [STATUS_IN_REVIEW, STATUS_ACCEPTED, STATUS_REJECTED])
    def test_refuses_non_pending(self, db_session, status):
        author = make_agent(db_session)
        post_id = make_post(db_session, author, status=status)

        with pytest.raises(InvalidTransitionError):
            submit_for_review(post_id)
        assert get_post_row(db_session, post_id).status == status

    def test_unknown_post(self):
        with pytest.raises(NotFoundError):
            submit_for_review("missing")


class TestQuorum:
    """Votes drive the post to a decision once the minimum is reached."""

    def test_three_accepts_accept_on_third_vote(self, db_session):
        _, post_id = _open_post(db_session)

        results = _vote_all(post_id, ["accept", "accept", "accept"], db_session)

        assert [r["post_status"] for r in results] == [
            STATUS_IN_REVIEW, STATUS_IN_REVIEW, STATUS_ACCEPTED,
        ]
        assert results[2]["decision"] == STATUS_ACCEPTED
        post = get_post_row(db_session, post_id)
        assert post.accepted_at is not None
        assert (post.review_count, post.accept_count, post.reject_count) == (3, 3, 0)

    def test_three_rejects_reject_on_third_vote(self, db_session):
        _, post_id = _open_post(db_session)

        results = _vote_all(post_id, ["reject", "reject", "reject"], db_session)

        assert [r["decision"] for r in results] == [None, None, STATUS_REJECTED]
        post = get_post_row(db_session, post_id)
        assert post.status == STATUS_REJECTED
        assert post.accepted_at is None

    def test_one_accept_two_rejects_rejected(self, db_session):
        """accept_rate 1/3 < 0.6 and reject_rate 2/3 > 0.4."""
        _, post_id = _open_post(db_session)

        results = _vote_all(post_id, ["accept", "reject", "reject"], db_session)

        assert results[-1]["post_status"] == STATUS_REJECTED

    def test_two_accepts_one_reject_accepted(self, db_session):
        _, post_id = _open_post(db_session)

        results = _vote_all(post_id, ["reject", "accept", "accept"], db_session)

        assert results[-1]["post_status"] == STATUS_ACCEPTED

    def test_below_minimum_stays_open(self, db_session):
        _, post_id = _open_post(db_session)

        results = _vote_all(post_id, ["accept", "reject"], db_session)

        assert results[-1]["post_status"] == STATUS_IN_REVIEW
        assert results[-1]["tally"] == {"review_count": 2, "accept_count": 1, "reject_count": 1}

    def test_needs_revision_keeps_post_open_indefinitely(self, db_session):
        """needs_revision votes are ledgered but never tallied, so no decision is ever reached."""
        _, post_id = _open_post(db_session)

        results = _vote_all(post_id, ["needs_revision"] * 5, db_session)

        assert all(r["decision"] is None for r in results)
        post = get_post_row(db_session, post_id)
        assert post.status == STATUS_IN_REVIEW
        assert post.review_count == 0
        assert _ledger_count(db_session, post_id) == 5

    def test_needs_revision_does_not_count_toward_minimum(self, db_session):
        _, post_id = _open_post(db_session)

        results = _vote_all(post_id, ["accept", "needs_revision", "accept"], db_session)
        assert results[-1]["post_status"] == STATUS_IN_REVIEW

        result = _vote_all(post_id, ["accept"], db_session)[0]
        assert result["post_status"] == STATUS_ACCEPTED

    def test_custom_policy(self, db_session, admission_config):
        admission_config(min_reviews=1, accept_threshold=1.0)
        _, post_id = _open_post(db_session)

        result = _vote_all(post_id, ["accept"], db_session)[0]

        assert result["post_status"] == STATUS_ACCEPTED

    def test_tally_invariant_holds_throughout(self, db_session):
        _, post_id = _open_post(db_session)
        for vote in ["accept", "needs_revision", "reject", "accept", "accept"]:
            reviewer = make_agent(db_session)
            try:
                record_review(post_id, reviewer, vote)
            except PostNotOpenForReviewError:
                pass
            _assert_tally_consistent(get_post_row(db_session, post_id))


class TestReviewChecks:
    """Self-review, duplicate vote and eligibility, checked in that order."""

    def test_self_review_refused(self, db_session):
        author, post_id = _open_post(db_session)

        with pytest.raises(SelfReviewError):
            record_review(post_id, author, "accept")

        assert _ledger_count(db_session, post_id) == 0
        assert get_post_row(db_session, post_id).review_count == 0

    def test_self_review_checked_before_eligibility(self, db_session):
        author = make_agent(db_session)
        post_id = make_post(db_session, author, status=STATUS_PENDING)

        with pytest.raises(SelfReviewError):
            record_review(post_id, author, "accept")

    def test_duplicate_checked_before_eligibility(self, db_session):
        _, post_id = _open_post(db_session)
        reviewer = make_agent(db_session)
        record_review(post_id, reviewer, "accept")
        admin_reject(post_id)

        with pytest.raises(DuplicateReviewError):
            record_review(post_id, reviewer, "accept")

    def test_replay_returns_duplicate_without_second_increment(self, db_session):
        _, post_id = _open_post(db_session)
        reviewer = make_agent(db_session)
        record_review(post_id, reviewer, "accept", feedback="Solid")

        with pytest.raises(DuplicateReviewError):
            record_review(post_id, reviewer, "accept", feedback="Solid")

        post = get_post_row(db_session, post_id)
        assert (post.review_count, post.accept_count) == (1, 1)
        assert _ledger_count(db_session, post_id) == 1
        assert get_score(db_session, reviewer) == 1

    def test_pending_post_not_open(self, db_session):
        author = make_agent(db_session)
        reviewer = make_agent(db_session)
        post_id = make_post(db_session, author, status=STATUS_PENDING)

        with pytest.raises(PostNotOpenForReviewError):
            record_review(post_id, reviewer, "accept")
        assert _ledger_count(db_session, post_id) == 0

    @pytest.mark.parametrize("status", [STATUS_ACCEPTED, STATUS_REJECTED])
    def test_terminal_post_not_open(self, db_session, status):
        author = make_agent(db_session)
        reviewer = make_agent(db_session)
        post_id = make_post(db_session, author, status=status)

        with pytest.raises(PostNotOpenForReviewError):
            record_review(post_id, reviewer, "reject")
        assert get_score(db_session, reviewer) == 0

    def test_vote_after_decision_refused(self, db_session):
        _, post_id = _open_post(db_session)
        _vote_all(post_id, ["accept"] * 3, db_session)
        late = make_agent(db_session)

        with pytest.raises(PostNotOpenForReviewError):
            record_review(post_id, late, "reject")

        post = get_post_row(db_session, post_id)
        assert post.status == STATUS_ACCEPTED
        assert post.review_count == 3

    def test_unknown_post_and_reviewer(self, db_session):
        _, post_id = _open_post(db_session)
        reviewer = make_agent(db_session)

        with pytest.raises(NotFoundError):
            record_review("missing", reviewer, "accept")
        with pytest.raises(NotFoundError):
            record_review(post_id, "ghost", "accept")

    def test_invalid_vote(self, db_session):
        _, post_id = _open_post(db_session)
        reviewer = make_agent(db_session)

        with pytest.raises(ValidationError):
            record_review(post_id, reviewer, "maybe")


class TestCredits:
    """Author credit on acceptance, reviewer credit per vote."""

    def test_author_credited_once_on_quorum_acceptance(self, db_session):
        author, post_id = _open_post(db_session)

        results = _vote_all(post_id, ["accept"] * 3, db_session)

        assert [r["author_credited"] for r in results] == [False, False, True]
        assert get_score(db_session, author) == 1

    def test_author_not_credited_on_rejection(self, db_session):
        author, post_id = _open_post(db_session)
        _vote_all(post_id, ["reject"] * 3, db_session)
        assert get_score(db_session, author) == 0

    def test_every_reviewer_credited(self, db_session):
        _, post_id = _open_post(db_session)
        reviewers = [make_agent(db_session) for _ in range(3)]
        for reviewer, vote in zip(reviewers, ["accept", "needs_revision", "reject"]):
            record_review(post_id, reviewer, vote)

        assert [get_score(db_session, r) for r in reviewers] == [1, 1, 1]

    def test_reviewer_credit_can_be_disabled(self, db_session, admission_config):
        admission_config(credit_reviewer_per_vote=False)
        _, post_id = _open_post(db_session)
        reviewer = make_agent(db_session)

        result = record_review(post_id, reviewer, "accept")

        assert result["reviewer_credited"] is False
        assert get_score(db_session, reviewer) == 0

    def test_author_credit_can_be_disabled(self, db_session, admission_config):
        admission_config(credit_author_on_accept=False)
        author, post_id = _open_post(db_session)

        _vote_all(post_id, ["accept"] * 3, db_session)

        assert get_score(db_session, author) == 0
        assert get_post_row(db_session, post_id).accepted_at is not None


class TestVoteTransaction:
    """A failure anywhere in the vote transaction leaves the pre-vote state."""

    def test_storage_failure_rolls_back_ledger_and_tally(self, db_session):
        author, post_id = _open_post(db_session)
        reviewer = make_agent(db_session)

        with patch("forvm.services.admission_service.credit_reviewer",
                   side_effect=OperationalError("UPDATE agents", {}, Exception("disk I/O error"))):
            with pytest.raises(DependencyError):
                record_review(post_id, reviewer, "accept")

        post = get_post_row(db_session, post_id)
        assert (post.review_count, post.accept_count) == (0, 0)
        assert _ledger_count(db_session, post_id) == 0
        assert get_score(db_session, reviewer) == 0

        # Retrying the same request is safe
        result = record_review(post_id, reviewer, "accept")
        assert result["tally"]["accept_count"] == 1

    def test_failure_after_decision_rolls_back_transition(self, db_session):
        author, post_id = _open_post(db_session)
        _vote_all(post_id, ["accept"] * 2, db_session)
        reviewer = make_agent(db_session)

        with patch("forvm.services.admission_service.credit_author_on_accept",
                   side_effect=OperationalError("UPDATE agents", {}, Exception("lost connection"))):
            with pytest.raises(DependencyError):
                record_review(post_id, reviewer, "accept")

        post = get_post_row(db_session, post_id)
        assert post.status == STATUS_IN_REVIEW
        assert post.accepted_at is None
        assert post.review_count == 2
        assert get_score(db_session, author) == 0


class TestRacingEvaluators:
    """Only one of two evaluators that both saw a crossing tally performs the transition."""

    def test_second_transition_is_a_no_op(self, db_session):
        author, post_id = _open_post(db_session, review_count=3, accept_count=3)
        policy = get_admission_policy()

        first = db_module.get_session()
        second = db_module.get_session()
        try:
            assert _apply_decision(first, post_id, STATUS_ACCEPTED, (STATUS_IN_REVIEW,), policy) == (True, True)
            assert _apply_decision(second, post_id, STATUS_ACCEPTED, (STATUS_IN_REVIEW,), policy) == (False, False)
            first.commit()
            second.commit()
        finally:
            first.close()
            second.close()

        assert get_score(db_session, author) == 1
        assert get_post_row(db_session, post_id).status == STATUS_ACCEPTED

    def test_quorum_after_admin_decision_does_not_recredit(self, db_session):
        author, post_id = _open_post(db_session)
        admin_approve(post_id)
        policy = get_admission_policy()

        with db_module.session_scope() as session:
            transitioned, credited = _apply_decision(
                session, post_id, STATUS_ACCEPTED, (STATUS_IN_REVIEW,), policy
            )

        assert (transitioned, credited) == (False, False)
        assert get_score(db_session, author) == 1


class TestAdminOverride:
    """Approve/reject bypass the quorum rule."""

    def test_approve_pending_post(self, db_session):
        author = make_agent(db_session)
        post_id = make_post(db_session, author, status=STATUS_PENDING)

        result = admin_approve(post_id)

        assert result["status"] == STATUS_ACCEPTED
        assert result["previous_status"] == STATUS_PENDING
        assert result["author_credited"] is True
        assert get_score(db_session, author) == 1
        assert get_post_row(db_session, post_id).accepted_at is not None

    def test_reject_pending_post(self, db_session):
        author = make_agent(db_session)
        post_id = make_post(db_session, author, status=STATUS_PENDING)

        result = admin_reject(post_id, reason="Duplicate")

        assert result["status"] == STATUS_REJECTED
        assert result["reason"] == "Duplicate"
        assert get_score(db_session, author) == 0

    def test_approve_ignores_tallies(self, db_session):
        author, post_id = _open_post(db_session, review_count=2, accept_count=0, reject_count=2)

        admin_approve(post_id)

        post = get_post_row(db_session, post_id)
        assert post.status == STATUS_ACCEPTED
        assert post.reject_count == 2

    def test_reissue_against_matching_state_refused(self, db_session):
        author = make_agent(db_session)
        post_id = make_post(db_session, author)

        admin_approve(post_id)
        with pytest.raises(AlreadyTerminalError):
            admin_approve(post_id)

        admin_reject(post_id)
        with pytest.raises(AlreadyTerminalError):
            admin_reject(post_id)

    def test_flip_back_to_accepted_credits_author_once(self, db_session):
        author = make_agent(db_session)
        post_id = make_post(db_session, author)

        first = admin_approve(post_id)
        admin_reject(post_id)
        second = admin_approve(post_id)

        assert first["author_credited"] is True
        assert second["author_credited"] is False
        assert get_score(db_session, author) == 1

    def test_unknown_post(self):
        with pytest.raises(NotFoundError):
            admin_approve("missing")


class TestPendingForReview:
    """The queue of posts an agent may vote on next."""

    def test_excludes_own_and_reviewed_posts(self, db_session):
        me = make_agent(db_session)
        other = make_agent(db_session)
        own = make_post(db_session, me, status=STATUS_IN_REVIEW)
        reviewed = make_post(db_session, other, status=STATUS_IN_REVIEW)
        open_post = make_post(db_session, other, status=STATUS_IN_REVIEW)
        record_review(reviewed, me, "accept")

        ids = [p["id"] for p in get_pending_for_review(me)["posts"]]

        assert ids == [open_post]
        assert own not in ids

    def test_only_in_review_posts(self, db_session):
        me = make_agent(db_session)
        other = make_agent(db_session)
        for status in (STATUS_PENDING, STATUS_ACCEPTED, STATUS_REJECTED):
            make_post(db_session, other, status=status)

        assert get_pending_for_review(me)["count"] == 0

    def test_oldest_first_and_limited(self, db_session):
        me = make_agent(db_session)
        other = make_agent(db_session)
        base = datetime(2026, 1, 1)
        newest = make_post(db_session, other, status=STATUS_IN_REVIEW, created_at=base + timedelta(hours=2))
        oldest = make_post(db_session, other, status=STATUS_IN_REVIEW, created_at=base)
        middle = make_post(db_session, other, status=STATUS_IN_REVIEW, created_at=base + timedelta(hours=1))

        assert [p["id"] for p in get_pending_for_review(me, limit=5)["posts"]] == [oldest, middle, newest]
        assert [p["id"] for p in get_pending_for_review(me, limit=2)["posts"]] == [oldest, middle]

    def test_reports_approvals_needed(self, db_session):
        me = make_agent(db_session)
        other = make_agent(db_session)
        make_post(db_session, other, status=STATUS_IN_REVIEW,
                  review_count=1, accept_count=0, reject_count=1)

        post = get_pending_for_review(me)["posts"][0]

        assert post["approvals_needed"] == 2

    def test_invalid_limit(self, db_session):
        me = make_agent(db_session)
        with pytest.raises(ValidationError):
            get_pending_for_review(me, limit=0)

    def test_unknown_agent(self):
        with pytest.raises(NotFoundError):
            get_pending_for_review("ghost")

    def test_storage_failure(self, db_session):
        me = make_agent(db_session)
        with patch.object(Query, "all",
                          side_effect=OperationalError("SELECT", {}, Exception("database is locked"))):
            with pytest.raises(DependencyError):
                get_pending_for_review(me)
