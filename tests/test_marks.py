"""
單筆評分生命週期與批次鎖定
"""
import pytest
from sqlalchemy.exc import SQLAlchemyError

import core.bulk_lock as bulk_lock
import core.mark_manager as mark_manager
from core.bulk_lock import lock_all_marks_for_jury_in_session, lock_all_marks_for_session
from core.exceptions import DuplicateMark, LockedError, NotFoundError, RelationError, ValidationError
from core.mark_manager import MarkManager
from models import EventLog, Mark


@pytest.fixture
def triple(factory):
    session = factory.session(started=True)
    jury = factory.jury()
    factory.membership(jury, session)
    team = factory.team(jury_id=jury.id)
    return team, jury, session


class TestSubmitMark:

    def test_submit(self, db, triple, scores):
        team, jury, session = triple

        mark = MarkManager.submit_mark(db, team.id, jury.id, session.id, scores)

        assert mark.submitted
        assert not mark.locked
        assert mark.scores == scores
        assert mark.total == 8
        db.refresh(team)
        assert team.jury_id is None

    def test_missing_dimensions_stay_unset(self, db, triple):
        team, jury, session = triple

        mark = MarkManager.submit_mark(db, team.id, jury.id, session.id, {"feasibility_score": 7})

        assert mark.feasibility_score == 7
        assert mark.problem_relevance_score == -1
        assert mark.total == 7

    def test_duplicate(self, db, triple, scores):
        team, jury, session = triple
        MarkManager.submit_mark(db, team.id, jury.id, session.id, scores)

        with pytest.raises(DuplicateMark):
            MarkManager.submit_mark(db, team.id, jury.id, session.id, scores)
        assert db.query(Mark).count() == 1

    def test_duplicate_caught_by_constraint(self, db, triple, scores, monkeypatch):
        team, jury, session = triple
        MarkManager.submit_mark(db, team.id, jury.id, session.id, scores)

        # 模擬事前檢查因競態而沒查到評分
        monkeypatch.setattr(mark_manager, "_find_mark", lambda *args: None)

        with pytest.raises(DuplicateMark):
            MarkManager.submit_mark(db, team.id, jury.id, session.id, scores)
        assert db.query(Mark).count() == 1

    def test_same_team_other_jury_is_fine(self, db, triple, factory, scores):
        team, jury, session = triple
        other = factory.jury()
        factory.membership(other, session)

        MarkManager.submit_mark(db, team.id, jury.id, session.id, scores)
        MarkManager.submit_mark(db, team.id, other.id, session.id, scores)

        assert db.query(Mark).count() == 2

    @pytest.mark.parametrize("missing", ["team", "jury", "session"])
    def test_dangling_reference(self, db, triple, scores, missing):
        team, jury, session = triple
        ids = {"team": team.id, "jury": jury.id, "session": session.id}
        ids[missing] = 999

        with pytest.raises(RelationError):
            MarkManager.submit_mark(db, ids["team"], ids["jury"], ids["session"], scores)
        assert db.query(Mark).count() == 0

    @pytest.mark.parametrize("bad", [
        {"feasibility_score": 26},
        {"feasibility_score": -2},
        {"feasibility_score": "5"},
        {"unknown_score": 3},
    ])
    def test_invalid_scores_write_nothing(self, db, triple, bad):
        team, jury, session = triple

        with pytest.raises(ValidationError):
            MarkManager.submit_mark(db, team.id, jury.id, session.id, bad)
        assert db.query(Mark).count() == 0
        db.refresh(team)
        assert team.jury_id == jury.id


class TestUpdateLockDelete:

    def test_update_overwrites_given_fields(self, db, triple, factory):
        team, jury, session = triple
        mark = factory.mark(team, jury, session, score=5)

        updated = MarkManager.update_mark(db, mark.id, {"innovation_creativity_score": 20})

        assert updated.innovation_creativity_score == 20
        assert updated.feasibility_score == 5
        assert updated.total == 35

    def test_update_locked(self, db, triple, factory):
        team, jury, session = triple
        mark = factory.mark(team, jury, session, locked=True)

        with pytest.raises(LockedError):
            MarkManager.update_mark(db, mark.id, {"feasibility_score": 1})
        db.refresh(mark)
        assert mark.feasibility_score == 5

    def test_update_after_lock_from_another_session(self, triple, factory, session_factory):
        team, jury, session = triple
        mark_id = factory.mark(team, jury, session).id
        editor, locker = session_factory(), session_factory()
        try:
            stale = editor.query(Mark).filter(Mark.id == mark_id).one()
            assert not stale.locked

            MarkManager.lock_mark(locker, mark_id)

            with pytest.raises(LockedError):
                MarkManager.update_mark(editor, mark_id, {"feasibility_score": 1})
        finally:
            editor.close()
            locker.close()

        check = session_factory()
        try:
            mark = check.query(Mark).filter(Mark.id == mark_id).one()
            assert mark.locked
            assert mark.feasibility_score == 5
        finally:
            check.close()

    def test_update_missing(self, db):
        with pytest.raises(NotFoundError):
            MarkManager.update_mark(db, 404, {"feasibility_score": 1})

    def test_update_out_of_range(self, db, triple, factory):
        team, jury, session = triple
        mark = factory.mark(team, jury, session)
        with pytest.raises(ValidationError):
            MarkManager.update_mark(db, mark.id, {"feasibility_score": 99})

    def test_lock_is_idempotent(self, db, triple, factory):
        team, jury, session = triple
        mark = factory.mark(team, jury, session)

        assert MarkManager.lock_mark(db, mark.id).locked
        assert MarkManager.lock_mark(db, mark.id).locked

    def test_lock_missing(self, db):
        with pytest.raises(NotFoundError):
            MarkManager.lock_mark(db, None)
        with pytest.raises(NotFoundError):
            MarkManager.lock_mark(db, 404)

    def test_delete(self, db, triple, factory):
        team, jury, session = triple
        mark = factory.mark(team, jury, session)

        MarkManager.delete_mark(db, mark.id)

        assert MarkManager.get_mark(db, team.id, jury.id, session.id) is None

    def test_delete_locked(self, db, triple, factory):
        team, jury, session = triple
        mark = factory.mark(team, jury, session, locked=True)
        with pytest.raises(LockedError):
            MarkManager.delete_mark(db, mark.id)

    def test_list_marks_filters(self, db, triple, factory):
        team, jury, session = triple
        other_team = factory.team()
        factory.mark(team, jury, session)
        factory.mark(other_team, jury, session)

        assert len(MarkManager.list_marks(db, session_id=session.id)) == 2
        assert [m.team_id for m in MarkManager.list_marks(db, team_id=other_team.id)] == [other_team.id]
        assert MarkManager.list_marks(db, jury_id=999) == []


class TestSessionBulkLock:

    def test_locks_every_jury(self, db, factory):
        session = factory.session(started=True)
        jury_a, jury_b = factory.jury(), factory.jury()
        factory.mark(factory.team(), jury_a, session)
        factory.mark(factory.team(), jury_b, session, locked=True)

        summary = lock_all_marks_for_session(db, session.id)

        assert summary.locked_count == 1
        assert summary.already_locked_count == 1
        assert summary.success
        assert all(m.locked for m in db.query(Mark).all())

    def test_other_sessions_untouched(self, db, factory):
        session, other = factory.session(started=True), factory.session(started=True)
        jury, team = factory.jury(), factory.team()
        factory.mark(team, jury, session)
        untouched = factory.mark(team, jury, other)

        lock_all_marks_for_session(db, session.id)

        db.refresh(untouched)
        assert not untouched.locked

    def test_idempotent(self, db, factory):
        session = factory.session(started=True)
        factory.mark(factory.team(), factory.jury(), session)

        lock_all_marks_for_session(db, session.id)
        summary = lock_all_marks_for_session(db, session.id)

        assert summary.locked_count == 0
        assert summary.already_locked_count == 1

    def test_missing_session(self, db):
        with pytest.raises(NotFoundError):
            lock_all_marks_for_session(db, 404)

    def test_failure_does_not_undo_earlier_locks(self, db, factory, monkeypatch):
        session = factory.session(started=True)
        jury = factory.jury()
        marks = [factory.mark(factory.team(), jury, session) for _ in range(3)]
        real_lock_unit = bulk_lock._lock_unit

        def flaky(db_, mark_id):
            if mark_id == marks[1].id:
                raise SQLAlchemyError("simulated write failure")
            return real_lock_unit(db_, mark_id)

        monkeypatch.setattr(bulk_lock, "_lock_unit", flaky)

        summary = lock_all_marks_for_session(db, session.id)

        assert summary.failed == [marks[1].id]
        assert summary.locked_count == 2
        assert "1 failed" in summary.message
        for mark in marks:
            db.refresh(mark)
        assert [m.locked for m in marks] == [True, False, True]

    def test_logs_event(self, db, factory):
        session = factory.session(started=True)
        factory.mark(factory.team(), factory.jury(), session)

        lock_all_marks_for_session(db, session.id)

        event = db.query(EventLog).filter(EventLog.event_type == "SESSION_MARKS_LOCKED").one()
        assert event.data["locked_count"] == 1


class TestJurySubmitAll:

    def test_locks_existing_and_zero_fills_the_rest(self, db, factory):
        session = factory.session(started=True)
        jury = factory.jury()
        factory.membership(jury, session)
        marked = factory.team()
        unmarked = factory.team(jury_id=jury.id)
        existing = factory.mark(marked, jury, session, score=9)

        summary = lock_all_marks_for_jury_in_session(db, jury.id, session.id, [marked.id, unmarked.id])

        assert summary.success
        assert summary.locked_count == 2
        assert summary.created_count == 1

        db.refresh(existing)
        assert existing.locked
        assert existing.feasibility_score == 9

        created = MarkManager.get_mark(db, unmarked.id, jury.id, session.id)
        assert created.submitted and created.locked
        assert created.scores == {
            "feasibility_score": 0,
            "tech_implementation_score": 0,
            "innovation_creativity_score": 0,
            "problem_relevance_score": 0,
        }
        db.refresh(unmarked)
        assert unmarked.jury_id is None

    def test_repeat_is_a_no_op(self, db, factory):
        session = factory.session(started=True)
        jury = factory.jury()
        team = factory.team()

        lock_all_marks_for_jury_in_session(db, jury.id, session.id, [team.id])
        summary = lock_all_marks_for_jury_in_session(db, jury.id, session.id, [team.id])

        assert summary.locked_count == 0
        assert summary.created_count == 0
        assert summary.already_locked_count == 1
        assert db.query(Mark).count() == 1

    def test_other_jury_marks_untouched(self, db, factory):
        session = factory.session(started=True)
        jury, other = factory.jury(), factory.jury()
        team = factory.team()
        theirs = factory.mark(team, other, session)

        lock_all_marks_for_jury_in_session(db, jury.id, session.id, [team.id])

        db.refresh(theirs)
        assert not theirs.locked

    def test_unknown_team_is_reported(self, db, factory):
        session = factory.session(started=True)
        jury = factory.jury()
        team = factory.team()

        summary = lock_all_marks_for_jury_in_session(db, jury.id, session.id, [999, team.id])

        assert summary.failed == [999]
        assert summary.created_count == 1
        assert not summary.success

    def test_duplicate_team_ids_processed_once(self, db, factory):
        session = factory.session(started=True)
        jury = factory.jury()
        team = factory.team()

        summary = lock_all_marks_for_jury_in_session(db, jury.id, session.id, [team.id, team.id])

        assert summary.created_count == 1
        assert db.query(Mark).count() == 1

    def test_summary_write_failure_is_not_raised(self, db, factory, monkeypatch):
        session = factory.session(started=True)
        jury = factory.jury()
        team = factory.team()

        def broken(*args):
            raise SQLAlchemyError("simulated write failure")

        monkeypatch.setattr(bulk_lock, "_record_summary", broken)

        summary = lock_all_marks_for_jury_in_session(db, jury.id, session.id, [team.id])

        assert summary.created_count == 1
        assert MarkManager.get_mark(db, team.id, jury.id, session.id).locked

    def test_missing_jury_or_session(self, db, factory):
        session = factory.session(started=True)
        jury = factory.jury()
        with pytest.raises(NotFoundError):
            lock_all_marks_for_jury_in_session(db, 404, session.id, [])
        with pytest.raises(NotFoundError):
            lock_all_marks_for_jury_in_session(db, jury.id, 404, [])
