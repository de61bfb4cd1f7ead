"""
評審場次關係、目前場次投影、隊伍重新指派與洗牌
"""
import random
from collections import Counter

import pytest

from core.assignment_manager import AssignmentManager
from core.exceptions import InvalidState, NotFoundError, ValidationError
from core.session_manager import SessionManager
from models import EventLog, Jury, JurySession, Team


class TestMembership:

    def test_assign_sets_projection(self, db, factory):
        session = factory.session()
        jury = factory.jury()

        AssignmentManager.assign_jury_to_session(db, jury.id, session.id)

        db.refresh(jury)
        assert jury.session_id == session.id
        assert not jury.is_free
        assert AssignmentManager.is_member(db, jury.id, session.id)

    def test_assign_is_idempotent(self, db, factory):
        session = factory.session()
        jury = factory.jury()

        AssignmentManager.assign_jury_to_session(db, jury.id, session.id)
        AssignmentManager.assign_jury_to_session(db, jury.id, session.id)

        assert db.query(JurySession).count() == 1

    def test_assign_unknown(self, db, factory):
        session = factory.session()
        jury = factory.jury()
        with pytest.raises(NotFoundError):
            AssignmentManager.assign_jury_to_session(db, 404, session.id)
        with pytest.raises(NotFoundError):
            AssignmentManager.assign_jury_to_session(db, jury.id, 404)

    def test_projection_follows_latest_open_membership(self, db, factory):
        first, second = factory.session(), factory.session()
        jury = factory.jury()

        AssignmentManager.assign_jury_to_session(db, jury.id, first.id)
        AssignmentManager.assign_jury_to_session(db, jury.id, second.id)
        db.refresh(jury)
        assert jury.session_id == second.id

        AssignmentManager.remove_jury_from_session(db, jury.id, second.id)
        db.refresh(jury)
        assert jury.session_id == first.id

        AssignmentManager.remove_jury_from_session(db, jury.id, first.id)
        db.refresh(jury)
        assert jury.is_free

    def test_projection_skips_ended_sessions(self, db, factory):
        ended = factory.session(ended=True)
        jury = factory.jury()

        AssignmentManager.assign_jury_to_session(db, jury.id, ended.id)

        db.refresh(jury)
        assert jury.session_id is None
        assert AssignmentManager.get_jury_session_ids(db, jury.id) == [ended.id]

    def test_remove_is_idempotent(self, db, factory):
        session = factory.session()
        jury = factory.jury()
        assert AssignmentManager.remove_jury_from_session(db, jury.id, session.id) is False

    def test_remove_keeps_marks(self, db, factory):
        session = factory.session(started=True)
        jury = factory.jury()
        factory.membership(jury, session)
        mark = factory.mark(factory.team(), jury, session)

        AssignmentManager.remove_jury_from_session(db, jury.id, session.id)

        db.refresh(mark)
        assert mark.jury_id == jury.id

    def test_set_jury_sessions_replaces_the_set(self, db, factory):
        a, b, c = factory.session(), factory.session(), factory.session()
        jury = factory.jury()
        AssignmentManager.assign_jury_to_session(db, jury.id, a.id)
        AssignmentManager.assign_jury_to_session(db, jury.id, b.id)

        result = AssignmentManager.set_jury_sessions(db, jury.id, [b.id, c.id])

        assert sorted(result) == sorted([b.id, c.id])
        db.refresh(jury)
        assert jury.session_id == c.id

    def test_set_jury_sessions_unknown_session_changes_nothing(self, db, factory):
        a = factory.session()
        jury = factory.jury()
        AssignmentManager.assign_jury_to_session(db, jury.id, a.id)

        with pytest.raises(NotFoundError):
            AssignmentManager.set_jury_sessions(db, jury.id, [404])

        assert AssignmentManager.get_jury_session_ids(db, jury.id) == [a.id]

    def test_session_jury_in_membership_order(self, db, factory):
        session = factory.session()
        jury_a, jury_b = factory.jury(), factory.jury()
        AssignmentManager.assign_jury_to_session(db, jury_b.id, session.id)
        AssignmentManager.assign_jury_to_session(db, jury_a.id, session.id)

        assert [j.id for j in AssignmentManager.get_session_jury(db, session.id)] == [jury_b.id, jury_a.id]

    def test_end_frees_jury_but_keeps_other_memberships(self, db, factory):
        ending, other = factory.session(started=True), factory.session()
        jury = factory.jury()
        factory.membership(jury, other)
        factory.membership(jury, ending)

        SessionManager.end_session(db, ending.id)

        db.refresh(jury)
        assert jury.session_id == other.id
        assert AssignmentManager.get_jury_session_ids(db, jury.id) == [other.id]


class TestReassign:

    def test_reassign(self, db, factory):
        jury_a, jury_b = factory.jury(), factory.jury()
        team_1 = factory.team(jury_id=jury_a.id)
        team_2 = factory.team()

        result = AssignmentManager.reassign_teams(db, {team_1.id: jury_b.id, team_2.id: jury_a.id})

        assert result == {team_1.id: jury_b.id, team_2.id: jury_a.id}
        db.refresh(team_1)
        assert team_1.jury_id == jury_b.id

    def test_reassign_accepts_pairs_and_clears(self, db, factory):
        jury = factory.jury()
        team = factory.team(jury_id=jury.id)

        AssignmentManager.reassign_teams(db, [(team.id, None)])

        db.refresh(team)
        assert team.jury_id is None

    def test_reassign_is_all_or_nothing(self, db, factory):
        jury = factory.jury()
        team = factory.team()

        with pytest.raises(NotFoundError):
            AssignmentManager.reassign_teams(db, {team.id: jury.id, 404: jury.id})
        with pytest.raises(NotFoundError):
            AssignmentManager.reassign_teams(db, {team.id: 404})

        db.refresh(team)
        assert team.jury_id is None

    @pytest.mark.parametrize("assignments", [{"abc": 1}, {1: "x"}, [1, 2]])
    def test_reassign_rejects_malformed_ids(self, db, assignments):
        with pytest.raises(ValidationError):
            AssignmentManager.reassign_teams(db, assignments)

    def test_teams_for_jury_session(self, db, factory):
        session = factory.session()
        jury, outsider = factory.jury(), factory.jury()
        factory.membership(jury, session)
        team = factory.team(jury_id=jury.id)
        factory.team(jury_id=outsider.id)

        assert [t.id for t in AssignmentManager.get_teams_for_jury_session(db, jury.id, session.id)] == [team.id]
        assert AssignmentManager.get_teams_for_jury_session(db, outsider.id, session.id) == []


class TestShuffle:

    def _setup(self, factory, n_teams, n_jury):
        session = factory.session()
        jury = [factory.jury() for _ in range(n_jury)]
        for member in jury:
            factory.membership(member, session)
        teams = [factory.team() for _ in range(n_teams)]
        return session, jury, teams

    def test_every_team_assigned_fairly(self, db, factory):
        session, jury, teams = self._setup(factory, n_teams=10, n_jury=3)

        result = AssignmentManager.shuffle_teams_in_session(db, session.id, random.Random(7))

        assert sorted(result) == sorted(t.id for t in teams)
        counts = Counter(result.values())
        assert sorted(counts.values()) == [3, 3, 4]
        assert set(counts) == {j.id for j in jury}
        for team in db.query(Team).all():
            assert team.jury_id == result[team.id]

    def test_seeded_shuffle_is_reproducible(self, db, factory):
        session, _, _ = self._setup(factory, n_teams=6, n_jury=2)

        first = AssignmentManager.shuffle_teams_in_session(db, session.id, random.Random(1))
        second = AssignmentManager.shuffle_teams_in_session(db, session.id, random.Random(1))

        assert first == second

    def test_logs_event_with_distribution(self, db, factory):
        session, jury, teams = self._setup(factory, n_teams=2, n_jury=1)

        AssignmentManager.shuffle_teams_in_session(db, session.id)

        event = db.query(EventLog).filter(EventLog.event_type == "TEAMS_SHUFFLED").one()
        assert event.data["teams"] == 2
        assert event.data["jury"] == 1
        assert sorted(event.data["distribution"][str(jury[0].id)]) == sorted(t.id for t in teams)

    def test_no_jury(self, db, factory):
        session = factory.session()
        factory.team()
        with pytest.raises(InvalidState):
            AssignmentManager.shuffle_teams_in_session(db, session.id)

    def test_no_teams(self, db, factory):
        session = factory.session()
        factory.membership(factory.jury(), session)
        with pytest.raises(InvalidState):
            AssignmentManager.shuffle_teams_in_session(db, session.id)

    def test_ended_session(self, db, factory):
        session = factory.session(ended=True)
        factory.membership(factory.jury(), session)
        factory.team()
        with pytest.raises(InvalidState):
            AssignmentManager.shuffle_teams_in_session(db, session.id)
        assert all(t.jury_id is None for t in db.query(Team).all())

    def test_missing_session(self, db):
        with pytest.raises(NotFoundError):
            AssignmentManager.shuffle_teams_in_session(db, 404)
