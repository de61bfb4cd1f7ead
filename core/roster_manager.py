"""
Roster Manager：參賽者、評審、隊伍與隊員

這裡維護的規則：
- 參賽者與評審的 email 不可重複
- 每個隊伍恰好一位隊長，每位參賽者最多擔任一個隊伍的隊長
- 隊長不能同時是自己隊伍的一般隊員
- (team, member) 組合不可重複
"""
from typing import Iterable, List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import EvaluationSession, Jury, JurySession, Mark, Participant, Team, TeamMember
from core.exceptions import NotFoundError, RelationError, ValidationError
from database import transactional
from schemas import JuryCreate, JuryUpdate, ParticipantCreate, ParticipantUpdate, TeamCreate, parse_input
from services.lookup_cache import TTLCache

logger = logging.getLogger(__name__)

TEAMS_LOOKUP = "teams"
PARTICIPANTS_LOOKUP = "participants"
SESSIONS_LOOKUP = "sessions"


def _invalidate(cache: Optional[TTLCache], key: str) -> None:
    if cache is not None:
        cache.invalidate(key)


def _get(db: Session, model, entity: str, entity_id: int):
    obj = db.query(model).filter(model.id == entity_id).first()
    if not obj:
        raise NotFoundError(entity, entity_id)
    return obj


def _flush_unique(db: Session, message: str) -> None:
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise ValidationError(message)


class RosterManager:
    """非場次實體的 CRUD 與關聯規則"""

    # ---------- 參賽者 ----------

    @staticmethod
    @transactional
    def create_participant(
        db: Session,
        name: str,
        email: str,
        institution: str,
        phone_number: str,
        cache: Optional[TTLCache] = None
    ) -> Participant:
        data = parse_input(ParticipantCreate, {
            "name": name, "email": email,
            "institution": institution, "phone_number": phone_number
        })
        if db.query(Participant).filter(Participant.email == data.email).first():
            raise ValidationError(f"Participant email {data.email} already registered")

        participant = Participant(**data.model_dump())
        db.add(participant)
        _flush_unique(db, f"Participant email {data.email} already registered")
        _invalidate(cache, PARTICIPANTS_LOOKUP)
        return participant

    @staticmethod
    @transactional
    def update_participant(
        db: Session,
        participant_id: int,
        name: Optional[str] = None,
        institution: Optional[str] = None,
        phone_number: Optional[str] = None,
        cache: Optional[TTLCache] = None
    ) -> Participant:
        """Email 是身分識別，不能修改"""
        data = parse_input(ParticipantUpdate, {
            "name": name, "institution": institution, "phone_number": phone_number
        })
        participant = _get(db, Participant, "Participant", participant_id)
        for field, value in data.model_dump(exclude_none=True).items():
            cleaned = value.strip()
            if len(cleaned) < 2:
                raise ValidationError(f"{field} must be at least 2 characters long")
            setattr(participant, field, cleaned)
        db.flush()
        _invalidate(cache, PARTICIPANTS_LOOKUP)
        return participant

    @staticmethod
    @transactional
    def delete_participant(db: Session, participant_id: int, cache: Optional[TTLCache] = None) -> None:
        """刪除隊長會一併刪除其隊伍（以及隊伍的評分）"""
        participant = _get(db, Participant, "Participant", participant_id)

        led = db.query(Team).filter(Team.leader_id == participant_id).first()
        if led:
            RosterManager._remove_team(db, led)
        db.query(TeamMember).filter(TeamMember.member_id == participant_id).delete(
            synchronize_session="fetch"
        )
        db.delete(participant)
        _invalidate(cache, PARTICIPANTS_LOOKUP)
        _invalidate(cache, TEAMS_LOOKUP)

    @staticmethod
    def list_participants(db: Session) -> List[Participant]:
        return db.query(Participant).order_by(Participant.id).all()

    # ---------- 評審 ----------

    @staticmethod
    @transactional
    def create_jury(db: Session, name: str, email: str, phone_number: str) -> Jury:
        data = parse_input(JuryCreate, {"name": name, "email": email, "phone_number": phone_number})
        if db.query(Jury).filter(Jury.email == data.email).first():
            raise ValidationError(f"Jury email {data.email} already registered")

        jury = Jury(name=data.name.strip(), email=data.email, phone_number=data.phone_number)
        db.add(jury)
        _flush_unique(db, f"Jury email {data.email} already registered")
        return jury

    @staticmethod
    @transactional
    def update_jury(
        db: Session,
        jury_id: int,
        name: Optional[str] = None,
        phone_number: Optional[str] = None
    ) -> Jury:
        data = parse_input(JuryUpdate, {"name": name, "phone_number": phone_number})
        jury = _get(db, Jury, "Jury", jury_id)
        if data.name is not None:
            jury.name = data.name.strip()
        if data.phone_number is not None:
            jury.phone_number = data.phone_number
        db.flush()
        return jury

    @staticmethod
    @transactional
    def delete_jury(db: Session, jury_id: int) -> None:
        """刪除評審的評分與場次關係，並取消其隊伍指派"""
        jury = _get(db, Jury, "Jury", jury_id)

        db.query(Mark).filter(Mark.jury_id == jury_id).delete(synchronize_session="fetch")
        db.query(JurySession).filter(JurySession.jury_id == jury_id).delete(synchronize_session="fetch")
        db.query(Team).filter(Team.jury_id == jury_id).update(
            {Team.jury_id: None}, synchronize_session="fetch"
        )
        db.delete(jury)
        logger.info(f"Deleted jury {jury_id}")

    @staticmethod
    def get_jury(db: Session, jury_id: int) -> Jury:
        return _get(db, Jury, "Jury", jury_id)

    @staticmethod
    def list_jury(db: Session, free_only: bool = False) -> List[Jury]:
        query = db.query(Jury)
        if free_only:
            query = query.filter(Jury.session_id.is_(None))
        return query.order_by(Jury.id).all()

    # ---------- 隊伍 ----------

    @staticmethod
    @transactional
    def create_team(
        db: Session,
        team_name: str,
        leader_id: int,
        venue: Optional[str] = None,
        member_ids: Iterable[int] = (),
        cache: Optional[TTLCache] = None
    ) -> Team:
        """
        建立隊伍（含隊長與選填的一般隊員）

        異常：
            ValidationError: 輸入格式錯誤
            RelationError: 隊長不存在或已是其他隊伍隊長、隊員不存在、
                或隊長被列為隊員
        """
        data = parse_input(TeamCreate, {
            "team_name": team_name, "leader_id": leader_id,
            "venue": venue, "member_ids": list(member_ids)
        })

        if not db.query(Participant).filter(Participant.id == data.leader_id).first():
            raise RelationError(f"Leader {data.leader_id} does not exist")
        if db.query(Team).filter(Team.leader_id == data.leader_id).first():
            raise RelationError(f"Participant {data.leader_id} already leads a team")

        team = Team(team_name=data.team_name.strip(), leader_id=data.leader_id, venue=data.venue)
        db.add(team)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            raise RelationError(f"Participant {data.leader_id} already leads a team")

        for member_id in dict.fromkeys(data.member_ids):
            RosterManager._add_member(db, team, member_id)

        _invalidate(cache, TEAMS_LOOKUP)
        logger.info(f"Created team {team.id} ({team.team_name})")
        return team

    @staticmethod
    @transactional
    def update_team(
        db: Session,
        team_id: int,
        team_name: Optional[str] = None,
        venue: Optional[str] = None,
        cache: Optional[TTLCache] = None
    ) -> Team:
        team = _get(db, Team, "Team", team_id)
        if team_name is not None:
            cleaned = team_name.strip()
            if not 3 <= len(cleaned) <= 100:
                raise ValidationError("Team name must be between 3 and 100 characters")
            team.team_name = cleaned
        if venue is not None:
            team.venue = venue.strip() or None
        db.flush()
        _invalidate(cache, TEAMS_LOOKUP)
        return team

    @staticmethod
    def _remove_team(db: Session, team: Team) -> None:
        db.query(Mark).filter(Mark.team_id == team.id).delete(synchronize_session="fetch")
        db.query(TeamMember).filter(TeamMember.team_id == team.id).delete(synchronize_session="fetch")
        db.delete(team)
        db.flush()

    @staticmethod
    @transactional
    def delete_team(db: Session, team_id: int, cache: Optional[TTLCache] = None) -> None:
        team = _get(db, Team, "Team", team_id)
        RosterManager._remove_team(db, team)
        _invalidate(cache, TEAMS_LOOKUP)
        logger.info(f"Deleted team {team_id}")

    @staticmethod
    def get_team(db: Session, team_id: int) -> Team:
        return _get(db, Team, "Team", team_id)

    @staticmethod
    def list_teams(db: Session) -> List[Team]:
        return db.query(Team).order_by(Team.id).all()

    # ---------- 隊員 ----------

    @staticmethod
    def _add_member(db: Session, team: Team, member_id: int) -> TeamMember:
        if not db.query(Participant).filter(Participant.id == member_id).first():
            raise RelationError(f"Participant {member_id} does not exist")
        if team.leader_id == member_id:
            raise RelationError(f"Participant {member_id} leads team {team.id} and cannot also be a member")
        if db.query(TeamMember).filter(
            TeamMember.team_id == team.id,
            TeamMember.member_id == member_id
        ).first():
            raise RelationError(f"Participant {member_id} is already a member of team {team.id}")

        membership = TeamMember(team_id=team.id, member_id=member_id)
        db.add(membership)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            raise RelationError(f"Participant {member_id} is already a member of team {team.id}")
        return membership

    @staticmethod
    @transactional
    def add_team_member(db: Session, team_id: int, member_id: int) -> TeamMember:
        """
        異常：
            NotFoundError: 隊伍不存在
            RelationError: 參賽者不存在、已是隊員，或是該隊隊長
        """
        team = _get(db, Team, "Team", team_id)
        return RosterManager._add_member(db, team, member_id)

    @staticmethod
    @transactional
    def remove_team_member(db: Session, team_id: int, member_id: int) -> bool:
        removed = db.query(TeamMember).filter(
            TeamMember.team_id == team_id,
            TeamMember.member_id == member_id
        ).delete(synchronize_session="fetch")
        return bool(removed)

    @staticmethod
    def get_team_member_ids(db: Session, team_id: int) -> List[int]:
        _get(db, Team, "Team", team_id)
        rows = db.query(TeamMember.member_id).filter(
            TeamMember.team_id == team_id
        ).order_by(TeamMember.id).all()
        return [row[0] for row in rows]

    # ---------- 下拉選單查詢 ----------

    @staticmethod
    def teams_lookup(db: Session, cache: TTLCache) -> List[dict]:
        return cache.get_or_load(TEAMS_LOOKUP, lambda: [
            {"id": team_id, "name": name}
            for team_id, name in db.query(Team.id, Team.team_name).order_by(Team.team_name).all()
        ])

    @staticmethod
    def participants_lookup(db: Session, cache: TTLCache) -> List[dict]:
        return cache.get_or_load(PARTICIPANTS_LOOKUP, lambda: [
            {"id": participant_id, "name": name}
            for participant_id, name in db.query(Participant.id, Participant.name).order_by(Participant.name).all()
        ])

    @staticmethod
    def sessions_lookup(db: Session, cache: TTLCache) -> List[dict]:
        return cache.get_or_load(SESSIONS_LOOKUP, lambda: [
            {"id": session_id, "name": name}
            for session_id, name in db.query(EvaluationSession.id, EvaluationSession.name)
            .order_by(EvaluationSession.id).all()
        ])
