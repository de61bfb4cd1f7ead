"""
Assignment Manager：評審 <-> 場次關係，以及隊伍 -> 評審指派

職責：
1. 維護 jury_sessions 關聯表（評審與場次關係的唯一依據）
2. 每次異動後重算舊有的 Jury.session_id 投影
3. 套用隊伍重新指派與洗牌分配
"""
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union
import logging
import random

from sqlalchemy.orm import Session

from models import EvaluationSession, EventLog, Jury, JurySession, Team
from core.exceptions import InvalidState, NotFoundError, ValidationError
from services.distribution_service import distribute_teams, group_by_jury, shuffled
from database import transactional

logger = logging.getLogger(__name__)

Assignments = Union[Mapping[int, Optional[int]], Iterable[Tuple[int, Optional[int]]]]


def _get_jury(db: Session, jury_id: int) -> Jury:
    jury = db.query(Jury).filter(Jury.id == jury_id).first()
    if not jury:
        raise NotFoundError("Jury", jury_id)
    return jury


def _get_session(db: Session, session_id: int) -> EvaluationSession:
    session = db.query(EvaluationSession).filter(EvaluationSession.id == session_id).first()
    if not session:
        raise NotFoundError("Session", session_id)
    return session


class AssignmentManager:
    """評審關係與分配管理器"""

    # ---------- 評審 <-> 場次 ----------

    @staticmethod
    def sync_current_session(db: Session, jury_id: int) -> Optional[int]:
        """
        由關聯表重算 Jury.session_id

        規則：最近加入且尚未結束的場次，沒有的話為 None（評審空閒）
        """
        latest = (
            db.query(JurySession.session_id)
            .join(EvaluationSession, JurySession.session_id == EvaluationSession.id)
            .filter(
                JurySession.jury_id == jury_id,
                EvaluationSession.ended_at.is_(None)
            )
            .order_by(JurySession.id.desc())
            .first()
        )
        current = latest[0] if latest else None
        db.query(Jury).filter(Jury.id == jury_id).update(
            {Jury.session_id: current}, synchronize_session="fetch"
        )
        return current

    @staticmethod
    def add_membership(db: Session, jury_id: int, session_id: int) -> JurySession:
        """冪等寫入關聯表，不 commit"""
        _get_jury(db, jury_id)
        _get_session(db, session_id)

        membership = db.query(JurySession).filter(
            JurySession.jury_id == jury_id,
            JurySession.session_id == session_id
        ).first()
        if membership:
            return membership

        membership = JurySession(jury_id=jury_id, session_id=session_id)
        db.add(membership)
        db.flush()
        AssignmentManager.sync_current_session(db, jury_id)
        logger.info(f"Jury {jury_id} joined session {session_id}")
        return membership

    @staticmethod
    def remove_membership(db: Session, jury_id: int, session_id: int) -> bool:
        """冪等刪除關聯，不 commit，評分不受影響"""
        removed = db.query(JurySession).filter(
            JurySession.jury_id == jury_id,
            JurySession.session_id == session_id
        ).delete(synchronize_session="fetch")
        db.flush()
        AssignmentManager.sync_current_session(db, jury_id)
        if removed:
            logger.info(f"Jury {jury_id} left session {session_id}")
        return bool(removed)

    @staticmethod
    def detach_all_jury(db: Session, session_id: int) -> List[int]:
        """移除場次的所有評審關係並釋放評審，不 commit"""
        jury_ids = AssignmentManager.get_session_jury_ids(db, session_id)
        for jury_id in jury_ids:
            AssignmentManager.remove_membership(db, jury_id, session_id)
        return jury_ids

    @staticmethod
    @transactional
    def assign_jury_to_session(db: Session, jury_id: int, session_id: int) -> JurySession:
        """
        將評審加入場次（冪等）

        異常：
            NotFoundError: 評審或場次不存在
        """
        return AssignmentManager.add_membership(db, jury_id, session_id)

    @staticmethod
    @transactional
    def remove_jury_from_session(db: Session, jury_id: int, session_id: int) -> bool:
        """
        將評審移出場次（冪等）

        返回：
            真的有移除關係時為 True
        """
        return AssignmentManager.remove_membership(db, jury_id, session_id)

    @staticmethod
    @transactional
    def set_jury_sessions(db: Session, jury_id: int, session_ids: Iterable[int]) -> List[int]:
        """
        整批取代一位評審參與的場次

        異常：
            NotFoundError: 評審或任一場次不存在
        """
        _get_jury(db, jury_id)
        wanted = list(dict.fromkeys(session_ids))
        for session_id in wanted:
            _get_session(db, session_id)

        current = set(AssignmentManager.get_jury_session_ids(db, jury_id))
        for session_id in current - set(wanted):
            AssignmentManager.remove_membership(db, jury_id, session_id)
        for session_id in wanted:
            if session_id not in current:
                AssignmentManager.add_membership(db, jury_id, session_id)

        return AssignmentManager.get_jury_session_ids(db, jury_id)

    @staticmethod
    def get_jury_session_ids(db: Session, jury_id: int) -> List[int]:
        rows = db.query(JurySession.session_id).filter(
            JurySession.jury_id == jury_id
        ).order_by(JurySession.id).all()
        return [row[0] for row in rows]

    @staticmethod
    def get_session_jury_ids(db: Session, session_id: int) -> List[int]:
        """場次的評審 id，依加入順序排列"""
        rows = db.query(JurySession.jury_id).filter(
            JurySession.session_id == session_id
        ).order_by(JurySession.id).all()
        return [row[0] for row in rows]

    @staticmethod
    def get_session_jury(db: Session, session_id: int) -> List[Jury]:
        _get_session(db, session_id)
        return (
            db.query(Jury)
            .join(JurySession, JurySession.jury_id == Jury.id)
            .filter(JurySession.session_id == session_id)
            .order_by(JurySession.id)
            .all()
        )

    @staticmethod
    def is_member(db: Session, jury_id: int, session_id: int) -> bool:
        return db.query(JurySession).filter(
            JurySession.jury_id == jury_id,
            JurySession.session_id == session_id
        ).count() > 0

    # ---------- 隊伍 -> 評審 ----------

    @staticmethod
    def apply_team_assignments(db: Session, assignments: Assignments) -> Dict[int, Optional[int]]:
        """
        先驗證每一組指派，再一次全部寫入，不 commit

        jury_id 為 None 表示清除隊伍的指派

        異常：
            ValidationError: id 格式錯誤
            NotFoundError: 任一隊伍或評審不存在（不會寫入任何資料）
        """
        try:
            pairs = list(assignments.items()) if isinstance(assignments, Mapping) else list(assignments)
            normalized = [
                (int(team_id), int(jury_id) if jury_id is not None else None)
                for team_id, jury_id in pairs
            ]
        except (TypeError, ValueError):
            raise ValidationError("Team assignments must map team ids to jury ids")

        teams = {}
        for team_id, jury_id in normalized:
            team = db.query(Team).filter(Team.id == team_id).first()
            if not team:
                raise NotFoundError("Team", team_id)
            if jury_id is not None:
                _get_jury(db, jury_id)
            teams[team_id] = team

        result: Dict[int, Optional[int]] = {}
        for team_id, jury_id in normalized:
            teams[team_id].jury_id = jury_id
            result[team_id] = jury_id
        db.flush()
        return result

    @staticmethod
    @transactional
    def reassign_teams(db: Session, assignments: Assignments) -> Dict[int, Optional[int]]:
        """
        批次重新指派隊伍，全部成功或全部不寫入

        參數：
            assignments: {team_id: jury_id} 或 (team_id, jury_id) 的 iterable

        返回：
            實際套用的 {team_id: jury_id}

        異常：
            ValidationError: id 格式錯誤
            NotFoundError: 任一隊伍或評審不存在
        """
        result = AssignmentManager.apply_team_assignments(db, assignments)
        logger.info(f"Reassigned {len(result)} teams")
        return result

    @staticmethod
    @transactional
    def shuffle_teams_in_session(
        db: Session,
        session_id: int,
        rng: Optional[random.Random] = None
    ) -> Dict[int, int]:
        """
        將所有隊伍隨機重新分配給場次的評審

        流程：
        1. 讀取場次評審（依加入順序）與所有隊伍
        2. 隨機排列隊伍（rng 可注入，方便測試）
        3. 輪流分配
        4. 寫入 team.jury_id

        異常：
            NotFoundError: 場次不存在
            InvalidState: 場次已結束、沒有評審或沒有隊伍
        """
        session = _get_session(db, session_id)
        if session.ended_at is not None:
            raise InvalidState(f"Session {session_id} has ended")

        jury_ids = AssignmentManager.get_session_jury_ids(db, session_id)
        if not jury_ids:
            raise InvalidState(f"No jury members found in session {session_id}")

        team_ids = [row[0] for row in db.query(Team.id).order_by(Team.id).all()]
        if not team_ids:
            raise InvalidState("No teams found to shuffle")

        assignments = distribute_teams(shuffled(team_ids, rng), jury_ids)
        AssignmentManager.apply_team_assignments(db, assignments)

        db.add(EventLog(
            session_id=session_id,
            event_type="TEAMS_SHUFFLED",
            data={
                "teams": len(team_ids),
                "jury": len(jury_ids),
                "distribution": {
                    str(jury_id): team_list
                    for jury_id, team_list in group_by_jury(assignments).items()
                }
            }
        ))
        logger.info(
            f"Shuffled {len(team_ids)} teams among {len(jury_ids)} jury in session {session_id}"
        )
        return assignments

    @staticmethod
    def get_teams_for_jury_session(db: Session, jury_id: int, session_id: int) -> List[Team]:
        """
        評審在某場次目前被指派的隊伍

        評審不屬於該場次時回傳空 list
        """
        if not AssignmentManager.is_member(db, jury_id, session_id):
            return []
        return db.query(Team).filter(Team.jury_id == jury_id).order_by(Team.id).all()
