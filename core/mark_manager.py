"""
Mark Manager：單筆評分的生命週期

    (不存在) --submit_mark--> 已送出、未鎖定 --update_mark--> (不變)
    已送出、未鎖定 --lock_mark / 批次鎖定--> 已送出、已鎖定  [終態]

保護機制：
- 每組 (team, jury, session) 只有一筆評分：先查詢再加上唯一約束，
  並發時以唯一約束為準
- 已鎖定的評分永不改變：update_mark 在 UPDATE 語句內再次檢查 `locked`，
  不只是在寫入前檢查
"""
from typing import List, Mapping, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from models import EvaluationSession, Jury, Mark, Team
from core.locks import with_mark_lock
from core.exceptions import (
    DuplicateMark,
    LockedError,
    NotFoundError,
    RelationError
)
from database import Settings, transactional
from services.score_service import validate_scores

logger = logging.getLogger(__name__)


def _find_mark(db: Session, team_id: int, jury_id: int, session_id: int) -> Optional[Mark]:
    return db.query(Mark).filter(
        Mark.team_id == team_id,
        Mark.jury_id == jury_id,
        Mark.session_id == session_id
    ).first()


class MarkManager:
    """單筆評分操作"""

    @staticmethod
    @transactional
    def submit_mark(
        db: Session,
        team_id: int,
        jury_id: int,
        session_id: int,
        scores: Mapping[str, int],
        settings: Optional[Settings] = None
    ) -> Mark:
        """
        建立評審在某場次對某隊伍的評分

        流程：
        1. 驗證分數（在任何寫入之前）
        2. 檢查隊伍、評審、場次是否存在
        3. 已有評分則拒絕
        4. 以 submitted=True、locked=False 寫入
        5. 釋放隊伍：team.jury_id = None

        異常：
            ValidationError: 分數不合法
            RelationError: 隊伍、評審或場次不存在
            DuplicateMark: 已有評分（請改用 update_mark）
        """
        validated = validate_scores(scores, settings)

        team = db.query(Team).filter(Team.id == team_id).first()
        if not team:
            raise RelationError(f"Team {team_id} does not exist")
        if not db.query(Jury).filter(Jury.id == jury_id).first():
            raise RelationError(f"Jury {jury_id} does not exist")
        if not db.query(EvaluationSession).filter(EvaluationSession.id == session_id).first():
            raise RelationError(f"Session {session_id} does not exist")

        if _find_mark(db, team_id, jury_id, session_id):
            raise DuplicateMark(team_id, jury_id, session_id)

        mark = Mark(
            team_id=team_id,
            jury_id=jury_id,
            session_id=session_id,
            submitted=True,
            locked=False,
            **validated
        )
        db.add(mark)
        try:
            db.flush()
        except IntegrityError:
            # 查詢與寫入之間，另一個請求寫入了同一組評分
            db.rollback()
            raise DuplicateMark(team_id, jury_id, session_id)

        team.jury_id = None
        db.flush()

        logger.info(
            f"Mark {mark.id} submitted: team={team_id} jury={jury_id} session={session_id}"
        )
        return mark

    @staticmethod
    @transactional
    def update_mark(
        db: Session,
        mark_id: int,
        scores: Mapping[str, int],
        settings: Optional[Settings] = None
    ) -> Mark:
        """
        覆寫未鎖定評分中有提供的分數欄位

        異常：
            ValidationError: 分數不合法
            NotFoundError: 評分不存在
            LockedError: 評分已鎖定
        """
        validated = validate_scores(scores, settings, partial=True)

        updated = db.query(Mark).filter(
            Mark.id == mark_id,
            Mark.locked == False
        ).update(
            {getattr(Mark, field): value for field, value in validated.items()},
            synchronize_session="fetch"
        )

        if not updated:
            mark = db.query(Mark).filter(Mark.id == mark_id).first()
            if not mark:
                raise NotFoundError("Mark", mark_id)
            logger.warning(f"Rejected update of locked mark {mark_id}")
            raise LockedError(mark_id)

        mark = db.query(Mark).filter(Mark.id == mark_id).one()
        db.refresh(mark)
        return mark

    @staticmethod
    @transactional
    def lock_mark(db: Session, mark_id: Optional[int]) -> Mark:
        """
        鎖定一筆評分（冪等，重複鎖定不做任何事）

        異常：
            NotFoundError: 未提供 mark id 或評分不存在
        """
        if mark_id is None:
            raise NotFoundError("Mark", mark_id)

        mark = with_mark_lock(mark_id, db).first()
        if not mark:
            raise NotFoundError("Mark", mark_id)

        if not mark.locked:
            mark.locked = True
            db.flush()
            logger.info(f"Mark {mark_id} locked")
        return mark

    @staticmethod
    @transactional
    def delete_mark(db: Session, mark_id: int) -> None:
        """
        刪除未鎖定的評分

        異常：
            NotFoundError: 評分不存在
            LockedError: 評分已鎖定
        """
        mark = with_mark_lock(mark_id, db).first()
        if not mark:
            raise NotFoundError("Mark", mark_id)
        if mark.locked:
            raise LockedError(mark_id)
        db.delete(mark)

    @staticmethod
    def get_mark(db: Session, team_id: int, jury_id: int, session_id: int) -> Optional[Mark]:
        """單筆查詢，None 表示隊伍尚未被評分"""
        return _find_mark(db, team_id, jury_id, session_id)

    @staticmethod
    def get_mark_by_id(db: Session, mark_id: int) -> Mark:
        mark = db.query(Mark).filter(Mark.id == mark_id).first()
        if not mark:
            raise NotFoundError("Mark", mark_id)
        return mark

    @staticmethod
    def list_marks(
        db: Session,
        session_id: Optional[int] = None,
        jury_id: Optional[int] = None,
        team_id: Optional[int] = None
    ) -> List[Mark]:
        query = db.query(Mark)
        if session_id is not None:
            query = query.filter(Mark.session_id == session_id)
        if jury_id is not None:
            query = query.filter(Mark.jury_id == jury_id)
        if team_id is not None:
            query = query.filter(Mark.team_id == team_id)
        return query.order_by(Mark.id).all()
