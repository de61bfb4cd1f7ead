"""
批次鎖定操作

兩個單調且冪等的操作：
- lock_all_marks_for_session：鎖定場次內所有現有評分（場次結束時），不會建立評分
- lock_all_marks_for_jury_in_session：評審的「全部送出」，
  尚未評分的隊伍會建立一筆直接鎖定的零分評分

每筆評分是獨立的工作單元並各自 commit，失敗的那一筆不會復原之前已鎖定的評分。
失敗會收集在回傳的 BulkLockSummary 中，而不是拋出異常。
"""
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models import EvaluationSession, EventLog, Jury, Mark, Team
from core.exceptions import MarkingEngineException, NotFoundError, RelationError
from database import Settings
from services.score_service import zero_scores

logger = logging.getLogger(__name__)


@dataclass
class BulkLockSummary:
    locked_count: int = 0
    created_count: int = 0
    already_locked_count: int = 0
    failed: List[int] = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def success(self) -> bool:
        return not self.failed

    @property
    def message(self) -> str:
        text = f"Locked {self.locked_count} marks"
        if self.created_count:
            text += f" ({self.created_count} created with zero scores)"
        if self.already_locked_count:
            text += f", {self.already_locked_count} already locked"
        if self.failed:
            text += f", {self.failed_count} failed"
        return text

    def as_dict(self) -> dict:
        return {
            "success": self.success,
            "message": self.message,
            "locked_count": self.locked_count,
            "failed_count": self.failed_count,
            "created_count": self.created_count,
            "already_locked_count": self.already_locked_count,
            "failed_ids": list(self.failed),
        }


def _lock_unit(db: Session, mark_id: int) -> bool:
    """
    原地鎖定一筆評分

    返回：
        這次呼叫有改變旗標時為 True，原本就已鎖定時為 False
    """
    updated = db.query(Mark).filter(
        Mark.id == mark_id,
        Mark.locked == False
    ).update({Mark.locked: True}, synchronize_session="fetch")
    return bool(updated)


def _create_locked_unit(db: Session, team_id: int, jury_id: int, session_id: int, settings: Optional[Settings]) -> Mark:
    team = db.query(Team).filter(Team.id == team_id).first()
    if not team:
        raise RelationError(f"Team {team_id} does not exist")

    mark = Mark(
        team_id=team_id,
        jury_id=jury_id,
        session_id=session_id,
        submitted=True,
        locked=True,
        **zero_scores(settings)
    )
    db.add(mark)
    if team.jury_id == jury_id:
        team.jury_id = None
    db.flush()
    return mark


def _record_summary(db: Session, session_id: int, event_type: str, data: dict) -> None:
    db.add(EventLog(session_id=session_id, event_type=event_type, data=data))
    db.commit()


def _require(db: Session, model, entity: str, entity_id: int):
    obj = db.query(model).filter(model.id == entity_id).first()
    if not obj:
        raise NotFoundError(entity, entity_id)
    return obj


def lock_all_marks_for_session(db: Session, session_id: int) -> BulkLockSummary:
    """
    鎖定場次內所有評分（不分評審）

    異常：
        NotFoundError: 場次不存在（在任何寫入之前檢查）

    返回：
        BulkLockSummary，個別評分的失敗只回報、不拋出
    """
    _require(db, EvaluationSession, "Session", session_id)

    summary = BulkLockSummary()
    rows = db.query(Mark.id, Mark.locked).filter(
        Mark.session_id == session_id
    ).order_by(Mark.id).all()

    for mark_id, locked in rows:
        if locked:
            summary.already_locked_count += 1
            continue
        try:
            if _lock_unit(db, mark_id):
                summary.locked_count += 1
            else:
                summary.already_locked_count += 1
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            summary.failed.append(mark_id)
            logger.warning(f"Failed to lock mark {mark_id} in session {session_id}: {e}")

    try:
        _record_summary(db, session_id, "SESSION_MARKS_LOCKED", summary.as_dict())
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Failed to record lock summary for session {session_id}: {e}")

    logger.info(f"Session {session_id}: {summary.message}")
    return summary


def lock_all_marks_for_jury_in_session(
    db: Session,
    jury_id: int,
    session_id: int,
    team_ids: Iterable[int],
    settings: Optional[Settings] = None
) -> BulkLockSummary:
    """
    評審「全部送出」：鎖定此評審在此場次對每個隊伍的評分

    每個隊伍：
    - 尚無評分：    建立最低分評分，已送出且已鎖定
    - 未鎖定評分：  原地鎖定（保留分數）
    - 已鎖定評分：  不做任何事

    不可復原：尚未評分的隊伍會變成零分

    異常：
        NotFoundError: 評審或場次不存在（在任何寫入之前檢查）

    返回：
        BulkLockSummary，failed 為無法處理的隊伍 id
    """
    _require(db, Jury, "Jury", jury_id)
    _require(db, EvaluationSession, "Session", session_id)

    summary = BulkLockSummary()
    for team_id in dict.fromkeys(team_ids):
        try:
            mark = db.query(Mark).filter(
                Mark.team_id == team_id,
                Mark.jury_id == jury_id,
                Mark.session_id == session_id
            ).first()

            if mark is None:
                try:
                    _create_locked_unit(db, team_id, jury_id, session_id, settings)
                    db.commit()
                    summary.created_count += 1
                    summary.locked_count += 1
                    continue
                except IntegrityError:
                    # 與 submit_mark 競爭失敗：改為鎖定對方建立的評分
                    db.rollback()
                    mark = db.query(Mark).filter(
                        Mark.team_id == team_id,
                        Mark.jury_id == jury_id,
                        Mark.session_id == session_id
                    ).first()
                    if mark is None:
                        raise

            if _lock_unit(db, mark.id):
                summary.locked_count += 1
            else:
                summary.already_locked_count += 1
            db.commit()
        except (SQLAlchemyError, MarkingEngineException) as e:
            db.rollback()
            summary.failed.append(team_id)
            logger.warning(
                f"Failed to lock team {team_id} for jury {jury_id} in session {session_id}: {e}"
            )

    try:
        _record_summary(db, session_id, "JURY_MARKS_LOCKED", {"jury_id": jury_id, **summary.as_dict()})
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(f"Failed to record lock summary for jury {jury_id} in session {session_id}: {e}")

    logger.info(f"Jury {jury_id} in session {session_id}: {summary.message}")
    return summary
