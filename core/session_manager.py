"""
Session Manager：管理評分場次的完整生命週期

職責：
1. 建立場次（草稿或已發布）
2. 草稿自動儲存與發布
3. 開始 / 結束（經過 SessionStateMachine）
4. 刪除並連帶清理

結束場次的規則：先鎖定所有評分（盡力而為，失敗會回報在結果中），
再結束場次，最後解除所有評審的指派，讓他們可以參加下一個場次。
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import (
    EvaluationSession,
    EventLog,
    Jury,
    JurySession,
    Mark,
    SessionDraft,
    SessionState,
    Team,
    utcnow,
)
from core.state_machine import SessionStateMachine
from core.locks import with_session_lock
from core.assignment_manager import AssignmentManager
from core.bulk_lock import BulkLockSummary, lock_all_marks_for_session
from core.exceptions import InvalidState, NotFoundError, ValidationError
from database import transactional

logger = logging.getLogger(__name__)


@dataclass
class EndSessionResult:
    session: EvaluationSession
    lock_summary: BulkLockSummary
    detached_jury_ids: List[int]


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if len(cleaned) < 2:
        raise ValidationError("Session name should be at least 2 characters long")
    if len(cleaned) > 255:
        raise ValidationError("Session name can not be longer than 255 characters")
    return cleaned


def _clean_team_assignments(team_assignments: Optional[Mapping]) -> Dict[str, Optional[int]]:
    if not team_assignments:
        return {}
    try:
        return {
            str(int(team_id)): int(jury_id) if jury_id is not None else None
            for team_id, jury_id in team_assignments.items()
        }
    except (TypeError, ValueError):
        raise ValidationError("Team assignments must map team ids to jury ids")


def _clean_jury_ids(jury_ids: Optional[Iterable]) -> List[int]:
    if jury_ids is None:
        return []
    if isinstance(jury_ids, (str, bytes)):
        raise ValidationError("Jury ids must be a list of integers")
    try:
        return list(dict.fromkeys(int(jury_id) for jury_id in jury_ids))
    except (TypeError, ValueError):
        raise ValidationError("Jury ids must be a list of integers")


class SessionManager:
    """評分場次生命週期管理器"""

    @staticmethod
    def get_session(db: Session, session_id: int) -> EvaluationSession:
        session = db.query(EvaluationSession).filter(EvaluationSession.id == session_id).first()
        if not session:
            raise NotFoundError("Session", session_id)
        return session

    @staticmethod
    def list_sessions(db: Session, include_drafts: bool = True) -> List[EvaluationSession]:
        query = db.query(EvaluationSession)
        if not include_drafts:
            query = query.filter(EvaluationSession.is_draft == False)
        return query.order_by(EvaluationSession.created_at, EvaluationSession.id).all()

    @staticmethod
    @transactional
    def create_session(
        db: Session,
        name: str,
        jury_ids: Iterable[int] = (),
        draft: bool = False
    ) -> EvaluationSession:
        """
        建立場次

        已發布的場次會在同一個 transaction 內指派評審。
        草稿場次只記錄名稱，評審選擇交給 save_draft / publish。

        異常：
            ValidationError: 名稱或評審 id 格式錯誤
            NotFoundError: 評審 id 不存在
        """
        cleaned_name = _clean_name(name)
        jury_list = _clean_jury_ids(jury_ids)

        session = EvaluationSession(
            name=cleaned_name,
            is_draft=draft,
            published_at=None if draft else utcnow()
        )
        db.add(session)
        db.flush()

        if draft:
            db.add(SessionDraft(draft_id=session.id, name=session.name, jury_ids=jury_list, team_assignments={}))
        else:
            for jury_id in jury_list:
                AssignmentManager.add_membership(db, jury_id, session.id)

        db.add(EventLog(
            session_id=session.id,
            event_type="SESSION_CREATED",
            data={"name": session.name, "draft": draft}
        ))
        logger.info(f"Created {'draft ' if draft else ''}session {session.id} ({session.name})")
        return session

    @staticmethod
    @transactional
    def save_draft(
        db: Session,
        name: str,
        jury_ids: Iterable[int] = (),
        team_assignments: Optional[Mapping] = None,
        draft_id: Optional[int] = None
    ) -> SessionDraft:
        """
        自動儲存草稿設定（upsert，後寫入者為準）

        沒有 draft_id 時會先建立新的草稿場次。
        這裡不檢查 id 是否存在，publish 時才驗證。

        異常：
            NotFoundError: draft_id 不存在
            InvalidState: draft_id 是已發布的場次
            ValidationError: 名稱、評審 id 或指派表格式錯誤
        """
        cleaned_name = _clean_name(name)
        cleaned_assignments = _clean_team_assignments(team_assignments)
        jury_list = _clean_jury_ids(jury_ids)

        if draft_id is None:
            session = EvaluationSession(name=cleaned_name, is_draft=True)
            db.add(session)
            db.flush()
        else:
            session = with_session_lock(draft_id, db).first()
            if not session:
                raise NotFoundError("Session", draft_id)
            if not session.is_draft:
                raise InvalidState(f"Session {draft_id} is already published")
            session.name = cleaned_name

        snapshot = db.query(SessionDraft).filter(SessionDraft.draft_id == session.id).first()
        if snapshot is None:
            snapshot = SessionDraft(draft_id=session.id)
            db.add(snapshot)
        snapshot.name = cleaned_name
        snapshot.jury_ids = jury_list
        snapshot.team_assignments = cleaned_assignments
        snapshot.saved_at = utcnow()
        db.flush()

        logger.info(f"Saved draft {session.id} ({len(jury_list)} jury, {len(cleaned_assignments)} teams)")
        return snapshot

    @staticmethod
    def get_draft(db: Session, draft_id: int) -> SessionDraft:
        snapshot = db.query(SessionDraft).filter(SessionDraft.draft_id == draft_id).first()
        if not snapshot:
            raise NotFoundError("Draft", draft_id)
        return snapshot

    @staticmethod
    def list_drafts(db: Session) -> List[SessionDraft]:
        return db.query(SessionDraft).order_by(SessionDraft.saved_at.desc()).all()

    @staticmethod
    @transactional
    def publish(
        db: Session,
        draft_id: int,
        name: Optional[str] = None,
        jury_ids: Optional[Iterable[int]] = None,
        team_assignments: Optional[Mapping] = None
    ) -> EvaluationSession:
        """
        將草稿發布為正式場次

        評審與隊伍指派（優先使用參數，否則使用已儲存的快照）與發布旗標
        在同一個 transaction 內寫入，任何無效的 id 都會讓整個發布失敗。

        異常：
            ValidationError: 名稱、評審 id 或指派表格式錯誤
            NotFoundError: 草稿、評審或隊伍不存在
            InvalidState: 場次不是草稿
        """
        cleaned_name = _clean_name(name) if name is not None else None
        explicit_jury = _clean_jury_ids(jury_ids) if jury_ids is not None else None
        explicit_assignments = (
            _clean_team_assignments(team_assignments) if team_assignments is not None else None
        )

        session = with_session_lock(draft_id, db).first()
        if not session:
            raise NotFoundError("Session", draft_id)
        if not session.is_draft:
            raise InvalidState(f"Session {draft_id} is already published")

        snapshot = db.query(SessionDraft).filter(SessionDraft.draft_id == draft_id).first()
        if cleaned_name is not None:
            session.name = cleaned_name
        elif snapshot is not None:
            session.name = snapshot.name

        if explicit_jury is not None:
            jury_list = explicit_jury
        else:
            jury_list = _clean_jury_ids(snapshot.jury_ids if snapshot else None)
        if explicit_assignments is not None:
            team_assignments = explicit_assignments
        else:
            team_assignments = _clean_team_assignments(snapshot.team_assignments if snapshot else None)

        for jury_id in jury_list:
            AssignmentManager.add_membership(db, jury_id, draft_id)
        AssignmentManager.apply_team_assignments(db, team_assignments)

        session.is_draft = False
        session.published_at = utcnow()
        if snapshot is not None:
            db.delete(snapshot)

        db.add(EventLog(
            session_id=draft_id,
            event_type="SESSION_PUBLISHED",
            data={
                "jury": len(AssignmentManager.get_session_jury_ids(db, draft_id)),
                "teams": len(team_assignments)
            }
        ))
        db.flush()
        logger.info(f"Published session {draft_id}")
        return session

    @staticmethod
    @transactional
    def start_session(db: Session, session_id: int) -> EvaluationSession:
        """
        PENDING -> ACTIVE

        異常：
            NotFoundError: 場次不存在
            InvalidState: 已開始 / 已結束，或仍是草稿
        """
        return SessionStateMachine.transition(session_id, SessionState.ACTIVE, db)

    @staticmethod
    def end_session(db: Session, session_id: int) -> EndSessionResult:
        """
        ACTIVE -> ENDED

        流程：
        1. 檢查是否允許轉換（不允許就不寫入任何資料）
        2. 鎖定場次內所有評分（盡力而為，每筆評分各自 commit）
        3. 寫入 ended_at
        4. 解除所有評審與此場次的關係

        步驟 3-4 一起 commit。步驟 2 的鎖定失敗不會阻止場次結束，
        會放在 EndSessionResult.lock_summary 回報。

        異常：
            NotFoundError: 場次不存在
            InvalidState: 場次尚未開始或已結束
        """
        session = SessionManager.get_session(db, session_id)
        if not SessionStateMachine.can_transition(session.state, SessionState.ENDED):
            raise InvalidState(
                f"Session {session_id} cannot go from {session.state.value} to {SessionState.ENDED.value}"
            )

        lock_summary = lock_all_marks_for_session(db, session_id)
        if not lock_summary.success:
            logger.warning(
                f"Ending session {session_id} with {lock_summary.failed_count} unlocked marks: "
                f"{lock_summary.failed}"
            )

        try:
            session = SessionStateMachine.transition(session_id, SessionState.ENDED, db)
            detached = AssignmentManager.detach_all_jury(db, session_id)
            db.commit()
        except Exception as e:
            logger.error(f"Failed to end session {session_id}: {e}", exc_info=True)
            db.rollback()
            raise

        logger.info(f"Session {session_id} ended, {len(detached)} jury detached")
        return EndSessionResult(session=session, lock_summary=lock_summary, detached_jury_ids=detached)

    @staticmethod
    @transactional
    def delete_session(db: Session, session_id: int) -> None:
        """
        刪除場次以及所有相關資料

        順序：評審關係（重算評審投影）、評分、草稿快照、事件紀錄、場次

        異常：
            NotFoundError: 場次不存在
        """
        session = with_session_lock(session_id, db).first()
        if not session:
            raise NotFoundError("Session", session_id)

        AssignmentManager.detach_all_jury(db, session_id)
        # 投影若與關聯表不一致，可能仍指向此場次
        db.query(Jury).filter(Jury.session_id == session_id).update(
            {Jury.session_id: None}, synchronize_session="fetch"
        )
        deleted_marks = db.query(Mark).filter(Mark.session_id == session_id).delete(synchronize_session="fetch")
        db.query(SessionDraft).filter(SessionDraft.draft_id == session_id).delete(synchronize_session="fetch")
        db.query(EventLog).filter(EventLog.session_id == session_id).delete(synchronize_session="fetch")
        db.delete(session)

        logger.info(f"Deleted session {session_id} and {deleted_marks} marks")

    @staticmethod
    def get_session_stats(db: Session, session_id: int) -> dict:
        """場次統計：評審數、隊伍數、各狀態的評分數"""
        session = SessionManager.get_session(db, session_id)

        def count_marks(*conditions) -> int:
            return db.query(func.count(Mark.id)).filter(
                Mark.session_id == session_id, *conditions
            ).scalar() or 0

        return {
            "session_id": session_id,
            "state": session.state.value,
            "is_draft": session.is_draft,
            "total_jury": db.query(func.count(JurySession.id)).filter(
                JurySession.session_id == session_id
            ).scalar() or 0,
            "total_teams": db.query(func.count(Team.id)).scalar() or 0,
            "total_marks": count_marks(),
            "submitted_marks": count_marks(Mark.submitted == True),
            "locked_marks": count_marks(Mark.locked == True),
        }
