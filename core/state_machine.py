"""
場次狀態機

狀態由兩個時間戳推導（見 EvaluationSession.state）：
    PENDING  started_at 為 None
    ACTIVE   started_at 已設定，ended_at 為 None
    ENDED    ended_at 已設定

只能往前轉換：PENDING -> ACTIVE -> ENDED
草稿場次尚在編輯中，不能開始
"""
from datetime import datetime
from typing import Optional
import logging

from sqlalchemy.orm import Session

from models import EvaluationSession, EventLog, SessionState, utcnow
from core.locks import with_session_lock
from core.exceptions import NotFoundError, InvalidState

logger = logging.getLogger(__name__)


class SessionStateMachine:
    TRANSITIONS = {
        SessionState.PENDING: {SessionState.ACTIVE},
        SessionState.ACTIVE: {SessionState.ENDED},
        SessionState.ENDED: set(),
    }

    @classmethod
    def can_transition(cls, current: SessionState, target: SessionState) -> bool:
        return target in cls.TRANSITIONS[current]

    @classmethod
    def transition(
        cls,
        session_id: int,
        target: SessionState,
        db: Session,
        at: Optional[datetime] = None
    ) -> EvaluationSession:
        """
        將場次轉換到 `target`，並寫入對應的時間戳

        不會 commit，由呼叫端負責 transaction

        異常：
            NotFoundError: 場次不存在
            InvalidState: 目前狀態不允許此轉換，或場次仍是草稿
        """
        session = with_session_lock(session_id, db).first()
        if not session:
            raise NotFoundError("Session", session_id)

        current = session.state
        if not cls.can_transition(current, target):
            raise InvalidState(
                f"Session {session_id} cannot go from {current.value} to {target.value}"
            )
        if session.is_draft:
            raise InvalidState(f"Session {session_id} is a draft and must be published first")

        at = at or utcnow()
        if target == SessionState.ACTIVE:
            session.started_at = at
        else:
            session.ended_at = at

        db.add(EventLog(
            session_id=session_id,
            event_type="SESSION_STATE_CHANGED",
            data={"from": current.value, "to": target.value}
        ))
        db.flush()

        logger.info(f"Session {session_id}: {current.value} -> {target.value}")
        return session
