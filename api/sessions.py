"""
Session API Endpoints

職責：
1. 建立、列出、刪除場次
2. 草稿自動儲存與發布
3. 開始 / 結束場次
4. 手動鎖定場次內所有評分
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

import logging

from database import get_db
from schemas import (
    BulkLockResult,
    DraftResponse,
    DraftResult,
    DraftSave,
    PublishRequest,
    SessionCreate,
    SessionResponse,
    SessionResult,
    SessionStats,
)
from core.session_manager import SessionManager
from core.bulk_lock import lock_all_marks_for_session
from core.roster_manager import SESSIONS_LOOKUP
from core.exceptions import MarkingEngineException
from api.responses import failure, get_lookup_cache, http_error
from services.lookup_cache import TTLCache

router = APIRouter(prefix="/api/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)


def _draft_response(snapshot) -> DraftResponse:
    return DraftResponse(
        draft_id=snapshot.draft_id,
        name=snapshot.name,
        jury_ids=snapshot.jury_ids or [],
        team_assignments={int(k): v for k, v in (snapshot.team_assignments or {}).items()},
        saved_at=snapshot.saved_at
    )


@router.get("", response_model=List[SessionResponse])
def list_sessions(include_drafts: bool = True, db: Session = Depends(get_db)):
    return SessionManager.list_sessions(db, include_drafts=include_drafts)


@router.post("", response_model=SessionResult)
def create_session(
    data: SessionCreate,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_lookup_cache)
):
    """
    建立場次（草稿或已發布）

    已發布的場次會在同一個 transaction 內指派評審
    """
    try:
        session = SessionManager.create_session(db, data.name, data.jury_ids, draft=data.draft)
        cache.invalidate(SESSIONS_LOOKUP)
        return SessionResult(success=True, session=SessionResponse.model_validate(session))
    except MarkingEngineException as e:
        return failure(e, SessionResult)
    except Exception as e:
        logger.error(f"Failed to create session: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


# ============ 草稿（必須宣告在 /{session_id} 之前） ============

@router.get("/drafts", response_model=List[DraftResponse])
def list_drafts(db: Session = Depends(get_db)):
    return [_draft_response(d) for d in SessionManager.list_drafts(db)]


@router.post("/drafts", response_model=DraftResult)
def create_draft(data: DraftSave, db: Session = Depends(get_db)):
    """新草稿的自動儲存，會建立草稿場次"""
    try:
        snapshot = SessionManager.save_draft(db, data.name, data.jury_ids, data.team_assignments)
        return DraftResult(success=True, draft=_draft_response(snapshot))
    except MarkingEngineException as e:
        return failure(e, DraftResult)
    except Exception as e:
        logger.error(f"Failed to save draft: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/drafts/{draft_id}", response_model=DraftResult)
def get_draft(draft_id: int, db: Session = Depends(get_db)):
    try:
        return DraftResult(success=True, draft=_draft_response(SessionManager.get_draft(db, draft_id)))
    except MarkingEngineException as e:
        return failure(e, DraftResult)
    except Exception as e:
        logger.error(f"Failed to get draft {draft_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/drafts/{draft_id}", response_model=DraftResult)
def save_draft(draft_id: int, data: DraftSave, db: Session = Depends(get_db)):
    """自動儲存（後寫入者為準）"""
    try:
        snapshot = SessionManager.save_draft(
            db, data.name, data.jury_ids, data.team_assignments, draft_id=draft_id
        )
        return DraftResult(success=True, draft=_draft_response(snapshot))
    except MarkingEngineException as e:
        return failure(e, DraftResult)
    except Exception as e:
        logger.error(f"Failed to save draft {draft_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/drafts/{draft_id}/publish", response_model=SessionResult)
def publish_draft(
    draft_id: int,
    data: Optional[PublishRequest] = None,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_lookup_cache)
):
    """
    發布草稿

    有提供的欄位會覆蓋已儲存的快照，指派與發布旗標一起 commit
    """
    try:
        data = data or PublishRequest()
        session = SessionManager.publish(
            db, draft_id,
            name=data.name,
            jury_ids=data.jury_ids,
            team_assignments=data.team_assignments
        )
        cache.invalidate(SESSIONS_LOOKUP)
        return SessionResult(success=True, session=SessionResponse.model_validate(session))
    except MarkingEngineException as e:
        return failure(e, SessionResult)
    except Exception as e:
        logger.error(f"Failed to publish draft {draft_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


# ============ 單一場次 ============

@router.get("/{session_id}", response_model=SessionResult)
def get_session(session_id: int, db: Session = Depends(get_db)):
    try:
        session = SessionManager.get_session(db, session_id)
        return SessionResult(success=True, session=SessionResponse.model_validate(session))
    except MarkingEngineException as e:
        return failure(e, SessionResult)
    except Exception as e:
        logger.error(f"Failed to get session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{session_id}/stats", response_model=SessionStats)
def get_session_stats(session_id: int, db: Session = Depends(get_db)):
    try:
        return SessionStats(**SessionManager.get_session_stats(db, session_id))
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to get stats of session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/start", response_model=SessionResult)
def start_session(session_id: int, db: Session = Depends(get_db)):
    """PENDING -> ACTIVE"""
    try:
        session = SessionManager.start_session(db, session_id)
        return SessionResult(success=True, session=SessionResponse.model_validate(session))
    except MarkingEngineException as e:
        return failure(e, SessionResult)
    except Exception as e:
        logger.error(f"Failed to start session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/end", response_model=SessionResult)
def end_session(session_id: int, db: Session = Depends(get_db)):
    """
    ACTIVE -> ENDED

    先鎖定所有評分（盡力而為），再結束場次並釋放評審。
    鎖定失敗不會讓請求失敗，會在 lock_summary 中回報。
    """
    try:
        result = SessionManager.end_session(db, session_id)
        return SessionResult(
            success=True,
            session=SessionResponse.model_validate(result.session),
            lock_summary=BulkLockResult(**result.lock_summary.as_dict())
        )
    except MarkingEngineException as e:
        return failure(e, SessionResult)
    except Exception as e:
        logger.error(f"Failed to end session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{session_id}/lock-marks", response_model=BulkLockResult)
def lock_session_marks(session_id: int, db: Session = Depends(get_db)):
    """鎖定場次內所有現有評分，但不結束場次"""
    try:
        return BulkLockResult(**lock_all_marks_for_session(db, session_id).as_dict())
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to lock marks of session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/{session_id}", response_model=SessionResult)
def delete_session(
    session_id: int,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_lookup_cache)
):
    """刪除場次及其評審關係、評分與草稿快照"""
    try:
        SessionManager.delete_session(db, session_id)
        cache.invalidate(SESSIONS_LOOKUP)
        return SessionResult(success=True)
    except MarkingEngineException as e:
        return failure(e, SessionResult)
    except Exception as e:
        logger.error(f"Failed to delete session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
