"""
Mark API Endpoints

職責：
1. 送出 / 修改 / 鎖定 / 刪除單筆評分
2. 單筆查詢與條件列表
3. 評審「全部送出」（批次鎖定並補零分）
"""
from typing import List, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from database import get_db
from models import Mark, Team
from schemas import (
    BulkLockResult,
    JuryLockRequest,
    MarkResponse,
    MarkResult,
    MarkSubmit,
    ScoreUpdate,
)
from core.mark_manager import MarkManager
from core.bulk_lock import lock_all_marks_for_jury_in_session
from core.exceptions import MarkingEngineException
from api.responses import failure, http_error

router = APIRouter(prefix="/api/marks", tags=["marks"])
logger = logging.getLogger(__name__)


def _result(mark: Mark, message: Optional[str] = None) -> MarkResult:
    return MarkResult(success=True, mark=MarkResponse.model_validate(mark), message=message)


@router.post("", response_model=MarkResult)
def submit_mark(data: MarkSubmit, db: Session = Depends(get_db)):
    """
    送出評審在某場次對某隊伍的第一筆評分

    同一組評分再次送出會被拒絕（409），修改未鎖定的評分請用 PATCH
    """
    try:
        mark = MarkManager.submit_mark(db, data.team_id, data.jury_id, data.session_id, data.scores())
        return _result(mark, "Mark submitted")
    except MarkingEngineException as e:
        return failure(e, MarkResult, field="message")
    except Exception as e:
        logger.error(f"Failed to submit mark: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("", response_model=List[MarkResponse])
def list_marks(
    session_id: Optional[int] = None,
    jury_id: Optional[int] = None,
    team_id: Optional[int] = None,
    db: Session = Depends(get_db)
):
    return MarkManager.list_marks(db, session_id=session_id, jury_id=jury_id, team_id=team_id)


@router.get("/lookup", response_model=MarkResult)
def get_mark(
    team_id: int = Query(...),
    jury_id: int = Query(...),
    session_id: int = Query(...),
    db: Session = Depends(get_db)
):
    """查無評分不是錯誤：隊伍尚未被評分時 mark 為 null"""
    mark = MarkManager.get_mark(db, team_id, jury_id, session_id)
    if mark is None:
        return MarkResult(success=True, mark=None, message="Not marked yet")
    return _result(mark)


@router.patch("/{mark_id}", response_model=MarkResult)
def update_mark(mark_id: int, data: ScoreUpdate, db: Session = Depends(get_db)):
    """覆寫未鎖定評分的分數欄位（已鎖定時回 409）"""
    try:
        mark = MarkManager.update_mark(db, mark_id, data.given())
        return _result(mark, "Mark updated")
    except MarkingEngineException as e:
        return failure(e, MarkResult, field="message")
    except Exception as e:
        logger.error(f"Failed to update mark {mark_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{mark_id}/lock", response_model=MarkResult)
def lock_mark(mark_id: int, db: Session = Depends(get_db)):
    """鎖定單筆評分（冪等）"""
    try:
        return _result(MarkManager.lock_mark(db, mark_id), "Mark locked")
    except MarkingEngineException as e:
        return failure(e, MarkResult, field="message")
    except Exception as e:
        logger.error(f"Failed to lock mark {mark_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/{mark_id}", response_model=MarkResult)
def delete_mark(mark_id: int, db: Session = Depends(get_db)):
    try:
        MarkManager.delete_mark(db, mark_id)
        return MarkResult(success=True, message="Mark deleted")
    except MarkingEngineException as e:
        return failure(e, MarkResult, field="message")
    except Exception as e:
        logger.error(f"Failed to delete mark {mark_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/sessions/{session_id}/jury/{jury_id}/submit-all", response_model=BulkLockResult)
def submit_all(
    session_id: int,
    jury_id: int,
    data: JuryLockRequest,
    db: Session = Depends(get_db)
):
    """
    評審「全部送出」：鎖定評審在此場次的所有評分

    沒有評分的隊伍會建立最低分評分。此操作不可復原，client 必須送出 confirm=true。

    未提供 team_ids 時，使用評審目前被指派的隊伍，加上在此場次已評分的隊伍。
    """
    if not data.confirm:
        return JSONResponse(status_code=400, content=BulkLockResult(
            success=False,
            message="Submitting all marks is irreversible; resend with confirm=true",
            locked_count=0,
            failed_count=0
        ).model_dump())

    try:
        team_ids = data.team_ids
        if team_ids is None:
            assigned = [row[0] for row in db.query(Team.id).filter(Team.jury_id == jury_id).all()]
            marked = [m.team_id for m in MarkManager.list_marks(db, session_id=session_id, jury_id=jury_id)]
            team_ids = sorted(set(assigned) | set(marked))

        summary = lock_all_marks_for_jury_in_session(db, jury_id, session_id, team_ids)
        return BulkLockResult(**summary.as_dict())
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to submit all marks for jury {jury_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
