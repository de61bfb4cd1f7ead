"""
Assignment API Endpoints

職責：
1. 評審 <-> 場次關係
2. 隊伍重新指派與洗牌
3. 查詢評審在某場次目前被指派的隊伍
"""
from typing import List, Optional
import logging
import random

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from schemas import (
    AssignmentResult,
    JuryAssignment,
    JuryResponse,
    JurySessionsUpdate,
    MembershipResult,
    ShuffleRequest,
    TeamReassign,
    TeamResponse,
)
from core.assignment_manager import AssignmentManager
from core.exceptions import MarkingEngineException
from api.responses import failure, http_error

router = APIRouter(prefix="/api", tags=["assignments"])
logger = logging.getLogger(__name__)


@router.get("/sessions/{session_id}/jury", response_model=List[JuryResponse])
def get_session_jury(session_id: int, db: Session = Depends(get_db)):
    try:
        return AssignmentManager.get_session_jury(db, session_id)
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to list jury of session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/sessions/{session_id}/jury", response_model=MembershipResult)
def assign_jury(session_id: int, data: JuryAssignment, db: Session = Depends(get_db)):
    """將評審加入場次（冪等）"""
    try:
        AssignmentManager.assign_jury_to_session(db, data.jury_id, session_id)
        return MembershipResult(
            success=True,
            jury_id=data.jury_id,
            session_ids=AssignmentManager.get_jury_session_ids(db, data.jury_id)
        )
    except MarkingEngineException as e:
        return failure(e, MembershipResult)
    except Exception as e:
        logger.error(f"Failed to assign jury {data.jury_id} to session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/sessions/{session_id}/jury/{jury_id}", response_model=MembershipResult)
def remove_jury(session_id: int, jury_id: int, db: Session = Depends(get_db)):
    """將評審移出場次（冪等，保留評分）"""
    try:
        AssignmentManager.remove_jury_from_session(db, jury_id, session_id)
        return MembershipResult(
            success=True,
            jury_id=jury_id,
            session_ids=AssignmentManager.get_jury_session_ids(db, jury_id)
        )
    except Exception as e:
        logger.error(f"Failed to remove jury {jury_id} from session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/jury/{jury_id}/sessions", response_model=MembershipResult)
def get_jury_sessions(jury_id: int, db: Session = Depends(get_db)):
    return MembershipResult(
        success=True,
        jury_id=jury_id,
        session_ids=AssignmentManager.get_jury_session_ids(db, jury_id)
    )


@router.put("/jury/{jury_id}/sessions", response_model=MembershipResult)
def set_jury_sessions(jury_id: int, data: JurySessionsUpdate, db: Session = Depends(get_db)):
    """整批取代評審參與的場次"""
    try:
        session_ids = AssignmentManager.set_jury_sessions(db, jury_id, data.session_ids)
        return MembershipResult(success=True, jury_id=jury_id, session_ids=session_ids)
    except MarkingEngineException as e:
        return failure(e, MembershipResult)
    except Exception as e:
        logger.error(f"Failed to update sessions of jury {jury_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/teams/reassign", response_model=AssignmentResult)
def reassign_teams(data: TeamReassign, db: Session = Depends(get_db)):
    """套用隊伍 -> 評審的重新指派，全部成功或全部不寫入"""
    try:
        assignments = AssignmentManager.reassign_teams(db, data.assignments)
        return AssignmentResult(success=True, assignments=assignments)
    except MarkingEngineException as e:
        return failure(e, AssignmentResult)
    except Exception as e:
        logger.error(f"Failed to reassign teams: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/sessions/{session_id}/shuffle", response_model=AssignmentResult)
def shuffle_teams(
    session_id: int,
    data: Optional[ShuffleRequest] = None,
    db: Session = Depends(get_db)
):
    """
    將所有隊伍隨機分配給場次的評審

    可選的 seed 讓洗牌結果可重現
    """
    try:
        seed = data.seed if data else None
        rng = random.Random(seed) if seed is not None else None
        assignments = AssignmentManager.shuffle_teams_in_session(db, session_id, rng=rng)
        return AssignmentResult(success=True, assignments=assignments)
    except MarkingEngineException as e:
        return failure(e, AssignmentResult)
    except Exception as e:
        logger.error(f"Failed to shuffle teams in session {session_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/sessions/{session_id}/jury/{jury_id}/teams", response_model=List[TeamResponse])
def get_teams_for_jury(session_id: int, jury_id: int, db: Session = Depends(get_db)):
    """評審在此場次還需要評分的隊伍"""
    return AssignmentManager.get_teams_for_jury_session(db, jury_id, session_id)
