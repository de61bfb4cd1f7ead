"""
Roster API Endpoints

職責：
1. 參賽者、評審、隊伍與隊員的 CRUD
2. 下拉選單用的 id/name 查詢（有 cache）
"""
from typing import List
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from schemas import (
    JuryCreate,
    JuryResponse,
    JuryUpdate,
    LookupItem,
    ParticipantCreate,
    ParticipantResponse,
    ParticipantUpdate,
    TeamCreate,
    TeamMemberAdd,
    TeamResponse,
    TeamUpdate,
)
from core.roster_manager import RosterManager
from core.exceptions import MarkingEngineException
from api.responses import get_lookup_cache, http_error
from services.lookup_cache import TTLCache

router = APIRouter(prefix="/api", tags=["roster"])
logger = logging.getLogger(__name__)


# ============ 參賽者 ============

@router.post("/participants", response_model=ParticipantResponse)
def create_participant(
    data: ParticipantCreate,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_lookup_cache)
):
    try:
        return RosterManager.create_participant(
            db, data.name, data.email, data.institution, data.phone_number, cache=cache
        )
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to create participant: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/participants", response_model=List[ParticipantResponse])
def list_participants(db: Session = Depends(get_db)):
    return RosterManager.list_participants(db)


@router.patch("/participants/{participant_id}", response_model=ParticipantResponse)
def update_participant(
    participant_id: int,
    data: ParticipantUpdate,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_lookup_cache)
):
    try:
        return RosterManager.update_participant(
            db, participant_id,
            name=data.name, institution=data.institution, phone_number=data.phone_number,
            cache=cache
        )
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to update participant {participant_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/participants/{participant_id}")
def delete_participant(
    participant_id: int,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_lookup_cache)
):
    try:
        RosterManager.delete_participant(db, participant_id, cache=cache)
        return {"success": True}
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to delete participant {participant_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


# ============ 評審 ============

@router.post("/jury", response_model=JuryResponse)
def create_jury(data: JuryCreate, db: Session = Depends(get_db)):
    try:
        return RosterManager.create_jury(db, data.name, data.email, data.phone_number)
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to create jury: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/jury", response_model=List[JuryResponse])
def list_jury(free_only: bool = False, db: Session = Depends(get_db)):
    return RosterManager.list_jury(db, free_only=free_only)


@router.get("/jury/{jury_id}", response_model=JuryResponse)
def get_jury(jury_id: int, db: Session = Depends(get_db)):
    try:
        return RosterManager.get_jury(db, jury_id)
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to get jury {jury_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.patch("/jury/{jury_id}", response_model=JuryResponse)
def update_jury(jury_id: int, data: JuryUpdate, db: Session = Depends(get_db)):
    try:
        return RosterManager.update_jury(db, jury_id, name=data.name, phone_number=data.phone_number)
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to update jury {jury_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/jury/{jury_id}")
def delete_jury(jury_id: int, db: Session = Depends(get_db)):
    try:
        RosterManager.delete_jury(db, jury_id)
        return {"success": True}
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to delete jury {jury_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


# ============ 隊伍 ============

@router.post("/teams", response_model=TeamResponse)
def create_team(
    data: TeamCreate,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_lookup_cache)
):
    try:
        return RosterManager.create_team(
            db, data.team_name, data.leader_id,
            venue=data.venue, member_ids=data.member_ids, cache=cache
        )
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to create team: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/teams", response_model=List[TeamResponse])
def list_teams(db: Session = Depends(get_db)):
    return RosterManager.list_teams(db)


@router.patch("/teams/{team_id}", response_model=TeamResponse)
def update_team(
    team_id: int,
    data: TeamUpdate,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_lookup_cache)
):
    try:
        return RosterManager.update_team(db, team_id, team_name=data.team_name, venue=data.venue, cache=cache)
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to update team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/teams/{team_id}")
def delete_team(
    team_id: int,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_lookup_cache)
):
    try:
        RosterManager.delete_team(db, team_id, cache=cache)
        return {"success": True}
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to delete team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/teams/{team_id}/members", response_model=List[int])
def get_team_members(team_id: int, db: Session = Depends(get_db)):
    try:
        return RosterManager.get_team_member_ids(db, team_id)
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to list members of team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/teams/{team_id}/members", response_model=List[int])
def add_team_member(team_id: int, data: TeamMemberAdd, db: Session = Depends(get_db)):
    try:
        RosterManager.add_team_member(db, team_id, data.member_id)
        return RosterManager.get_team_member_ids(db, team_id)
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to add member to team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/teams/{team_id}/members/{member_id}", response_model=List[int])
def remove_team_member(team_id: int, member_id: int, db: Session = Depends(get_db)):
    try:
        RosterManager.remove_team_member(db, team_id, member_id)
        return RosterManager.get_team_member_ids(db, team_id)
    except MarkingEngineException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to remove member from team {team_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


# ============ 下拉選單查詢 ============

@router.get("/lookups/teams", response_model=List[LookupItem])
def teams_lookup(db: Session = Depends(get_db), cache: TTLCache = Depends(get_lookup_cache)):
    return RosterManager.teams_lookup(db, cache)


@router.get("/lookups/participants", response_model=List[LookupItem])
def participants_lookup(db: Session = Depends(get_db), cache: TTLCache = Depends(get_lookup_cache)):
    return RosterManager.participants_lookup(db, cache)


@router.get("/lookups/sessions", response_model=List[LookupItem])
def sessions_lookup(db: Session = Depends(get_db), cache: TTLCache = Depends(get_lookup_cache)):
    return RosterManager.sessions_lookup(db, cache)
