"""
Pydantic schemas：請求資料、回應模型與結果物件
"""
from datetime import datetime
from typing import Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from core.exceptions import ValidationError
from services.score_service import check_score

PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_input(model: Type[ModelT], data: dict) -> ModelT:
    """以 `model` 驗證 dict，失敗時拋出引擎的 ValidationError"""
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(messages)


# ============ 分數 ============

class ScoreInput(BaseModel):
    """完整分數；未提供的維度維持未評分（-1）"""
    model_config = ConfigDict(extra="forbid", strict=True)

    feasibility_score: int = -1
    tech_implementation_score: int = -1
    innovation_creativity_score: int = -1
    problem_relevance_score: int = -1

    @field_validator(
        "feasibility_score",
        "tech_implementation_score",
        "innovation_creativity_score",
        "problem_relevance_score"
    )
    @classmethod
    def score_in_range(cls, v, info):
        try:
            return check_score(info.field_name, v)
        except ValidationError as e:
            raise ValueError(str(e))


class ScoreUpdate(BaseModel):
    """update_mark 用的部分分數"""
    model_config = ConfigDict(extra="forbid", strict=True)

    feasibility_score: Optional[int] = None
    tech_implementation_score: Optional[int] = None
    innovation_creativity_score: Optional[int] = None
    problem_relevance_score: Optional[int] = None

    @field_validator(
        "feasibility_score",
        "tech_implementation_score",
        "innovation_creativity_score",
        "problem_relevance_score"
    )
    @classmethod
    def score_in_range(cls, v, info):
        if v is None:
            return v
        try:
            return check_score(info.field_name, v)
        except ValidationError as e:
            raise ValueError(str(e))

    def given(self) -> Dict[str, int]:
        return self.model_dump(exclude_none=True)


class MarkSubmit(ScoreInput):
    team_id: int = Field(..., gt=0)
    jury_id: int = Field(..., gt=0)
    session_id: int = Field(..., gt=0)

    def scores(self) -> Dict[str, int]:
        return self.model_dump(exclude={"team_id", "jury_id", "session_id"})


class MarkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    team_id: int
    jury_id: int
    session_id: int
    feasibility_score: int
    tech_implementation_score: int
    innovation_creativity_score: int
    problem_relevance_score: int
    total: int
    submitted: bool
    locked: bool


class MarkResult(BaseModel):
    success: bool
    mark: Optional[MarkResponse] = None
    message: Optional[str] = None


class JuryLockRequest(BaseModel):
    # None：該評審在此場次被指派或已評分的所有隊伍
    team_ids: Optional[List[int]] = None
    confirm: bool = Field(False, description="Must be true: unevaluated teams are zero-scored")


class BulkLockResult(BaseModel):
    success: bool
    message: str
    locked_count: int
    failed_count: int
    created_count: int = 0
    already_locked_count: int = 0
    failed_ids: List[int] = []


# ============ 場次 ============

class SessionCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    jury_ids: List[int] = []
    draft: bool = False


class DraftSave(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    jury_ids: List[int] = []
    team_assignments: Dict[int, Optional[int]] = {}


class PublishRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    jury_ids: Optional[List[int]] = None
    team_assignments: Optional[Dict[int, Optional[int]]] = None


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    state: str
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    is_draft: bool
    published_at: Optional[datetime] = None

    @field_validator("state", mode="before")
    @classmethod
    def state_value(cls, v):
        return getattr(v, "value", v)


class SessionResult(BaseModel):
    success: bool
    session: Optional[SessionResponse] = None
    error: Optional[str] = None
    lock_summary: Optional[BulkLockResult] = None


class DraftResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    draft_id: int
    name: str
    jury_ids: List[int]
    team_assignments: Dict[int, Optional[int]]
    saved_at: datetime


class DraftResult(BaseModel):
    success: bool
    draft: Optional[DraftResponse] = None
    error: Optional[str] = None


class SessionStats(BaseModel):
    session_id: int
    state: str
    is_draft: bool
    total_jury: int
    total_teams: int
    total_marks: int
    submitted_marks: int
    locked_marks: int


# ============ 指派 ============

class JuryAssignment(BaseModel):
    jury_id: int = Field(..., gt=0)


class JurySessionsUpdate(BaseModel):
    session_ids: List[int] = []


class TeamReassign(BaseModel):
    assignments: Dict[int, Optional[int]]


class ShuffleRequest(BaseModel):
    seed: Optional[int] = None


class AssignmentResult(BaseModel):
    success: bool
    assignments: Dict[int, Optional[int]] = {}
    error: Optional[str] = None


class MembershipResult(BaseModel):
    success: bool
    jury_id: Optional[int] = None
    session_ids: List[int] = []
    error: Optional[str] = None


# ============ 名冊 ============

class ParticipantCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    institution: str = Field(..., min_length=2, max_length=255)
    phone_number: str = Field(..., pattern=PHONE_PATTERN)

    @field_validator("name", "institution")
    @classmethod
    def strip_text(cls, v):
        cleaned = v.strip()
        if len(cleaned) < 2:
            raise ValueError("must be at least 2 characters long")
        return cleaned


class ParticipantUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    institution: Optional[str] = Field(None, min_length=2, max_length=255)
    phone_number: Optional[str] = Field(None, pattern=PHONE_PATTERN)


class JuryCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    email: str = Field(..., pattern=EMAIL_PATTERN, max_length=255)
    phone_number: str = Field(..., pattern=PHONE_PATTERN)


class JuryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    phone_number: Optional[str] = Field(None, pattern=PHONE_PATTERN)


class TeamCreate(BaseModel):
    team_name: str = Field(..., min_length=3, max_length=100)
    leader_id: int = Field(..., gt=0)
    venue: Optional[str] = Field(None, max_length=255)
    member_ids: List[int] = []


class TeamUpdate(BaseModel):
    team_name: Optional[str] = None
    venue: Optional[str] = Field(None, max_length=255)


class TeamMemberAdd(BaseModel):
    member_id: int = Field(..., gt=0)


class ParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    institution: str
    phone_number: str


class JuryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    phone_number: str
    session_id: Optional[int] = None
    is_free: bool


class TeamResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    team_name: str
    leader_id: int
    venue: Optional[str] = None
    jury_id: Optional[int] = None


class LookupItem(BaseModel):
    id: int
    name: str
