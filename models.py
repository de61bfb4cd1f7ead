"""
ORM 資料模型

Session 的執行狀態不直接儲存，而是由 started_at / ended_at 推導（見 core.state_machine）。
評審與場次的關係以 jury_sessions 關聯表為準，Jury.session_id 只是由它重算出來的投影
（見 core.assignment_manager）。
"""
from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, enum.Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


class EvaluationSession(Base):
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    is_draft = Column(Boolean, nullable=False, default=False)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    memberships = relationship("JurySession", back_populates="session")

    __table_args__ = (
        CheckConstraint(
            "ended_at IS NULL OR started_at IS NOT NULL",
            name="ck_sessions_ended_after_started"
        ),
    )

    @property
    def state(self) -> SessionState:
        if self.ended_at is not None:
            return SessionState.ENDED
        if self.started_at is not None:
            return SessionState.ACTIVE
        return SessionState.PENDING

    def __repr__(self):
        return f"<EvaluationSession {self.id} {self.name!r} {self.state.value}>"


class Jury(Base):
    __tablename__ = "jury"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    phone_number = Column(String(20), nullable=False)
    # jury_sessions 的投影，不可單獨寫入
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    memberships = relationship("JurySession", back_populates="jury")

    @property
    def is_free(self) -> bool:
        return self.session_id is None


class JurySession(Base):
    __tablename__ = "jury_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    jury_id = Column(Integer, ForeignKey("jury.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    jury = relationship("Jury", back_populates="memberships")
    session = relationship("EvaluationSession", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("jury_id", "session_id", name="uq_jury_sessions_pair"),
    )


class Participant(Base):
    __tablename__ = "participants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    institution = Column(String(255), nullable=False)
    phone_number = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Team(Base):
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_name = Column(String(255), nullable=False)
    leader_id = Column(Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False, unique=True)
    venue = Column(String(255), nullable=True)
    # 目前的指派；評審評分後清空
    jury_id = Column(Integer, ForeignKey("jury.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    leader = relationship("Participant")
    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan")


class TeamMember(Base):
    __tablename__ = "team_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    member_id = Column(Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    team = relationship("Team", back_populates="members")
    member = relationship("Participant")

    __table_args__ = (
        UniqueConstraint("team_id", "member_id", name="uq_team_members_pair"),
    )


class Mark(Base):
    __tablename__ = "marks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False)
    jury_id = Column(Integer, ForeignKey("jury.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    feasibility_score = Column(Integer, nullable=False, default=-1)
    tech_implementation_score = Column(Integer, nullable=False, default=-1)
    innovation_creativity_score = Column(Integer, nullable=False, default=-1)
    problem_relevance_score = Column(Integer, nullable=False, default=-1)
    submitted = Column(Boolean, nullable=False, default=False)
    locked = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    team = relationship("Team")
    jury = relationship("Jury")
    session = relationship("EvaluationSession")

    # 防止並發重複評分的最終防線
    __table_args__ = (
        UniqueConstraint("team_id", "jury_id", "session_id", name="uq_marks_team_jury_session"),
    )

    SCORE_FIELDS = (
        "feasibility_score",
        "tech_implementation_score",
        "innovation_creativity_score",
        "problem_relevance_score",
    )

    @property
    def scores(self) -> dict:
        return {field: getattr(self, field) for field in self.SCORE_FIELDS}

    @property
    def total(self) -> int:
        return sum(v for v in self.scores.values() if v is not None and v >= 0)


class SessionDraft(Base):
    """每個草稿場次最多一份自動儲存快照（後寫入者為準）"""
    __tablename__ = "session_drafts"

    draft_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), primary_key=True)
    name = Column(String(255), nullable=False)
    jury_ids = Column(JSON, nullable=False, default=list)
    # {team_id: jury_id}；JSON 的 key 讀回來會是字串
    team_assignments = Column(JSON, nullable=False, default=dict)
    saved_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class EventLog(Base):
    __tablename__ = "event_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=True)
    event_type = Column(String(64), nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
