"""
共用 fixtures：每個測試一個 in-memory SQLite、資料工廠、API client
"""
import itertools

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
from main import app
from models import (
    EvaluationSession,
    Jury,
    JurySession,
    Mark,
    Participant,
    Team,
    utcnow,
)
from services.lookup_cache import TTLCache


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class Factory:
    """以合理的預設值建立並 commit 資料"""

    def __init__(self, db):
        self.db = db
        self._seq = itertools.count(1)

    def _save(self, obj):
        self.db.add(obj)
        self.db.commit()
        self.db.refresh(obj)
        return obj

    def participant(self, **kwargs) -> Participant:
        n = next(self._seq)
        fields = {
            "name": f"Participant {n}",
            "email": f"participant{n}@example.com",
            "institution": "Test Institute",
            "phone_number": "+15550000001",
        }
        fields.update(kwargs)
        return self._save(Participant(**fields))

    def team(self, leader: Participant = None, **kwargs) -> Team:
        n = next(self._seq)
        leader = leader or self.participant()
        fields = {"team_name": f"Team {n}", "leader_id": leader.id}
        fields.update(kwargs)
        return self._save(Team(**fields))

    def jury(self, **kwargs) -> Jury:
        n = next(self._seq)
        fields = {
            "name": f"Jury {n}",
            "email": f"jury{n}@example.com",
            "phone_number": "+15550000002",
        }
        fields.update(kwargs)
        return self._save(Jury(**fields))

    def session(self, name: str = None, started: bool = False, ended: bool = False,
                draft: bool = False) -> EvaluationSession:
        n = next(self._seq)
        session = EvaluationSession(name=name or f"Session {n}", is_draft=draft)
        if started or ended:
            session.started_at = utcnow()
        if ended:
            session.ended_at = utcnow()
        return self._save(session)

    def membership(self, jury: Jury, session: EvaluationSession) -> JurySession:
        return self._save(JurySession(jury_id=jury.id, session_id=session.id))

    def mark(self, team: Team, jury: Jury, session: EvaluationSession,
             score: int = 5, locked: bool = False) -> Mark:
        return self._save(Mark(
            team_id=team.id,
            jury_id=jury.id,
            session_id=session.id,
            feasibility_score=score,
            tech_implementation_score=score,
            innovation_creativity_score=score,
            problem_relevance_score=score,
            submitted=True,
            locked=locked
        ))


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def scores():
    return {
        "feasibility_score": 2,
        "tech_implementation_score": 2,
        "innovation_creativity_score": 2,
        "problem_relevance_score": 2,
    }


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.lookup_cache = TTLCache(300)
    yield TestClient(app)
    app.dependency_overrides.clear()
