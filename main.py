from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from database import Base, engine, settings
from api import assignments, marks, roster, sessions
from services.lookup_cache import TTLCache

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料庫表與共用的 lookup cache
    Base.metadata.create_all(bind=engine)
    app.state.lookup_cache = TTLCache(settings.lookup_cache_ttl_seconds)
    yield


app = FastAPI(
    title="Jury Marks API",
    description="Evaluation session lifecycle and marking engine for competition juries",
    version="1.0.0",
    lifespan=lifespan
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure this properly in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(sessions.router)
app.include_router(assignments.router)
app.include_router(marks.router)
app.include_router(roster.router)


@app.get("/")
def root():
    return {"message": "Jury Marks API", "status": "ok"}


@app.get("/health")
def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
