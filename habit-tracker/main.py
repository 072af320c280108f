import logging
import os
from datetime import datetime
from typing import Optional

from jose import JWTError, jwt
from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings
from sqlmodel import Session, SQLModel, create_engine, select
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Receive, Scope, Send

from models import Frequency, Habit, HabitCompletion, HabitType
from progress import calculate_progress, summarize

# --- Configuration ---

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:////data/habits.db")
JWT_SECRET = os.environ["JWT_SECRET"]
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost").split(",") if h.strip()]

logging.basicConfig(level=LOG_LEVEL)
logger = logging.getLogger(__name__)

# --- Database setup ---

engine = create_engine(DATABASE_URL, echo=False)


def init_db():
    SQLModel.metadata.create_all(engine)


# --- MCP server ---

# Host allow-list comes from ALLOWED_HOSTS; the service sits behind a reverse proxy
_security = TransportSecuritySettings(allowed_hosts=ALLOWED_HOSTS)
mcp = FastMCP("habit-tracker", stateless_http=True, transport_security=_security)


# --- JWT auth middleware (raw ASGI, safe for SSE streaming) ---

PUBLIC_PATHS = {"/health"}


class JWTAuthMiddleware:
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http" or scope["path"] in PUBLIC_PATHS:
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            response = Response(status_code=401)
            await response(scope, receive, send)
            return

        token = auth_header[7:]
        try:
            jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        except JWTError:
            logger.warning("Rejected request with invalid bearer token")
            response = Response(status_code=401)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)


# --- Helper functions ---


def parse_timestamp(value: str) -> datetime:
    """Accept an ISO date or datetime string."""
    return datetime.fromisoformat(value)


def habit_to_dict(habit: Habit) -> dict:
    return {
        "id": habit.id,
        "name": habit.name,
        "description": habit.description,
        "type": habit.type.value,
        "frequency": habit.frequency.value,
        "created_at": habit.created_at.isoformat(),
        "updated_at": habit.updated_at.isoformat(),
    }


def completion_dates(session: Session, habit_id: int) -> list[datetime]:
    return list(
        session.exec(
            select(HabitCompletion.completed_date).where(HabitCompletion.habit_id == habit_id)
        ).all()
    )


def progress_for(session: Session, habit: Habit, now: datetime) -> dict:
    progress = calculate_progress(
        habit.frequency, habit.created_at, completion_dates(session, habit.id), now
    )
    d = progress.model_dump()
    d["habit_id"] = habit.id
    if progress.last_completed_date is not None:
        d["last_completed_date"] = progress.last_completed_date.isoformat()
    return d


# --- Tools ---


@mcp.tool()
def healthcheck() -> dict:
    """Report service status."""
    return {"status": "ok", "timestamp": datetime.now().isoformat()}


@mcp.custom_route("/health", methods=["GET"])
async def health(request: Request) -> JSONResponse:
    return JSONResponse(healthcheck())


@mcp.tool()
def create_habit(
    name: str,
    description: Optional[str] = None,
    type: str = "daily",
    frequency: str = "daily",
) -> dict:
    """Create a new habit. frequency is daily, weekly or a weekday name (monday..sunday)."""
    if not name.strip():
        return {"error": "Habit name must not be empty"}
    with Session(engine) as session:
        habit = Habit(
            name=name,
            description=description,
            type=HabitType(type),
            frequency=Frequency(frequency),
        )
        session.add(habit)
        session.commit()
        session.refresh(habit)
        logger.info("Created habit %s (%s)", habit.id, habit.frequency.value)
        return habit_to_dict(habit)


@mcp.tool()
def get_habits() -> list[dict]:
    """List all habits without progress data."""
    with Session(engine) as session:
        habits = session.exec(select(Habit).order_by(Habit.created_at, Habit.id)).all()
        return [habit_to_dict(h) for h in habits]


@mcp.tool()
def get_habit_by_id(habit_id: int) -> dict:
    """Get a single habit."""
    with Session(engine) as session:
        habit = session.get(Habit, habit_id)
        if not habit:
            return {"error": f"Habit {habit_id} not found"}
        return habit_to_dict(habit)


@mcp.tool()
def update_habit(
    habit_id: int,
    name: Optional[str] = None,
    description: Optional[str] = None,
    type: Optional[str] = None,
    frequency: Optional[str] = None,
) -> dict:
    """Update provided fields of a habit. An empty description clears it."""
    with Session(engine) as session:
        habit = session.get(Habit, habit_id)
        if not habit:
            return {"error": f"Habit {habit_id} not found"}
        if name is not None:
            if not name.strip():
                return {"error": "Habit name must not be empty"}
            habit.name = name
        if description is not None:
            habit.description = description or None
        if type is not None:
            habit.type = HabitType(type)
        if frequency is not None:
            habit.frequency = Frequency(frequency)
        habit.updated_at = datetime.now()
        session.add(habit)
        session.commit()
        session.refresh(habit)
        logger.info("Updated habit %s", habit.id)
        return habit_to_dict(habit)


@mcp.tool()
def delete_habit(habit_id: int) -> dict:
    """Delete a habit and all of its completions."""
    with Session(engine) as session:
        habit = session.get(Habit, habit_id)
        if not habit:
            return {"success": False}
        completions = session.exec(
            select(HabitCompletion).where(HabitCompletion.habit_id == habit_id)
        ).all()
        for completion in completions:
            session.delete(completion)
        session.delete(habit)
        session.commit()
        logger.info("Deleted habit %s with %d completions", habit_id, len(completions))
        return {"success": True}


@mcp.tool()
def mark_habit_complete(habit_id: int, completed_date: Optional[str] = None) -> dict:
    """Record a completion. completed_date defaults to now (ISO format if provided)."""
    with Session(engine) as session:
        habit = session.get(Habit, habit_id)
        if not habit:
            return {"error": f"Habit {habit_id} not found"}

        ts = parse_timestamp(completed_date) if completed_date else datetime.now()
        already_done = any(d.date() == ts.date() for d in completion_dates(session, habit_id))
        if already_done:
            logger.warning("Habit %s already completed on %s", habit_id, ts.date())
            return {"error": "Habit already completed for this date"}

        completion = HabitCompletion(habit_id=habit_id, completed_date=ts)
        session.add(completion)
        session.commit()
        session.refresh(completion)
        logger.info("Habit %s completed on %s", habit_id, ts.date())
        return {
            "id": completion.id,
            "habit_id": habit_id,
            "completed_date": completion.completed_date.isoformat(),
            "created_at": completion.created_at.isoformat(),
        }


@mcp.tool()
def get_completions(habit_id: int) -> list[dict]:
    """Get the completion log of a habit, newest first."""
    with Session(engine) as session:
        completions = session.exec(
            select(HabitCompletion)
            .where(HabitCompletion.habit_id == habit_id)
            .order_by(HabitCompletion.completed_date.desc())
        ).all()
        return [
            {
                "id": c.id,
                "completed_date": c.completed_date.isoformat(),
                "created_at": c.created_at.isoformat(),
            }
            for c in completions
        ]


@mcp.tool()
def get_habit_progress(habit_id: int) -> dict:
    """Get streaks, last completion, total completions and completion rate for a habit."""
    with Session(engine) as session:
        habit = session.get(Habit, habit_id)
        if not habit:
            return {"error": f"Habit {habit_id} not found"}
        return progress_for(session, habit, datetime.now())


@mcp.tool()
def get_habits_with_progress() -> list[dict]:
    """List all habits, each with its progress statistics."""
    now = datetime.now()
    with Session(engine) as session:
        habits = session.exec(select(Habit).order_by(Habit.created_at, Habit.id)).all()
        result = []
        for h in habits:
            d = habit_to_dict(h)
            d["progress"] = progress_for(session, h, now)
            result.append(d)
        return result


@mcp.tool()
def get_dashboard_stats() -> dict:
    """Totals across all habits: counts by type, average completion rate, best current streak, completions today."""
    now = datetime.now()
    with Session(engine) as session:
        habits = session.exec(select(Habit)).all()
        entries = [
            (h.type, calculate_progress(h.frequency, h.created_at, completion_dates(session, h.id), now))
            for h in habits
        ]
        return summarize(entries, now)


# --- App setup ---

init_db()

_inner = mcp.streamable_http_app()
app = JWTAuthMiddleware(_inner)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
