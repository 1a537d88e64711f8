from fastapi import FastAPI, APIRouter, HTTPException, Depends, Request, Response
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from pydantic import AfterValidator, BaseModel
from typing import Annotated, Dict, List, Optional, Any, Literal
from datetime import date

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

import users
from accessors import (
    CALENDAR,
    MEDS,
    NOTES,
    PICTURES,
    RECORDS,
    SessionContext,
    Unauthenticated,
)
from dashboard import Dashboard, DashboardClosed
from entities import as_day, normalize_hhmm
from playback import PlaybackError
from widgets import (
    Mode,
    Operation,
    NotFound,
    UnknownWidget,
    ValidationFailed,
    WidgetError,
)

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# MongoDB connection
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
client = AsyncIOMotorClient(mongo_url)
db = client[os.environ.get('DB_NAME', 'memorylane')]

# Create the main app without a prefix
app = FastAPI()

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

# Open dashboards, one per signed-in user
dashboards: Dict[str, Dashboard] = {}

# ==================== DEPENDENCIES ====================

def get_database():
    return db

def get_session(request: Request) -> SessionContext:
    """Session from JWT in cookie or Authorization header"""
    token = request.cookies.get("access_token")

    # Fallback to Authorization header
    if not token:
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            token = auth_header.split(" ")[1]

    return users.session_from_token(token)

def get_open_dashboard(session: SessionContext = Depends(get_session)) -> Dashboard:
    user_id = session.require_user()
    dashboard = dashboards.get(user_id)
    if dashboard is None or dashboard.closed:
        raise HTTPException(status_code=404, detail="Dashboard is not open")
    return dashboard

def dump_records(records) -> List[dict]:
    return [r.model_dump(mode="json") for r in records]

def widget_state(dashboard: Dashboard, kind: str, day: Optional[date] = None) -> dict:
    return {
        "kind": kind,
        "mode": dashboard.mode.value,
        "allowed_operations": dashboard.allowed_operations(kind),
        "items": dump_records(dashboard.view(kind, day)),
    }

def mutation_response(dashboard: Dashboard, kind: str, mutation) -> dict:
    return {
        "applied": mutation.applied,
        "message": mutation.message,
        "record": mutation.record.model_dump(mode="json") if mutation.record is not None else None,
        **widget_state(dashboard, kind),
    }

# ==================== ERROR HANDLERS ====================

@app.exception_handler(Unauthenticated)
async def unauthenticated_handler(request: Request, exc: Unauthenticated):
    return JSONResponse(status_code=401, content={"detail": "Not authenticated"})

@app.exception_handler(ValidationFailed)
async def validation_failed_handler(request: Request, exc: ValidationFailed):
    return JSONResponse(status_code=400, content={"detail": exc.message, "fields": exc.fields})

@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    logger.warning("Mutation target missing: %s", exc)
    return JSONResponse(status_code=404, content={"detail": str(exc)})

@app.exception_handler(DashboardClosed)
async def dashboard_closed_handler(request: Request, exc: DashboardClosed):
    return JSONResponse(status_code=404, content={"detail": "Dashboard is not open"})

@app.exception_handler(UnknownWidget)
async def unknown_widget_handler(request: Request, exc: UnknownWidget):
    return JSONResponse(status_code=404, content={"detail": str(exc)})

@app.exception_handler(WidgetError)
async def widget_error_handler(request: Request, exc: WidgetError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})

@app.exception_handler(PlaybackError)
async def playback_error_handler(request: Request, exc: PlaybackError):
    return JSONResponse(status_code=502, content={"detail": str(exc)})

# ==================== MODELS ====================

class UserCreate(BaseModel):
    email: str
    password: str
    role: Optional[Literal["family", "patient"]] = None

class UserLogin(BaseModel):
    email: str
    password: str

class NoteCreate(BaseModel):
    title: str
    content: str

class NoteUpdate(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None

def clock_time(value: str) -> str:
    normalized = normalize_hhmm(value)
    if normalized is None:
        raise ValueError("Invalid time format. Use HH:mm.")
    return normalized

def iso_day(value: str) -> str:
    """Stored dates are plain YYYY-MM-DD days"""
    try:
        return as_day(value).isoformat()
    except ValueError:
        raise ValueError("Invalid date. Use YYYY-MM-DD.") from None

ClockTime = Annotated[str, AfterValidator(clock_time)]
IsoDay = Annotated[str, AfterValidator(iso_day)]

class MedCreate(BaseModel):
    name: str
    dosage: str
    time: ClockTime
    taken_today: bool = False
    last_taken_date: Optional[IsoDay] = None

class MedUpdate(BaseModel):
    name: Optional[str] = None
    dosage: Optional[str] = None
    time: Optional[ClockTime] = None
    taken_today: Optional[bool] = None
    last_taken_date: Optional[IsoDay] = None

class EventCreate(BaseModel):
    date: IsoDay
    title: str
    description: Optional[str] = None

class EventUpdate(BaseModel):
    date: Optional[IsoDay] = None
    title: Optional[str] = None
    description: Optional[str] = None

class RecordCreate(BaseModel):
    name: str
    url: str

class RecordUpdate(BaseModel):
    name: Optional[str] = None
    url: Optional[str] = None

class PictureCreate(BaseModel):
    title: str
    url: str
    description: Optional[str] = None

class PictureUpdate(BaseModel):
    title: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None

class ModeUpdate(BaseModel):
    mode: Mode

# ==================== AUTH ====================

@api_router.post("/auth/register")
async def register(user_data: UserCreate, database=Depends(get_database)):
    """Register a new user"""
    try:
        await users.register(database, user_data.email, user_data.password, user_data.role)
    except users.EmailAlreadyRegistered:
        raise HTTPException(status_code=400, detail="Email already registered")
    return {"message": "User registered successfully"}

@api_router.post("/auth/login")
async def login(response: Response, form_data: UserLogin, database=Depends(get_database)):
    """Login user and set JWT cookie"""
    user = await users.login(database, form_data.email, form_data.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Incorrect email or password")

    access_token = users.token_for(user)
    response.set_cookie(
        key="access_token",
        value=access_token,
        httponly=True,
        secure=True,
        samesite="none",
        path="/",
        max_age=users.ACCESS_TOKEN_EXPIRE_MINUTES * 60
    )
    logger.info("Login for %s", user["email"])
    return {"message": "Login successful", "user": user, "access_token": access_token, "token_type": "bearer"}

@api_router.get("/auth/me")
async def get_me(session: SessionContext = Depends(get_session)):
    """Get current user info"""
    user_id = session.require_user()
    return {"id": user_id, "email": session.email, "role": session.role}

@api_router.post("/auth/logout")
async def logout(response: Response, session: SessionContext = Depends(get_session)):
    """Logout user and drop their dashboard"""
    if session.user_id and session.user_id in dashboards:
        await dashboards.pop(session.user_id).close()
    response.delete_cookie(key="access_token", path="/")
    return {"message": "Logged out"}

# ==================== NOTES ====================

@api_router.get("/notes", response_model=List[dict])
async def get_notes(session: SessionContext = Depends(get_session), database=Depends(get_database)):
    """Get all notes for current user"""
    return await NOTES.list_for_current_user(database, session)

@api_router.post("/notes", response_model=dict)
async def create_note(
    note: NoteCreate,
    session: SessionContext = Depends(get_session),
    database=Depends(get_database)
):
    note_id = await NOTES.create(database, session, note.model_dump())
    return {"id": note_id}

@api_router.put("/notes/{note_id}", response_model=dict)
async def update_note(
    note_id: str,
    note: NoteUpdate,
    session: SessionContext = Depends(get_session),
    database=Depends(get_database)
):
    update_data = {k: v for k, v in note.model_dump().items() if v is not None}
    if not await NOTES.update(database, session, note_id, update_data):
        raise HTTPException(status_code=404, detail="Note not found")
    return {"id": note_id, "updated": True}

# ==================== MEDICATIONS ====================

@api_router.get("/meds", response_model=List[dict])
async def get_meds(session: SessionContext = Depends(get_session), database=Depends(get_database)):
    return await MEDS.list_for_current_user(database, session)

@api_router.post("/meds", response_model=dict)
async def create_med(
    med: MedCreate,
    session: SessionContext = Depends(get_session),
    database=Depends(get_database)
):
    med_id = await MEDS.create(database, session, med.model_dump())
    return {"id": med_id}

@api_router.put("/meds/{med_id}", response_model=dict)
async def update_med(
    med_id: str,
    med: MedUpdate,
    session: SessionContext = Depends(get_session),
    database=Depends(get_database)
):
    update_data = {k: v for k, v in med.model_dump().items() if v is not None}
    if not await MEDS.update(database, session, med_id, update_data):
        raise HTTPException(status_code=404, detail="Medication not found")
    return {"id": med_id, "updated": True}

# ==================== CALENDAR ====================

@api_router.get("/calender", response_model=List[dict])
async def get_events(session: SessionContext = Depends(get_session), database=Depends(get_database)):
    return await CALENDAR.list_for_current_user(database, session)

@api_router.post("/calender", response_model=dict)
async def create_event(
    event: EventCreate,
    session: SessionContext = Depends(get_session),
    database=Depends(get_database)
):
    event_id = await CALENDAR.create(database, session, event.model_dump())
    return {"id": event_id}

@api_router.put("/calender/{event_id}", response_model=dict)
async def update_event(
    event_id: str,
    event: EventUpdate,
    session: SessionContext = Depends(get_session),
    database=Depends(get_database)
):
    update_data = {k: v for k, v in event.model_dump().items() if v is not None}
    if not await CALENDAR.update(database, session, event_id, update_data):
        raise HTTPException(status_code=404, detail="Event not found")
    return {"id": event_id, "updated": True}

# ==================== VOICE RECORDS ====================

@api_router.get("/records", response_model=List[dict])
async def get_records(session: SessionContext = Depends(get_session), database=Depends(get_database)):
    return await RECORDS.list_for_current_user(database, session)

@api_router.post("/records", response_model=dict)
async def create_record(
    record: RecordCreate,
    session: SessionContext = Depends(get_session),
    database=Depends(get_database)
):
    record_id = await RECORDS.create(database, session, record.model_dump())
    return {"id": record_id}

@api_router.put("/records/{record_id}", response_model=dict)
async def update_record(
    record_id: str,
    record: RecordUpdate,
    session: SessionContext = Depends(get_session),
    database=Depends(get_database)
):
    update_data = {k: v for k, v in record.model_dump().items() if v is not None}
    if not await RECORDS.update(database, session, record_id, update_data):
        raise HTTPException(status_code=404, detail="Record not found")
    return {"id": record_id, "updated": True}

# ==================== PICTURES ====================

@api_router.get("/pictures", response_model=List[dict])
async def get_pictures(session: SessionContext = Depends(get_session), database=Depends(get_database)):
    return await PICTURES.list_for_current_user(database, session)

@api_router.post("/pictures", response_model=dict)
async def create_picture(
    picture: PictureCreate,
    session: SessionContext = Depends(get_session),
    database=Depends(get_database)
):
    picture_id = await PICTURES.create(database, session, picture.model_dump())
    return {"id": picture_id}

@api_router.put("/pictures/{picture_id}", response_model=dict)
async def update_picture(
    picture_id: str,
    picture: PictureUpdate,
    session: SessionContext = Depends(get_session),
    database=Depends(get_database)
):
    update_data = {k: v for k, v in picture.model_dump().items() if v is not None}
    if not await PICTURES.update(database, session, picture_id, update_data):
        raise HTTPException(status_code=404, detail="Picture not found")
    return {"id": picture_id, "updated": True}

@api_router.delete("/pictures/{picture_id}")
async def delete_picture(
    picture_id: str,
    session: SessionContext = Depends(get_session),
    database=Depends(get_database)
):
    if not await PICTURES.delete(database, session, picture_id):
        raise HTTPException(status_code=404, detail="Picture not found")
    return {"message": "Picture deleted"}

# ==================== DASHBOARD ====================

@api_router.post("/dashboard", response_model=dict)
async def open_dashboard(session: SessionContext = Depends(get_session), database=Depends(get_database)):
    """Open (or reopen) the dashboard, reloading mirrored widgets from the store"""
    user_id = session.require_user()
    previous = dashboards.pop(user_id, None)
    if previous is not None:
        await previous.close()
    dashboard = await Dashboard.open(database, session)
    dashboards[user_id] = dashboard
    return {"mode": dashboard.mode.value, "widgets": {name: len(store) for name, store in dashboard.stores.items()}}

@api_router.get("/dashboard", response_model=dict)
async def get_dashboard(dashboard: Dashboard = Depends(get_open_dashboard)):
    return {
        "mode": dashboard.mode.value,
        "now_playing": dashboard.player.current_id,
        "widgets": {
            name: {"count": len(store), "allowed_operations": dashboard.allowed_operations(name)}
            for name, store in dashboard.stores.items()
        },
    }

@api_router.delete("/dashboard")
async def close_dashboard(session: SessionContext = Depends(get_session)):
    user_id = session.require_user()
    dashboard = dashboards.pop(user_id, None)
    if dashboard is None:
        raise HTTPException(status_code=404, detail="Dashboard is not open")
    await dashboard.close()
    return {"message": "Dashboard closed"}

@api_router.put("/dashboard/mode", response_model=dict)
async def set_dashboard_mode(body: ModeUpdate, dashboard: Dashboard = Depends(get_open_dashboard)):
    dashboard.set_mode(body.mode)
    return {"mode": dashboard.mode.value}

@api_router.post("/dashboard/recordings/stop", response_model=dict)
async def stop_recording(dashboard: Dashboard = Depends(get_open_dashboard)):
    await dashboard.stop()
    return {"now_playing": None}

@api_router.post("/dashboard/recordings/{record_id}/play", response_model=dict)
async def play_recording(record_id: str, dashboard: Dashboard = Depends(get_open_dashboard)):
    """Play a recording, or pause it if it is the one playing"""
    now_playing = await dashboard.play(record_id)
    return {"now_playing": now_playing}

@api_router.get("/dashboard/{kind}", response_model=dict)
async def get_widget(kind: str, day: Optional[date] = None, dashboard: Dashboard = Depends(get_open_dashboard)):
    """Derived view of one widget; calendar is filtered to `day` (default today)"""
    return widget_state(dashboard, kind, day)

@api_router.post("/dashboard/{kind}", response_model=dict)
async def create_widget_item(
    kind: str,
    values: Dict[str, Any],
    dashboard: Dashboard = Depends(get_open_dashboard)
):
    if kind == "calendar" and not values.get("date"):
        values = {**values, "date": date.today().isoformat()}
    mutation = dashboard.mutate(kind, Operation.CREATE, values=values)
    return mutation_response(dashboard, kind, mutation)

@api_router.put("/dashboard/{kind}/{record_id}", response_model=dict)
async def update_widget_item(
    kind: str,
    record_id: str,
    values: Dict[str, Any],
    dashboard: Dashboard = Depends(get_open_dashboard)
):
    mutation = dashboard.mutate(kind, Operation.UPDATE, record_id=record_id, values=values)
    return mutation_response(dashboard, kind, mutation)

@api_router.delete("/dashboard/{kind}/{record_id}", response_model=dict)
async def delete_widget_item(
    kind: str,
    record_id: str,
    dashboard: Dashboard = Depends(get_open_dashboard)
):
    mutation = dashboard.mutate(kind, Operation.DELETE, record_id=record_id)
    return mutation_response(dashboard, kind, mutation)

@api_router.post("/dashboard/{kind}/{record_id}/toggle", response_model=dict)
async def toggle_widget_item(
    kind: str,
    record_id: str,
    dashboard: Dashboard = Depends(get_open_dashboard)
):
    mutation = dashboard.mutate(kind, Operation.TOGGLE, record_id=record_id)
    return mutation_response(dashboard, kind, mutation)

@api_router.get("/")
async def root():
    return {"message": "MemoryLane API"}

# Include the router in the main app
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.on_event("shutdown")
async def shutdown_db_client():
    for dashboard in list(dashboards.values()):
        await dashboard.close()
    dashboards.clear()
    client.close()
