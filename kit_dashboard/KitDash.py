import hmac
import logging
import os
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

load_dotenv()

from schemas.overrides import CategoryOverrideRequest, CuratedListsUpdate, StatusUpdateRequest
from services.booking_service import list_todays_bookings
from services.override_service import OverrideStore, OverrideValidationError
from services.siso_service import SisoClient, SisoSettings, TokenCache, UpstreamAuthError, UpstreamFetchError

BASE_DIR = Path(__file__).resolve().parent
STATIC_DIR = BASE_DIR / "static"
TECH_PAGE = STATIC_DIR / "tech.html"
DATA_DIR = Path(os.environ.get("KIT_DASHBOARD_DATA_DIR") or (BASE_DIR / "data"))

app = FastAPI()


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env("CORS_ALLOW_ORIGINS", "*")
app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials="*" not in _CORS_ALLOW_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)

TECH_PASSWORD = (os.environ.get("TECH_PASSWORD") or "").strip()
TECH_REALM = 'Basic realm="Technician Area"'
DASHBOARD_TZ = ZoneInfo((os.environ.get("BOOKINGS_TIMEZONE") or "Europe/London").strip())
BUCKET_MINUTES = int(os.environ.get("BOOKING_BUCKET_MINUTES") or "5")
AUTH_LOGGER = logging.getLogger("kit_dashboard.auth")
BOOKINGS_LOGGER = logging.getLogger("kit_dashboard.bookings")

_TOKEN_CACHE = TokenCache()
_OVERRIDE_STORE = OverrideStore(DATA_DIR)
_BASIC = HTTPBasic(auto_error=False)


def get_override_store() -> OverrideStore:
    return _OVERRIDE_STORE


def get_siso_client() -> SisoClient:
    return SisoClient(SisoSettings.from_env(), _TOKEN_CACHE)


def get_today() -> date:
    return datetime.now(DASHBOARD_TZ).date()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": TECH_REALM})


def require_technician(credentials: HTTPBasicCredentials | None = Depends(_BASIC)) -> None:
    if credentials is None:
        AUTH_LOGGER.info("Technician auth: no credentials, challenging")
        raise _unauthorized("Authentication required.")
    if not TECH_PASSWORD:
        AUTH_LOGGER.warning("Technician auth refused: TECH_PASSWORD is not configured")
        raise _unauthorized("Access denied.")
    supplied = (credentials.password or "").encode("utf-8")
    if not hmac.compare_digest(supplied, TECH_PASSWORD.encode("utf-8")):
        AUTH_LOGGER.warning("Technician auth failed: wrong password")
        raise _unauthorized("Access denied.")


@app.exception_handler(StarletteHTTPException)
async def http_error_payload(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_payload(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body."})


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/tech.html")
@app.get("/public/tech.html")
def redirect_tech_page():
    return RedirectResponse(url="/tech", status_code=302)


@app.get("/tech", dependencies=[Depends(require_technician)])
def tech_page():
    if not TECH_PAGE.exists():
        raise HTTPException(status_code=404, detail="Technician page not found.")
    return FileResponse(TECH_PAGE)


@app.get("/api/lists")
def get_lists(store: OverrideStore = Depends(get_override_store)):
    return {"success": True, "lists": store.load_lists()}


@app.post("/api/lists", dependencies=[Depends(require_technician)])
def update_lists(payload: CuratedListsUpdate, store: OverrideStore = Depends(get_override_store)):
    lists = store.update_lists(payload.model_dump(exclude_none=True))
    return {"success": True, "lists": lists}


@app.get("/api/category-override")
def get_category_overrides(store: OverrideStore = Depends(get_override_store)):
    return {"success": True, "overrides": store.list_category_overrides()}


@app.post("/api/category-override", dependencies=[Depends(require_technician)])
def set_category_override(payload: CategoryOverrideRequest, store: OverrideStore = Depends(get_override_store)):
    try:
        overrides = store.set_category_override(payload.assetName, payload.category)
    except OverrideValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"success": True, "overrides": overrides}


@app.get("/api/status-overrides")
def get_status_overrides(store: OverrideStore = Depends(get_override_store)):
    return {"success": True, "overrides": store.list_status_overrides()}


@app.post("/api/update-status", dependencies=[Depends(require_technician)])
def update_status(payload: StatusUpdateRequest, store: OverrideStore = Depends(get_override_store)):
    try:
        stored = store.set_status_override(payload.key, payload.status)
    except OverrideValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"success": True, "key": (payload.key or "").strip(), "status": stored}


@app.get("/api/bookings")
def get_bookings(
    debug: bool = Query(False),
    today: date = Depends(get_today),
    client: SisoClient = Depends(get_siso_client),
    store: OverrideStore = Depends(get_override_store),
):
    try:
        rows = client.list_bookings(today)
    except UpstreamAuthError as exc:
        BOOKINGS_LOGGER.error("Upstream auth failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except UpstreamFetchError as exc:
        BOOKINGS_LOGGER.error("Upstream fetch failed: %s payload=%s", exc, exc.payload)
        raise HTTPException(status_code=502, detail=exc.payload if exc.payload is not None else str(exc)) from exc

    try:
        bookings = list_todays_bookings(
            rows,
            today,
            category_overrides=store.list_category_overrides(),
            status_overrides=store.list_status_overrides(),
            curated_lists=store.load_lists(),
            window_minutes=BUCKET_MINUTES,
            tz=DASHBOARD_TZ,
            debug=debug,
        )
    except Exception as exc:
        BOOKINGS_LOGGER.exception("Booking pipeline failed")
        raise HTTPException(status_code=500, detail=f"booking_pipeline_failed: {exc}") from exc
    return {"success": True, "bookings": bookings}


app.mount("/", StaticFiles(directory=str(STATIC_DIR), html=True), name="static")
