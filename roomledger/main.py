# Application entrypoint: configures logging, middleware, error rendering, startup routines, and API routers.
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .db import Base, engine
from .errors import DomainError
from .routes.activity import router as activity_router
from .routes.auth import router as auth_router
from .routes.bills import router as bills_router
from .routes.bookings import router as bookings_router
from .routes.facilities import router as facilities_router
from .routes.furniture import router as furniture_router
from .routes.maintenance import router as maintenance_router
from .routes.packages import router as packages_router
from .routes.properties import router as properties_router
from .routes.rent import router as rent_router
from .routes.reviews import router as reviews_router
from .routes.rooms import router as rooms_router
from .routes.staff import router as staff_router
from .routes.tenants import router as tenants_router
from .routes.users import router as users_router

settings = get_settings()
logging.basicConfig(level=settings.log_level)
logger = logging.getLogger("roomledger.main")

app = FastAPI(title="RoomLedger API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
def handle_domain_error(request: Request, exc: DomainError) -> JSONResponse:
    # 5xx are unexpected; 4xx are ordinary client mistakes
    if exc.status_code >= 500:
        logger.error("request.failed", extra={"path": request.url.path, "error": exc.message})
    else:
        logger.info("request.rejected", extra={"path": request.url.path, "code": exc.code})
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.on_event("startup")
def on_startup() -> None:
    # For local SQLite, auto-create tables; server databases are provisioned out of band.
    if settings.is_sqlite:
        Base.metadata.create_all(bind=engine)


# Simple liveness endpoint for container orchestrators and uptime checks
@app.get("/healthz")
def healthz() -> dict:
    return {"status": "ok"}


# Mount application routers (authentication at the root, domain APIs under /api/v1)
app.include_router(auth_router, prefix="", tags=["auth"])
app.include_router(users_router, prefix="/api/v1", tags=["users"])
app.include_router(properties_router, prefix="/api/v1", tags=["properties"])
app.include_router(rooms_router, prefix="/api/v1", tags=["rooms"])
app.include_router(bookings_router, prefix="/api/v1", tags=["bookings"])
app.include_router(tenants_router, prefix="/api/v1", tags=["tenants"])
app.include_router(bills_router, prefix="/api/v1", tags=["bills"])
app.include_router(rent_router, prefix="/api/v1", tags=["rent"])
app.include_router(maintenance_router, prefix="/api/v1", tags=["maintenance"])
app.include_router(packages_router, prefix="/api/v1", tags=["packages"])
app.include_router(staff_router, prefix="/api/v1", tags=["staff"])
app.include_router(reviews_router, prefix="/api/v1", tags=["reviews"])
app.include_router(activity_router, prefix="/api/v1", tags=["activity"])
app.include_router(facilities_router, prefix="/api/v1", tags=["facilities"])
app.include_router(furniture_router, prefix="/api/v1", tags=["furniture"])
