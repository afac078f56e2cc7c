import time

from fastapi import FastAPI, Request, status, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from telecare.config import get_settings
from telecare.database import init_db, ping_db
from telecare.errors import ServiceError
from telecare.utils.logger import get_logger
from telecare.rate_limit import limiter

logger = get_logger("main")
settings = get_settings()

# Routers
from telecare.routers import appointments as appointments_router
from telecare.routers import meetings as meetings_router
from telecare.routers import notifications as notifications_router

app = FastAPI(
    title="Telecare API",
    debug=settings.APP_DEBUG,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# 🔐 Enable JWT Bearer Auth in Swagger
app.openapi_schema = None


def custom_openapi():
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version="1.0.0",
        routes=app.routes,
    )

    components = openapi_schema.setdefault("components", {})
    security_schemes = components.setdefault("securitySchemes", {})
    security_schemes["BearerAuth"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
    }

    for path in openapi_schema.get("paths", {}):
        for method in openapi_schema["paths"][path]:
            operation = openapi_schema["paths"][path][method]
            # إجبار كل العمليات على استخدام BearerAuth حتى يعمل زر Authorize مع التوكن الحالي
            operation["security"] = [{"BearerAuth": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(appointments_router.router)
app.include_router(meetings_router.router)
app.include_router(notifications_router.router)


# Error handlers
@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error(f"{exc.kind}: {exc.message} - Path: {request.url.path}")
    else:
        logger.warning(f"{exc.kind}: {exc.message} - Path: {request.url.path}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP {exc.status_code}: {exc.detail} - Path: {request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error: {exc.errors()} - Path: {request.url.path}")
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "message": message,
            "error": "validation_error",
            "details": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors],
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "message": "Internal server error"},
    )


# Middleware Logging
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    logger.info(
        f"{request.method} {request.url.path} - "
        f"Status: {response.status_code} - "
        f"Time: {process_time:.3f}s"
    )
    return response


@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.get("/readyz")
async def readyz():
    if not await ping_db():
        raise HTTPException(status_code=503, detail="Database not ready")
    return {"status": "ok", "database": "up"}


# Global scheduler instance
scheduler = None


@app.on_event("startup")
async def on_startup():
    from apscheduler.schedulers.asyncio import AsyncIOScheduler
    from telecare.services.appointment_reminder_service import send_due_reminders
    from telecare.utils.firebase import init_firebase

    global scheduler

    logger.info("🚀 Starting application...")
    await init_db()
    logger.info("✅ Database initialized")
    init_firebase()

    try:
        scheduler = AsyncIOScheduler()
        scheduler.add_job(
            send_due_reminders,
            trigger="interval",
            minutes=5,
            id="appointment_reminders",
            replace_existing=True,
            max_instances=1,
        )
        scheduler.start()
        logger.info("✅ Appointment reminder scheduler started (runs every 5 minutes)")
    except Exception as e:
        logger.error(f"Failed to start appointment reminder scheduler: {e}")


@app.on_event("shutdown")
async def on_shutdown():
    global scheduler
    if scheduler:
        try:
            scheduler.shutdown()
            logger.info("Appointment reminder scheduler stopped")
        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")
    logger.info("Shutting down application...")
