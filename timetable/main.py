import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

from .config import FRONT_URL, LOG_LEVEL, ADMIN_EMAIL, ADMIN_PASSWORD, HOST, PORT
from .database import init_db, ensure_admin_account
from .db import engine, SessionLocal
from .errors import AppError
from .routes import router

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# Create tables and the default admin on start
@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db(engine)
    with SessionLocal() as session:
        ensure_admin_account(session, ADMIN_EMAIL, ADMIN_PASSWORD)
    logger.info("Database ready")
    yield


app = FastAPI(title="University Timetable API", lifespan=lifespan)

# Routes
app.include_router(router)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONT_URL],  # frontend address
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail,
                     exc_info=exc)
    else:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"status": "fail", "detail": exc.detail})


# Malformed body or query parameters are a 400, not FastAPI's default 422
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
        for err in exc.errors()
    ]
    logger.warning("%s %s -> 400: %s", request.method, request.url.path, errors)
    return JSONResponse(status_code=400, content={"status": "fail", "detail": "Invalid request", "errors": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("%s %s -> 500: unhandled error", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"status": "fail", "detail": "Internal server error"})


# Health check
@app.get("/api/health")
async def health():
    return {"status": "OK", "message": "Server is running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=HOST, port=PORT)
