import logging
import sys

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
import settings
from auth import hash_password
from database import create_document, ensure_indexes
from routers import cart, orders, products, reviews, users, wishlist
from schemas import User as UserSchema

logger = logging.getLogger("scentara")


# ----------------------------------------------------------------------------
# Logging
# ----------------------------------------------------------------------------

def setup_logging(level: str = settings.LOG_LEVEL) -> None:
    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s"))
        root.addHandler(handler)


# ----------------------------------------------------------------------------
# App Setup
# ----------------------------------------------------------------------------

app = FastAPI(title="Scentara E-commerce API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(users.router)
app.include_router(products.router)
app.include_router(reviews.router)
app.include_router(cart.router)
app.include_router(wishlist.router)
app.include_router(orders.router)


# ----------------------------------------------------------------------------
# Error responses: always {"message": ...}
# ----------------------------------------------------------------------------

@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"message": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    errors = [{"field": ".".join(str(p) for p in e.get("loc", ())), "message": e.get("msg")} for e in exc.errors()]
    return JSONResponse(status_code=400, content=jsonable_encoder({"message": "Invalid request", "errors": errors}))


@app.exception_handler(DuplicateKeyError)
async def duplicate_error(request: Request, exc: DuplicateKeyError):
    return JSONResponse(status_code=409, content={"message": "Resource already exists"})


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# ----------------------------------------------------------------------------
# Health and Test
# ----------------------------------------------------------------------------

@app.get("/")
def root():
    return {"message": "Scentara E-commerce API is running..."}


@app.get("/test")
def test_database():
    if database.db is None:
        return {"backend": "ok", "db": "not configured"}
    try:
        collections = database.db.list_collection_names()
        return {"backend": "ok", "db": "ok", "collections": collections}
    except Exception as e:
        logger.warning("Database probe failed: %s", e)
        return {"backend": "ok", "db": "error"}


# ----------------------------------------------------------------------------
# Startup: indexes and bootstrap superadmin
# ----------------------------------------------------------------------------

def bootstrap_superadmin(db) -> None:
    if not settings.SUPERADMIN_EMAIL or not settings.SUPERADMIN_PASSWORD:
        return
    if db["user"].find_one({"email": settings.SUPERADMIN_EMAIL}):
        return
    admin = UserSchema(
        name="Superadmin",
        email=settings.SUPERADMIN_EMAIL,
        password=hash_password(settings.SUPERADMIN_PASSWORD),
        role="superadmin",
    )
    create_document("user", admin, db)
    logger.info("Created superadmin %s", settings.SUPERADMIN_EMAIL)


@app.on_event("startup")
def on_startup():
    setup_logging()
    if database.db is None:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, store unavailable")
        return
    ensure_indexes(database.db)
    bootstrap_superadmin(database.db)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
