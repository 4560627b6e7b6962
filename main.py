import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import PyMongoError

import settings
from database import db, ensure_indexes
from logger import setup_logging
from routes import (
    admin,
    analytics,
    auth,
    categories,
    comments,
    editing,
    engagement,
    feeds,
    newsletter,
    notifications,
    post_analytics,
    posts,
    search,
    stats,
    store,
    users,
)

setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.SITE_NAME, description=settings.SITE_DESCRIPTION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (
    auth,
    posts,
    editing,
    engagement,
    comments,
    categories,
    users,
    analytics,
    post_analytics,
    notifications,
    newsletter,
    store,
    search,
    stats,
    admin,
    feeds,
):
    app.include_router(module.router)


@app.on_event("startup")
def create_indexes():
    if db is None:
        logger.warning("DATABASE_URL/DATABASE_NAME not set; running without a database")
        return
    try:
        ensure_indexes(db)
    except PyMongoError as e:
        logger.error("Could not ensure indexes: %s", e)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/")
def read_root():
    return {"message": f"{settings.SITE_NAME} API", "environment": settings.APP_ENV}


@app.get("/api/health")
def health():
    """Check that the backend is up and the database is reachable"""
    response = {
        "backend": "running",
        "database": "not configured",
        "database_url": "set" if settings.DATABASE_URL else "not set",
        "database_name": "set" if settings.DATABASE_NAME else "not set",
        "collections": [],
    }

    if db is not None:
        try:
            response["collections"] = db.list_collection_names()[:20]
            response["database"] = "connected"
        except PyMongoError as e:
            response["database"] = f"error: {str(e)[:50]}"

    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
