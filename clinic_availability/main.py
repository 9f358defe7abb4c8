# clinic_availability/main.py
import logging

from fastapi import FastAPI
from redis import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .database import engine
from .redis_client import redis_client
from .routers import continuations, slots

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Clinic Availability API")

app.include_router(slots.router)
app.include_router(continuations.router)


@app.get("/health")
def health():
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        database = True
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = False

    redis_ok = None
    if redis_client is not None:
        try:
            redis_ok = bool(redis_client.ping())
        except RedisError:
            logger.warning("Health check: redis unreachable")
            redis_ok = False

    return {"database": database, "redis": redis_ok}
