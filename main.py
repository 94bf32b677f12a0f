import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy import text

from app.database import Base, SessionLocal, engine
from app.errors import validation_error_response
from app.gateway import gateway
from app.routes.ml import router as ml_router
from app.routes.personalization import router as personalization_router

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # --- Startup ---
    logger.info("Creating database tables if they don't exist...")
    Base.metadata.create_all(bind=engine)

    status = gateway.status()
    logger.info(
        f"LLM gateway ready: primary={status['primary']} fallback={status['fallback']} "
        f"configured={status['configured']}"
    )

    yield

    # --- Shutdown ---
    logger.info("Shutting down, clearing generated-response cache...")
    gateway.clear_cache()


app = FastAPI(
    title="News Personalization API",
    description="Ranked, explained article recommendations with resilient multi-provider text generation.",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(personalization_router)
app.include_router(ml_router)
app.add_exception_handler(RequestValidationError, validation_error_response)


@app.get("/health")
def health_check():
    """Health check endpoint for container orchestration."""
    try:
        db = SessionLocal()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Service unavailable")

    return {"status": "healthy", "database": "connected", "llm": gateway.status()}
