import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from backend.config import get_settings
from backend.database import Base, SessionLocal, engine
from backend.app.runtime import build_runtime
from backend.app.routes import connections, rules, transactions, categories, admin

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    runtime = getattr(app.state, "runtime", None) or build_runtime(settings, SessionLocal)
    app.state.runtime = runtime

    await runtime.start()
    logger.info("Fintrack sync backend started")
    try:
        yield
    finally:
        await runtime.stop()
        logger.info("Fintrack sync backend stopped")


app = FastAPI(
    title="Fintrack API",
    description="Transaction sync and categorization backend",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(connections.router, prefix="/api")
app.include_router(rules.router, prefix="/api")
app.include_router(transactions.router, prefix="/api")
app.include_router(categories.router, prefix="/api")
app.include_router(admin.router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {"status": "healthy"}
