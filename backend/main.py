import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.triggers import router as notifications_router
from api.sessions import router as sessions_router
from config import get_settings
from services import get_session_manager, reset_session_manager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    logger.info("EMS alert engine starting (tz=%s, api=%s)", settings.timezone, settings.api_base_url)
    yield
    await get_session_manager().close()
    reset_session_manager()
    logger.info("EMS alert engine stopped")

app = FastAPI(
    title="EMS Block & Alert API",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(notifications_router, prefix="/api")
app.include_router(sessions_router, prefix="/api")

@app.get("/")
async def root():
    return {
        "name": "EMS Block & Alert API",
        "version": "1.0.0",
        "docs": "/docs",
    }

@app.get("/health")
async def health():
    from db import get_storage
    from services import get_whatsapp_client

    manager = get_session_manager()
    gateway = await get_whatsapp_client().status()

    return {
        "status": "healthy",
        "storage": get_storage().stats(),
        "whatsapp": gateway.to_dict(),
        "sessions": [
            {"simulator_id": s.simulator_id, **s.status.to_dict()}
            for s in manager.sessions()
        ],
        "emitters": [
            e.stats.to_dict() for e in manager.emitters()
        ],
    }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
