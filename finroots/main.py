import logging
from contextlib import asynccontextmanager

from arq import create_pool
from arq.connections import RedisSettings
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .agents.registry import build_agents
from .api.analytics import router as analytics_router
from .api.assistant import router as assistant_router
from .api.commissions import router as commissions_router
from .api.leads import router as leads_router
from .api.location import router as location_router
from .api.members import router as members_router
from .api.notes import router as notes_router
from .api.policies import router as policies_router
from .api.tasks import router as tasks_router
from .services.storage import StorageService
from .services.store import CrmStore
from .settings import get_settings

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Redis is only needed for voice notes; the rest of the API runs without it
    try:
        app.state.redis_pool = await create_pool(RedisSettings.from_dsn(settings.redis_uri))
    except Exception as e:
        logger.warning(f"Redis unavailable, voice note processing disabled: {e}")
        app.state.redis_pool = None

    storage = StorageService(settings)
    if getattr(app.state, "store", None) is None:
        app.state.store = CrmStore(storage.load_snapshot())
    if getattr(app.state, "agents", None) is None:
        app.state.agents = build_agents(settings)
    yield

    storage.save_snapshot(app.state.store.snapshot())
    if app.state.redis_pool is not None:
        await app.state.redis_pool.close()


app = FastAPI(
    title="FinRoots CRM Backend",
    version="0.1.0",
    description="Backend API for FinRoots - insurance advisor CRM with AI assistance",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(members_router)
app.include_router(policies_router)
app.include_router(tasks_router)
app.include_router(notes_router)
app.include_router(analytics_router)
app.include_router(location_router)
app.include_router(assistant_router)
app.include_router(leads_router)
app.include_router(commissions_router)


@app.get("/health")
async def health():
    return {"status": "ok"}
