import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .background import cancel_all
from .database import async_session_maker, init_db
from .routes import router
from .services import fragments as fragments_repo
from .services import practices as practices_repo
from .sync.scheduler import start_sync_scheduler, stop_sync_scheduler

app = FastAPI(title="Margin")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # local companion UI
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
app.include_router(router)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# ----------------------
# Startup seeding
# ----------------------
async def _seed_local_content():
    async with async_session_maker() as db:
        try:
            await practices_repo.seed_practices_from_local(db)
        except Exception:
            logger.exception("Practice seed failed")
        try:
            if not await fragments_repo.has_cached_catalogue(db):
                await fragments_repo.seed_fragments_from_local(db)
        except Exception:
            logger.exception("Fragment seed failed")


@app.on_event("startup")
async def on_startup():
    await init_db()
    await _seed_local_content()
    start_sync_scheduler()


@app.on_event("shutdown")
async def on_shutdown():
    stop_sync_scheduler()
    await cancel_all()


@app.get("/healthz")
async def healthz():
    return {"ok": True}
