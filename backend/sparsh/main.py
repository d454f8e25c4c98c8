import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sparsh.core.config import settings
from sparsh.core.database import init_db
from sparsh.api import chat, conversations, peer, slots, wellness


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure logging based on debug setting
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s" if settings.debug
        else "%(levelname)-8s %(name)s: %(message)s",
    )

    init_db()
    logging.getLogger(__name__).info(f"{settings.app_name} ready (db: {settings.db_path})")

    yield


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router, prefix="/api/chat", tags=["chat"])
app.include_router(conversations.router, prefix="/api/conversations", tags=["conversations"])
app.include_router(slots.router, prefix="/api/slots", tags=["slots"])
app.include_router(wellness.router, prefix="/api/wellness", tags=["wellness"])
app.include_router(peer.router, prefix="/api/peer", tags=["peer"])


@app.get("/api/health")
async def health():
    return {"status": "ok", "app": settings.app_name}
