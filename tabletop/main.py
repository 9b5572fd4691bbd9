import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from tabletop.api.endpoints.auth import router as auth_router
from tabletop.api.endpoints.boards import router as boards_router
from tabletop.api.endpoints.chat_tabs import router as chat_tabs_router
from tabletop.api.endpoints.logs import router as logs_router
from tabletop.api.endpoints.scenes import router as scenes_router
from tabletop.api.endpoints.sessions import router as sessions_router
from tabletop.core.config import settings
from tabletop.core.database import Base, engine
from tabletop.core.errors import register_exception_handlers
from tabletop.services.realtime import gateway
import tabletop.models  # noqa: F401  registers every table on Base.metadata

logger = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    logger.info("Realtime gateway listening on %s", settings.REALTIME_PATH)
    yield
    logger.info("Shutting down with %s realtime connection(s) open", gateway.connection_count())


app = FastAPI(title="Tabletop Session API", version="1.0.0", lifespan=lifespan)

_default_origins = [
    "http://localhost",
    "http://localhost:80",
    "http://127.0.0.1",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:8080",
    "http://127.0.0.1:8080",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_default_origins + settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(auth_router)
app.include_router(sessions_router)
app.include_router(chat_tabs_router)
app.include_router(logs_router)
app.include_router(boards_router)
app.include_router(scenes_router)


@app.get("/health")
async def health_check():
    return {"message": "server is running", "realtime_connections": gateway.connection_count()}


@app.websocket(settings.REALTIME_PATH)
async def realtime_endpoint(websocket: WebSocket):
    await gateway.serve(websocket)
