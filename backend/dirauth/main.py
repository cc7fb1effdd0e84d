import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from dirauth.api import admin, auth
from dirauth.config import settings
from dirauth.database import engine
from dirauth.models.base import Base
from dirauth.services.events import dispatcher, log_auth_event
from dirauth.services.ldap_auth import AUTH_SUCCESS_EVENT

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables on startup
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    dispatcher.add_listener(AUTH_SUCCESS_EVENT, log_auth_event)
    yield
    dispatcher.remove_listener(AUTH_SUCCESS_EVENT, log_auth_event)


app = FastAPI(
    title="dirauth",
    description="Directory (LDAP) authentication API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# REST API routes
app.include_router(auth.router)
app.include_router(admin.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "dirauth"}
