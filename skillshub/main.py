"""FastAPI application entrypoint."""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from skillshub.config import settings
from skillshub.database import init_db
from skillshub.errors import SkillsHubError, error_payload
from skillshub.routers import custom_targets, remote_hosts, settings as settings_router, skills, tools

# ── Logging setup ────────────────────────────────────────────────────
_log_level = os.environ.get("SKILLSHUB_LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=_log_level,
    format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
# asyncssh is chatty at INFO (one line per channel)
logging.getLogger("asyncssh").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info("SkillsHub started (env=%s, central repo default %s)", settings.env, settings.central_repo_dir)
    yield


app = FastAPI(
    title="SkillsHub",
    description="Install agent skills once, sync them to every tool and host",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SkillsHubError)
async def skillshub_error_handler(request: Request, exc: SkillsHubError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": error_payload(exc)})


# Mount routers
app.include_router(skills.router, prefix="/api/skills", tags=["skills"])
app.include_router(tools.router, prefix="/api/tools", tags=["tools"])
app.include_router(remote_hosts.router, prefix="/api/remote-hosts", tags=["remote-hosts"])
app.include_router(custom_targets.router, prefix="/api/custom-targets", tags=["custom-targets"])
app.include_router(settings_router.router, prefix="/api/settings", tags=["settings"])


@app.get("/health")
async def health():
    return {"status": "ok", "service": "skillshub"}
