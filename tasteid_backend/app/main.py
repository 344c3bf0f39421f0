# main.py: backend entrypoint
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tasteid_backend.app.config.manifest import APP_ENV, validate_manifest
from tasteid_backend.app.db.session import init_db
from tasteid_backend.app.routers import tasteid

log = logging.getLogger("uvicorn.error")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    init_db()
    manifest = validate_manifest()
    if manifest["status"] != "ok":
        log.warning(f"[startup] rules missing: {manifest['missing_required']}")
    yield


app = FastAPI(title="TasteID API", lifespan=lifespan)

# --- CORS for Vite dev -------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Routers -----------------------------------------------------------------
app.include_router(tasteid.router)             # /tasteid/...

# --- Health ------------------------------------------------------------------
@app.get("/health")
async def health():
    return {"ok": True, "env": APP_ENV, "rules": validate_manifest()["status"]}

@app.get("/api/health")
async def api_health():
    # mirror the non-prefixed /health so the FE's /api/health succeeds
    return await health()
