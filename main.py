# FILE: main.py
"""
repokeeper - FastAPI Application
Version: 0.1.0

Features:
- Convention engine: branch names, commit subjects, PR titles, ticket keys
- Query orchestrator: ranked retrieval of repository / issue data with
  deterministic fallback (structured API -> gh CLI -> delegated analysis)
"""
import logging
import os

from fastapi import FastAPI
from dotenv import load_dotenv

# Load .env FIRST before any other imports that might need env vars
load_dotenv()

from repokeeper import __version__
from repokeeper.conventions.router import router as conventions_router
from repokeeper.retrieval.orchestrator import get_orchestrator
from repokeeper.retrieval.router import router as retrieval_router
from repokeeper.retrieval.schemas import StrategyKind

logging.basicConfig(
    level=os.getenv("REPOKEEPER_LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("repokeeper")

app = FastAPI(
    title="repokeeper",
    version=__version__,
    description="Repository conventions and multi-source retrieval orchestration",
)


# ====== STARTUP ======

@app.on_event("startup")
def on_startup():
    logger.info("[startup] Checking retrieval strategies...")
    for entry in get_orchestrator().describe_strategies():
        ceiling = entry["capacity_ceiling"]
        logger.info(
            f"[startup]   {entry['strategy']}: ceiling="
            f"{'unbounded' if ceiling is None else ceiling}"
        )

    if os.getenv("GITHUB_TOKEN") or os.getenv("GH_TOKEN"):
        logger.info("[startup] GITHUB_TOKEN: [OK] set")
    else:
        logger.info("[startup] GITHUB_TOKEN: [X] NOT SET - structured API limited to public repositories")

    if os.getenv("REPOKEEPER_JIRA_URL"):
        logger.info("[startup] REPOKEEPER_JIRA_URL: [OK] set (enables structured issue lookups)")
    else:
        logger.info(f"[startup] REPOKEEPER_JIRA_URL: [X] NOT SET - issues skip {StrategyKind.STRUCTURED_API.value}")


# ====== ROUTERS ======

app.include_router(conventions_router)
app.include_router(retrieval_router)


# ====== PUBLIC ENDPOINTS ======

@app.get("/ping")
def ping():
    """Health check (public)."""
    return {"status": "ok", "version": __version__}

