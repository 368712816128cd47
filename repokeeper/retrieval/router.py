# FILE: repokeeper/retrieval/router.py
"""
FastAPI router for the query orchestrator.

POST /retrieval/fetch always answers 200 with the tagged outcome and the
attempt trail; the outcome tag, not the HTTP status, says what happened.
Malformed requests are rejected by pydantic (422); a request no strategy
can serve is 400.
"""
import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException

from repokeeper.retrieval.orchestrator import NoSuitableStrategy, QueryOrchestrator, get_orchestrator
from repokeeper.retrieval.schemas import RetrievalRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/retrieval", tags=["retrieval"])


@router.post("/fetch")
async def fetch_resource(
    body: RetrievalRequest,
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    try:
        report = await orchestrator.fetch_with_report(body)
    except NoSuitableStrategy as e:
        raise HTTPException(status_code=400, detail=str(e))
    return report.to_dict()


@router.get("/strategies")
def list_strategies(
    orchestrator: QueryOrchestrator = Depends(get_orchestrator),
) -> List[Dict[str, Any]]:
    return orchestrator.describe_strategies()
