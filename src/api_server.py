"""
Support Assistant HTTP API
==========================

FastAPI server expose DialogOrchestrator qua HTTP: mỗi session_id có một
DialogState riêng (Redis hoặc in-memory), knowledge base dùng chung.

Usage:
    uvicorn api_server:app --host 0.0.0.0 --port 8000
"""

import os
import logging
from typing import Optional
from contextlib import asynccontextmanager
from dataclasses import asdict

from pathlib import Path
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from pipeline import ChatbotPipeline, create_pipeline
from schema import TurnResult


env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv()

logger = logging.getLogger(__name__)

pipeline: Optional[ChatbotPipeline] = None


def get_pipeline() -> ChatbotPipeline:
    """Get or create pipeline instance."""
    global pipeline
    if pipeline is None:
        pipeline = create_pipeline(
            redis_url=os.getenv("REDIS_URL"),
            enable_monitoring=os.getenv("ENABLE_MONITORING", "true").lower() == "true",
        )
        logger.info("Pipeline initialized")
    return pipeline


@asynccontextmanager
async def lifespan(app: FastAPI):
    get_pipeline()
    yield


app = FastAPI(
    title="Social Support Assistant API",
    description="Bilingual guided assistant for social support schemes",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== Request models ====================

class StartRequest(BaseModel):
    lang: Optional[str] = None


class MessageRequest(BaseModel):
    text: str = ""


class ActionRequest(BaseModel):
    type: str
    domain_id: Optional[str] = None
    focus: Optional[str] = None
    text: Optional[str] = None
    lang: Optional[str] = None


class EscalationRequest(BaseModel):
    name: Optional[str] = None
    contact: Optional[str] = None
    summary: Optional[str] = None


def _turn_response(session_id: str, result: TurnResult) -> dict:
    return {
        "session_id": session_id,
        "state": result.state.to_dict(),
        "message": result.message.to_dict() if result.message is not None else None,
    }


# ==================== Endpoints ====================

@app.get("/health")
async def health():
    p = get_pipeline()
    kb = p.knowledge_base
    redis_ok = p.session_manager.redis_available
    return {
        "status": "healthy" if not kb.is_empty else "degraded",
        "knowledge_base": {
            "schemes": len(kb.schemes),
            "entry_points": len(kb.entry_points),
        },
        "redis": redis_ok,
    }


@app.post("/sessions/{session_id}/start")
async def start_session(session_id: str, body: StartRequest = None):
    lang = body.lang if body is not None else None
    result = get_pipeline().start_session(session_id, lang)
    return _turn_response(session_id, result)


@app.post("/sessions/{session_id}/messages")
async def send_message(session_id: str, body: MessageRequest):
    result = get_pipeline().process_text(session_id, body.text)
    return _turn_response(session_id, result)


@app.post("/sessions/{session_id}/actions")
async def send_action(session_id: str, body: ActionRequest):
    result = get_pipeline().process_action(session_id, body.model_dump())
    return _turn_response(session_id, result)


@app.get("/sessions/{session_id}/state")
async def get_state(session_id: str):
    state = get_pipeline().get_state(session_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return {"session_id": session_id, "state": state.to_dict()}


@app.post("/sessions/{session_id}/escalations")
async def create_escalation(session_id: str, body: EscalationRequest = None):
    body = body or EscalationRequest()
    ticket = get_pipeline().create_ticket(
        session_id, name=body.name, contact=body.contact, summary=body.summary
    )
    if ticket is None:
        raise HTTPException(status_code=404, detail=f"Unknown session: {session_id}")
    return ticket.to_dict()


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    get_pipeline().clear_session(session_id)
    return {"session_id": session_id, "cleared": True}


@app.get("/metrics/json")
async def metrics_json():
    p = get_pipeline()
    if p.monitoring is None:
        raise HTTPException(status_code=404, detail="Monitoring disabled")
    return asdict(p.monitoring.get_dashboard_stats())


@app.get("/metrics/prometheus")
async def metrics_prometheus():
    p = get_pipeline()
    if p.monitoring is None:
        raise HTTPException(status_code=404, detail="Monitoring disabled")
    return Response(
        content=p.monitoring.export_metrics("prometheus") + "\n",
        media_type="text/plain; charset=utf-8",
    )


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    port = int(os.getenv("API_PORT", "8000"))
    uvicorn.run("api_server:app", host="0.0.0.0", port=port, reload=False, log_level="info")
