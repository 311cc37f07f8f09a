from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.orm import Session
from sqlalchemy import text, inspect
from pydantic import BaseModel
from datetime import datetime, timezone
import structlog, time, uvicorn

from portal.core.logging import configure_structlog
from portal.core.database import get_db, engine, init_db
from portal.core.errors import WorkflowError
from portal.metrics import init_metrics_zero, request_latency_seconds
from portal.api import activity, deliverables, feedback, revisions
from portal.deps.auth import require_role
from portal.services.notify import set_webhook_url, get_webhook_url
from portal.utils.activity_sink import ACTIVITY_DIR
from portal.utils.report import PACK_DIR

configure_structlog()
logger = structlog.get_logger("portal")

# FastAPI app
app = FastAPI(
    title="Client Delivery Portal API",
    description="Deliverable feedback, approvals and revision tracking",
    version="0.3.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_credentials=True,
    allow_methods=["*"], allow_headers=["*"],
)

app.include_router(deliverables.router)
app.include_router(feedback.router)
app.include_router(revisions.router)
app.include_router(activity.router)


@app.on_event("startup")
def on_startup():
    tables = init_db()
    init_metrics_zero()
    logger.info("startup", database=engine.name, tables=tables,
                activity_dir=str(ACTIVITY_DIR), audit_pack_dir=str(PACK_DIR))


@app.middleware("http")
async def observe_latency(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    request_latency_seconds.observe(time.perf_counter() - start)
    return response


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    logger.info("workflow_error", path=request.url.path, code=exc.code, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "database": "connected",
            "tables": inspect(engine).get_table_names(),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as e:
        logger.error("health_check_failed", error=str(e))
        return JSONResponse(status_code=503, content={
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })


@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


class SlackWebhookIn(BaseModel):
    webhook_url: str

@app.post("/config/slack-webhook", response_model=dict)
def api_set_slack_webhook(body: SlackWebhookIn, user=Depends(require_role("admin"))):
    url = body.webhook_url.strip()
    if not url.startswith("https://hooks.slack.com/"):
        raise HTTPException(status_code=400, detail="Invalid Slack webhook URL")
    set_webhook_url(url)
    logger.info("webhook_configured", actor_id=user.id)
    return {"saved": True}

@app.get("/config/slack-webhook", response_model=dict)
def api_get_slack_webhook(user=Depends(require_role("viewer", "editor", "admin"))):
    val = get_webhook_url()
    masked = (val[:20] + "…") if val else None
    return {"configured": bool(val), "webhook_url_preview": masked}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
