from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional
import hmac
import os

from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

import database
from generation import (
    TemplateNotFoundError,
    activate_recurring_template,
    deactivate_recurring_template,
    process_recurring_templates,
)
from logging_setup import setup_logging
from models import SweepResponse, Template
from recurrence import MalformedRuleError

load_dotenv()

CRON_SECRET = os.getenv("CRON_SECRET", "")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(_app: FastAPI):
    # Startup
    setup_logging()
    database.init_db()
    yield
    # Shutdown (nothing to do)

app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def verify_cron_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """
    Require "Authorization: Bearer <CRON_SECRET>" in production.
    Production without a configured secret rejects every call.
    """
    if ENVIRONMENT != "production":
        return

    if not CRON_SECRET or not authorization or not hmac.compare_digest(
        authorization.encode(), f"Bearer {CRON_SECRET}".encode()
    ):
        logger.warning("[Cron] Rejected generate-tasks call with missing or invalid credentials")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


@app.post("/api/cron/generate-tasks", dependencies=[Depends(verify_cron_secret)])
def generate_tasks():
    """Generate tasks from every due recurring template. Called periodically by the scheduler."""
    try:
        results = process_recurring_templates()
    except Exception as e:
        logger.exception("[Cron] Error processing recurring templates")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": str(e) or "Unknown error"},
        )

    generated = sum(1 for r in results if r.success)
    failed = len(results) - generated
    logger.info("[Cron] Generated {} tasks, {} failures", generated, failed)

    return SweepResponse(
        generated=generated,
        failed=failed,
        results=results,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@app.get("/api/cron/generate-tasks")
def generate_tasks_status() -> dict:
    """Liveness check; never generates anything."""
    return {
        "status": "ok",
        "endpoint": "generate-tasks",
        "description": "Processes recurring templates and generates tasks",
        "method": "POST to trigger generation",
    }


@app.get("/templates")
def get_templates() -> list[Template]:
    return database.get_all_templates()


@app.get("/templates/{template_id}")
def get_template(template_id: str) -> Template:
    template = database.get_template_db(template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


@app.post("/templates/{template_id}/activate")
def activate_template(template_id: str, rule: dict[str, Any] = Body(...)) -> Template:
    try:
        return activate_recurring_template(template_id, rule)
    except MalformedRuleError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except TemplateNotFoundError:
        raise HTTPException(status_code=404, detail="Template not found")


@app.post("/templates/{template_id}/deactivate")
def deactivate_template(template_id: str) -> Template:
    try:
        return deactivate_recurring_template(template_id)
    except TemplateNotFoundError:
        raise HTTPException(status_code=404, detail="Template not found")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
