"""
Referral Risk API

FastAPI application exposing the risk engine and its review workflow.

Endpoints:
- POST /assess/registration: Assess a registration attempt
- POST /assess/invitation: Assess an invitation
- GET /alerts, POST /alerts/{id}/resolve: Alert triage
- GET /cases, POST /cases/{id}/assign|escalate|decision: Review workflow
- GET /accounts/{user_id}/status: Account status
- GET /health: Health check
- GET /metrics: Prometheus metrics

Assessments answer 202 when the decision is REVIEW (accepted, pending
manual review).
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..config import settings
from ..errors import CaseNotFoundError, InvalidTransitionError
from ..metrics import metrics, setup_metrics
from ..schemas import (
    AccountStatus,
    AlertSeverity,
    AnomalyAlert,
    AssignCaseRequest,
    CaseStatus,
    EscalateCaseRequest,
    InvitationAssessmentRequest,
    RegistrationAssessmentRequest,
    ResolveAlertRequest,
    ReviewCase,
    ReviewDecision,
    RiskDecision,
)
from ..utils.logger import get_logger
from .auth import require_admin_token, require_api_token, require_metrics_token
from .dependencies import Services, build_services, close_services, get_services

logger = logging.getLogger("referral_guard.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Builds the services for the configured backend, starts the
    notification scheduler and tears everything down on shutdown.
    """
    get_logger()
    services = await build_services()
    app.state.services = services

    # Verify Redis connection
    if services.redis_client is not None:
        try:
            await services.redis_client.ping()
        except Exception as e:
            logger.warning("Redis connection failed: %s", e)

    # Standalone exporter; /metrics is served by the app either way
    if settings.metrics_external_enabled:
        setup_metrics()

    if settings.scheduler_enabled:
        services.scheduler.start()

    logger.info("Referral risk API started (%s backend)", settings.storage_backend)

    yield

    await close_services(services)
    app.state.services = None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Referral Risk API",
        description="Referral-abuse risk assessment and review workflow",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    return app


app = create_app()


@app.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """
    Health check endpoint.

    Returns service health status and component availability.
    """
    components: dict[str, bool] = {}

    if services.redis_client is not None:
        try:
            await services.redis_client.ping()
            components["redis"] = True
        except Exception:
            components["redis"] = False

    if services.postgres is not None:
        try:
            components["postgres"] = await services.postgres.health_check()
        except Exception:
            components["postgres"] = False

    if settings.scheduler_enabled:
        components["scheduler"] = services.scheduler.is_running

    for name, up in components.items():
        metrics.component_health.labels(component=name).set(1 if up else 0)

    return {
        "status": "healthy" if all(components.values()) else "degraded",
        "backend": settings.storage_backend,
        "components": components,
        "scheduler": services.scheduler.status(),
    }


@app.get("/metrics")
def metrics_endpoint(_: None = Depends(require_metrics_token)):
    """Expose Prometheus metrics with optional token auth."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# =============================================================================
# Assessment
# =============================================================================

@app.post("/assess/registration", response_model=RiskDecision)
async def assess_registration(
    body: RegistrationAssessmentRequest,
    response: Response,
    services: Services = Depends(get_services),
    _: None = Depends(require_api_token),
):
    """Assess a registration attempt, optionally made through an invite."""
    decision = await services.engine.assess_registration(
        body.to_attempt(),
        inviter_id=body.inviter_id,
        user_id=body.user_id,
    )
    if decision.accepted_pending:
        response.status_code = 202
    return decision


@app.post("/assess/invitation", response_model=RiskDecision)
async def assess_invitation(
    body: InvitationAssessmentRequest,
    response: Response,
    services: Services = Depends(get_services),
    _: None = Depends(require_api_token),
):
    """Assess an invitation before it is sent."""
    decision = await services.engine.assess_invitation(
        body.inviter_id,
        body.invitee_email,
        body.ip,
        user_agent=body.user_agent,
        device_fingerprint=body.device_fingerprint,
    )
    if decision.accepted_pending:
        response.status_code = 202
    return decision


# =============================================================================
# Alerts
# =============================================================================

@app.get("/alerts", response_model=list[AnomalyAlert])
async def list_alerts(
    severity: Optional[AlertSeverity] = None,
    limit: int = 50,
    services: Services = Depends(get_services),
    _: None = Depends(require_admin_token),
):
    """Active (pending or investigating) alerts, newest first."""
    return await services.alerts.get_active_alerts(severity=severity, limit=limit)


@app.post("/alerts/{alert_id}/resolve")
async def resolve_alert(
    alert_id: str,
    body: ResolveAlertRequest,
    services: Services = Depends(get_services),
    _: None = Depends(require_admin_token),
):
    """Resolve an alert, or close it as a false positive."""
    if await services.alerts.get_alert(alert_id) is None:
        raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")

    if body.false_positive:
        closed = await services.alerts.mark_false_positive(alert_id, body.resolved_by)
    else:
        closed = await services.alerts.resolve_alert(alert_id, body.resolved_by)
    return {"alert_id": alert_id, "resolved": closed}


# =============================================================================
# Review cases
# =============================================================================

@app.get("/cases", response_model=list[ReviewCase])
async def list_cases(
    status: Optional[CaseStatus] = None,
    assigned_to: Optional[str] = None,
    limit: int = 50,
    services: Services = Depends(get_services),
    _: None = Depends(require_admin_token),
):
    """Review cases, newest first."""
    return await services.cases.get_cases(status=status, assigned_to=assigned_to, limit=limit)


@app.post("/cases/{case_id}/assign", response_model=ReviewCase)
async def assign_case(
    case_id: str,
    body: AssignCaseRequest,
    services: Services = Depends(get_services),
    _: None = Depends(require_admin_token),
):
    try:
        return await services.cases.assign(case_id, body.reviewer_id)
    except CaseNotFoundError:
        raise HTTPException(status_code=404, detail=f"Case {case_id} not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.post("/cases/{case_id}/escalate", response_model=ReviewCase)
async def escalate_case(
    case_id: str,
    body: EscalateCaseRequest,
    services: Services = Depends(get_services),
    _: None = Depends(require_admin_token),
):
    try:
        return await services.cases.escalate(case_id, body.reason, body.escalated_by)
    except CaseNotFoundError:
        raise HTTPException(status_code=404, detail=f"Case {case_id} not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


@app.post("/cases/{case_id}/decision", response_model=ReviewCase)
async def decide_case(
    case_id: str,
    decision: ReviewDecision,
    services: Services = Depends(get_services),
    _: None = Depends(require_admin_token),
):
    """Record a reviewer decision and apply its enforcement action."""
    try:
        return await services.cases.decide(case_id, decision)
    except CaseNotFoundError:
        raise HTTPException(status_code=404, detail=f"Case {case_id} not found")
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))


# =============================================================================
# Accounts
# =============================================================================

@app.get("/accounts/{user_id}/status", response_model=AccountStatus)
async def account_status(
    user_id: str,
    services: Services = Depends(get_services),
    _: None = Depends(require_admin_token),
):
    return await services.enforcement.get_account_status(user_id)


# Entry point for running directly
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "referral_guard.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.app_debug,
    )
