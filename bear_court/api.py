"""
Bear Court API
==============

FastAPI surface over the court context.

Endpoints:
- GET  /health                             - Health check
- POST /auth/anonymous                     - Anonymous sign-in
- POST /cases                              - Open a case
- GET  /cases/{case_id}                    - Join / view a case
- POST /cases/{case_id}/role               - Take a side
- POST /cases/{case_id}/statement          - Submit a statement
- POST /cases/{case_id}/adjudicate         - Ask for the verdict
- POST /cases/{case_id}/objection          - Object and re-adjudicate
- POST /cases/{case_id}/objection/retry    - Retry a failed re-adjudication
- POST /cases/{case_id}/feedback           - Like / dislike the verdict
- GET  /stats                              - Global satisfaction stats
- WS   /ws/cases/{case_id}?token=...       - Live case snapshots

Every CourtError becomes one JSON body {kind, message, retryable[, retry_after]}.

Run with:
    uvicorn bear_court.api:app --host 0.0.0.0 --port 8000
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Depends, Header, Request, WebSocket, WebSocketDisconnect, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, get_settings
from .context import CourtContext
from .errors import CourtError
from .identity import Identity
from .machine import derive_viewer_state
from .feedback import stats_response
from .schemas import (
    AnonymousSignInResponse,
    Case,
    CaseResponse,
    ClaimRoleRequest,
    ClaimRoleResponse,
    CreateCaseRequest,
    CreateCaseResponse,
    ErrorResponse,
    FeedbackRequest,
    FeedbackResponse,
    HealthResponse,
    ObjectionRequest,
    ResetCaseRequest,
    StatementRequest,
    StatsResponse,
    VerdictView,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    401: {"model": ErrorResponse, "description": "Sign-in required"},
    404: {"model": ErrorResponse, "description": "Unknown case code"},
    409: {"model": ErrorResponse, "description": "Action not possible in the current case state"},
    503: {"model": ErrorResponse, "description": "Case store unavailable"},
}

ADJUDICATION_RESPONSES = {
    **ERROR_RESPONSES,
    429: {"model": ErrorResponse, "description": "Judge cooling down after throttling"},
    502: {"model": ErrorResponse, "description": "Judge failed; retry"},
}


# =============================================================================
# Dependencies
# =============================================================================

def get_court(request: Request) -> CourtContext:
    return request.app.state.court


def get_identity(
    request: Request,
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Identity:
    """Identity of the caller from `Authorization: Bearer <token>`"""
    return get_court(request).identity.resolve_header(authorization)


def build_case_response(court: CourtContext, case: Case, identity: Optional[Identity], cls=CaseResponse, **extra):
    uid = identity.uid if identity else None
    document = case.to_document()
    return cls(
        case=document,
        viewer_state=derive_viewer_state(case, uid),
        role=case.role_of(uid),
        verdict=VerdictView.from_document(document["verdict"]) if document.get("verdict") else None,
        cooldown_seconds=court.guard.cooldown_remaining(case.id),
        adjudicating=court.guard.is_in_flight(case.id),
        **extra,
    )


# =============================================================================
# FastAPI App
# =============================================================================

def create_app(
    court_factory: Optional[Callable[[], CourtContext]] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        court_factory: Creates the (uninitialized) court context at startup;
            defaults to one built from the settings
        settings: Application settings (default: from environment)
    """
    settings = settings or get_settings()
    factory = court_factory or (lambda: CourtContext(settings))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        court = factory()
        await court.init()
        app.state.court = court
        try:
            yield
        finally:
            await court.dispose()

    app = FastAPI(
        title="Bear Court",
        description="Two-party dispute mediation with an AI judge",
        version=settings.service_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    cors_origins = settings.cors_origins()
    logger.info(f"CORS allow origins: {cors_origins}")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.exception_handler(CourtError)
    async def court_error_handler(request: Request, exc: CourtError):
        if exc.status_code >= 500:
            logger.warning(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    # -------------------------------------------------------------------------
    # Health & identity
    # -------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health_check(court: CourtContext = Depends(get_court)):
        """Health check endpoint"""
        return HealthResponse(
            status="healthy" if court.ready else "degraded",
            version=court.settings.service_version,
            oracle_mode=court.settings.oracle_mode,
            store_backend=court.settings.store_backend,
            context_state=court.state.value,
            timestamp=datetime.now(),
        )

    @app.post("/auth/anonymous", response_model=AnonymousSignInResponse, tags=["Auth"])
    async def sign_in_anonymously(court: CourtContext = Depends(get_court)):
        identity, token = court.identity.sign_in_anonymously()
        return AnonymousSignInResponse(uid=identity.uid, access_token=token)

    # -------------------------------------------------------------------------
    # Cases
    # -------------------------------------------------------------------------

    @app.post("/cases", response_model=CreateCaseResponse, tags=["Cases"], responses=ERROR_RESPONSES)
    async def create_case(
        body: CreateCaseRequest,
        court: CourtContext = Depends(get_court),
        identity: Identity = Depends(get_identity),
    ):
        case_id = await court.machine.create_case(body.role, identity.uid)
        return CreateCaseResponse(case_id=case_id)

    @app.get("/cases/{case_id}", response_model=CaseResponse, tags=["Cases"], responses=ERROR_RESPONSES)
    async def join_case(
        case_id: str,
        court: CourtContext = Depends(get_court),
        identity: Identity = Depends(get_identity),
    ):
        case, _ = await court.machine.join_case(case_id, identity.uid)
        return build_case_response(court, case, identity)

    @app.post("/cases/{case_id}/role", response_model=ClaimRoleResponse, tags=["Cases"], responses=ERROR_RESPONSES)
    async def claim_role(
        case_id: str,
        body: ClaimRoleRequest,
        court: CourtContext = Depends(get_court),
        identity: Identity = Depends(get_identity),
    ):
        result = await court.machine.claim_role(case_id, body.role, identity.uid)
        return build_case_response(court, result.case, identity, ClaimRoleResponse, claimed=result.claimed)

    @app.post("/cases/{case_id}/statement", response_model=CaseResponse, tags=["Cases"], responses=ERROR_RESPONSES)
    async def submit_statement(
        case_id: str,
        body: StatementRequest,
        court: CourtContext = Depends(get_court),
        identity: Identity = Depends(get_identity),
    ):
        case = await court.machine.submit_statement(case_id, identity.uid, body.text)
        return build_case_response(court, case, identity)

    @app.post("/cases/{case_id}/adjudicate", response_model=CaseResponse, tags=["Verdicts"], responses=ADJUDICATION_RESPONSES)
    async def adjudicate(
        case_id: str,
        court: CourtContext = Depends(get_court),
        identity: Identity = Depends(get_identity),
    ):
        case = await court.machine.trigger_adjudication(case_id, identity.uid)
        return build_case_response(court, case, identity)

    @app.post("/cases/{case_id}/objection", response_model=CaseResponse, tags=["Verdicts"], responses=ADJUDICATION_RESPONSES)
    async def file_objection(
        case_id: str,
        body: ObjectionRequest,
        court: CourtContext = Depends(get_court),
        identity: Identity = Depends(get_identity),
    ):
        case = await court.machine.file_objection(case_id, identity.uid, body.text)
        return build_case_response(court, case, identity)

    @app.post("/cases/{case_id}/objection/retry", response_model=CaseResponse, tags=["Verdicts"], responses=ADJUDICATION_RESPONSES)
    async def retry_objection(
        case_id: str,
        court: CourtContext = Depends(get_court),
        identity: Identity = Depends(get_identity),
    ):
        case = await court.machine.retry_objection(case_id, identity.uid)
        return build_case_response(court, case, identity)

    # -------------------------------------------------------------------------
    # Feedback
    # -------------------------------------------------------------------------

    @app.post("/cases/{case_id}/feedback", response_model=FeedbackResponse, tags=["Feedback"], responses=ERROR_RESPONSES)
    async def record_feedback(
        case_id: str,
        body: FeedbackRequest,
        court: CourtContext = Depends(get_court),
        identity: Identity = Depends(get_identity),
    ):
        outcome = await court.feedback.record_feedback(case_id, identity.uid, body.like)
        return build_case_response(
            court,
            outcome.case,
            identity,
            FeedbackResponse,
            recorded=outcome.recorded,
            stats=stats_response(outcome.stats),
        )

    @app.get("/stats", response_model=StatsResponse, tags=["Feedback"])
    async def get_stats(court: CourtContext = Depends(get_court)):
        return stats_response(await court.feedback.get_stats())

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    if settings.dev_mode:
        @app.post("/debug/cases/{case_id}/reset", response_model=CaseResponse, tags=["System"], include_in_schema=False)
        async def reset_case(
            case_id: str,
            body: ResetCaseRequest,
            court: CourtContext = Depends(get_court),
        ):
            case = await court.machine.reset_case(case_id, body)
            return build_case_response(court, case, None)

    # -------------------------------------------------------------------------
    # Live updates
    # -------------------------------------------------------------------------

    @app.websocket("/ws/cases/{case_id}")
    async def ws_case(websocket: WebSocket, case_id: str, token: Optional[str] = Query(None)):
        """
        Push a snapshot of the case on connect and after every change.

        Browsers cannot set headers on WebSockets, so the identity token comes
        as a query parameter.
        """
        court: CourtContext = websocket.app.state.court
        await websocket.accept()
        try:
            identity = court.identity.resolve(token)
        except CourtError as e:
            await websocket.send_json(e.to_dict())
            await websocket.close(code=4401)
            return

        async def pump():
            try:
                async for case, _ in court.machine.watch(case_id, identity.uid):
                    response = build_case_response(court, case, identity)
                    await websocket.send_json(response.model_dump(mode="json"))
            except CourtError as e:
                await websocket.send_json(e.to_dict())
                await websocket.close(code=4404 if e.status_code == 404 else 1011)
            except (WebSocketDisconnect, RuntimeError):
                raise
            except Exception as e:
                # A document that no longer validates ends the feed, not the worker
                logger.error(f"Case feed for {case_id} failed: {e}")
                await websocket.send_json(CourtError().to_dict())
                await websocket.close(code=1011)

        pump_task = asyncio.create_task(pump())
        try:
            while not pump_task.done():
                receive_task = asyncio.create_task(websocket.receive_text())
                done, _ = await asyncio.wait({receive_task, pump_task}, return_when=asyncio.FIRST_COMPLETED)
                if receive_task not in done:
                    receive_task.cancel()
                    break
                receive_task.result()
        except WebSocketDisconnect:
            pass
        finally:
            pump_task.cancel()
            try:
                await pump_task
            except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
                pass

    return app


app = create_app()
