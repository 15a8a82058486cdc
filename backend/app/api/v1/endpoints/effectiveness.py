"""Effectiveness API endpoints.

- POST /api/v1/clients/{client_id}/effectiveness/runs - Start (or reuse) a run
- GET /api/v1/clients/{client_id}/effectiveness/latest - Latest run for a client
- GET /api/v1/effectiveness/runs/{run_id} - Run with criterion scores
- GET /api/v1/effectiveness/runs/{run_id}/status - Polling payload
- POST /api/v1/effectiveness/runs/{run_id}/insights - Regenerate insights
- GET /api/v1/effectiveness/runs/{run_id}/insights - Cached insights

Domain errors are returned as {"error": str, "code": str, "request_id": str}:
ValidationError -> 400, not found -> 404, InsightsNotAvailableError -> 409.
"""

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse

from app.core.logging import get_logger
from app.schemas.effectiveness import (
    CriterionScoreResponse,
    InsightsResponse,
    ProgressDetail,
    RunDetailResponse,
    RunResponse,
    RunStatusResponse,
    StartRunRequest,
    StartRunResponse,
)
from app.services.effectiveness import RunDetails, RunOrchestrator, get_orchestrator
from app.services.errors import (
    ClientNotFoundError,
    EffectivenessError,
    InsightsNotAvailableError,
    RunNotFoundError,
    ValidationError,
)

logger = get_logger(__name__)

router = APIRouter()

ERROR_STATUS_CODES: dict[type[EffectivenessError], int] = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    ClientNotFoundError: status.HTTP_404_NOT_FOUND,
    RunNotFoundError: status.HTTP_404_NOT_FOUND,
    InsightsNotAvailableError: status.HTTP_409_CONFLICT,
}

NOT_FOUND_RESPONSE = {
    404: {
        "description": "Client or run not found",
        "content": {
            "application/json": {
                "example": {
                    "error": "Run not found: <uuid>",
                    "code": "NOT_FOUND",
                    "request_id": "<request_id>",
                }
            }
        },
    }
}


def _get_request_id(request: Request) -> str:
    """Get request_id from request state."""
    return getattr(request.state, "request_id", "unknown")


def _error_response(request_id: str, exc: EffectivenessError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Effectiveness request error",
        extra={
            "request_id": request_id,
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
        },
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "code": exc.code, "request_id": request_id},
    )


def _run_response(details: RunDetails) -> RunDetailResponse:
    run = details.run
    return RunDetailResponse(
        run=RunResponse(
            id=run.id,
            client_id=run.client_id,
            status=run.status,
            effective_status=details.effective_status.value,
            overall_score=run.overall_score,
            screenshot_url=run.screenshot_url,
            full_page_screenshot_url=run.full_page_screenshot_url,
            progress=details.progress,
            progress_detail=ProgressDetail.model_validate(details.progress_detail),
            error_message=run.error_message,
            created_at=run.created_at,
            updated_at=run.updated_at,
        ),
        criterion_scores=[CriterionScoreResponse.model_validate(s) for s in details.scores],
    )


@router.post(
    "/clients/{client_id}/effectiveness/runs",
    response_model=StartRunResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start an effectiveness run",
    description=(
        "Start a run for the client and its competitors. Returns the id of the "
        "in-flight run instead when one exists and force is false."
    ),
    responses=NOT_FOUND_RESPONSE,
)
async def start_run(
    request: Request,
    client_id: str,
    data: StartRunRequest | None = None,
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
) -> StartRunResponse | JSONResponse:
    request_id = _get_request_id(request)
    force = data.force if data is not None else False
    logger.debug(
        "Start effectiveness run request",
        extra={"request_id": request_id, "client_id": client_id, "force": force},
    )
    try:
        run_id = await orchestrator.start_run(client_id, force=force)
    except (ValidationError, ClientNotFoundError) as e:
        return _error_response(request_id, e)
    return StartRunResponse(run_id=run_id)


@router.get(
    "/clients/{client_id}/effectiveness/latest",
    response_model=RunDetailResponse,
    summary="Get the latest run for a client",
    responses=NOT_FOUND_RESPONSE,
)
async def get_latest_run(
    request: Request,
    client_id: str,
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
) -> RunDetailResponse | JSONResponse:
    request_id = _get_request_id(request)
    try:
        details = await orchestrator.get_latest_run(client_id)
    except (ClientNotFoundError, RunNotFoundError) as e:
        return _error_response(request_id, e)
    return _run_response(details)


@router.get(
    "/effectiveness/runs/{run_id}",
    response_model=RunDetailResponse,
    summary="Get a run with its criterion scores",
    responses=NOT_FOUND_RESPONSE,
)
async def get_run(
    request: Request,
    run_id: str,
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
) -> RunDetailResponse | JSONResponse:
    request_id = _get_request_id(request)
    try:
        details = await orchestrator.get_run(run_id)
    except RunNotFoundError as e:
        return _error_response(request_id, e)
    return _run_response(details)


@router.get(
    "/effectiveness/runs/{run_id}/status",
    response_model=RunStatusResponse,
    summary="Poll run status",
    description="Served from the live progress tracker while the run executes.",
    responses=NOT_FOUND_RESPONSE,
)
async def get_run_status(
    request: Request,
    run_id: str,
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
) -> RunStatusResponse | JSONResponse:
    request_id = _get_request_id(request)
    try:
        details = await orchestrator.get_run(run_id)
    except RunNotFoundError as e:
        return _error_response(request_id, e)
    return RunStatusResponse(
        run_id=details.run.id,
        status=details.run.status,
        effective_status=details.effective_status.value,
        should_continue_polling=details.should_continue_polling,
        progress=details.progress,
        progress_detail=ProgressDetail.model_validate(details.progress_detail),
    )


@router.post(
    "/effectiveness/runs/{run_id}/insights",
    response_model=InsightsResponse,
    summary="Generate insights for a run",
    description="Regenerates insights and overwrites any cached result.",
    responses={
        **NOT_FOUND_RESPONSE,
        409: {"description": "Run has no completed or partial results"},
    },
)
async def generate_insights(
    request: Request,
    run_id: str,
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
) -> InsightsResponse | JSONResponse:
    request_id = _get_request_id(request)
    try:
        result = await orchestrator.generate_insights(run_id)
    except (RunNotFoundError, InsightsNotAvailableError) as e:
        return _error_response(request_id, e)
    return InsightsResponse.model_validate(result.to_dict())


@router.get(
    "/effectiveness/runs/{run_id}/insights",
    response_model=InsightsResponse,
    summary="Get cached insights for a run",
    responses=NOT_FOUND_RESPONSE,
)
async def get_insights(
    request: Request,
    run_id: str,
    orchestrator: RunOrchestrator = Depends(get_orchestrator),
) -> InsightsResponse | JSONResponse:
    request_id = _get_request_id(request)
    try:
        insights = await orchestrator.get_cached_insights(run_id)
    except RunNotFoundError as e:
        return _error_response(request_id, e)
    if insights is None:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={
                "error": f"No insights generated for run {run_id}",
                "code": "NOT_FOUND",
                "request_id": request_id,
            },
        )
    return InsightsResponse.model_validate(insights)
