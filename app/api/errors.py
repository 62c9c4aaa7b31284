import structlog
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.core.exceptions import SchedulingError

logger = structlog.get_logger(__name__)

STATUS_BY_KIND = {
    "validation_error": 422,
    "not_found": status.HTTP_404_NOT_FOUND,
    "scheduling_conflict": status.HTTP_409_CONFLICT,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "concurrency_conflict": status.HTTP_409_CONFLICT,
    "policy_violation": status.HTTP_403_FORBIDDEN,
}


async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    logger.warning(
        "Request rejected",
        path=request.url.path,
        kind=exc.kind,
        status_code=status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SchedulingError, scheduling_error_handler)
