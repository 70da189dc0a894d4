from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

KIND_STATUS = {
    "Validation": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "Unauthorized": status.HTTP_403_FORBIDDEN,
    "NotFound": status.HTTP_404_NOT_FOUND,
    "Conflict": status.HTTP_409_CONFLICT,
    "PreconditionFailed": status.HTTP_400_BAD_REQUEST,
    "Unexpected": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def respond(result: dict, success_status: int = status.HTTP_200_OK) -> JSONResponse:
    """Send an operation result, using the failure kind to pick the status code."""
    if result.get("success"):
        return JSONResponse(status_code=success_status, content=result)
    code = KIND_STATUS.get(result.get("kind"), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=code, content=result)


def found_or_404(value, detail: str = "Not found"):
    if value is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)
    return value
