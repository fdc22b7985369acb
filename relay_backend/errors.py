"""Mapping of relay errors onto HTTP responses."""

from fastapi.responses import JSONResponse

from relay_core.exceptions import RelayError

STATUS_BY_KIND = {
    "structural": 400,
    "not_found": 404,
    "conflict": 409,
    "capacity": 409,
    "ordering": 409,
    "transport": 502,
    "timeout": 504,
}


def status_for(error: RelayError) -> int:
    return STATUS_BY_KIND.get(error.kind, 500)


def error_response(error: RelayError) -> JSONResponse:
    return JSONResponse({"error": error.to_dict()}, status_code=status_for(error))
