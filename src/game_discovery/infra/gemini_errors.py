"""google-api-core の例外を共通の例外体系へ変換する。"""

from __future__ import annotations

import grpc
from google.api_core import exceptions as google_exceptions

from game_discovery.shared.exceptions import (
    BaseAppError,
    RateLimitedError,
    TerminalError,
    TransientError,
)

_GRPC_STATUS_TO_HTTP: dict[grpc.StatusCode, int] = {
    grpc.StatusCode.INVALID_ARGUMENT: 400,
    grpc.StatusCode.FAILED_PRECONDITION: 400,
    grpc.StatusCode.UNAUTHENTICATED: 401,
    grpc.StatusCode.PERMISSION_DENIED: 403,
    grpc.StatusCode.NOT_FOUND: 404,
    grpc.StatusCode.ALREADY_EXISTS: 409,
    grpc.StatusCode.ABORTED: 409,
    grpc.StatusCode.RESOURCE_EXHAUSTED: 429,
    grpc.StatusCode.CANCELLED: 499,
    grpc.StatusCode.INTERNAL: 500,
    grpc.StatusCode.UNKNOWN: 500,
    grpc.StatusCode.UNAVAILABLE: 503,
    grpc.StatusCode.DATA_LOSS: 500,
    grpc.StatusCode.DEADLINE_EXCEEDED: 504,
}

_TRANSIENT_STATUSES = frozenset({408, 499, 500, 502, 503, 504})


def extract_status_code(exc: google_exceptions.GoogleAPIError) -> int | None:
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    if code in _GRPC_STATUS_TO_HTTP:
        return _GRPC_STATUS_TO_HTTP[code]
    response = getattr(exc, "response", None)
    if response is not None:
        status = getattr(response, "status_code", None)
        if isinstance(status, int):
            return status
    return None


def classify_google_error(exc: google_exceptions.GoogleAPIError) -> BaseAppError:
    """Google API の例外を再試行可否の分かる例外へ写す。"""

    status_code = extract_status_code(exc)
    if status_code == 429:
        return RateLimitedError(str(exc), status_code=status_code)
    if status_code is None or status_code in _TRANSIENT_STATUSES:
        return TransientError(str(exc), status_code=status_code)
    return TerminalError(f"{exc} (status={status_code})")


__all__ = ["classify_google_error", "extract_status_code"]
