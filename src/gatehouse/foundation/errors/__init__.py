"""Unified error handling for gatehouse.

- ErrorCode/FailureType: classification enums
- AuthFailure: tagged failure returned by token resolution
- GatewayError: client-facing problem responses
- Result/Ok/Err: outcomes the protection boundary pattern-matches on
- GatehouseException/ServerBindFailure: raised lifecycle faults
"""

from typing import Any

from .errors import (
    DEPENDENCY_UNAVAILABLE_MESSAGE,
    AuthFailure,
    ErrorCode,
    FailureType,
    GatehouseException,
    GatewayError,
    ServerBindFailure,
)
from .result import Err, Ok, Result

JsonDict = dict[str, Any]

__all__ = [
    "ErrorCode", "FailureType", "AuthFailure", "GatewayError", "DEPENDENCY_UNAVAILABLE_MESSAGE",
    "GatehouseException", "ServerBindFailure",
    "Result", "Ok", "Err",
    "JsonDict",
]
