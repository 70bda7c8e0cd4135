# cloudcall_sdk/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
cloudcall SDK

Provider-agnostic engine for declaratively described remote operations:
descriptors are compiled into requests, signed by filters, dispatched
asynchronously and interpreted into a payload or a normalized error, with
job-based operations polled to completion.
"""

from cloudcall_sdk.config import EngineSettings, build_dispatcher, build_poll_policy
from cloudcall_sdk.core.operational_context import OperationContext
from cloudcall_sdk.rest import (
    CallArguments,
    ErrorKind,
    OperationDescriptor,
    OperationFuture,
    Param,
    ParamRole,
    RemoteOperationError,
    RequestOptions,
    RestEngine,
    ResultKind,
)

__version__ = "1.0.0"

__all__ = [
    "EngineSettings",
    "build_dispatcher",
    "build_poll_policy",
    "OperationContext",
    "CallArguments",
    "ErrorKind",
    "OperationDescriptor",
    "OperationFuture",
    "Param",
    "ParamRole",
    "RemoteOperationError",
    "RequestOptions",
    "RestEngine",
    "ResultKind",
    "__version__",
]
