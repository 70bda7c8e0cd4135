# cloudcall_sdk/rest/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
REST operation engine - Public API

Declarative operation descriptors driven through a generic
compile → filter → dispatch → interpret pipeline, with async job polling.
All public types are re-exported here for clean imports.
"""

from cloudcall_sdk.rest.errors import (
    # Error taxonomy
    ErrorKind,
    RemoteOperationError,
    InvalidArguments,
    Unauthorized,
    NotFound,
    RateLimited,
    Conflict,
    ServerFault,
    MalformedResponse,
    Timeout,
    Cancelled,
    error_for_kind,
    error_for_status,
)
from cloudcall_sdk.rest.http_types import Request, Response
from cloudcall_sdk.rest.descriptor import (
    # Descriptors
    ParamRole,
    ResultKind,
    Param,
    RequestOptions,
    OperationDescriptor,
    CallArguments,
)
from cloudcall_sdk.rest.compiler import RequestCompiler
from cloudcall_sdk.rest.filters import (
    # Credentials
    Credential,
    CredentialProvider,
    StaticCredentials,
    SessionCredentials,

    # Filters
    RequestFilter,
    FilterChain,
    BearerTokenFilter,
    TokenCookieFilter,
    BasicAuthFilter,
    QuerySigningFilter,
    StaticHeadersFilter,
)
from cloudcall_sdk.rest.handles import TaskHandle, DispatchHandle, OperationFuture
from cloudcall_sdk.rest.dispatcher import Dispatcher, HttpxDispatcher, build_async_client
from cloudcall_sdk.rest.parsers import ParserRegistry, unwrap
from cloudcall_sdk.rest.interpreter import (
    # Interpretation
    Claim,
    ExceptionMapper,
    AbsorbNotFound,
    StandardStatusMapper,
    JsonErrorBodyMapper,
    MapperRegistry,
    ResponseInterpreter,
)
from cloudcall_sdk.rest.jobs import (
    # Jobs
    JobStatus,
    JobHandle,
    JobSnapshot,
    AsyncJob,
    PollPolicy,
    FixedInterval,
    ExponentialBackoff,
    JobStatusReader,
    FieldStatusReader,
    AsyncJobPoller,
)
from cloudcall_sdk.rest.engine import MetricsSink, NoopMetrics, RestEngine

__all__ = [
    # Error taxonomy
    "ErrorKind",
    "RemoteOperationError",
    "InvalidArguments",
    "Unauthorized",
    "NotFound",
    "RateLimited",
    "Conflict",
    "ServerFault",
    "MalformedResponse",
    "Timeout",
    "Cancelled",
    "error_for_kind",
    "error_for_status",

    # Values
    "Request",
    "Response",

    # Descriptors
    "ParamRole",
    "ResultKind",
    "Param",
    "RequestOptions",
    "OperationDescriptor",
    "CallArguments",
    "RequestCompiler",

    # Credentials
    "Credential",
    "CredentialProvider",
    "StaticCredentials",
    "SessionCredentials",

    # Filters
    "RequestFilter",
    "FilterChain",
    "BearerTokenFilter",
    "TokenCookieFilter",
    "BasicAuthFilter",
    "QuerySigningFilter",
    "StaticHeadersFilter",

    # Dispatch
    "TaskHandle",
    "DispatchHandle",
    "OperationFuture",
    "Dispatcher",
    "HttpxDispatcher",
    "build_async_client",

    # Interpretation
    "ParserRegistry",
    "unwrap",
    "Claim",
    "ExceptionMapper",
    "AbsorbNotFound",
    "StandardStatusMapper",
    "JsonErrorBodyMapper",
    "MapperRegistry",
    "ResponseInterpreter",

    # Jobs
    "JobStatus",
    "JobHandle",
    "JobSnapshot",
    "AsyncJob",
    "PollPolicy",
    "FixedInterval",
    "ExponentialBackoff",
    "JobStatusReader",
    "FieldStatusReader",
    "AsyncJobPoller",

    # Engine
    "MetricsSink",
    "NoopMetrics",
    "RestEngine",
]
