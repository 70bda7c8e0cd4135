# cloudcall_sdk/providers/cloudstack.py
# SPDX-License-Identifier: Apache-2.0
"""
CloudStack provider.

CloudStack exposes a single query-string API: every call is a GET against
the API endpoint with `command=<name>` and `response=json`, signed with the
account's secret key. Mutating calls return `{"jobid": ...}` and complete
asynchronously; `queryAsyncJobResult` reports

    jobstatus 0 → in progress, 1 → succeeded, 2 → failed

with the outcome (or the error document) under `jobresult`.

Response envelopes are `{"<command>response": {...}}`; listings nest one
level deeper (`{"listvirtualmachinesresponse": {"count": 2, "virtualmachine": [...]}}`)
and are declared with unwrap depth 2. A 404 on a listing is an empty list.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import logging
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote

from cloudcall_sdk.config import EngineSettings, build_dispatcher, build_poll_policy
from cloudcall_sdk.providers.base import Node
from cloudcall_sdk.rest.descriptor import (
    OperationDescriptor,
    Param,
    ParamRole,
    RequestOptions,
    ResultKind,
)
from cloudcall_sdk.rest.dispatcher import Dispatcher, HttpxDispatcher
from cloudcall_sdk.rest.engine import MetricsSink, RestEngine
from cloudcall_sdk.rest.errors import ErrorKind
from cloudcall_sdk.rest.filters import Credential, QuerySigningFilter, StaticCredentials
from cloudcall_sdk.rest.interpreter import JsonErrorBodyMapper, MapperRegistry
from cloudcall_sdk.rest.jobs import FieldStatusReader, JobHandle, JobStatus, PollPolicy

LOG = logging.getLogger(__name__)

SIGNER = "cloudstack_signer"
ERRORS = "cloudstack_errors"

# CloudStack ApiErrorCode values that have a better home than the status table.
ERROR_KINDS: Mapping[int, ErrorKind] = {
    431: ErrorKind.INVALID_ARGUMENTS,   # PARAM_ERROR
    432: ErrorKind.INVALID_ARGUMENTS,   # UNSUPPORTED_ACTION_ERROR
    436: ErrorKind.RATE_LIMITED,        # API_LIMIT_EXCEED
    530: ErrorKind.SERVER_FAULT,        # INTERNAL_ERROR
    570: ErrorKind.CONFLICT,            # RESOURCE_IN_USE_ERROR
}


def sign_query(query: Sequence[Tuple[str, str]], credential: Credential) -> str:
    """
    CloudStack request signature.

    Parameters are sorted by lower-cased name, values are percent-encoded,
    the joined string is lower-cased and signed with HMAC-SHA1; the digest
    is base64 encoded.
    """
    encoded = sorted(
        (k.lower(), quote(str(v), safe="*").replace("+", "%20")) for k, v in query
    )
    canonical = "&".join(f"{k}={v}" for k, v in encoded).lower()
    digest = hmac.new(
        (credential.secret or "").encode("utf-8"),
        canonical.encode("utf-8"),
        hashlib.sha1,
    ).digest()
    return base64.b64encode(digest).decode("ascii")


def node_from_doc(doc: Mapping[str, Any]) -> Node:
    return Node(id=str(doc["id"]), name=doc.get("name") or doc.get("displayname"), state=doc.get("state"), raw=dict(doc))


def _command(name: str) -> Tuple[Tuple[str, str], ...]:
    return (("command", name), ("response", "json"))


JOB_READER = FieldStatusReader(
    status_key="jobstatus",
    status_map={0: JobStatus.IN_PROGRESS, 1: JobStatus.SUCCEEDED, 2: JobStatus.FAILED},
    result_key="jobresult",
    result_unwrap_depth=1,
    progress_key="jobprocstatus",
    code_kinds=ERROR_KINDS,
)

QUERY_ASYNC_JOB_RESULT = OperationDescriptor(
    name="queryAsyncJobResult",
    static_query=_command("queryAsyncJobResult"),
    params=(Param("job_id", ParamRole.QUERY, key="jobid"),),
    consumes="application/json",
    filters=(SIGNER,),
    exception_mappers=(ERRORS, "standard_status"),
    unwrap_depth=1,
    job_reader=JOB_READER,
)

LIST_ASYNC_JOBS = OperationDescriptor(
    name="listAsyncJobs",
    static_query=_command("listAsyncJobs"),
    params=(Param("options", ParamRole.OPTIONS, required=False),),
    consumes="application/json",
    filters=(SIGNER,),
    exception_mappers=("empty_on_404", ERRORS, "standard_status"),
    unwrap_depth=2,
    result=ResultKind.COLLECTION,
)

LIST_VIRTUAL_MACHINES = OperationDescriptor(
    name="listVirtualMachines",
    static_query=_command("listVirtualMachines"),
    params=(
        Param("zone_id", ParamRole.QUERY, key="zoneid", required=False),
        Param("options", ParamRole.OPTIONS, required=False),
    ),
    consumes="application/json",
    filters=(SIGNER,),
    exception_mappers=("empty_on_404", ERRORS, "standard_status"),
    unwrap_depth=2,
    result=ResultKind.COLLECTION,
    result_type=node_from_doc,
)

DEPLOY_VIRTUAL_MACHINE = OperationDescriptor(
    name="deployVirtualMachine",
    static_query=_command("deployVirtualMachine"),
    params=(
        Param("service_offering_id", ParamRole.QUERY, key="serviceofferingid"),
        Param("template_id", ParamRole.QUERY, key="templateid"),
        Param("zone_id", ParamRole.QUERY, key="zoneid"),
        Param("name", ParamRole.QUERY, required=False),
        Param("network_ids", ParamRole.QUERY, key="networkids", required=False, multi=True),
        Param("options", ParamRole.OPTIONS, required=False),
    ),
    consumes="application/json",
    filters=(SIGNER,),
    exception_mappers=(ERRORS, "standard_status"),
    unwrap_depth=1,
    result=ResultKind.JOB,
    result_type=node_from_doc,
    poll_with=QUERY_ASYNC_JOB_RESULT,
)

DESTROY_VIRTUAL_MACHINE = OperationDescriptor(
    name="destroyVirtualMachine",
    static_query=_command("destroyVirtualMachine"),
    params=(Param("id", ParamRole.QUERY),),
    consumes="application/json",
    filters=(SIGNER,),
    exception_mappers=(ERRORS, "standard_status"),
    unwrap_depth=1,
    result=ResultKind.JOB,
    result_type=node_from_doc,
    poll_with=QUERY_ASYNC_JOB_RESULT,
)

REBOOT_VIRTUAL_MACHINE = OperationDescriptor(
    name="rebootVirtualMachine",
    static_query=_command("rebootVirtualMachine"),
    params=(Param("id", ParamRole.QUERY),),
    consumes="application/json",
    filters=(SIGNER,),
    exception_mappers=(ERRORS, "standard_status"),
    unwrap_depth=1,
    result=ResultKind.JOB,
    result_type=node_from_doc,
    poll_with=QUERY_ASYNC_JOB_RESULT,
)


def build_mappers() -> MapperRegistry:
    mappers = MapperRegistry()
    mappers.register(ERRORS, JsonErrorBodyMapper(code_kinds=ERROR_KINDS))
    return mappers


class CloudStackProvider:
    """
    ComputeProvider over the CloudStack query API.

    Args:
        endpoint:
            API URI, e.g. `https://cloud.example.com/client/api`.
        api_key / secret_key:
            Account keys. When either is missing every call fails with
            Unauthorized before anything is sent.
        dispatcher:
            Defaults to an HttpxDispatcher owned by the provider.
        poll_policy / max_polls / max_poll_elapsed_s:
            Job tracking bounds.
    """

    name = "cloudstack"

    def __init__(
        self,
        *,
        endpoint: str,
        api_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        dispatcher: Optional[Dispatcher] = None,
        poll_policy: Optional[PollPolicy] = None,
        max_polls: Optional[int] = None,
        max_poll_elapsed_s: Optional[float] = None,
        default_timeout_s: Optional[float] = None,
        metrics: Optional[MetricsSink] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if not (api_key and secret_key):
            LOG.warning("cloudstack: api key or secret key not configured; calls will be rejected")
        credentials = StaticCredentials(
            Credential(identity=api_key, secret=secret_key) if api_key and secret_key else None
        )
        self.engine = RestEngine(
            dispatcher=dispatcher or HttpxDispatcher(),
            base_uri=endpoint,
            filters={SIGNER: QuerySigningFilter(credentials, sign_query)},
            mappers=build_mappers(),
            poll_policy=poll_policy,
            max_polls=max_polls,
            max_poll_elapsed_s=max_poll_elapsed_s,
            default_timeout_s=default_timeout_s,
            metrics=metrics,
            sleep=sleep,
        )

    @classmethod
    def from_settings(cls, settings: EngineSettings, *, dispatcher: Optional[Dispatcher] = None) -> "CloudStackProvider":
        if not settings.endpoint:
            raise ValueError("cloudstack provider requires CLOUDCALL_ENDPOINT")
        return cls(
            endpoint=settings.endpoint,
            api_key=settings.identity,
            secret_key=settings.secret(),
            dispatcher=dispatcher or build_dispatcher(settings),
            poll_policy=build_poll_policy(settings),
            max_polls=settings.max_polls,
            max_poll_elapsed_s=settings.max_poll_seconds,
        )

    async def __aenter__(self) -> "CloudStackProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.engine.close()

    # ------------------------------------------------------------------ #
    # Capabilities
    # ------------------------------------------------------------------ #

    async def submit(self, **spec: Any) -> Node:
        """
        Deploy a virtual machine.

        Keywords: service_offering_id, template_id, zone_id, and optionally
        name, network_ids and options (RequestOptions or a mapping of extra
        query parameters).
        """
        return await self.engine.call(DEPLOY_VIRTUAL_MACHINE, spec)

    async def poll(self, job_id: str) -> Any:
        handle = JobHandle(job_id=str(job_id), operation=QUERY_ASYNC_JOB_RESULT.name)
        return await self.engine.track(handle, QUERY_ASYNC_JOB_RESULT).wait()

    async def destroy(self, node_id: str) -> Node:
        return await self.engine.call(DESTROY_VIRTUAL_MACHINE, {"id": node_id})

    async def list(self, **filters: Any) -> List[Node]:
        args = {"options": RequestOptions(query=filters)} if filters else None
        return await self.engine.call(LIST_VIRTUAL_MACHINES, args)

    async def reboot(self, node_id: str) -> Node:
        return await self.engine.call(REBOOT_VIRTUAL_MACHINE, {"id": node_id})

    async def list_jobs(self, **filters: Any) -> List[Mapping[str, Any]]:
        args = {"options": RequestOptions(query=filters)} if filters else None
        return await self.engine.call(LIST_ASYNC_JOBS, args)


__all__ = [
    "CloudStackProvider",
    "sign_query",
    "node_from_doc",
    "JOB_READER",
    "QUERY_ASYNC_JOB_RESULT",
    "LIST_ASYNC_JOBS",
    "LIST_VIRTUAL_MACHINES",
    "DEPLOY_VIRTUAL_MACHINE",
    "DESTROY_VIRTUAL_MACHINE",
    "REBOOT_VIRTUAL_MACHINE",
]
