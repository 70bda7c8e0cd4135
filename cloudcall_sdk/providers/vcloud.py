# cloudcall_sdk/providers/vcloud.py
# SPDX-License-Identifier: Apache-2.0
"""
vCloud provider.

vCloud is resource-addressed: most operations are sent to a URI taken from
a previously fetched resource (a VDC, a vApp, a task) rather than to a path
under a fixed base. Descriptors therefore bind their endpoint per call,
either directly (`vapp` is the vApp URI) or through a resolver that derives
a sub-endpoint from a VDC URI.

Authentication is a session: a basic-auth `POST /login` returns a token
that every other call carries as the `vcloud-token` cookie. Tokens are
refreshed transparently when they expire.

Mutating operations return a task; the task URI is polled until its status
is `success` or `error`:

    queued → Pending, running → InProgress, success → Succeeded,
    error / aborted / canceled → Failed
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, List, Mapping, Optional

from cloudcall_sdk.config import EngineSettings, build_dispatcher, build_poll_policy
from cloudcall_sdk.providers.base import Node
from cloudcall_sdk.rest.descriptor import OperationDescriptor, Param, ParamRole, ResultKind
from cloudcall_sdk.rest.dispatcher import Dispatcher, HttpxDispatcher
from cloudcall_sdk.rest.engine import MetricsSink, RestEngine
from cloudcall_sdk.rest.errors import MalformedResponse
from cloudcall_sdk.rest.filters import (
    BasicAuthFilter,
    Credential,
    SessionCredentials,
    StaticCredentials,
    TokenCookieFilter,
)
from cloudcall_sdk.rest.jobs import FieldStatusReader, JobHandle, JobStatus, PollPolicy

LOG = logging.getLogger(__name__)

LOGIN_FILTER = "vcloud_login"
TOKEN_FILTER = "vcloud_token"
TOKEN_COOKIE = "vcloud-token"

DEFAULT_TOKEN_TTL_S = 30 * 60


def vdc_endpoint(suffix: str) -> Callable[[Any], str]:
    """Resolver mapping a VDC URI to one of its sub-endpoints."""

    def resolve(vdc: Any) -> str:
        if not isinstance(vdc, str) or not vdc:
            raise ValueError("VDC must be a URI string")
        return f"{vdc.rstrip('/')}/{suffix}"

    return resolve


def vapp_action(action: str) -> Callable[[Any], str]:
    """Resolver mapping a vApp URI to one of its action endpoints."""

    def resolve(vapp: Any) -> str:
        if not isinstance(vapp, str) or not vapp:
            raise ValueError("vApp must be a URI string")
        return f"{vapp.rstrip('/')}/{action}"

    return resolve


def node_from_doc(doc: Mapping[str, Any]) -> Node:
    return Node(id=str(doc["href"]), name=doc.get("name"), state=doc.get("status"), raw=dict(doc))


TASK_READER = FieldStatusReader(
    status_key="status",
    status_map={
        "queued": JobStatus.PENDING,
        "running": JobStatus.IN_PROGRESS,
        "success": JobStatus.SUCCEEDED,
        "error": JobStatus.FAILED,
        "aborted": JobStatus.FAILED,
        "canceled": JobStatus.FAILED,
    },
    result_key="owner",
    error_key="error",
    progress_key="progress",
    code_key="majorErrorCode",
)

LOGIN = OperationDescriptor(
    name="login",
    method="POST",
    path="/login",
    consumes="application/json",
    filters=(LOGIN_FILTER,),
    exception_mappers=("standard_status",),
)

GET_TASK = OperationDescriptor(
    name="getTask",
    params=(Param("task", ParamRole.ENDPOINT),),
    consumes="application/json",
    filters=(TOKEN_FILTER,),
    exception_mappers=("standard_status",),
    unwrap_depth=1,
    job_reader=TASK_READER,
)

LIST_VAPPS = OperationDescriptor(
    name="listVAppsInVDC",
    params=(Param("vdc", ParamRole.ENDPOINT, resolver=vdc_endpoint("vApps")),),
    consumes="application/json",
    filters=(TOKEN_FILTER,),
    exception_mappers=("empty_on_404", "standard_status"),
    unwrap_depth=1,
    result=ResultKind.COLLECTION,
    result_type=node_from_doc,
)

GET_VAPP = OperationDescriptor(
    name="getVApp",
    params=(Param("vapp", ParamRole.ENDPOINT),),
    consumes="application/json",
    filters=(TOKEN_FILTER,),
    exception_mappers=("none_on_404", "standard_status"),
    unwrap_depth=1,
    result_type=node_from_doc,
)

INSTANTIATE_VAPP_TEMPLATE = OperationDescriptor(
    name="instantiateVAppTemplateInVDC",
    method="POST",
    params=(
        Param("vdc", ParamRole.ENDPOINT, resolver=vdc_endpoint("action/instantiateVAppTemplate")),
        Param("name", ParamRole.BODY),
        Param("template", ParamRole.BODY, key="sourceTemplate"),
        Param("power_on", ParamRole.BODY, key="powerOn", required=False, coerce=bool),
        Param("options", ParamRole.OPTIONS, required=False),
    ),
    consumes="application/json",
    produces="application/json",
    filters=(TOKEN_FILTER,),
    exception_mappers=("standard_status",),
    unwrap_depth=1,
    result=ResultKind.JOB,
    result_type=node_from_doc,
    job_id_key="href",
    poll_with=GET_TASK,
)

DELETE_VAPP = OperationDescriptor(
    name="deleteVApp",
    method="DELETE",
    params=(Param("vapp", ParamRole.ENDPOINT),),
    consumes="application/json",
    filters=(TOKEN_FILTER,),
    exception_mappers=("void_on_404", "standard_status"),
    unwrap_depth=1,
    result=ResultKind.JOB,
    job_id_key="href",
    poll_with=GET_TASK,
)

RESET_VAPP = OperationDescriptor(
    name="resetVApp",
    method="POST",
    params=(Param("vapp", ParamRole.ENDPOINT, resolver=vapp_action("power/action/reset")),),
    consumes="application/json",
    filters=(TOKEN_FILTER,),
    exception_mappers=("standard_status",),
    unwrap_depth=1,
    result=ResultKind.JOB,
    result_type=node_from_doc,
    job_id_key="href",
    poll_with=GET_TASK,
)


class VCloudProvider:
    """
    ComputeProvider over the vCloud API.

    Args:
        endpoint:
            API root; the login operation is sent to `<endpoint>/login`.
        user / password:
            Login credentials. When missing, every call fails with
            Unauthorized before the operation itself is sent.
        vdc:
            Default VDC URI used by `submit` and `list`.
        token_ttl_s:
            Token lifetime assumed when the login response has no
            `expiresIn`.
    """

    name = "vcloud"

    def __init__(
        self,
        *,
        endpoint: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        vdc: Optional[str] = None,
        dispatcher: Optional[Dispatcher] = None,
        poll_policy: Optional[PollPolicy] = None,
        max_polls: Optional[int] = None,
        max_poll_elapsed_s: Optional[float] = None,
        default_timeout_s: Optional[float] = None,
        metrics: Optional[MetricsSink] = None,
        token_ttl_s: float = DEFAULT_TOKEN_TTL_S,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._vdc = vdc
        self._token_ttl_s = token_ttl_s
        login_credentials = StaticCredentials(
            Credential(identity=user, secret=password) if user and password is not None else None
        )
        self.session = SessionCredentials(self._login, refresh_margin_s=30.0)
        self.engine = RestEngine(
            dispatcher=dispatcher or HttpxDispatcher(),
            base_uri=endpoint,
            filters={
                LOGIN_FILTER: BasicAuthFilter(login_credentials),
                TOKEN_FILTER: TokenCookieFilter(self.session, cookie_name=TOKEN_COOKIE),
            },
            poll_policy=poll_policy,
            max_polls=max_polls,
            max_poll_elapsed_s=max_poll_elapsed_s,
            default_timeout_s=default_timeout_s,
            metrics=metrics,
            sleep=sleep,
        )

    @classmethod
    def from_settings(cls, settings: EngineSettings, *, dispatcher: Optional[Dispatcher] = None) -> "VCloudProvider":
        if not settings.endpoint:
            raise ValueError("vcloud provider requires CLOUDCALL_ENDPOINT")
        return cls(
            endpoint=settings.endpoint,
            user=settings.identity,
            password=settings.secret(),
            vdc=settings.vdc,
            dispatcher=dispatcher or build_dispatcher(settings),
            poll_policy=build_poll_policy(settings),
            max_polls=settings.max_polls,
            max_poll_elapsed_s=settings.max_poll_seconds,
        )

    async def __aenter__(self) -> "VCloudProvider":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.engine.close()

    async def _login(self) -> Credential:
        doc = await self.engine.call(LOGIN)
        if not isinstance(doc, Mapping) or not doc.get("token"):
            raise MalformedResponse("login: response carries no token", details={"operation": LOGIN.name})
        ttl = float(doc.get("expiresIn") or self._token_ttl_s)
        LOG.debug("vcloud session established (ttl=%.0fs)", ttl)
        return Credential(token=str(doc["token"]), expires_at=time.monotonic() + ttl)

    def _with_vdc(self, args: Mapping[str, Any]) -> dict:
        out = dict(args)
        if out.get("vdc") is None and self._vdc is not None:
            out["vdc"] = self._vdc
        return out

    # ------------------------------------------------------------------ #
    # Capabilities
    # ------------------------------------------------------------------ #

    async def submit(self, **spec: Any) -> Node:
        """
        Instantiate a vApp template.

        Keywords: name, template (template URI), and optionally vdc,
        power_on and options.
        """
        return await self.engine.call(INSTANTIATE_VAPP_TEMPLATE, self._with_vdc(spec))

    async def poll(self, job_id: str) -> Any:
        handle = JobHandle(job_id=job_id, operation=GET_TASK.name)
        return await self.engine.track(handle, GET_TASK).wait()

    async def destroy(self, node_id: str) -> Any:
        return await self.engine.call(DELETE_VAPP, {"vapp": node_id})

    async def list(self, vdc: Optional[str] = None) -> List[Node]:
        return await self.engine.call(LIST_VAPPS, self._with_vdc({"vdc": vdc}))

    async def reboot(self, node_id: str) -> Node:
        return await self.engine.call(RESET_VAPP, {"vapp": node_id})

    async def get(self, node_id: str) -> Optional[Node]:
        return await self.engine.call(GET_VAPP, {"vapp": node_id})


__all__ = [
    "VCloudProvider",
    "vdc_endpoint",
    "vapp_action",
    "node_from_doc",
    "TASK_READER",
    "LOGIN",
    "GET_TASK",
    "LIST_VAPPS",
    "GET_VAPP",
    "INSTANTIATE_VAPP_TEMPLATE",
    "DELETE_VAPP",
    "RESET_VAPP",
]
