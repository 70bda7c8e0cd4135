# SPDX-License-Identifier: Apache-2.0
"""
REST — Request compilation.
Asserts:
  • Compilation is deterministic (byte-identical requests)
  • Path placeholders are bound and percent-encoded
  • Static endpoints, ENDPOINT params and resolvers pick the URI
  • Duplicate keys are rejected unless the param is multi-valued
  • OPTIONS are merged last and win
  • Unbound, uncoercible or URI-breaking arguments are InvalidArguments
  • Bodies are encoded per `produces`; `consumes` becomes Accept
"""

import json

import pytest

from cloudcall_sdk.rest.compiler import RequestCompiler
from cloudcall_sdk.rest.descriptor import (
    CallArguments,
    OperationDescriptor,
    Param,
    ParamRole,
    RequestOptions,
)
from cloudcall_sdk.rest.errors import ErrorKind, InvalidArguments

BASE = "https://api.example.test/v1"


GET_SERVER = OperationDescriptor(
    name="getServer",
    path="/servers/{server_id}",
    params=(
        Param("server_id", ParamRole.PATH),
        Param("detail", ParamRole.QUERY, required=False, coerce=bool),
        Param("request_tag", ParamRole.HEADER, key="X-Request-Tag", required=False),
    ),
    static_query=(("format", "json"),),
    consumes="application/json",
)

CREATE_SERVER = OperationDescriptor(
    name="createServer",
    method="post",
    path="/servers",
    params=(
        Param("name", ParamRole.BODY),
        Param("size", ParamRole.BODY, coerce=int),
        Param("options", ParamRole.OPTIONS, required=False),
    ),
    produces="application/json",
)


def test_compiler_is_deterministic():
    compiler = RequestCompiler(BASE)
    args = {"server_id": "srv-1", "detail": True, "request_tag": "abc"}
    first = compiler.compile(GET_SERVER, args)
    second = compiler.compile(GET_SERVER, dict(args))
    assert first == second
    assert first.full_url == second.full_url
    assert first.headers == second.headers


def test_compiler_binds_path_query_and_headers():
    req = RequestCompiler(BASE).compile(GET_SERVER, CallArguments("srv 1/x", detail=False, request_tag="t"))
    assert req.method == "GET"
    assert req.url == f"{BASE}/servers/srv%201%2Fx"
    assert req.query == (("format", "json"), ("detail", "false"))
    assert req.header("x-request-tag") == "t"
    assert req.header("Accept") == "application/json"
    assert req.body is None


def test_compiler_optional_params_are_omitted():
    req = RequestCompiler(BASE).compile(GET_SERVER, ("srv-1",))
    assert req.query == (("format", "json"),)
    assert req.header("X-Request-Tag") is None


def test_compiler_unbound_required_argument_is_invalid():
    with pytest.raises(InvalidArguments) as exc_info:
        RequestCompiler(BASE).compile(GET_SERVER, None)
    assert exc_info.value.kind is ErrorKind.INVALID_ARGUMENTS
    assert exc_info.value.details["argument"] == "server_id"


def test_compiler_unknown_and_duplicate_arguments_are_invalid():
    compiler = RequestCompiler(BASE)
    with pytest.raises(InvalidArguments):
        compiler.compile(GET_SERVER, {"server_id": "a", "bogus": 1})
    with pytest.raises(InvalidArguments):
        compiler.compile(GET_SERVER, CallArguments("a", server_id="b"))
    with pytest.raises(InvalidArguments):
        compiler.compile(GET_SERVER, ("a", True, "t", "extra"))


def test_compiler_coercion_failure_is_invalid():
    with pytest.raises(InvalidArguments):
        RequestCompiler(BASE).compile(CREATE_SERVER, {"name": "web", "size": "large"})
    with pytest.raises(InvalidArguments):
        RequestCompiler(BASE).compile(GET_SERVER, {"server_id": "a", "detail": "maybe"})


def test_compiler_missing_or_invalid_endpoint_is_invalid():
    with pytest.raises(InvalidArguments):
        RequestCompiler().compile(GET_SERVER, ("a",))
    with pytest.raises(InvalidArguments):
        RequestCompiler("ftp://files.example.test").compile(GET_SERVER, ("a",))
    with pytest.raises(InvalidArguments):
        RequestCompiler("https://api.example.test/v1?x=1").compile(GET_SERVER, ("a",))


def test_compiler_static_endpoint_overrides_base():
    d = OperationDescriptor(name="ping", endpoint="https://other.example.test/health")
    assert RequestCompiler(BASE).compile(d).url == "https://other.example.test/health"


def test_compiler_endpoint_param_and_resolver():
    direct = OperationDescriptor(name="getTask", params=(Param("task", ParamRole.ENDPOINT),))
    req = RequestCompiler(BASE).compile(direct, ("https://vc.example.test/api/task/7",))
    assert req.url == "https://vc.example.test/api/task/7"

    resolved = OperationDescriptor(
        name="listVApps",
        path="",
        params=(Param("vdc", ParamRole.ENDPOINT, resolver=lambda vdc: f"{vdc}/vApps"),),
    )
    req = RequestCompiler(BASE).compile(resolved, ("https://vc.example.test/api/vdc/1",))
    assert req.url == "https://vc.example.test/api/vdc/1/vApps"


def test_compiler_resolver_failure_is_invalid():
    def boom(_):
        raise ValueError("not a vdc")

    d = OperationDescriptor(name="x", params=(Param("vdc", ParamRole.ENDPOINT, resolver=boom),))
    with pytest.raises(InvalidArguments):
        RequestCompiler(BASE).compile(d, ("vdc",))


def test_compiler_rejects_duplicate_keys():
    d = OperationDescriptor(
        name="dup",
        params=(Param("a", ParamRole.QUERY, key="k"), Param("b", ParamRole.QUERY, key="k")),
    )
    with pytest.raises(InvalidArguments):
        RequestCompiler(BASE).compile(d, ("1", "2"))

    static_clash = OperationDescriptor(
        name="dup2",
        static_query=(("k", "fixed"),),
        params=(Param("a", ParamRole.QUERY, key="k"),),
    )
    with pytest.raises(InvalidArguments):
        RequestCompiler(BASE).compile(static_clash, ("1",))


def test_compiler_header_duplicates_are_case_insensitive():
    d = OperationDescriptor(
        name="hdr",
        static_headers=(("X-Trace", "a"),),
        params=(Param("trace", ParamRole.HEADER, key="x-trace"),),
    )
    with pytest.raises(InvalidArguments):
        RequestCompiler(BASE).compile(d, ("b",))


def test_compiler_multi_valued_params_append_in_call_order():
    d = OperationDescriptor(
        name="tags",
        params=(
            Param("tags", ParamRole.QUERY, key="tag", multi=True),
            Param("more", ParamRole.QUERY, key="tag", multi=True, required=False),
        ),
    )
    req = RequestCompiler(BASE).compile(d, (["b", "a"], "c"))
    assert req.query_values("tag") == ("b", "a", "c")


def test_compiler_multi_valued_body_keeps_every_value():
    params = (Param("tags", ParamRole.BODY, key="tag", multi=True), Param("name", ParamRole.BODY))
    as_json = OperationDescriptor(name="tag", method="POST", params=params)
    as_form = OperationDescriptor(
        name="tag", method="POST", params=params, produces="application/x-www-form-urlencoded"
    )

    req = RequestCompiler(BASE).compile(as_json, (["a", "b", "c"], "web"))
    assert json.loads(req.body) == {"tag": ["a", "b", "c"], "name": "web"}
    req = RequestCompiler(BASE).compile(as_json, (["a"], "web"))
    assert json.loads(req.body) == {"tag": ["a"], "name": "web"}

    req = RequestCompiler(BASE).compile(as_form, (["a", "b", "c"], "web"))
    assert req.body == b"tag=a&tag=b&tag=c&name=web"


def test_compiler_multi_valued_header_is_folded():
    d = OperationDescriptor(
        name="tagged",
        static_headers=(("x-tag", "base"),),
        params=(Param("tags", ParamRole.HEADER, key="X-Tag", multi=True),),
    )
    req = RequestCompiler(BASE).compile(d, (["a", "b"],))
    assert req.headers == (("x-tag", "base, a, b"),)
    assert req.header("X-Tag") == "base, a, b"


def test_compiler_options_are_merged_last_and_win():
    d = OperationDescriptor(
        name="list",
        static_query=(("page", "1"),),
        params=(
            Param("state", ParamRole.QUERY),
            Param("options", ParamRole.OPTIONS, required=False),
        ),
    )
    opts = RequestOptions(query={"state": "Running", "page": 3, "keyword": "web"}, headers={"X-A": "1"})
    req = RequestCompiler(BASE).compile(d, ("Stopped", opts))
    assert req.query == (("state", "Running"), ("page", "3"), ("keyword", "web"))
    assert req.header("x-a") == "1"

    # A plain mapping is treated as extra query parameters.
    req = RequestCompiler(BASE).compile(d, {"state": "Stopped", "options": {"state": "Error"}})
    assert req.query_values("state") == ("Error",)


def test_compiler_json_body_from_body_params():
    req = RequestCompiler(BASE).compile(
        CREATE_SERVER,
        {"name": "web", "size": "2", "options": RequestOptions(body={"zone": "z1"})},
    )
    assert req.method == "POST"
    assert req.content_type == "application/json"
    assert req.header("Content-Type") == "application/json"
    assert json.loads(req.body) == {"name": "web", "size": 2, "zone": "z1"}


def test_compiler_form_body_and_raw_payload():
    form = OperationDescriptor(
        name="login",
        method="POST",
        params=(Param("user", ParamRole.BODY), Param("remember", ParamRole.BODY)),
        produces="application/x-www-form-urlencoded",
    )
    req = RequestCompiler(BASE).compile(form, ("ann", True))
    assert req.body == b"user=ann&remember=true"

    raw = OperationDescriptor(
        name="upload",
        method="PUT",
        params=(Param("data", ParamRole.PAYLOAD),),
        produces="application/octet-stream",
    )
    req = RequestCompiler(BASE).compile(raw, (b"\x00\x01",))
    assert req.body == b"\x00\x01"
    assert req.content_type == "application/octet-stream"


def test_compiler_payload_and_body_together_is_invalid():
    d = OperationDescriptor(
        name="both",
        method="POST",
        params=(Param("doc", ParamRole.PAYLOAD), Param("extra", ParamRole.BODY)),
    )
    with pytest.raises(InvalidArguments):
        RequestCompiler(BASE).compile(d, ({"a": 1}, "x"))


def test_descriptor_rejects_inconsistent_declarations():
    with pytest.raises(ValueError):
        OperationDescriptor(name="x", params=(Param("a", ParamRole.QUERY), Param("a", ParamRole.HEADER)))
    with pytest.raises(ValueError):
        OperationDescriptor(name="x", params=(Param("a", ParamRole.QUERY, resolver=str),))
    with pytest.raises(ValueError):
        OperationDescriptor(name="x", poll_with=OperationDescriptor(name="status"))
