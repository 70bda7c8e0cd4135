# SPDX-License-Identifier: Apache-2.0
"""
REST — Filters and credentials.
Asserts:
  • Filters run strictly in declared order, each seeing the previous output
  • Credential-dependent filters raise Unauthorized when the credential is absent
  • A missing credential aborts the call with zero dispatcher calls
  • Query signing adds the key and a signature over the final query
  • Session tokens are refreshed once for concurrent readers
"""

import asyncio
import base64
import time

import pytest

from cloudcall_sdk.mock.mock_dispatcher import MockDispatcher, json_response
from cloudcall_sdk.rest.descriptor import OperationDescriptor
from cloudcall_sdk.rest.errors import ErrorKind, Unauthorized
from cloudcall_sdk.rest.filters import (
    BasicAuthFilter,
    BearerTokenFilter,
    Credential,
    FilterChain,
    QuerySigningFilter,
    SessionCredentials,
    StaticCredentials,
    StaticHeadersFilter,
    TokenCookieFilter,
)
from cloudcall_sdk.rest.http_types import Request

pytestmark = pytest.mark.asyncio


def _request(**kw) -> Request:
    kw.setdefault("operation", "op")
    kw.setdefault("method", "GET")
    kw.setdefault("url", "https://api.example.test/v1")
    return Request(**kw)


class AppendStep:
    """Records its position in the chain on an X-Steps header."""

    def __init__(self, step: str) -> None:
        self.step = step

    async def apply(self, request: Request) -> Request:
        prior = request.header("X-Steps")
        return request.with_header("X-Steps", f"{prior},{self.step}" if prior else self.step)


def _fake_signer(query, credential):
    return "sig(" + "&".join(f"{k}={v}" for k, v in query) + ")"


async def test_filters_chain_runs_in_declared_order():
    chain = FilterChain([AppendStep("a"), AppendStep("b"), AppendStep("c")])
    out = await chain.apply(_request())
    assert out.header("X-Steps") == "a,b,c"
    assert len(chain) == 3


async def test_filters_do_not_mutate_the_input_request():
    original = _request(headers=(("X-Steps", "0"),))
    out = await FilterChain([AppendStep("1")]).apply(original)
    assert original.header("X-Steps") == "0"
    assert out.header("X-Steps") == "0,1"


async def test_filters_query_signing_adds_key_and_signature_last():
    creds = StaticCredentials(Credential(identity="KEY", secret="SECRET"))
    f = QuerySigningFilter(creds, _fake_signer)
    req = _request(query=(("command", "listZones"), ("signature", "stale"), ("response", "json")))
    out = await f.apply(req)
    assert out.query[-1] == ("signature", "sig(command=listZones&response=json&apiKey=KEY)")
    assert out.query_values("apiKey") == ("KEY",)
    assert out.query_values("signature") == (out.query[-1][1],)


@pytest.mark.parametrize(
    "make_filter",
    [
        lambda c: QuerySigningFilter(c, _fake_signer),
        lambda c: BearerTokenFilter(c),
        lambda c: TokenCookieFilter(c),
        lambda c: BasicAuthFilter(c),
    ],
)
async def test_filters_missing_credential_is_unauthorized(make_filter):
    f = make_filter(StaticCredentials(None))
    with pytest.raises(Unauthorized) as exc_info:
        await f.apply(_request())
    assert exc_info.value.kind is ErrorKind.UNAUTHORIZED


async def test_filters_missing_credential_never_reaches_dispatcher(make_engine):
    dispatcher = MockDispatcher(responses=[json_response({"ok": True})])
    engine = make_engine(
        dispatcher,
        filters={"signer": QuerySigningFilter(StaticCredentials(None), _fake_signer)},
    )
    d = OperationDescriptor(name="listZones", filters=("signer",))
    with pytest.raises(Unauthorized):
        await engine.call(d)
    assert dispatcher.call_count == 0


async def test_filters_bearer_cookie_and_basic_headers():
    creds = StaticCredentials(Credential(identity="ann", secret="pw", token="tok"))
    out = await FilterChain(
        [
            BearerTokenFilter(creds),
            TokenCookieFilter(creds, cookie_name="vcloud-token"),
            StaticHeadersFilter([("X-Api-Version", "1.5")]),
        ]
    ).apply(_request(headers=(("Cookie", "a=b"),)))
    assert out.header("Authorization") == "Bearer tok"
    assert out.header("Cookie") == "a=b; vcloud-token=tok"
    assert out.header("x-api-version") == "1.5"

    basic = await BasicAuthFilter(creds).apply(_request())
    assert basic.header("Authorization") == "Basic " + base64.b64encode(b"ann:pw").decode()


async def test_filters_session_credentials_single_login_for_concurrent_readers():
    async def login():
        await asyncio.sleep(0.01)
        return Credential(token=f"t{session.logins}")

    session = SessionCredentials(login)
    creds = await asyncio.gather(*(session.current_credential() for _ in range(10)))
    assert session.logins == 1
    assert {c.token for c in creds} == {"t1"}


async def test_filters_session_credentials_refresh_on_expiry_and_invalidate():
    tokens = iter(["first", "second", "third", "fourth"])

    async def login():
        return Credential(token=next(tokens), expires_at=time.monotonic() + 60)

    session = SessionCredentials(login, refresh_margin_s=120)
    # Margin exceeds the lifetime, so every read refreshes.
    assert (await session.current_credential()).token == "first"
    assert (await session.current_credential()).token == "second"

    steady = SessionCredentials(login)
    cred = await steady.current_credential()
    assert (await steady.current_credential()) is cred
    steady.invalidate()
    assert (await steady.current_credential()) is not cred
    assert steady.logins == 2


async def test_filters_session_without_login_is_unauthorized():
    async def login():
        return None

    f = TokenCookieFilter(SessionCredentials(login))
    with pytest.raises(Unauthorized):
        await f.apply(_request())


async def test_filters_credential_repr_hides_secrets():
    text = repr(Credential(identity="ann", secret="hunter2", token="zzz-session"))
    assert "hunter2" not in text
    assert "zzz-session" not in text
