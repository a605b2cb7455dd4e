"""
Unit tests for the ACME protocol layer.

These tests use the `responses` library to mock HTTP calls — no CA access
required.  Run with:  pytest tests/test_acme_client.py -v
"""
from __future__ import annotations

import json
from datetime import datetime, timezone

import pytest
import responses as resp_lib

from ca import jws as jwslib
from ca.client import AcmeClient, AcmeError
from ca.messages import Account, Challenge, Order
from conftest import make_certificate, to_der, to_pem
from errors import OperationCancelled
from polling import Context


# ─── Fixtures ─────────────────────────────────────────────────────────────────

BASE = "https://acme.test"

FAKE_DIRECTORY = {
    "newNonce": f"{BASE}/newNonce",
    "newAccount": f"{BASE}/newAccount",
    "newOrder": f"{BASE}/newOrder",
}

ACCOUNT_URI = f"{BASE}/acct/1"
ORDER_URI = f"{BASE}/order/1"
FINALIZE_URI = f"{BASE}/order/1/finalize"
CERT_URI = f"{BASE}/cert/1"


def _nonce(n: int) -> dict:
    return {"Replay-Nonce": f"nonce-{n}"}


def _order_body(status: str, certificate: str | None = None) -> dict:
    body = {
        "status": status,
        "identifiers": [{"type": "dns", "value": "a.example.com"}, {"type": "dns", "value": "b.example.com"}],
        "authorizations": [f"{BASE}/authz/a", f"{BASE}/authz/b"],
        "finalize": FINALIZE_URI,
    }
    if certificate:
        body["certificate"] = certificate
    return body


def _authz_body(domain: str, status: str = "pending") -> dict:
    return {
        "status": status,
        "identifier": {"type": "dns", "value": domain},
        "challenges": [
            {"type": "http-01", "url": f"{BASE}/chall/{domain}/http", "token": "t-http"},
            {"type": "dns-01", "url": f"{BASE}/chall/{domain}/dns", "token": "t-dns"},
        ],
    }


def _protected(call) -> dict:
    return json.loads(jwslib.b64url_decode(json.loads(call.request.body)["protected"]))


def _payload(call) -> dict | str:
    payload = json.loads(call.request.body)["payload"]
    return json.loads(jwslib.b64url_decode(payload)) if payload else ""


@pytest.fixture()
def client(ec_key) -> AcmeClient:
    return AcmeClient(f"{BASE}/directory", ec_key, contact_email="ops@example.com", poll_interval=0.001)


@pytest.fixture()
def bound_client(client) -> AcmeClient:
    client.bind_account(Account(uri=ACCOUNT_URI))
    return client


def _add_directory(rsps):
    rsps.add(resp_lib.GET, f"{BASE}/directory", json=FAKE_DIRECTORY)
    rsps.add(resp_lib.HEAD, FAKE_DIRECTORY["newNonce"], headers=_nonce(0))


# ─── register ─────────────────────────────────────────────────────────────────


@resp_lib.activate
def test_register_signs_with_jwk_and_binds_account(client, ec_key):
    _add_directory(resp_lib)
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newAccount"],
        json={"status": "valid", "contact": ["mailto:ops@example.com"]},
        status=201,
        headers={"Location": ACCOUNT_URI, **_nonce(1)},
    )

    account = client.register(Context())

    assert account.uri == ACCOUNT_URI
    assert client.account_uri == ACCOUNT_URI
    post = resp_lib.calls[-1]
    assert _protected(post)["jwk"] == jwslib.public_jwk(ec_key)
    assert _protected(post)["nonce"] == "nonce-0"
    assert _payload(post) == {"termsOfServiceAgreed": True, "contact": ["mailto:ops@example.com"]}
    assert post.request.headers["Content-Type"] == "application/jose+json"


@resp_lib.activate
def test_bad_nonce_is_resigned_with_fresh_nonce(client):
    _add_directory(resp_lib)
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newAccount"],
        json={"type": "urn:ietf:params:acme:error:badNonce", "detail": "stale"},
        status=400,
        headers=_nonce(7),
    )
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newAccount"],
        json={"status": "valid"},
        status=201,
        headers={"Location": ACCOUNT_URI, **_nonce(8)},
    )

    client.register(Context())

    posts = [c for c in resp_lib.calls if c.request.method == "POST"]
    assert len(posts) == 2
    assert _protected(posts[1])["nonce"] == "nonce-7"


@resp_lib.activate
def test_other_errors_are_not_retried(bound_client):
    _add_directory(resp_lib)
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newOrder"],
        json={"type": "urn:ietf:params:acme:error:rateLimited", "detail": "slow down"},
        status=429,
        headers=_nonce(1),
    )

    with pytest.raises(AcmeError) as exc_info:
        bound_client.new_order(Context(), ["a.example.com"])

    assert exc_info.value.status_code == 429
    assert exc_info.value.problem_type.endswith("rateLimited")
    assert len([c for c in resp_lib.calls if c.request.method == "POST"]) == 1


def test_kid_requests_need_a_bound_account(client):
    with pytest.raises(AcmeError, match="No ACME account"):
        client._post_signed(Context(), FAKE_DIRECTORY["newOrder"], {})


def test_cancelled_context_makes_no_request(client):
    ctx = Context()
    ctx.cancel()
    with resp_lib.RequestsMock() as rsps:
        with pytest.raises(OperationCancelled):
            client.get_directory(ctx)
        assert len(rsps.calls) == 0


# ─── orders & authorizations ──────────────────────────────────────────────────


@resp_lib.activate
def test_new_order_uses_kid_and_not_after(bound_client):
    _add_directory(resp_lib)
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newOrder"],
        json=_order_body("pending"),
        status=201,
        headers={"Location": ORDER_URI, **_nonce(1)},
    )

    order = bound_client.new_order(
        Context(), ["a.example.com", "b.example.com"], not_after=datetime(2027, 1, 1, tzinfo=timezone.utc)
    )

    assert order.uri == ORDER_URI
    assert order.finalize == FINALIZE_URI
    post = resp_lib.calls[-1]
    assert _protected(post)["kid"] == ACCOUNT_URI
    assert _payload(post) == {
        "identifiers": [{"type": "dns", "value": "a.example.com"}, {"type": "dns", "value": "b.example.com"}],
        "notAfter": "2027-01-01T00:00:00Z",
    }


@resp_lib.activate
def test_authorize_picks_the_matching_authorization(bound_client):
    _add_directory(resp_lib)
    resp_lib.add(resp_lib.POST, f"{BASE}/authz/a", json=_authz_body("a.example.com"), headers=_nonce(1))
    resp_lib.add(resp_lib.POST, f"{BASE}/authz/b", json=_authz_body("b.example.com"), headers=_nonce(2))
    order = Order.model_validate({**_order_body("pending"), "uri": ORDER_URI})

    authz = bound_client.authorize(Context(), order, "b.example.com")

    assert authz.uri == f"{BASE}/authz/b"
    assert authz.find_challenge("dns-01").token == "t-dns"
    # POST-as-GET
    assert _payload(resp_lib.calls[-1]) == ""


@resp_lib.activate
def test_authorize_matches_domain_case_insensitively(bound_client):
    _add_directory(resp_lib)
    resp_lib.add(resp_lib.POST, f"{BASE}/authz/a", json=_authz_body("a.example.com"), headers=_nonce(1))
    order = Order.model_validate({**_order_body("pending"), "uri": ORDER_URI})

    authz = bound_client.authorize(Context(), order, "A.Example.com.")

    assert authz.uri == f"{BASE}/authz/a"


@resp_lib.activate
def test_authorize_unknown_domain_raises(bound_client):
    _add_directory(resp_lib)
    resp_lib.add(resp_lib.POST, f"{BASE}/authz/a", json=_authz_body("a.example.com"), headers=_nonce(1))
    resp_lib.add(resp_lib.POST, f"{BASE}/authz/b", json=_authz_body("b.example.com"), headers=_nonce(2))
    order = Order.model_validate({**_order_body("pending"), "uri": ORDER_URI})

    with pytest.raises(AcmeError, match="no authorization for c.example.com"):
        bound_client.authorize(Context(), order, "c.example.com")


@resp_lib.activate
def test_accept_posts_empty_object(bound_client):
    _add_directory(resp_lib)
    url = f"{BASE}/chall/a.example.com/dns"
    resp_lib.add(resp_lib.POST, url, json={"type": "dns-01", "url": url, "status": "processing"}, headers=_nonce(1))

    result = bound_client.accept(Context(), Challenge(type="dns-01", url=url, token="t"))

    assert result.status == "processing"
    assert _payload(resp_lib.calls[-1]) == {}


@resp_lib.activate
def test_wait_authorization_polls_until_terminal(bound_client):
    _add_directory(resp_lib)
    url = f"{BASE}/authz/a"
    resp_lib.add(resp_lib.POST, url, json=_authz_body("a.example.com", "pending"), headers=_nonce(1))
    resp_lib.add(resp_lib.POST, url, json=_authz_body("a.example.com", "pending"), headers=_nonce(2))
    resp_lib.add(resp_lib.POST, url, json=_authz_body("a.example.com", "valid"), headers=_nonce(3))

    authz = bound_client.wait_authorization(Context(), url)

    assert authz.status == "valid"
    assert len([c for c in resp_lib.calls if c.request.url == url]) == 3


# ─── finalize & download ──────────────────────────────────────────────────────


@resp_lib.activate
def test_create_cert_finalizes_polls_and_downloads_chain(bound_client, ec_key):
    leaf = make_certificate(ec_key, ["a.example.com", "b.example.com"], issuer_cn="Test Intermediate")
    intermediate = make_certificate(ec_key, ["intermediate.test"])
    _add_directory(resp_lib)
    resp_lib.add(resp_lib.POST, FINALIZE_URI, json=_order_body("processing"), headers=_nonce(1))
    resp_lib.add(resp_lib.POST, ORDER_URI, json=_order_body("processing"), headers=_nonce(2))
    resp_lib.add(resp_lib.POST, ORDER_URI, json=_order_body("valid", CERT_URI), headers=_nonce(3))
    resp_lib.add(
        resp_lib.POST,
        CERT_URI,
        body=to_pem(leaf) + to_pem(intermediate),
        content_type="application/pem-certificate-chain",
        headers=_nonce(4),
    )
    order = Order.model_validate({**_order_body("ready"), "uri": ORDER_URI})

    chain = bound_client.create_cert(Context(), order, b"\x30\x00csr")

    assert chain == [to_der(leaf), to_der(intermediate)]
    finalize_call = next(c for c in resp_lib.calls if c.request.url == FINALIZE_URI)
    assert _payload(finalize_call) == {"csr": jwslib.b64url(b"\x30\x00csr")}
    download = resp_lib.calls[-1]
    assert download.request.headers["Accept"] == "application/pem-certificate-chain"


@resp_lib.activate
def test_create_cert_invalid_order_raises(bound_client):
    _add_directory(resp_lib)
    resp_lib.add(resp_lib.POST, FINALIZE_URI, json=_order_body("invalid"), headers=_nonce(1))
    order = Order.model_validate({**_order_body("ready"), "uri": ORDER_URI})

    with pytest.raises(AcmeError, match="became invalid"):
        bound_client.create_cert(Context(), order, b"csr")
