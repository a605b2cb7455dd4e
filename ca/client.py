"""
RFC 8555 ACME client covering the subset a DNS-01-only device needs.

Surface used by the lifecycle layer:
  register()            POST /newAccount (termsOfServiceAgreed)
  new_order()           POST /newOrder for the ordered domain set
  authorize()           the order's authorization object for one domain
  accept()              POST {} to a challenge: "validate now"
  wait_authorization()  poll until the authorization leaves "pending"
  create_cert()         finalize with a CSR, poll, download the chain as DER

RFC 8555 compliance notes
--------------------------
* POST-as-GET: orders, authorizations and certificates are fetched with a
  signed empty payload, never a plain GET.
* badNonce: every response (errors included) carries a fresh Replay-Nonce,
  which is kept for the next request.  A badNonce rejection is re-signed
  with that nonce up to `_NONCE_RETRIES` times; this is protocol hygiene,
  not a retry policy, and no other error is retried.
* Every call takes a polling.Context: it is checked before each request and
  bounds the HTTP timeout, and polls use its cancellable timer.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import requests
from cryptography.hazmat.primitives.asymmetric import ec

from ca import jws as jwslib
from ca.crypto import pem_chain_to_der
from ca.messages import (
    STATUS_INVALID,
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_VALID,
    Account,
    Authorization,
    Challenge,
    Order,
    normalize_domain,
)
from polling import Context, poll_until

if TYPE_CHECKING:
    from config import Settings

logger = logging.getLogger(__name__)

_NONCE_RETRIES = 3


class AcmeError(Exception):
    """Raised when the ACME server returns an error response."""

    def __init__(self, status_code: int, body: dict) -> None:
        self.status_code = status_code
        self.body = body
        problem_type = body.get("type", "unknown")
        detail = body.get("detail", str(body))
        super().__init__(f"ACME {status_code}: {problem_type}: {detail}")

    @property
    def problem_type(self) -> str:
        return self.body.get("type", "")


class AcmeClient:
    """
    ACME client bound to one account key.

    `account_uri` is None until an account is registered or loaded; every
    request except newAccount is signed with it as the JWS "kid".
    """

    def __init__(
        self,
        directory_url: str,
        account_key: ec.EllipticCurvePrivateKey,
        contact_email: str = "",
        timeout: float = 30,
        poll_interval: float = 2.0,
        ca_bundle: str = "",
        insecure: bool = False,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.directory_url = directory_url
        self.account_key = account_key
        self.contact_email = contact_email
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.account_uri: Optional[str] = None
        self._directory: Optional[dict] = None
        self._nonce: Optional[str] = None

        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "rover-tls/1.0"})
        if insecure:
            import urllib3
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            self._session.verify = False
        elif ca_bundle:
            self._session.verify = ca_bundle

    @classmethod
    def from_settings(cls, settings: "Settings", account_key: ec.EllipticCurvePrivateKey) -> "AcmeClient":
        return cls(
            directory_url=settings.ACME_DIRECTORY_URL,
            account_key=account_key,
            contact_email=settings.ACME_CONTACT_EMAIL,
            poll_interval=settings.ACME_POLL_INTERVAL_SECONDS,
            ca_bundle=settings.ACME_CA_BUNDLE,
            insecure=settings.ACME_INSECURE,
        )

    # ── Directory & nonce ─────────────────────────────────────────────────

    def get_directory(self, ctx: Context) -> dict:
        """GET /directory once per client; the result is reused."""
        if self._directory is None:
            resp = self._session.get(self.directory_url, timeout=ctx.call_timeout(self.timeout))
            resp.raise_for_status()
            self._directory = resp.json()
        return self._directory

    def _take_nonce(self, ctx: Context) -> str:
        if self._nonce:
            nonce, self._nonce = self._nonce, None
            return nonce
        directory = self.get_directory(ctx)
        resp = self._session.head(directory["newNonce"], timeout=ctx.call_timeout(self.timeout))
        nonce = resp.headers.get("Replay-Nonce")
        if not nonce:
            raise AcmeError(resp.status_code, {"detail": "No Replay-Nonce header"})
        return nonce

    # ── Account ───────────────────────────────────────────────────────────

    def register(self, ctx: Context) -> Account:
        """POST /newAccount agreeing to the terms of service; binds the result to this client."""
        payload: dict = {"termsOfServiceAgreed": True}
        if self.contact_email:
            payload["contact"] = [f"mailto:{self.contact_email}"]

        new_account_url = self.get_directory(ctx)["newAccount"]
        resp = self._post_signed(ctx, new_account_url, payload, use_jwk=True)
        account = Account.model_validate({**_json_or_empty(resp), "uri": resp.headers.get("Location", "")})
        self.bind_account(account)
        return account

    def bind_account(self, account: Account) -> None:
        self.account_uri = account.uri

    # ── Orders & authorizations ───────────────────────────────────────────

    def new_order(
        self,
        ctx: Context,
        domains: list[str],
        not_after: Optional[datetime] = None,
    ) -> Order:
        """POST /newOrder for *domains*; *not_after* bounds the requested validity."""
        payload: dict = {"identifiers": [{"type": "dns", "value": d} for d in domains]}
        if not_after is not None:
            payload["notAfter"] = not_after.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

        resp = self._post_signed(ctx, self.get_directory(ctx)["newOrder"], payload)
        order = Order.model_validate({**resp.json(), "uri": resp.headers.get("Location", "")})
        logger.info("Opened order %s for %s (%s)", order.uri, ", ".join(domains), order.status)
        return order

    def get_order(self, ctx: Context, uri: str) -> Order:
        resp = self._post_signed(ctx, uri, None)
        return Order.model_validate({**resp.json(), "uri": uri})

    def get_authorization(self, ctx: Context, uri: str) -> Authorization:
        resp = self._post_signed(ctx, uri, None)
        return Authorization.model_validate({**resp.json(), "uri": uri})

    def authorize(self, ctx: Context, order: Order, domain: str) -> Authorization:
        """Return the authorization in *order* whose identifier is *domain*."""
        for uri in order.authorizations:
            authz = self.get_authorization(ctx, uri)
            if normalize_domain(authz.domain) == normalize_domain(domain):
                return authz
        raise AcmeError(
            0,
            {
                "type": "urn:ietf:params:acme:error:malformed",
                "detail": f"Order {order.uri} has no authorization for {domain}",
            },
        )

    def accept(self, ctx: Context, challenge: Challenge) -> Challenge:
        """POST {} to the challenge URL to tell the CA to validate it."""
        resp = self._post_signed(ctx, challenge.url, {})
        return Challenge.model_validate(resp.json())

    def wait_authorization(self, ctx: Context, uri: str) -> Authorization:
        """Poll until the authorization reaches a terminal status and return it."""
        return poll_until(
            ctx,
            lambda: self.get_authorization(ctx, uri),
            lambda authz: authz.status not in (STATUS_PENDING, STATUS_PROCESSING),
            self.poll_interval,
            label=f"authorization {uri}",
        )

    # ── Finalization & certificate download ───────────────────────────────

    def create_cert(self, ctx: Context, order: Order, csr_der: bytes) -> list[bytes]:
        """
        Finalize *order* with a DER CSR, wait for issuance and return the
        certificate chain as DER blocks in the order the CA sent them.
        """
        order_uri = order.uri
        resp = self._post_signed(ctx, order.finalize, {"csr": jwslib.b64url(csr_der)})
        finalized = Order.model_validate({**resp.json(), "uri": order_uri})

        if finalized.status not in (STATUS_VALID, STATUS_INVALID):
            finalized = poll_until(
                ctx,
                lambda: self.get_order(ctx, order_uri),
                lambda o: o.status in (STATUS_VALID, STATUS_INVALID),
                self.poll_interval,
                label=f"order {order_uri}",
            )

        if finalized.status == STATUS_INVALID:
            raise AcmeError(0, {"type": "invalid", "detail": f"Order {order_uri} became invalid"})
        if not finalized.certificate:
            raise AcmeError(0, {"detail": f"Order {order_uri} is valid but has no certificate URL"})

        resp = self._post_signed(
            ctx, finalized.certificate, None, accept="application/pem-certificate-chain"
        )
        chain = pem_chain_to_der(resp.content)
        logger.info("Downloaded %d certificate(s) for order %s", len(chain), order_uri)
        return chain

    # ── Internal ──────────────────────────────────────────────────────────

    def _post_signed(
        self,
        ctx: Context,
        url: str,
        payload: dict | None,
        use_jwk: bool = False,
        accept: str = "application/json",
    ) -> requests.Response:
        """
        Sign *payload* and POST it to *url*, re-signing on `badNonce` with
        the nonce the rejection carried.
        """
        if not use_jwk and not self.account_uri:
            raise AcmeError(0, {"detail": "No ACME account bound to this client"})

        for attempt in range(_NONCE_RETRIES):
            nonce = self._take_nonce(ctx)
            body = jwslib.sign_request(
                payload, self.account_key, nonce, url, None if use_jwk else self.account_uri
            )
            resp = self._session.post(
                url,
                json=body,
                headers={
                    "Content-Type": "application/jose+json",
                    "Accept": accept,
                },
                timeout=ctx.call_timeout(self.timeout),
            )
            self._nonce = resp.headers.get("Replay-Nonce") or None
            if resp.ok:
                return resp

            try:
                error_body = resp.json()
            except ValueError:
                error_body = {"detail": resp.text}

            if "badNonce" in error_body.get("type", "") and attempt < _NONCE_RETRIES - 1:
                logger.debug("badNonce from %s, re-signing (attempt %d)", url, attempt + 1)
                continue

            raise AcmeError(resp.status_code, error_body)

        # Unreachable: the final attempt either returns or raises
        raise AcmeError(0, {"detail": "Exceeded nonce retry limit"})


def _json_or_empty(resp: requests.Response) -> dict:
    if not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError:
        return {}
