"""
AuthorizationSolver: satisfy one domain's authorization with a DNS-01 TXT record.

Domains are solved one at a time: every challenge record lives in the same
zone and each one ends in a propagation wait.
"""
from __future__ import annotations

import logging

from ca import jws as jwslib
from ca.client import AcmeClient, AcmeError
from ca.messages import CHALLENGE_DNS01, STATUS_VALID, Authorization, Order
from errors import AuthorizationError, UnsupportedChallengeError
from polling import Context
from zone.reconciler import DnsReconciler
from zone.records import RecordSet

logger = logging.getLogger(__name__)

DEFAULT_CHALLENGE_TTL = 60


def challenge_record_name(domain: str) -> str:
    """Absolute TXT name for *domain*; a wildcard is validated at its base name."""
    if domain.startswith("*."):
        domain = domain[2:]
    return f"_acme-challenge.{domain.rstrip('.')}."


class AuthorizationSolver:
    def __init__(
        self,
        client: AcmeClient,
        reconciler: DnsReconciler,
        challenge_ttl: int = DEFAULT_CHALLENGE_TTL,
    ) -> None:
        self.client = client
        self.reconciler = reconciler
        self.challenge_ttl = challenge_ttl

    def authorize(self, ctx: Context, order: Order, domain: str) -> Authorization:
        """
        Bring *domain*'s authorization in *order* to "valid".

        An authorization the CA already reports valid returns straight away
        with no DNS write and no challenge accept.

        Raises:
            UnsupportedChallengeError: the CA offered no dns-01 challenge.
            AuthorizationError: validation ended invalid, or the CA rejected a step.
        """
        try:
            authz = self.client.authorize(ctx, order, domain)
            if authz.status == STATUS_VALID:
                logger.info("Authorization for %s is already valid", domain)
                return authz

            challenge = authz.find_challenge(CHALLENGE_DNS01)
            if challenge is None:
                raise UnsupportedChallengeError(domain, [c.type for c in authz.challenges])

            value = jwslib.dns01_record_value(challenge.token, self.client.account_key)
            record = RecordSet.of(challenge_record_name(domain), "TXT", self.challenge_ttl, [f'"{value}"'])
            logger.info("Publishing dns-01 response for %s at %s", domain, record.name)
            self.reconciler.reconcile(ctx, record, wait_propagation=True)

            self.client.accept(ctx, challenge)
            logger.info("Accepted dns-01 challenge for %s; waiting for the CA", domain)
            authz = self.client.wait_authorization(ctx, authz.uri)
        except AcmeError as exc:
            raise AuthorizationError(domain, "error", str(exc)) from exc

        if authz.status != STATUS_VALID:
            detail = ""
            failed = authz.find_challenge(CHALLENGE_DNS01)
            if failed is not None:
                error = (failed.model_extra or {}).get("error") or {}
                detail = error.get("detail", "") if isinstance(error, dict) else str(error)
            raise AuthorizationError(domain, authz.status, detail)

        logger.info("Authorization for %s is valid", domain)
        return authz
