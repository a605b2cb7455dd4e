"""
Error taxonomy for certificate refresh and DNS maintenance.

Fatal-to-startup:    KeyStoreError, AccountPersistError
Per-domain:          UnsupportedChallengeError, AuthorizationError
DNS provider:        DnsProviderError
Cancellation:        OperationCancelled, DeadlineExceeded

CA problem documents are reported as ca.client.AcmeError.
"""
from __future__ import annotations

from typing import Optional


class CertLifecycleError(Exception):
    """Base class for every error raised by the refresh flow."""


class KeyStoreError(CertLifecycleError):
    """A private key could not be generated or written."""


class AccountPersistError(CertLifecycleError):
    """The CA registered an account but it could not be saved to disk."""


class UnsupportedChallengeError(CertLifecycleError):
    def __init__(self, domain: str, offered: Optional[list[str]] = None) -> None:
        self.domain = domain
        self.offered = offered or []
        super().__init__(
            f"No dns-01 challenge offered for {domain} (offered: {', '.join(self.offered) or 'none'})"
        )


class AuthorizationError(CertLifecycleError):
    """Authorization for *domain* ended in a non-valid state or the CA refused a step."""

    def __init__(self, domain: str, status: str, detail: str = "") -> None:
        self.domain = domain
        self.status = status
        self.detail = detail
        message = f"Authorization for {domain} failed with status {status!r}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class DnsProviderError(CertLifecycleError):
    """The DNS provider API rejected a list, change or get call."""


class OperationCancelled(CertLifecycleError):
    """The caller cancelled the context while an operation was in flight."""


class DeadlineExceeded(OperationCancelled):
    """The context deadline passed while an operation was in flight."""
