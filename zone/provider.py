"""
DNS zone API access for the managed zone.

Provides:
  DnsProvider (ABC)
      The three calls the reconciler needs: list the record sets at a
      (name, type) key, submit an atomic change, and read a change back.

  GoogleCloudDnsProvider: Cloud DNS v1 via google-api-python-client

  make_dns_provider(settings) -> DnsProvider
      Factory that reads settings and returns the configured provider.

Every call checks the polling.Context first so a cancelled refresh stops
before the next API round trip.  API failures surface as DnsProviderError.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Iterable, Optional

import google.auth
from google.auth import exceptions as google_auth_errors
from google.oauth2.service_account import Credentials
from googleapiclient import discovery
from googleapiclient import errors as googleapiclient_errors

from errors import DnsProviderError
from polling import Context
from zone.records import Change, RecordSet

if TYPE_CHECKING:
    from config import Settings

logger = logging.getLogger(__name__)

CLOUD_DNS_SCOPES = ["https://www.googleapis.com/auth/ndev.clouddns.readwrite"]


# ─── Provider ABC ─────────────────────────────────────────────────────────────


class DnsProvider(ABC):
    """Abstract base for record-set maintenance in one managed zone."""

    @abstractmethod
    def list_record_sets(self, ctx: Context, name: str, record_type: str) -> list[RecordSet]:
        """Return every record set in the zone whose name and type match exactly."""

    @abstractmethod
    def create_change(
        self,
        ctx: Context,
        additions: Iterable[RecordSet],
        deletions: Iterable[RecordSet],
    ) -> Change:
        """Submit additions and deletions as one atomic change."""

    @abstractmethod
    def get_change(self, ctx: Context, change_id: str) -> Change:
        """Read back a previously submitted change."""


# ─── Google Cloud DNS ─────────────────────────────────────────────────────────


class GoogleCloudDnsProvider(DnsProvider):
    """DNS provider backed by the Cloud DNS v1 REST API."""

    def __init__(
        self,
        project_id: str,
        zone_name: str,
        credentials_path: str = "",
        dns_api: Optional[Any] = None,
    ) -> None:
        self.project_id = project_id
        self.zone_name = zone_name
        self.credentials_path = credentials_path
        self._dns = dns_api

    def _service(self) -> Any:
        """The discovery client, built on first use so a fresh-cert startup needs no credentials."""
        if self._dns is None:
            credentials, detected_project = _load_credentials(self.credentials_path)
            self.project_id = self.project_id or detected_project
            if not self.project_id:
                raise DnsProviderError(
                    "GOOGLE_PROJECT_ID is not set and could not be determined from the credentials"
                )
            try:
                self._dns = discovery.build("dns", "v1", credentials=credentials, cache_discovery=False)
            except googleapiclient_errors.Error as exc:
                raise DnsProviderError(f"Could not build the Cloud DNS client: {exc}") from exc
        return self._dns

    @classmethod
    def from_settings(cls, settings: "Settings") -> "GoogleCloudDnsProvider":
        return cls(
            project_id=settings.GOOGLE_PROJECT_ID,
            zone_name=settings.DNS_ZONE,
            credentials_path=settings.GOOGLE_APPLICATION_CREDENTIALS,
        )

    def list_record_sets(self, ctx: Context, name: str, record_type: str) -> list[RecordSet]:
        rrsets = self._service().resourceRecordSets()
        request = rrsets.list(
            project=self.project_id, managedZone=self.zone_name, name=name, type=record_type
        )
        found: list[RecordSet] = []
        while request is not None:
            response = self._execute(ctx, request, f"listing {record_type} {name}")
            for item in response.get("rrsets", []):
                record = RecordSet.from_api(item)
                # the API filters by name/type already; keep the check for exactness
                if record.name == name and record.type == record_type:
                    found.append(record)
            request = rrsets.list_next(previous_request=request, previous_response=response)
        return found

    def create_change(
        self,
        ctx: Context,
        additions: Iterable[RecordSet],
        deletions: Iterable[RecordSet],
    ) -> Change:
        body = {
            "kind": "dns#change",
            "additions": [r.to_api() for r in additions],
            "deletions": [r.to_api() for r in deletions],
        }
        changes = self._service().changes()
        request = changes.create(
            project=self.project_id, managedZone=self.zone_name, body=body
        )
        return Change.from_api(self._execute(ctx, request, "creating change"))

    def get_change(self, ctx: Context, change_id: str) -> Change:
        changes = self._service().changes()
        request = changes.get(
            project=self.project_id, managedZone=self.zone_name, changeId=change_id
        )
        return Change.from_api(self._execute(ctx, request, f"reading change {change_id}"))

    def _execute(self, ctx: Context, request: Any, action: str) -> dict:
        ctx.raise_if_done()
        try:
            return request.execute()
        except (googleapiclient_errors.Error, google_auth_errors.GoogleAuthError) as exc:
            logger.error("Cloud DNS error while %s in zone %s: %s", action, self.zone_name, exc)
            raise DnsProviderError(
                f"Error communicating with the Google Cloud DNS API while {action}: {exc}"
            ) from exc


def _load_credentials(credentials_path: str):
    """Service-account file when one is configured, application default credentials otherwise."""
    try:
        if credentials_path:
            credentials = Credentials.from_service_account_file(
                credentials_path, scopes=CLOUD_DNS_SCOPES
            )
            with open(credentials_path) as fh:
                project_id = json.load(fh).get("project_id", "")
            return credentials, project_id
        credentials, project_id = google.auth.default(scopes=CLOUD_DNS_SCOPES)
        return credentials, project_id or ""
    except (OSError, ValueError, google_auth_errors.GoogleAuthError) as exc:
        raise DnsProviderError(f"Could not load Google Cloud credentials: {exc}") from exc


# ─── Factory ──────────────────────────────────────────────────────────────────


def make_dns_provider(settings: "Settings") -> DnsProvider:
    """Instantiate and return the DNS provider for *settings*."""
    return GoogleCloudDnsProvider.from_settings(settings)
