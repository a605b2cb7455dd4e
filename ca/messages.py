"""
ACME resource objects (RFC 8555 §7.1) as pydantic models.

Only the members this client reads are declared; anything else the CA sends
is kept (extra="allow") so an Account round-trips through account.json
without losing CA-defined fields.
"""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_READY = "ready"
STATUS_VALID = "valid"
STATUS_INVALID = "invalid"

CHALLENGE_DNS01 = "dns-01"


def normalize_domain(domain: str) -> str:
    """DNS names compare case-insensitively; CAs report them lowercase without the root dot."""
    return domain.strip().rstrip(".").lower()


class _Resource(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class Account(_Resource):
    uri: str
    status: str = STATUS_VALID
    contact: List[str] = Field(default_factory=list)
    terms_of_service_agreed: bool = Field(default=False, alias="termsOfServiceAgreed")

    @field_validator("uri")
    @classmethod
    def uri_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("account uri must not be empty")
        return v

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, indent=2)


class Identifier(_Resource):
    type: str = "dns"
    value: str


class Challenge(_Resource):
    type: str
    url: str
    token: str = ""
    status: str = STATUS_PENDING


class Authorization(_Resource):
    uri: str = ""
    status: str
    identifier: Identifier
    challenges: List[Challenge] = Field(default_factory=list)
    wildcard: bool = False

    @property
    def domain(self) -> str:
        """The identifier as it was ordered, with "*." restored for wildcards."""
        if self.wildcard:
            return f"*.{self.identifier.value}"
        return self.identifier.value

    def find_challenge(self, challenge_type: str) -> Optional[Challenge]:
        return next((c for c in self.challenges if c.type == challenge_type), None)


class Order(_Resource):
    uri: str = ""
    status: str
    identifiers: List[Identifier] = Field(default_factory=list)
    authorizations: List[str] = Field(default_factory=list)
    finalize: str
    certificate: Optional[str] = None
