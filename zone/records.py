"""
Provider-neutral DNS record-set and change types.

A RecordSet is keyed by (name, type) and compared by (ttl, rrdatas); rrdatas
keep their order because the provider returns them exactly as they were
written, so an ordered comparison is the byte-for-byte one.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

CHANGE_PENDING = "pending"
CHANGE_DONE = "done"


@dataclass(frozen=True)
class RecordSet:
    name: str
    type: str
    ttl: int
    rrdatas: tuple[str, ...]

    @classmethod
    def of(cls, name: str, record_type: str, ttl: int, rrdatas: Iterable[str]) -> "RecordSet":
        return cls(name=name, type=record_type, ttl=int(ttl), rrdatas=tuple(rrdatas))

    @classmethod
    def from_api(cls, data: dict) -> "RecordSet":
        return cls.of(data["name"], data["type"], data.get("ttl", 0), data.get("rrdatas", []))

    def to_api(self) -> dict:
        return {
            "kind": "dns#resourceRecordSet",
            "name": self.name,
            "type": self.type,
            "ttl": self.ttl,
            "rrdatas": list(self.rrdatas),
        }

    def same_key(self, other: "RecordSet") -> bool:
        return self.name == other.name and self.type == other.type

    def same_content(self, other: "RecordSet") -> bool:
        return self.ttl == other.ttl and self.rrdatas == other.rrdatas


@dataclass(frozen=True)
class Change:
    id: str
    status: str
    additions: tuple[RecordSet, ...] = field(default_factory=tuple)
    deletions: tuple[RecordSet, ...] = field(default_factory=tuple)
    start_time: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.status == CHANGE_DONE

    @classmethod
    def from_api(cls, data: dict) -> "Change":
        return cls(
            id=str(data["id"]),
            status=data.get("status", CHANGE_PENDING),
            additions=tuple(RecordSet.from_api(r) for r in data.get("additions", [])),
            deletions=tuple(RecordSet.from_api(r) for r in data.get("deletions", [])),
            start_time=data.get("startTime"),
        )
