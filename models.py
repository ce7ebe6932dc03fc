# app/models.py
"""
Claim record and the notifications the registry emits.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict, fields
from typing import ClassVar, Dict, Any, Type

from util import ZERO_ADDRESS


@dataclass
class Claim:
    assertion_id: str
    claimer: str
    twitter_handle: str
    tweet_text: str
    asserted_claim_text: bytes
    submitted_at: int
    is_resolved: bool = False
    is_rewarded: bool = False


@dataclass(frozen=True)
class ClaimDetails:
    claimer: str = ZERO_ADDRESS
    twitter_handle: str = ""
    tweet_text: str = ""
    is_resolved: bool = False
    is_rewarded: bool = False

    @property
    def exists(self) -> bool:
        return self.claimer != ZERO_ADDRESS

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RegistryEvent:
    name: ClassVar[str] = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ClaimSubmitted(RegistryEvent):
    name: ClassVar[str] = "ClaimSubmitted"
    assertion_id: str
    claimer: str
    twitter_handle: str
    tweet_text: str


@dataclass(frozen=True)
class ClaimResolved(RegistryEvent):
    name: ClassVar[str] = "ClaimResolved"
    assertion_id: str
    is_truthful: bool


@dataclass(frozen=True)
class RewardPaid(RegistryEvent):
    name: ClassVar[str] = "RewardPaid"
    assertion_id: str
    claimer: str
    amount: int


@dataclass(frozen=True)
class Deposited(RegistryEvent):
    name: ClassVar[str] = "Deposited"
    sender: str
    amount: int


EVENT_TYPES: Dict[str, Type[RegistryEvent]] = {
    cls.name: cls for cls in (ClaimSubmitted, ClaimResolved, RewardPaid, Deposited)
}


def event_from_dict(name: str, payload: Dict[str, Any]) -> RegistryEvent:
    cls = EVENT_TYPES[name]
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in payload.items() if k in known})
