# src/cache/models.py — v2
"""Secure cache domain models: CacheKey, CacheLoadResult, CookieHeaderCacheEntry."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


@dataclass(frozen=True)
class CacheKey:
    """Address of one secure-store entry.

    The account string is ``<category>.<identifier>``; categories never
    contain dots so two keys can only collide when both parts are equal.
    """

    category: str
    identifier: str

    def __post_init__(self) -> None:
        if not self.category or "." in self.category:
            raise ValueError(f"Invalid cache key category: {self.category!r}")
        if not self.identifier:
            raise ValueError("Cache key identifier must not be empty")

    @property
    def account(self) -> str:
        return f"{self.category}.{self.identifier}"

    @classmethod
    def cookie(cls, provider: str) -> CacheKey:
        return cls(category="cookie", identifier=provider)

    @classmethod
    def oauth(cls, provider: str) -> CacheKey:
        return cls(category="oauth", identifier=provider)

    @classmethod
    def token(cls, provider: str) -> CacheKey:
        return cls(category="token", identifier=provider)


@dataclass(frozen=True)
class CacheLoadResult(Generic[T]):
    """Tri-state load outcome: found, missing or invalid.

    ``invalid`` means an entry exists but could not be decoded; it is logged
    by the store and must be treated like ``missing`` for control flow.
    """

    status: Literal["found", "missing", "invalid"]
    value: T | None = None
    reason: str | None = None

    @classmethod
    def found(cls, value: T) -> CacheLoadResult[T]:
        return cls(status="found", value=value)

    @classmethod
    def missing(cls) -> CacheLoadResult[T]:
        return cls(status="missing")

    @classmethod
    def invalid(cls, reason: str) -> CacheLoadResult[T]:
        return cls(status="invalid", reason=reason)

    @property
    def is_found(self) -> bool:
        return self.status == "found"

    @property
    def is_missing(self) -> bool:
        return self.status == "missing"

    @property
    def is_invalid(self) -> bool:
        return self.status == "invalid"

    def value_or_none(self) -> T | None:
        return self.value if self.status == "found" else None


class CookieHeaderCacheEntry(BaseModel):
    """Cookie header captured from a browser (or pasted) for one provider.

    Serialized with camelCase keys, the same shape as the legacy
    ``<provider>-cookie.json`` files.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    cookie_header: str = Field(alias="cookieHeader")
    stored_at: datetime = Field(alias="storedAt")
    source_label: str = Field(alias="sourceLabel")


class SecretEntry(BaseModel):
    """Opaque secret (API token, raw credential blob) plus when it was stored."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    data: str
    stored_at: datetime = Field(alias="storedAt")
    owner: str | None = None
