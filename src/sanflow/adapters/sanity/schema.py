"""Pydantic models for the Sanity HTTP query and mutation APIs."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SanityBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class SanityQueryResponse(SanityBaseModel):
    result: Any = None
    query: str | None = None
    ms: int | None = None


class SanityDocument(BaseModel):
    """A queried document; projected fields are kept as extras."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")
    type: str | None = Field(default=None, alias="_type")
    updated_at: str | None = Field(default=None, alias="_updatedAt")

    @property
    def fields(self) -> dict[str, Any]:
        return dict(self.__pydantic_extra__ or {})


class SanityMutationResult(SanityBaseModel):
    id: str | None = None
    operation: str | None = None


class SanityMutationResponse(SanityBaseModel):
    transaction_id: str | None = Field(default=None, alias="transactionId")
    results: list[SanityMutationResult] = Field(default_factory=list["SanityMutationResult"])
