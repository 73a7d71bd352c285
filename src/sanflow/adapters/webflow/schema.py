"""Minimal Pydantic models for the Webflow Data API v2."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class WebflowBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class WebflowLocale(WebflowBaseModel):
    id: str | None = None
    cms_locale_id: str | None = Field(default=None, alias="cmsLocaleId")
    tag: str | None = None
    display_name: str | None = Field(default=None, alias="displayName")
    enabled: bool = True


class WebflowSiteLocales(WebflowBaseModel):
    primary: WebflowLocale | None = None
    secondary: list[WebflowLocale] = Field(default_factory=list["WebflowLocale"])


class WebflowSite(WebflowBaseModel):
    id: str
    display_name: str | None = Field(default=None, alias="displayName")
    short_name: str | None = Field(default=None, alias="shortName")
    locales: WebflowSiteLocales | None = None


class WebflowCollection(WebflowBaseModel):
    id: str
    display_name: str = Field(alias="displayName")
    singular_name: str | None = Field(default=None, alias="singularName")
    slug: str | None = None


class WebflowCollectionList(WebflowBaseModel):
    collections: list[WebflowCollection] = Field(default_factory=list["WebflowCollection"])


class WebflowItem(WebflowBaseModel):
    id: str
    cms_locale_id: str | None = Field(default=None, alias="cmsLocaleId")
    is_draft: bool = Field(default=False, alias="isDraft")
    is_archived: bool = Field(default=False, alias="isArchived")
    last_published: str | None = Field(default=None, alias="lastPublished")
    field_data: dict[str, Any] = Field(default_factory=dict, alias="fieldData")


class WebflowPagination(WebflowBaseModel):
    limit: int | None = None
    offset: int | None = None
    total: int | None = None


class WebflowItemList(WebflowBaseModel):
    items: list[WebflowItem] = Field(default_factory=list["WebflowItem"])
    pagination: WebflowPagination | None = None
