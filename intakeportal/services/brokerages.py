from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, Field, field_validator

from intakeportal.core.errors import ConflictError, NotFound, ValidationFailed
from intakeportal.domain.models import Brokerage, BrokerageBranding, PortalTone, new_id, utc_now
from intakeportal.persistence.base import IntakeStore


logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")


class BrandingPatch(BaseModel):
    logo_url: str | None = None
    primary_color: str | None = None
    secondary_color: str | None = None
    legal_footer: str | None = None
    show_platform_branding: bool | None = None
    portal_tone: PortalTone | None = None


class BrokerageCreate(BaseModel):
    slug: str
    name: str = Field(min_length=1)
    short_name: str | None = None
    sender_name: str = Field(min_length=1)
    sender_email: str = Field(min_length=3)
    portal_base_url: str = Field(min_length=1)
    drive_parent_folder_id: str | None = None
    is_archived: bool = False
    branding: BrandingPatch | None = None

    @field_validator("slug")
    @classmethod
    def _normalize_slug(cls, value: str) -> str:
        return value.strip()


class BrokeragePatch(BaseModel):
    # The slug is the routing key and is deliberately absent here.
    name: str | None = None
    short_name: str | None = None
    sender_name: str | None = None
    sender_email: str | None = None
    portal_base_url: str | None = None
    drive_parent_folder_id: str | None = None
    branding: BrandingPatch | None = None


class BrokerageService:
    def __init__(self, store: IntakeStore) -> None:
        self._store = store

    async def get(self, brokerage_id: str) -> Brokerage:
        brokerage = await self._store.brokerages.get(brokerage_id)
        if brokerage is None:
            raise NotFound("brokerage", brokerage_id)
        return brokerage

    async def get_by_slug(self, slug: str) -> Brokerage:
        brokerage = await self._store.brokerages.find_one(slug=slug)
        if brokerage is None:
            raise NotFound("brokerage", slug)
        return brokerage

    async def theme(self, slug: str) -> Brokerage:
        # Theme lookups serve the login page, so archived tenants still resolve.
        return await self.get_by_slug(slug)

    async def list(self, *, include_archived: bool = False) -> list[Brokerage]:
        filters: dict[str, Any] = {} if include_archived else {"is_archived": False}
        return await self._store.brokerages.find(order_by="name", **filters)

    async def create(self, payload: BrokerageCreate) -> Brokerage:
        if not SLUG_PATTERN.match(payload.slug):
            raise ValidationFailed({"slug": "Slug must be lowercase letters, digits and single hyphens"})
        if await self._store.brokerages.find_one(slug=payload.slug) is not None:
            raise ConflictError(f"Brokerage slug already exists: {payload.slug}")

        branding = BrokerageBranding(
            **(payload.branding.model_dump(exclude_none=True) if payload.branding else {})
        )
        now = utc_now()
        brokerage = await self._store.brokerages.create(
            Brokerage(
                id=new_id("brokerage"),
                slug=payload.slug,
                name=payload.name.strip(),
                short_name=payload.short_name,
                sender_name=payload.sender_name.strip(),
                sender_email=payload.sender_email.strip().lower(),
                portal_base_url=payload.portal_base_url.rstrip("/"),
                drive_parent_folder_id=payload.drive_parent_folder_id,
                branding=branding,
                is_archived=payload.is_archived,
                archived_at=now if payload.is_archived else None,
            )
        )
        logger.info("brokerage_created brokerage_id=%s slug=%s", brokerage.id, brokerage.slug)
        return brokerage

    async def update_settings(self, brokerage_id: str, patch: BrokeragePatch) -> Brokerage:
        current = await self.get(brokerage_id)
        changes: dict[str, Any] = patch.model_dump(exclude_none=True, exclude={"branding"})
        if "portal_base_url" in changes:
            changes["portal_base_url"] = changes["portal_base_url"].rstrip("/")
        if patch.branding is not None:
            merged = current.branding.model_copy(update=patch.branding.model_dump(exclude_none=True))
            changes["branding"] = merged
        updated = await self._store.brokerages.update(brokerage_id, changes)
        if updated is None:
            raise NotFound("brokerage", brokerage_id)
        return updated

    async def set_archived(self, brokerage_id: str, archived: bool) -> Brokerage:
        # Soft archive only hides the tenant from listings; its sessions keep working.
        await self.get(brokerage_id)
        updated = await self._store.brokerages.update(
            brokerage_id,
            {"is_archived": archived, "archived_at": utc_now() if archived else None},
        )
        if updated is None:
            raise NotFound("brokerage", brokerage_id)
        logger.info("brokerage_archive_changed brokerage_id=%s archived=%s", brokerage_id, archived)
        return updated
