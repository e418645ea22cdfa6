from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from intakeportal.domain.models import AssetCategory, IntakeAsset


_IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".heic", ".webp")


@dataclass(frozen=True)
class BlockingReason:
    code: str
    message: str


@dataclass(frozen=True)
class ReadinessPolicy:
    min_property_photos: int = 5


def is_image_asset(asset: IntakeAsset) -> bool:
    if asset.mime_type.lower().startswith("image/"):
        return True
    return asset.file_name.lower().endswith(_IMAGE_EXTENSIONS)


def final_submit_readiness(
    merged_answers: Mapping[str, Any],
    assets: Iterable[IntakeAsset],
    policy: ReadinessPolicy | None = None,
) -> list[BlockingReason]:
    """Return every reason the intake cannot be finally submitted yet.

    These checks span steps and uploaded files, so they live outside per-field
    schema validation. An empty list means the intake is ready.
    """
    resolved = policy or ReadinessPolicy()
    asset_list = list(assets)
    reasons: list[BlockingReason] = []

    photos = [
        asset
        for asset in asset_list
        if AssetCategory(asset.category) == AssetCategory.PROPERTY and is_image_asset(asset)
    ]
    if len(photos) < resolved.min_property_photos:
        reasons.append(
            BlockingReason(
                code="property_photos",
                message=f"Upload at least {resolved.min_property_photos} property photos",
            )
        )

    if merged_answers.get("tenure") == "leasehold":
        if not any(AssetCategory(asset.category) == AssetCategory.LEGAL for asset in asset_list):
            reasons.append(
                BlockingReason(code="lease_document", message="Upload the lease agreement for a leasehold premises")
            )

    if not any(AssetCategory(asset.category) == AssetCategory.FINANCIALS for asset in asset_list):
        reasons.append(
            BlockingReason(code="financial_documents", message="Upload at least one financial document")
        )

    if merged_answers.get("declaration_confirmed") is not True:
        reasons.append(
            BlockingReason(code="declaration", message="Confirm the final declaration before submitting")
        )
    return reasons
