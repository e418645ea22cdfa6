from __future__ import annotations

from intakeportal.domain.models import AssetCategory, IntakeAsset
from intakeportal.domain.readiness import ReadinessPolicy, final_submit_readiness, is_image_asset


def _asset(category: AssetCategory, file_name: str, mime_type: str = "application/pdf") -> IntakeAsset:
    return IntakeAsset(
        id=f"asset_{file_name}",
        session_id="session_1",
        brokerage_id="brokerage_1",
        client_id="client_1",
        category=category,
        file_name=file_name,
        mime_type=mime_type,
        size_bytes=10,
    )


def _codes(reasons) -> list[str]:
    return [reason.code for reason in reasons]


def test_empty_intake_lists_every_blocking_reason() -> None:
    reasons = final_submit_readiness({}, [], ReadinessPolicy(min_property_photos=2))
    assert _codes(reasons) == ["property_photos", "financial_documents", "declaration"]
    assert reasons[0].message == "Upload at least 2 property photos"


def test_leasehold_requires_a_legal_document() -> None:
    answers = {"tenure": "leasehold", "declaration_confirmed": True}
    assets = [
        _asset(AssetCategory.PROPERTY, "front.jpg", "image/jpeg"),
        _asset(AssetCategory.FINANCIALS, "pnl.pdf"),
    ]
    policy = ReadinessPolicy(min_property_photos=1)
    assert _codes(final_submit_readiness(answers, assets, policy)) == ["lease_document"]
    assert final_submit_readiness(answers, [*assets, _asset(AssetCategory.LEGAL, "lease.pdf")], policy) == []


def test_only_property_images_count_as_photos() -> None:
    assets = [
        _asset(AssetCategory.PROPERTY, "floorplan.pdf"),
        _asset(AssetCategory.OTHER, "extra.jpg", "image/jpeg"),
        _asset(AssetCategory.FINANCIALS, "pnl.pdf"),
    ]
    reasons = final_submit_readiness({"declaration_confirmed": True}, assets, ReadinessPolicy(min_property_photos=1))
    assert _codes(reasons) == ["property_photos"]


def test_declaration_must_be_literal_true() -> None:
    assets = [_asset(AssetCategory.PROPERTY, "a.png", "image/png"), _asset(AssetCategory.FINANCIALS, "pnl.pdf")]
    policy = ReadinessPolicy(min_property_photos=1)
    assert _codes(final_submit_readiness({"declaration_confirmed": "true"}, assets, policy)) == ["declaration"]


def test_image_detection_uses_mime_type_or_extension() -> None:
    assert is_image_asset(_asset(AssetCategory.PROPERTY, "shop.HEIC", "application/octet-stream"))
    assert is_image_asset(_asset(AssetCategory.PROPERTY, "shop", "image/webp"))
    assert not is_image_asset(_asset(AssetCategory.PROPERTY, "shop.pdf"))
