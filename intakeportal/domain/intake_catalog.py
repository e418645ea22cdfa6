from __future__ import annotations

from functools import lru_cache

from intakeportal.domain.schema import (
    AnyOfCondition,
    EqualsCondition,
    FieldDefinition,
    FieldType,
    FieldValidation,
    HasValueCondition,
    SchemaEngine,
    StepDefinition,
)


REVENUE_MIX_GROUP = "revenue_mix"

_YES_NO = ["Yes", "No"]


def _revenue_share(name: str, label: str) -> FieldDefinition:
    return FieldDefinition(
        name=name,
        label=label,
        type=FieldType.PERCENT,
        required=True,
        validation=FieldValidation(min=0, max=100, sum_group=REVENUE_MIX_GROUP),
    )


INTAKE_STEP_DEFINITIONS: list[StepDefinition] = [
    StepDefinition(
        key="asset_snapshot",
        title="Asset Snapshot",
        subtitle="The business at a glance",
        description="Capture the legal entity, location and a short description of the business.",
        estimated_minutes=6,
        fields=[
            FieldDefinition(name="trading_name", label="Trading name", required=True),
            FieldDefinition(name="legal_entity_name", label="Legal entity name", required=True),
            FieldDefinition(
                name="abn",
                label="ABN",
                required=True,
                validation=FieldValidation(regex=r"^\d{11}$"),
                help_text="11 digits, no spaces",
            ),
            FieldDefinition(name="street_address", label="Street address", required=True),
            FieldDefinition(
                name="postcode",
                label="Postcode",
                required=True,
                validation=FieldValidation(regex=r"^\d{4}$"),
            ),
            FieldDefinition(
                name="industry",
                label="Industry",
                type=FieldType.SINGLE_SELECT,
                required=True,
                options=["Hospitality", "Retail", "Services", "Manufacturing", "Health", "Other"],
            ),
            FieldDefinition(
                name="industry_other",
                label="Describe the industry",
                required=True,
                condition=EqualsCondition(field="industry", equals="Other"),
            ),
            FieldDefinition(
                name="brief_description",
                label="Brief description",
                type=FieldType.TEXTAREA,
                required=True,
                validation=FieldValidation(max_words=150),
            ),
            FieldDefinition(name="year_established", label="Year established", type=FieldType.NUMBER,
                            validation=FieldValidation(min=1800, max=2100)),
        ],
    ),
    StepDefinition(
        key="financial_overview",
        title="Financial Overview",
        subtitle="Turnover, earnings and asking price",
        description="Headline financials for the last full financial year.",
        estimated_minutes=8,
        fields=[
            FieldDefinition(name="annual_turnover", label="Annual turnover", type=FieldType.CURRENCY, required=True,
                            validation=FieldValidation(min=0)),
            FieldDefinition(name="net_profit", label="Net profit", type=FieldType.CURRENCY, required=True),
            FieldDefinition(name="owner_salary", label="Owner salary", type=FieldType.CURRENCY),
            FieldDefinition(name="asking_price", label="Asking price", type=FieldType.CURRENCY, required=True,
                            validation=FieldValidation(min=0)),
            FieldDefinition(name="has_debt", label="Business debt to be cleared at sale",
                            type=FieldType.SINGLE_SELECT, options=_YES_NO),
            FieldDefinition(
                name="debt_amount",
                label="Outstanding debt",
                type=FieldType.CURRENCY,
                required=True,
                condition=EqualsCondition(field="has_debt", equals="Yes"),
            ),
            FieldDefinition(
                name="financials_upload",
                label="Profit and loss statements",
                type=FieldType.UPLOAD,
                upload_category="FINANCIALS",
            ),
        ],
    ),
    StepDefinition(
        key="revenue_operations",
        title="Revenue & Operations",
        subtitle="Where the money comes from",
        description="Revenue mix across channels and how the business runs day to day.",
        estimated_minutes=7,
        fields=[
            _revenue_share("revenue_in_store_pct", "In-store revenue %"),
            _revenue_share("revenue_online_pct", "Online revenue %"),
            _revenue_share("revenue_wholesale_pct", "Wholesale revenue %"),
            FieldDefinition(name="staff_count", label="Number of staff", type=FieldType.NUMBER, required=True,
                            validation=FieldValidation(min=0, max=10000)),
            FieldDefinition(name="trading_days", label="Trading days", type=FieldType.MULTI_SELECT,
                            options=["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]),
            FieldDefinition(
                name="weekend_manager",
                label="Weekend manager in place",
                type=FieldType.SINGLE_SELECT,
                options=_YES_NO,
                condition=AnyOfCondition(
                    any_of=[
                        EqualsCondition(field="trading_days", equals="Sat"),
                        EqualsCondition(field="trading_days", equals="Sun"),
                    ]
                ),
            ),
            FieldDefinition(name="owner_hours_per_week", label="Owner hours per week", type=FieldType.NUMBER,
                            validation=FieldValidation(min=0, max=168)),
        ],
    ),
    StepDefinition(
        key="property_assets",
        title="Property & Assets",
        subtitle="Premises, lease and equipment",
        description="Premises tenure, lease terms and included plant and equipment.",
        estimated_minutes=8,
        fields=[
            FieldDefinition(
                name="tenure",
                label="Premises tenure",
                type=FieldType.SINGLE_SELECT,
                required=True,
                options=["freehold", "leasehold", "home_based"],
            ),
            FieldDefinition(
                name="lease_explanation",
                label="Explain the lease",
                type=FieldType.TEXTAREA,
                required=True,
                condition=EqualsCondition(field="tenure", equals="leasehold"),
                validation=FieldValidation(max_words=200),
            ),
            FieldDefinition(
                name="lease_expiry",
                label="Lease expiry",
                type=FieldType.DATE,
                required=True,
                condition=EqualsCondition(field="tenure", equals="leasehold"),
            ),
            FieldDefinition(
                name="lease_upload",
                label="Lease agreement",
                type=FieldType.UPLOAD,
                condition=EqualsCondition(field="tenure", equals="leasehold"),
                upload_category="LEGAL",
            ),
            FieldDefinition(name="equipment_value", label="Plant and equipment value", type=FieldType.CURRENCY),
            FieldDefinition(
                name="equipment_list",
                label="Key equipment",
                type=FieldType.TEXTAREA,
                condition=HasValueCondition(field="equipment_value"),
            ),
        ],
    ),
    StepDefinition(
        key="performance_growth",
        title="Performance & Growth",
        subtitle="Trends and upside",
        description="Recent trading performance and growth levers for a buyer.",
        estimated_minutes=6,
        fields=[
            FieldDefinition(
                name="revenue_trend",
                label="Revenue trend over 3 years",
                type=FieldType.SINGLE_SELECT,
                required=True,
                options=["Growing", "Stable", "Declining"],
            ),
            FieldDefinition(
                name="decline_reason",
                label="Reason for decline",
                type=FieldType.TEXTAREA,
                required=True,
                condition=EqualsCondition(field="revenue_trend", equals="Declining"),
            ),
            FieldDefinition(name="growth_opportunities", label="Growth opportunities", type=FieldType.TEXTAREA,
                            validation=FieldValidation(max_words=250)),
            FieldDefinition(name="reason_for_sale", label="Reason for sale", type=FieldType.TEXTAREA, required=True),
        ],
    ),
    StepDefinition(
        key="market_compliance",
        title="Market & Compliance",
        subtitle="Competition, licences and disputes",
        description="Competitive position and any regulatory or legal exposure.",
        estimated_minutes=5,
        fields=[
            FieldDefinition(name="main_competitors", label="Main competitors", type=FieldType.TEXTAREA),
            FieldDefinition(name="licences_held", label="Licences held", type=FieldType.MULTI_SELECT,
                            options=["Liquor", "Food", "Trade", "Health", "None"]),
            FieldDefinition(
                name="licence_transferable",
                label="Licences transferable to a buyer",
                type=FieldType.SINGLE_SELECT,
                required=True,
                options=_YES_NO,
                condition=AnyOfCondition(
                    any_of=[
                        EqualsCondition(field="licences_held", equals="Liquor"),
                        EqualsCondition(field="licences_held", equals="Food"),
                        EqualsCondition(field="licences_held", equals="Trade"),
                        EqualsCondition(field="licences_held", equals="Health"),
                    ]
                ),
            ),
            FieldDefinition(name="pending_disputes", label="Pending disputes or claims",
                            type=FieldType.SINGLE_SELECT, required=True, options=_YES_NO),
            FieldDefinition(
                name="dispute_details",
                label="Dispute details",
                type=FieldType.TEXTAREA,
                required=True,
                condition=EqualsCondition(field="pending_disputes", equals="Yes"),
            ),
        ],
    ),
    StepDefinition(
        key="media_pricing_final",
        title="Media, Pricing & Declaration",
        subtitle="Photos, contact and sign-off",
        description="Listing media, the preferred contact details and the final declaration.",
        estimated_minutes=6,
        fields=[
            FieldDefinition(
                name="property_photos",
                label="Property photos",
                type=FieldType.UPLOAD,
                upload_category="PROPERTY",
                validation=FieldValidation(min_files=3, max_files=10),
            ),
            FieldDefinition(name="walkthrough_video", label="Walkthrough video", type=FieldType.UPLOAD,
                            upload_category="OTHER"),
            FieldDefinition(name="price_flexibility", label="Price flexibility %", type=FieldType.PERCENT,
                            validation=FieldValidation(min=0, max=50)),
            FieldDefinition(name="contact_email", label="Preferred contact email", type=FieldType.EMAIL,
                            required=True, validation=FieldValidation(regex=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")),
            FieldDefinition(name="contact_phone", label="Preferred contact phone", type=FieldType.PHONE,
                            validation=FieldValidation(regex=r"^[0-9+()\s-]{8,}$")),
            FieldDefinition(name="signature", label="Signature", type=FieldType.SIGNATURE, required=True),
            FieldDefinition(
                name="declaration_confirmed",
                label="I confirm the information provided is accurate",
                type=FieldType.BOOLEAN,
                required=True,
                condition=HasValueCondition(field="signature"),
            ),
        ],
    ),
]


@lru_cache
def default_schema() -> SchemaEngine:
    # Step definitions are static; share one engine per process.
    return SchemaEngine(INTAKE_STEP_DEFINITIONS)
