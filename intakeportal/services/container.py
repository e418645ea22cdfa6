from __future__ import annotations

from dataclasses import dataclass, field

from intakeportal.core.config import Settings
from intakeportal.domain.intake_catalog import default_schema
from intakeportal.domain.readiness import ReadinessPolicy
from intakeportal.domain.schema import SchemaEngine
from intakeportal.persistence.base import IntakeStore
from intakeportal.persistence.factory import build_store
from intakeportal.services.audit import AuditTrail
from intakeportal.services.auth.operator_sessions import OperatorAccess, SignInThrottle
from intakeportal.services.auth.portal_auth import PortalAuthService
from intakeportal.services.auth.tokens import TokenCodec
from intakeportal.services.brokerages import BrokerageService
from intakeportal.services.file_routing import FileRouter, SessionFileRouting, StubDriveRouter
from intakeportal.services.intake import IntakeSessionService
from intakeportal.services.lifecycle import LifecycleService
from intakeportal.services.notifications.email import EmailNotifier, OutboxEmailNotifier
from intakeportal.services.onboarding import OnboardingService
from intakeportal.services.operator import OperatorService
from intakeportal.services.pipeline import PipelineService, ReportGenerator, TemplateReportGenerator


@dataclass
class ServiceContainer:
    # One wired object graph per process; the API and scripts share it.
    settings: Settings
    store: IntakeStore
    schema: SchemaEngine
    codec: TokenCodec
    audit: AuditTrail
    lifecycle: LifecycleService
    portal_auth: PortalAuthService
    operator_access: OperatorAccess
    intake: IntakeSessionService
    brokerages: BrokerageService
    onboarding: OnboardingService
    operator: OperatorService
    pipeline: PipelineService
    sign_in_throttle: SignInThrottle = field(default_factory=SignInThrottle)


def build_container(
    settings: Settings,
    *,
    store: IntakeStore | None = None,
    notifier: EmailNotifier | None = None,
    router: FileRouter | None = None,
    report_generator: ReportGenerator | None = None,
    schema: SchemaEngine | None = None,
) -> ServiceContainer:
    resolved_store = store if store is not None else build_store(settings)
    resolved_schema = schema or default_schema()
    codec = TokenCodec(
        magic_link_secret=settings.magic_link_secret,
        session_secret=settings.portal_session_secret,
    )
    audit = AuditTrail(resolved_store)
    lifecycle = LifecycleService(resolved_store, audit)
    portal_auth = PortalAuthService(store=resolved_store, codec=codec, audit=audit, settings=settings)
    routing = SessionFileRouting(
        store=resolved_store,
        audit=audit,
        router=router or StubDriveRouter(settings.drive_base_url),
        drive_enabled=settings.drive_enabled,
    )
    intake = IntakeSessionService(
        store=resolved_store,
        schema=resolved_schema,
        auth=portal_auth,
        lifecycle=lifecycle,
        audit=audit,
        routing=routing,
        readiness_policy=ReadinessPolicy(min_property_photos=settings.readiness_min_property_photos),
        enforce_readiness=settings.final_submit_enforce_readiness,
    )
    onboarding = OnboardingService(
        store=resolved_store,
        audit=audit,
        auth=portal_auth,
        intake=intake,
        notifier=notifier or OutboxEmailNotifier(store=resolved_store, settings=settings),
        routing=routing,
        default_portal_base_url=settings.default_portal_base_url,
    )
    return ServiceContainer(
        settings=settings,
        store=resolved_store,
        schema=resolved_schema,
        codec=codec,
        audit=audit,
        lifecycle=lifecycle,
        portal_auth=portal_auth,
        operator_access=OperatorAccess(settings),
        intake=intake,
        brokerages=BrokerageService(resolved_store),
        onboarding=onboarding,
        operator=OperatorService(
            store=resolved_store,
            audit=audit,
            lifecycle=lifecycle,
            intake=intake,
            onboarding=onboarding,
        ),
        pipeline=PipelineService(
            store=resolved_store,
            lifecycle=lifecycle,
            audit=audit,
            generator=report_generator or TemplateReportGenerator(),
        ),
    )
