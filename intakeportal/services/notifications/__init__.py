from intakeportal.services.notifications.email import (
    DeliveryStatus,
    EmailDeliveryResult,
    EmailNotifier,
    OutboxEmailNotifier,
    render_welcome_email,
)

__all__ = [
    "DeliveryStatus",
    "EmailDeliveryResult",
    "EmailNotifier",
    "OutboxEmailNotifier",
    "render_welcome_email",
]
