from app.models.user import Profile, ProfileJob, User  # noqa: F401
from app.models.billing import (  # noqa: F401
    Entitlement,
    Invoice,
    InvoiceProduct,
    InvoiceStatus,
    PaymentEvent,
    PaymentEventType,
    TargetType,
)
