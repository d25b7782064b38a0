"""SQLAlchemy 2.0 ORM models for the service-request backend.

Import all models here so Alembic's ``env.py`` can discover them via::

    from app.models.db import Base  # noqa: F401

Every model must be imported at module level to register with the
``DeclarativeBase`` metadata.
"""

from app.models.db.base import Base, TimestampMixin  # noqa: F401
from app.models.db.service_application import ServiceApplication  # noqa: F401
from app.models.db.service_application_attachment import (  # noqa: F401
    ServiceApplicationAttachment,
)
from app.models.db.service_invoice import ServiceInvoice  # noqa: F401
