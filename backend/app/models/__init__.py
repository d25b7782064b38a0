"""
Quote Wizard Models

SQLAlchemy table models live in ``app.models.db``; the wizard's own
pydantic models are in ``app.quote_wizard.models``.
"""
