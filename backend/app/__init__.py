"""
Quote Wizard Backend Application Package

This package contains the FastAPI backend for the service-request
storefront, including:

- main.py: FastAPI application, error envelope and router wiring
- quote_wizard/: the wizard state machine, validation and pricing
- services/: SQL-backed records, payment hand-off, live session registry
"""

__version__ = "1.0.0"
