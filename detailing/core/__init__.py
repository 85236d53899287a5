"""
Core module - configuration, database, logging, and response formatting.
"""
from .config import Settings, get_settings
from .db import Base, create_tables, get_engine, get_session_factory
from .logging import configure_logging
from .responses import ErrorCodes, error_response, success_response

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "Base",
    "create_tables",
    "get_engine",
    "get_session_factory",
    # Logging
    "configure_logging",
    # Responses
    "ErrorCodes",
    "error_response",
    "success_response",
]
