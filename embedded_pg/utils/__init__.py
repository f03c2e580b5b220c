"""Utility modules for embedded_pg."""

from .crypto import random_database_name
from .filelock import FileLock
from .urls import add_credentials, jdbc_url, libpq_uri

__all__ = [
    "random_database_name",
    "FileLock",
    "add_credentials",
    "jdbc_url",
    "libpq_uri",
]
