"""Server instance components.

API:
    - EmbeddedPostgres: one running server
    - EmbeddedPostgresBuilder: configures and starts servers
    - DataDirectory, DataDirectoryManager: data directories and stale reclamation
"""

from .server import EmbeddedPostgres
from .builder import EmbeddedPostgresBuilder
from .data_directory import DataDirectory, DataDirectoryManager

__all__ = [
    "EmbeddedPostgres",
    "EmbeddedPostgresBuilder",
    "DataDirectory",
    "DataDirectoryManager",
]
