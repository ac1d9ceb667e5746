"""Read-only lookups into users and posts."""

from .models import DIRECTORY_TABLES_CQL
from .service import CassandraDirectory, Directory, InMemoryDirectory


__all__ = [
    "DIRECTORY_TABLES_CQL",
    "CassandraDirectory",
    "Directory",
    "InMemoryDirectory",
]
