"""
Knowledge Base layer for the Bangladesh government services KB.

Modules:
    identity - Hashing, source-page ids and deterministic claim ids
    service_map - Domain to service/agency registry
    snapshots - Per-day page snapshots with content hashes
    writer - KB load/save with in-memory indexes and upserts
    guides - Service guide assembly from claims
"""

from . import identity
from . import service_map
from . import snapshots
from . import writer
from . import guides

__version__ = "3.0.0"
