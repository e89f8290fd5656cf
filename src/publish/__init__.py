"""
Publishing of reader-facing service guides.

Modules:
- build_guides: Resolve KB guides into public guides, index and schema files
- validate: Schema, contract and semantic checks for the published files
"""

from . import build_guides
from . import validate

__version__ = "3.0.0"
