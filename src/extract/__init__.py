"""
Bilingual page extraction.

Modules:
    patterns - Regex tables for steps, fees, FAQs, documents and page types
    extractor - Markdown/HTML to steps, fees, FAQs and document links
    claims - Extracted items to deterministic, cited KB claims
"""

from . import patterns
from . import extractor
from . import claims
