"""
Regex tables for bilingual (English + Bengali) page extraction.

Python's ``\\d`` and ``\\b`` are Unicode-aware, so ASCII digits are spelled
``[0-9]`` and word boundaries are only placed around Latin alternatives.
Bengali ``য়`` appears both precomposed (U+09DF) and as ``য`` + nukta, so
patterns containing it accept either form.
"""

import re
from typing import Dict, List, Pattern, Tuple

# Bengali script block
BENGALI_RE = re.compile(r"[ঀ-৿]")
LATIN_RE = re.compile(r"[A-Za-z]")

BENGALI_DIGITS = "০১২৩৪৫৬৭৮৯"
BENGALI_NUMERALS: Dict[str, int] = {d: i for i, d in enumerate(BENGALI_DIGITS)}
_BENGALI_TO_ASCII = str.maketrans(BENGALI_DIGITS, "0123456789")

# য় precomposed or decomposed
_YA = "(?:য়|য়)"

HEADING_RE = re.compile(r"^(#{1,6})\s+(.+)$")

# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------

ORDERED_LIST_RE = re.compile(r"^([0-9]+)[.):]\s+(.+)")
BENGALI_ORDERED_RE = re.compile(r"^([০-৯]+)[.)।:]\s*(.+)")
BENGALI_STEP_WORD_RE = re.compile(
    rf"^(?:ধাপ|পর্যা{_YA}|পদ্ধতি)(?![ঀ-৿])\s*[-:]?\s*([0-9]+|[০-৯]+)?"
)
BENGALI_ORDINAL_RE = re.compile(r"^(?:প্রথমে|এরপর|অতঃপর|শেষে)(?=[\s,।:]|$)")
BULLET_RE = re.compile(r"^[-•–*]\s+(.+)")

BENGALI_IMPERATIVE_PATTERNS: List[Pattern] = [
    re.compile(r"(?:করুন|যান|দিন|নিন)\s*[।.]*$"),
    re.compile(r"আবেদন\s*করুন"),
    re.compile(r"পূরণ\s*করুন"),
    re.compile(r"জমা\s*দিন"),
    re.compile(r"সংগ্রহ\s*করুন"),
    re.compile(r"প্রদান\s*করুন"),
    re.compile(r"যাচাই\s*করুন"),
    re.compile(r"ক্লিক\s*করুন"),
    re.compile(r"নির্বাচন\s*করুন"),
    re.compile(r"আপলোড\s*করুন"),
    re.compile(r"ডাউনলোড\s*করুন"),
]

ENGLISH_ACTION_RE = re.compile(
    r"\b(?:apply|submit|visit|collect|pay|fill|upload|click|download|select|enter|verify|"
    r"check|go\s+to|log\s*in|sign\s*in|register|create|complete|provide|attach)\b",
    re.IGNORECASE,
)

# Prefixes removed from a step line to leave its body
STEP_PREFIX_PATTERNS: List[Pattern] = [
    re.compile(r"^[0-9]+[.):]?\s*"),
    re.compile(r"^[০-৯]+[.)।:]?\s*"),
    re.compile(r"^[-•–*]\s*"),
    re.compile(rf"^(?:ধাপ|পর্যা{_YA}|পদ্ধতি)(?![ঀ-৿])\s*[-:]?\s*(?:[0-9]+|[০-৯]+)?\s*[-:.)।]?\s*"),
]

FIRST_SENTENCE_RE = re.compile(r"^([^।.!?]+[।.!?]?)")

MIN_STEP_LENGTH = 5
MAX_STEP_TITLE = 150
MAX_STEP_DESCRIPTION = 500

# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

_ASCII_AMOUNT = r"[0-9](?:[0-9,]*[0-9])?"
_BENGALI_AMOUNT = r"[০-৯](?:[০-৯,]*[০-৯])?"
_ANY_AMOUNT = r"[0-9০-৯](?:[0-9০-৯,]*[0-9০-৯])?"
_LATIN_CURRENCY = r"(?<![A-Za-z])(?:BDT|Taka|TK)\b"

FEE_AMOUNT_CURRENCY_RE = re.compile(rf"({_ASCII_AMOUNT})\s*(?:{_LATIN_CURRENCY}|টাকা)", re.IGNORECASE)
FEE_TAKA_SIGN_RE = re.compile(rf"৳\s*({_ASCII_AMOUNT})")
FEE_CURRENCY_AMOUNT_RE = re.compile(rf"(?:{_LATIN_CURRENCY}|টাকা)\s*({_ASCII_AMOUNT})", re.IGNORECASE)
FEE_TAKA_SIGN_BENGALI_RE = re.compile(rf"৳\s*({_BENGALI_AMOUNT})")
FEE_BENGALI_TAKA_RE = re.compile(rf"({_BENGALI_AMOUNT})\s*টাকা")

MAX_FEE_AMOUNT = 10_000_000
MAX_FEE_LABEL = 100
MIN_FEE_LABEL = 3
MAX_FEE_TEXT = 200

LABEL_CLEANUP_PATTERNS: List[Tuple[Pattern, str]] = [
    (re.compile(r"^[-•–*]\s*"), ""),
    (re.compile(r"\*\*"), ""),
    (re.compile(rf"{_ANY_AMOUNT}\s*(?:{_LATIN_CURRENCY}|টাকা|৳)", re.IGNORECASE), ""),
    (re.compile(rf"(?:৳|{_LATIN_CURRENCY}|টাকা)\s*{_ANY_AMOUNT}", re.IGNORECASE), ""),
    (re.compile(rf"{_LATIN_CURRENCY}|টাকা|৳", re.IGNORECASE), ""),
    (re.compile(r"[:\-–|]"), " "),
    (re.compile(r"\s+"), " "),
]

# Most specific first
VARIANT_PATTERNS: List[Tuple[str, Pattern]] = [
    ("super_express", re.compile(r"\bsuper[-\s]?express\b|সুপার\s*এক্সপ্রেস", re.IGNORECASE)),
    ("emergency", re.compile(r"\b(?:emergency|urgent)\b|জরুরি|তাৎক্ষণিক", re.IGNORECASE)),
    ("express", re.compile(r"\bexpress\b|এক্সপ্রেস", re.IGNORECASE)),
    ("regular", re.compile(rf"\bregular\b|নি{_YA}মিত|সাধারণ", re.IGNORECASE)),
]

# ---------------------------------------------------------------------------
# FAQs
# ---------------------------------------------------------------------------

QUESTION_PREFIX_RE = re.compile(r"^(?:Q|Question|প্রশ্ন)\s*[.:：]\s*", re.IGNORECASE)
ANSWER_PREFIX_RE = re.compile(r"^(?:A|Answer|উত্তর)\s*[.:：]\s*", re.IGNORECASE)
FAQ_BULLET_RE = re.compile(r"^[-•*]\s*(.+)")
FAQ_LINK_RE = re.compile(r"\[([^\]]+\?[^\]]*)\]\(([^)]+)\)")

FAQ_HEADING_LOOKAHEAD = 20
FAQ_QA_LOOKAHEAD = 10
FAQ_ANSWER_SOFT_LIMIT = 50
MAX_FAQ_ANSWER = 1000
MIN_FAQ_HEADING_LENGTH = 10
MIN_FAQ_QA_LENGTH = 5

# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

DOCUMENT_EXTENSIONS = (".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx")
MARKDOWN_LINK_RE = re.compile(r"\[([^\]]*)\]\(([^)]+)\)")
BARE_DOC_URL_RE = re.compile(r"https?://[^\s<>\"')\]]+\.(?:pdf|docx?|xlsx?|pptx?)(?:\?[^\s<>\"')\]]*)?", re.IGNORECASE)
DOWNLOAD_WORD_RE = re.compile(r"download|attachment|file|document", re.IGNORECASE)
DOWNLOAD_QUERY_RE = re.compile(r"[?&](?:file|doc|attachment)=", re.IGNORECASE)
ID_QUERY_RE = re.compile(r"[?&]id=", re.IGNORECASE)
PHP_DOWNLOAD_RE = re.compile(r"\.php\?.*(?:id|file|doc)=", re.IGNORECASE)
SKIPPED_LINK_SCHEMES = ("mailto:", "tel:", "javascript:", "#", "data:")
MAX_DOC_TEXT = 200

# ---------------------------------------------------------------------------
# Page classification
# ---------------------------------------------------------------------------

PAGE_TYPES: Dict[str, Pattern] = {
    "tutorial": re.compile(r"tutorial|guide|how[-_]?to|instruction|step[-_]?by[-_]?step", re.IGNORECASE),
    "procedure": re.compile(r"procedure|process|apply|application|steps?", re.IGNORECASE),
    "faq": re.compile(r"faq|frequently[-_ ]?asked|questions?|help", re.IGNORECASE),
    "requirements": re.compile(r"requirement|document|eligibility|criterion|criteria", re.IGNORECASE),
    "fees": re.compile(r"fees?|payment|charge|cost|price|tariff", re.IGNORECASE),
    "processing_time": re.compile(r"processing[-_ ]?time|duration|delivery|turnaround", re.IGNORECASE),
    "portal": re.compile(r"portal|login|register|account|dashboard", re.IGNORECASE),
    "office": re.compile(r"office|location|address|branch|center|centre", re.IGNORECASE),
    "contact": re.compile(r"contact|helpline|hotline|support|customer[-_ ]?service", re.IGNORECASE),
    "form": re.compile(r"form|download|template", re.IGNORECASE),
}


def to_ascii_digits(text: str) -> str:
    """Map Bengali digits to ASCII, leaving everything else unchanged."""
    return text.translate(_BENGALI_TO_ASCII)


def contains_bengali(text: str) -> bool:
    return bool(text) and bool(BENGALI_RE.search(text))
