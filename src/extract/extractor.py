"""
Deterministic structured-data extraction from page markdown.

Turns a page's markdown (and optionally its raw HTML) into steps, fees,
FAQ pairs and downloadable documents. Every item carries the heading path
it was found under and its 1-based line number, which later form the claim
locator. The same (markdown, url, html) input always yields the same output
in the same order.
"""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

from . import patterns as p

logger = logging.getLogger(__name__)


@dataclass
class Heading:
    level: int
    text: str
    path: List[str]
    line_number: int


@dataclass
class Step:
    order: int
    title: str
    description: str
    text: str
    heading_path: List[str]
    line_number: int
    marker: str


@dataclass
class Fee:
    amount_bdt: int
    label: str
    variant: Optional[str]
    text: str
    heading_path: List[str]
    line_number: int
    currency: str = "BDT"


@dataclass
class FaqPair:
    question: str
    answer: Optional[str]
    heading_path: List[str]
    line_number: int
    link: Optional[str] = None


@dataclass
class DocumentLink:
    text: str
    url: str
    extension: str
    discovery_method: str
    heading_path: List[str] = field(default_factory=list)
    line_number: Optional[int] = None


@dataclass
class ExtractionResult:
    steps: List[Step] = field(default_factory=list)
    fee_table: List[Fee] = field(default_factory=list)
    faq_pairs: List[FaqPair] = field(default_factory=list)
    document_list: List[DocumentLink] = field(default_factory=list)
    headings: List[Heading] = field(default_factory=list)

    @property
    def stats(self) -> Dict[str, int]:
        return {
            "steps_extracted": len(self.steps),
            "fees_extracted": len(self.fee_table),
            "faq_pairs_extracted": len(self.faq_pairs),
            "doc_links_found": len(self.document_list),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [asdict(s) for s in self.steps],
            "fee_table": [asdict(f) for f in self.fee_table],
            "faq_pairs": [asdict(f) for f in self.faq_pairs],
            "document_list": [asdict(d) for d in self.document_list],
            "headings": [asdict(h) for h in self.headings],
            "stats": self.stats,
        }


# =============================================================================
# Helpers
# =============================================================================

def parse_bengali_number(text: str) -> Optional[float]:
    """
    Parse a number that may use Bengali digits and thousands commas.

    Returns:
        Parsed number, or None if the text is not numeric
    """
    if not text:
        return None
    cleaned = p.to_ascii_digits(text).replace(",", "").strip()
    try:
        return float(cleaned)
    except ValueError:
        return None


def detect_language(text: str) -> List[str]:
    """Script-based language tags: ``en`` for Latin letters, ``bn`` for Bengali."""
    languages = []
    if text and p.LATIN_RE.search(text):
        languages.append("en")
    if p.contains_bengali(text):
        languages.append("bn")
    return languages or ["en"]


def classify_page(url: str, title: str = "", content: str = "") -> List[str]:
    """Tag a page with every matching page type, or ``general``."""
    combined = f"{url} {title} {content}".lower()
    types = [name for name, pattern in p.PAGE_TYPES.items() if pattern.search(combined)]
    return types or ["general"]


def _match_heading(line: str) -> Optional[Tuple[int, str]]:
    match = p.HEADING_RE.match(line)
    if not match:
        return None
    return len(match.group(1)), match.group(2).replace("**", "").strip()


def _push_heading(path: List[str], level: int, text: str) -> List[str]:
    path = path[:level - 1]
    path.append(text)
    return path


def _has_imperative(text: str) -> bool:
    return any(pattern.search(text) for pattern in p.BENGALI_IMPERATIVE_PATTERNS)


def detect_step_line(line: str) -> Tuple[bool, Optional[int], Optional[str]]:
    """
    Decide whether a trimmed line is a procedural step.

    Returns:
        Tuple of (is_step, explicit_order, marker)
    """
    match = p.ORDERED_LIST_RE.match(line)
    if match and int(match.group(1)) > 0:
        return True, int(match.group(1)), "ordered_list"

    match = p.BENGALI_ORDERED_RE.match(line)
    if match:
        order = parse_bengali_number(match.group(1))
        if order is not None and order > 0:
            return True, int(order), "bengali_ordered"

    match = p.BENGALI_STEP_WORD_RE.match(line)
    if match:
        number = parse_bengali_number(match.group(1)) if match.group(1) else None
        return True, int(number) if number else None, "bengali_step_marker"

    if p.BENGALI_ORDINAL_RE.match(line):
        return True, None, "bengali_ordinal"

    match = p.BULLET_RE.match(line)
    if match:
        content = match.group(1)
        if _has_imperative(content) or p.ENGLISH_ACTION_RE.search(content):
            return True, None, "bullet_imperative"
        return False, None, None

    if p.contains_bengali(line) and _has_imperative(line):
        return True, None, "bengali_imperative"

    return False, None, None


def _strip_step_marker(line: str) -> str:
    text = line
    for pattern in p.STEP_PREFIX_PATTERNS:
        text = pattern.sub("", text, count=1)
    return text.strip()


def _split_title(text: str) -> Tuple[str, str]:
    match = p.FIRST_SENTENCE_RE.match(text)
    sentence = match.group(1).strip() if match else text[:100]
    if len(sentence) > p.MAX_STEP_TITLE:
        return sentence[:p.MAX_STEP_TITLE], text[:p.MAX_STEP_DESCRIPTION]
    remainder = text[match.end():].strip() if match else ""
    return sentence, remainder[:p.MAX_STEP_DESCRIPTION]


def _detect_variant(text: str) -> Optional[str]:
    for variant, pattern in p.VARIANT_PATTERNS:
        if pattern.search(text):
            return variant
    return None


def _clean_fee_label(line: str, heading_path: List[str]) -> str:
    label = line
    for pattern, replacement in p.LABEL_CLEANUP_PATTERNS:
        label = pattern.sub(replacement, label)
    label = label.strip()[:p.MAX_FEE_LABEL].strip()
    if len(label) < p.MIN_FEE_LABEL:
        return heading_path[-1] if heading_path else "Fee"
    return label


def _resolve_url(base_url: str, href: str) -> str:
    try:
        resolved = urljoin(base_url, href.strip())
    except ValueError:
        return href.strip()
    return urldefrag(resolved)[0]


def _url_extension(url: str) -> str:
    try:
        return PurePosixPath(urlparse(url).path).suffix.lower()
    except ValueError:
        return ""


# =============================================================================
# Extractors
# =============================================================================

def extract_headings(lines: List[str]) -> List[Heading]:
    headings = []
    path: List[str] = []
    for i, raw in enumerate(lines):
        heading = _match_heading(raw.strip())
        if heading:
            level, text = heading
            path = _push_heading(path, level, text)
            headings.append(Heading(level=level, text=text, path=list(path), line_number=i + 1))
    return headings


def extract_steps(lines: List[str]) -> List[Step]:
    """
    Collect step lines, order them and renumber densely from 1.

    Lines without an explicit number get insertion-order numbers; sorting is
    stable so ties keep document order.
    """
    steps: List[Step] = []
    auto_order = 1
    path: List[str] = []

    for i, raw in enumerate(lines):
        line = raw.strip()
        heading = _match_heading(line)
        if heading:
            path = _push_heading(path, *heading)
            continue

        is_step, order, marker = detect_step_line(line)
        if not is_step:
            continue

        text = _strip_step_marker(line)
        if len(text) < p.MIN_STEP_LENGTH:
            continue

        if order is None:
            order = auto_order
            auto_order += 1

        title, description = _split_title(text)
        steps.append(Step(
            order=order,
            title=title,
            description=description,
            text=text,
            heading_path=list(path),
            line_number=i + 1,
            marker=marker,
        ))

    steps.sort(key=lambda s: s.order)
    for number, step in enumerate(steps, start=1):
        step.order = number
    return steps


def _line_amounts(line: str) -> List[str]:
    amounts = []
    match1 = p.FEE_AMOUNT_CURRENCY_RE.search(line)
    if match1:
        amounts.append(match1.group(1))
    match2 = p.FEE_TAKA_SIGN_RE.search(line)
    if match2:
        amounts.append(match2.group(1))
    match3 = p.FEE_CURRENCY_AMOUNT_RE.search(line)
    if match3 and not match1:
        amounts.append(match3.group(1))
    match4 = p.FEE_TAKA_SIGN_BENGALI_RE.search(line)
    if match4:
        amounts.append(match4.group(1))
    match5 = p.FEE_BENGALI_TAKA_RE.search(line)
    if match5:
        amounts.append(match5.group(1))
    return amounts


def extract_fees(lines: List[str]) -> List[Fee]:
    """
    Detect BDT amounts line by line with a rolling delivery-variant label.

    A heading naming a variant sets it for the following lines; a line naming
    its own variant overrides it for that line only.
    """
    fees: List[Fee] = []
    seen = set()
    path: List[str] = []
    current_variant: Optional[str] = None

    for i, raw in enumerate(lines):
        line = raw.strip()
        if not line:
            continue

        heading = _match_heading(line)
        if heading:
            path = _push_heading(path, *heading)
            variant = _detect_variant(heading[1])
            if variant:
                current_variant = variant
            continue

        line_variant = _detect_variant(line) or current_variant

        for amount_text in _line_amounts(line):
            amount = parse_bengali_number(amount_text)
            if amount is None or amount <= 0 or amount > p.MAX_FEE_AMOUNT:
                continue
            amount = int(amount) if float(amount).is_integer() else amount
            key = (i + 1, amount)
            if key in seen:
                continue
            seen.add(key)

            fees.append(Fee(
                amount_bdt=amount,
                label=_clean_fee_label(line, path),
                variant=line_variant,
                text=line[:p.MAX_FEE_TEXT],
                heading_path=list(path),
                line_number=i + 1,
            ))

    return fees


def _collect_heading_answer(lines: List[str], start: int) -> str:
    answer = ""
    end = min(start + p.FAQ_HEADING_LOOKAHEAD, len(lines))
    for j in range(start, end):
        line = lines[j].strip()
        if p.HEADING_RE.match(line):
            break
        if not line:
            if len(answer) >= p.FAQ_ANSWER_SOFT_LIMIT:
                break
            continue
        answer = f"{answer} {line}" if answer else line
    return answer


def _find_qa_answer(lines: List[str], start: int) -> Optional[str]:
    end = min(start + p.FAQ_QA_LOOKAHEAD, len(lines))
    for j in range(start, end):
        line = lines[j].strip()
        if not line:
            continue
        if p.HEADING_RE.match(line) or p.QUESTION_PREFIX_RE.match(line):
            return None
        if p.ANSWER_PREFIX_RE.match(line):
            return p.ANSWER_PREFIX_RE.sub("", line, count=1).strip()
    return None


def extract_faqs(lines: List[str], url: str = "") -> List[FaqPair]:
    """
    Find question/answer pairs.

    Three shapes are recognised: a heading ending in ``?`` followed by its
    answer paragraph, ``Q:``/``A:`` line pairs (English or Bengali), and
    bullet links whose text is a question (answer lives on the linked page).
    """
    faqs: List[FaqPair] = []
    path: List[str] = []

    for i, raw in enumerate(lines):
        line = raw.strip()
        heading = _match_heading(line)
        if heading:
            path = _push_heading(path, *heading)
            text = heading[1]
            if text.endswith("?") or text.endswith("？"):
                answer = _collect_heading_answer(lines, i + 1)
                if len(text) > p.MIN_FAQ_HEADING_LENGTH and len(answer) > p.MIN_FAQ_HEADING_LENGTH:
                    faqs.append(FaqPair(
                        question=text,
                        answer=answer[:p.MAX_FAQ_ANSWER],
                        heading_path=path[:-1],
                        line_number=i + 1,
                    ))
            continue

        if p.QUESTION_PREFIX_RE.match(line):
            question = p.QUESTION_PREFIX_RE.sub("", line, count=1).strip()
            answer = _find_qa_answer(lines, i + 1)
            if answer and len(question) > p.MIN_FAQ_QA_LENGTH and len(answer) > p.MIN_FAQ_QA_LENGTH:
                faqs.append(FaqPair(
                    question=question,
                    answer=answer[:p.MAX_FAQ_ANSWER],
                    heading_path=list(path),
                    line_number=i + 1,
                ))
            continue

        bullet = p.FAQ_BULLET_RE.match(line)
        if bullet:
            link = p.FAQ_LINK_RE.search(bullet.group(1))
            if link:
                faqs.append(FaqPair(
                    question=link.group(1).strip(),
                    answer=None,
                    heading_path=list(path),
                    line_number=i + 1,
                    link=_resolve_url(url, link.group(2)) if url else link.group(2).strip(),
                ))

    return faqs


class _DocumentCollector:
    """Accumulates document links, deduplicated by absolute URL."""

    def __init__(self, page_url: str):
        self.page_url = page_url
        self.documents: List[DocumentLink] = []
        self._seen = set()

    def add(self, text: str, href: str, method: str,
            heading_path: Optional[List[str]] = None, line_number: Optional[int] = None) -> None:
        href = (href or "").strip()
        if href.startswith("<") and href.endswith(">"):
            href = href[1:-1]
        href = href.split()[0] if href.split() else ""
        if not href or href.lower().startswith(p.SKIPPED_LINK_SCHEMES):
            return

        url = _resolve_url(self.page_url, href)
        if url in self._seen:
            return

        ext = _url_extension(url)
        is_document = ext in p.DOCUMENT_EXTENSIONS
        is_download_query = bool(p.DOWNLOAD_QUERY_RE.search(url)) or (
            bool(p.ID_QUERY_RE.search(url)) and bool(p.DOWNLOAD_WORD_RE.search(url))
        )
        is_download_path = not ext and bool(p.DOWNLOAD_WORD_RE.search(url))
        if not (is_document or is_download_query or is_download_path):
            return

        self._seen.add(url)
        self.documents.append(DocumentLink(
            text=(text or "").strip()[:p.MAX_DOC_TEXT],
            url=url,
            extension=ext or ".unknown",
            discovery_method=method,
            heading_path=list(heading_path or []),
            line_number=line_number,
        ))


def extract_document_links(lines: List[str], url: str, html: Optional[str] = None) -> List[DocumentLink]:
    """
    Find downloadable documents in markdown links, bare URLs and HTML anchors.

    Args:
        lines: Markdown split into lines
        url: Page URL used to resolve relative links
        html: Optional raw HTML of the page

    Returns:
        Document links in discovery order
    """
    collector = _DocumentCollector(url)
    path: List[str] = []

    for i, raw in enumerate(lines):
        line = raw.strip()
        heading = _match_heading(line)
        if heading:
            path = _push_heading(path, *heading)
        for match in p.MARKDOWN_LINK_RE.finditer(line):
            collector.add(match.group(1), match.group(2), "markdown_link", path, i + 1)
        for match in p.BARE_DOC_URL_RE.finditer(line):
            collector.add(match.group(0), match.group(0), "bare_url", path, i + 1)

    if html:
        soup = BeautifulSoup(html, "lxml")
        for anchor in soup.find_all("a", href=True):
            href = anchor["href"]
            ext = _url_extension(_resolve_url(url, href))
            text = anchor.get_text(" ", strip=True)
            if ext in p.DOCUMENT_EXTENSIONS:
                collector.add(text or "Document link", href, "html_href")
            elif p.PHP_DOWNLOAD_RE.search(href):
                collector.add(text or "Download", href, "php_download")
            elif p.DOWNLOAD_WORD_RE.search(href) and ext not in (".js", ".css"):
                collector.add(text or "Download link", href, "html_download")

    return collector.documents


def extract_structured_data(markdown: str, url: str, html: Optional[str] = None) -> ExtractionResult:
    """
    Run every extractor over a page.

    Args:
        markdown: Page markdown (after any override postprocessing)
        url: Canonical page URL
        html: Optional raw HTML for document discovery

    Returns:
        ExtractionResult with steps, fees, FAQs, documents and headings
    """
    result = ExtractionResult()
    if not markdown:
        return result

    lines = markdown.split("\n")
    result.headings = extract_headings(lines)
    result.steps = extract_steps(lines)
    result.fee_table = extract_fees(lines)
    result.faq_pairs = extract_faqs(lines, url)
    result.document_list = extract_document_links(lines, url, html)

    logger.debug(f"Extracted from {url}: {result.stats}")
    return result
