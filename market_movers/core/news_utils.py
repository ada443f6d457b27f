"""Utility helpers for the news pipeline — dedup keys, date parsing, categories."""

import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Optional, Tuple

DEDUP_KEY_LENGTH = 60

# Sources emit "YYYY-MM-DD HH:MM:SS" without an offset; those are UTC.
_NAIVE_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}$")

GENERAL = "General"

# Ordered: the first category with a matching pattern wins.
CATEGORY_RULES: List[Tuple[str, List[re.Pattern]]] = [
    ("FDA Approval", [
        re.compile(r"\bFDA\b"), re.compile(r"food and drug", re.I),
        re.compile(r"\bapprov(al|ed)\b", re.I), re.compile(r"\b(NDA|BLA|EUA)\b"),
        re.compile(r"regulatory (submission|filing|decision)", re.I),
    ]),
    ("Clinical Trial", [
        re.compile(r"clinical trial", re.I), re.compile(r"\bphase [123]\b", re.I),
        re.compile(r"trial (results?|data|readout)", re.I),
        re.compile(r"primary endpoint", re.I), re.compile(r"\bplacebo\b", re.I),
    ]),
    ("Merger & Acquisition", [
        re.compile(r"\bmerger\b", re.I), re.compile(r"\bacquisition\b", re.I),
        re.compile(r"\bacquires?\b", re.I), re.compile(r"\btakeover\b", re.I),
        re.compile(r"\bbuyout\b", re.I), re.compile(r"to acquire", re.I),
        re.compile(r"\btender offer\b", re.I),
    ]),
    ("Partnership", [
        re.compile(r"\bpartnership\b", re.I), re.compile(r"\bcollaboration\b", re.I),
        re.compile(r"joint venture", re.I), re.compile(r"licensing agreement", re.I),
        re.compile(r"strategic (deal|agreement|alliance)", re.I),
    ]),
    ("Government Contract", [
        re.compile(r"government contract", re.I), re.compile(r"\b(DOD|DARPA|NASA)\b"),
        re.compile(r"\bPentagon\b"), re.compile(r"Department of Defense", re.I),
        re.compile(r"awarded (a )?(contract|deal)", re.I),
    ]),
    ("Major Investment", [
        re.compile(r"\binvests?\b", re.I), re.compile(r"stake in", re.I),
        re.compile(r"\bIPO\b"), re.compile(r"(secondary|public|equity) offering", re.I),
        re.compile(r"private placement", re.I), re.compile(r"rais(es?|ed|ing) \$\d", re.I),
    ]),
    ("Earnings", [
        re.compile(r"\bearnings\b", re.I), re.compile(r"\brevenue\b", re.I),
        re.compile(r"\bEPS\b"), re.compile(r"quarterly (results?|report)", re.I),
        re.compile(r"\bQ[1234]\b"), re.compile(r"net (income|loss)", re.I),
    ]),
    ("Analyst Rating", [
        re.compile(r"\b(up|down)grades?\b", re.I), re.compile(r"price target", re.I),
        re.compile(r"\banalyst\b", re.I), re.compile(r"\b(out|under)perform\b", re.I),
        re.compile(r"\b(over|under)weight\b", re.I),
    ]),
    ("Geopolitical", [
        re.compile(r"\bsanction", re.I), re.compile(r"\bembargo\b", re.I),
        re.compile(r"trade war", re.I), re.compile(r"\btariff", re.I),
        re.compile(r"export (ban|control)", re.I), re.compile(r"geopolit", re.I),
    ]),
]

_TRAILING_NOISE = re.compile(r"[\s.\u2026]+$")


def dedup_key(title: str, length: int = DEDUP_KEY_LENGTH) -> str:
    """Return the identity key of a headline: lowercase, first ``length`` chars.

    Trailing ellipses, periods and whitespace are dropped before truncating.

    Examples:
        ``"Apple beats Q3 estimates"`` and ``"apple beats q3 estimates..."``
        produce the same key.
    """
    return _TRAILING_NOISE.sub("", (title or "").strip().lower())[:length]


def parse_pub_date(raw: Optional[str]) -> int:
    """Parse an RSS/Atom publication date into unix seconds (UTC).

    Handles RFC 2822 (``"Fri, 28 Feb 2026 09:00:00 -0500"``), ISO 8601 and the
    offset-less ``"YYYY-MM-DD HH:MM:SS"`` form, which is read as UTC.

    Returns:
        int: Unix seconds, or ``0`` when the value cannot be parsed.
    """
    text = (raw or "").strip()
    if not text:
        return 0

    if _NAIVE_TIMESTAMP.match(text):
        text = text.replace(" ", "T") + "+00:00"

    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        try:
            parsed = parsedate_to_datetime(text)
        except (TypeError, ValueError, IndexError):
            return 0

    if parsed is None:
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())


def categorize(title: str, summary: Optional[str] = None) -> str:
    """Return the first matching high-impact category, or ``"General"``."""
    text = f"{title} {summary or ''}"
    for category, patterns in CATEGORY_RULES:
        if any(p.search(text) for p in patterns):
            return category
    return GENERAL
