"""
Field extraction for posting pages.

Every field is resolved from an ordered table of candidate patterns; the
first pattern that yields an acceptable value wins. Fields are independent:
a missing or malformed field never affects another one. `extract()` is a
pure function of (text, title, url, literals).
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .challenge import is_challenge
from .errors import ChallengePresent, NoTitle
from .models import JobPosting
from .utils import posting_id_from_url, truncate

SITE_DOMAIN = "expatriates.com"

DESCRIPTION_LIMIT = 1500
DESCRIPTION_SOFT_BREAK = 1000
DESCRIPTION_CONTINUES = "\n\n[...description continues...]"

# Longer values are cut and end with "...". The description has its own limit above.
FIELD_LIMITS = {
    "title": 200,
    "salary": 60,
    "contact_info": 200,
    "email": 120,
    "location": 120,
    "posted_date": 80,
    "category": 120,
    "employment_type": 30,
    "company": 120,
    "requirements": 600,
    "benefits": 500,
}

_I = re.IGNORECASE


# ---- Rule table ---------------------------------------------------------------


@dataclass(frozen=True)
class FieldRule:
    """
    Ordered candidate patterns for one field.
    - group: capture group holding the value (0 = whole match)
    - clean: normaliser applied to the raw match
    - accept: predicate on the cleaned value; rejected values fall through
    """

    name: str
    patterns: tuple[re.Pattern[str], ...]
    group: int = 1
    clean: Callable[[str], str] = str.strip
    accept: Callable[[str], bool] = bool

    def first(self, text: str) -> str:
        for pat in self.patterns:
            m = pat.search(text)
            if not m:
                continue
            value = self.clean(m.group(self.group) or "")
            if self.accept(value):
                return value
        return ""


@dataclass(frozen=True)
class KnownLiterals:
    """
    Site-specific literal values checked before any pattern.
    Empty by default; fill from config when a literal must win over heuristics.
    """

    salary: tuple[str, ...] = ()
    contact: tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, value: Mapping[str, Any] | None) -> KnownLiterals:
        value = value or {}
        return cls(
            salary=tuple(str(v) for v in value.get("salary") or ()),
            contact=tuple(str(v) for v in value.get("contact") or ()),
        )


def _bulletise(s: str) -> str:
    s = re.sub(r"\s+", " ", s).strip()
    s = re.sub(r"(?:^|\s)[-•*]\s+", "\n• ", s)
    s = re.sub(r"(?:^|\s)\d+\.\s+", "\n• ", s)
    return s.strip()


def _section_body(header: str) -> Callable[[str], str]:
    header_re = re.compile(rf"^\s*{header}\s*", _I)

    def clean(s: str) -> str:
        return _bulletise(header_re.sub("", s))

    return clean


def _not_site_address(s: str) -> bool:
    return bool(s) and SITE_DOMAIN not in s.lower()


def _len_between(lo: int, hi: int) -> Callable[[str], bool]:
    return lambda s: lo < len(s) < hi


SALARY = FieldRule(
    "salary",
    (
        re.compile(r"Salary:?\s*(\d{3,5})", _I),
        re.compile(r"salary\s+(\d{3,5})", _I),
        re.compile(r"(\d{4})\s*(?:SR|SAR|Riyal)", _I),
        re.compile(r"(\d{3,5})\s*SAR", _I),
    ),
)

EMAIL = FieldRule(
    "email",
    (
        re.compile(r"From:\s*([^\s@]+@[^\s]+\.[^\s]+)", _I),
        re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})"),
        re.compile(r"Email:\s*([^\s@]+@[^\s]+)", _I),
    ),
    accept=_not_site_address,
)

LOCATION = FieldRule(
    "location",
    (
        re.compile(r"Region:\s*([^\n\r()]+)", _I),
        re.compile(r"Location:\s*\[([^\]]+)\]", _I),
        re.compile(r"Location:\s*([^\n\r]+)", _I),
        re.compile(r"City:\s*([^\n\r]+)", _I),
    ),
)

POSTING_ID = FieldRule(
    "posting_id",
    (re.compile(r"Posting ID:\s*(\d+)", _I),),
)

POSTED_DATE = FieldRule(
    "posted_date",
    (
        re.compile(r"Posted:\s*([^\n\r]+)", _I),
        re.compile(r"Date:\s*([^\n\r]+)", _I),
        re.compile(r"(\d{1,2}/\d{1,2}/\d{4})"),
        re.compile(r"(\d{1,2}-\d{1,2}-\d{4})"),
        re.compile(r"((?:Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\s+\d{1,2},?\s+\d{4})", _I),
    ),
)

CATEGORY = FieldRule(
    "category",
    (re.compile(r"Category:\s*([^\n\r]+)", _I),),
)

EMPLOYMENT_TYPE = FieldRule(
    "employment_type",
    (
        re.compile(r"\b(full[- ]time)\b", _I),
        re.compile(r"\b(part[- ]time)\b", _I),
        re.compile(r"\b(contract|temporary|freelance)\b", _I),
    ),
    clean=lambda s: s.strip().lower().replace(" ", "-"),
)

COMPANY = FieldRule(
    "company",
    (
        re.compile(r"Company(?: Name)?:\s*([^\n\r]+)", _I),
        re.compile(r"Employer:\s*([^\n\r]+)", _I),
    ),
    accept=_len_between(1, 120),
)

REQUIREMENTS = FieldRule(
    "requirements",
    (
        re.compile(
            r"Requirements:[\s\S]*?(?=What We Offer|Benefits|For More Details|Contact|Salary|Position"
            r"|\bBack\b|\bNext\b|\n\n[A-Z]|$)",
            _I,
        ),
        re.compile(
            r"(?:Valid And Transferable|Experience required|Must have)[\s\S]*?"
            r"(?=What We Offer|Benefits|For More Details|Communication|Contact|$)",
            _I,
        ),
        re.compile(r"(?:Qualifications|Minimum requirements)[\s\S]*?(?=What We Offer|Benefits|For More Details|$)", _I),
        re.compile(
            r"(?:Education|Experience).*?(?:required|needed|must)[\s\S]*?(?=What We Offer|Benefits|For More Details|$)",
            _I,
        ),
    ),
    group=0,
    clean=_section_body("Requirements:"),
    accept=_len_between(30, 600),
)

BENEFITS = FieldRule(
    "benefits",
    (
        re.compile(
            r"What We Offer:[\s\S]*?(?=Requirements|For More Details|Contact|\bBack\b|\bNext\b|\n\n[A-Z]|$)",
            _I,
        ),
        re.compile(
            r"(?:Competitive fixed salary|Company will provide|Benefits include)[\s\S]*?"
            r"(?=Requirements|For More Details|Contact|$)",
            _I,
        ),
        re.compile(
            r"(?:Accommodation|Housing|Medical|Insurance)[\s\S]*?(?:provided|included|covered)[\s\S]*?"
            r"(?=Requirements|For More Details|Contact|$)",
            _I,
        ),
    ),
    group=0,
    clean=_section_body("What We Offer:"),
    accept=_len_between(20, 500),
)

# Every phone match counts, not just the first.
PHONE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b(05\d{8})\b"),
    re.compile(r"\b(01\d{8})\b"),
    re.compile(r"(\+966\d{9})"),
)

FIELD_RULES: tuple[FieldRule, ...] = (
    SALARY,
    EMAIL,
    LOCATION,
    POSTING_ID,
    POSTED_DATE,
    CATEGORY,
    EMPLOYMENT_TYPE,
    COMPANY,
    REQUIREMENTS,
    BENEFITS,
)


# ---- Title ----------------------------------------------------------------------

_TITLE_SITE_SUFFIX = re.compile(r"\s*-\s*expatriates\.com.*$", _I)
_TITLE_CATEGORY_PREFIX = re.compile(r"^.*?Jobs,\s*")
_TITLE_ID_SUFFIX = re.compile(r",\s*\d+$")


def clean_title(raw: str) -> str:
    """
    "Riyadh Jobs, Accountant Needed, 58123456 - expatriates.com" -> "Accountant Needed"
    """
    t = _TITLE_SITE_SUFFIX.sub("", raw or "").strip()
    t = _TITLE_CATEGORY_PREFIX.sub("", t, count=1)
    return _TITLE_ID_SUFFIX.sub("", t).strip()


def _title_from_content(text: str) -> str:
    for line in (text or "").splitlines():
        line = line.strip()
        if 5 <= len(line) <= 100:
            return line
    return ""


# ---- Description ------------------------------------------------------------------

_SECTION_START = "Chat on WhatsApp"
_END_MARKERS = re.compile(
    r"\b(?:Back|Next|Email to a Friend|Page View Count|NEVER PAY ANY KIND|Facebook|Twitter|Print|Report"
    r"|Previous|Following|Search Jobs)\b|©\s*\d{4}"
)
_CONTENT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"(?:Hiring|We are looking|Job Details|Position)[\s\S]*?"
        r"(?=\bBack\b|\bNext\b|Email to a Friend|Page View Count|©|$)",
        _I,
    ),
    re.compile(
        r"(?:Accommodation|Company will provide)[\s\S]*?(?:Requirements|What We Offer)[\s\S]*?"
        r"(?=\bBack\b|\bNext\b|Email|©|$)",
        _I,
    ),
)
_HEADER_END_MARKERS = ("Chat on WhatsApp", "Contact", "Phone:", "Email:")
_FOOTER_MARKERS = ("Back", "Next", "©", "Email to a Friend")

_NOISE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\(adsbygoogle[^)]*\)[^;]*;"),
    re.compile(r"window\.__CF\$cv\$params[^}]*}"),
    re.compile(r"document\.createElement[^;]*;"),
    re.compile(r"googletag\.cmd[^;]*;"),
)
_SUBHEADERS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"Job Details:\s*", _I), "\n\nJob Details:\n"),
    (re.compile(r"Requirements:\s*", _I), "\n\nRequirements:\n"),
    (re.compile(r"What We Offer:\s*", _I), "\n\nWhat We Offer:\n"),
)


def _description_window(text: str) -> str:
    # 1) After the contact button, up to the earliest footer/nav marker
    idx = text.find(_SECTION_START)
    desc = ""
    if idx > -1:
        after = text[idx + len(_SECTION_START) :]
        m = _END_MARKERS.search(after)
        desc = (after[: m.start()] if m else after).strip()

    # 2) Content-shaped sections; longest wins
    if len(desc) < 100:
        for pat in _CONTENT_PATTERNS:
            m = pat.search(text)
            if m and len(m.group(0)) > len(desc):
                desc = m.group(0)

    # 3) Whatever sits between the header block and the footer
    if len(desc) < 50:
        start = 0
        for marker in _HEADER_END_MARKERS:
            i = text.find(marker)
            if i > start:
                start = i + len(marker)
        end = len(text)
        for marker in _FOOTER_MARKERS:
            i = text.find(marker, start)
            if -1 < i < end:
                end = i
        if end > start + 100:
            desc = text[start:end].strip()

    return desc


def clean_description(raw: str, limit: int = DESCRIPTION_LIMIT) -> str:
    if not raw:
        return ""
    d = re.sub(r"[ \t]+", " ", raw)
    for pat in _NOISE_PATTERNS:
        d = pat.sub("", d)
    for pat, repl in _SUBHEADERS:
        d = pat.sub(repl, d)
    d = re.sub(r"\n\s*\n(\s*\n)+", "\n\n", d).strip()

    if len(d) > limit:
        cut = d.rfind("\n", 0, limit)
        if cut > DESCRIPTION_SOFT_BREAK:
            d = d[:cut].rstrip() + DESCRIPTION_CONTINUES
        else:
            d = d[:limit] + "..."
    return d


# ---- Contact ------------------------------------------------------------------------


def extract_contacts(text: str, literals: Iterable[str] = ()) -> str:
    """All phone numbers in first-seen order, known literals first, de-duplicated."""
    found: list[str] = [lit for lit in literals if lit and lit in text]
    for pat in PHONE_PATTERNS:
        found.extend(m.group(1) for m in pat.finditer(text))
    return ", ".join(dict.fromkeys(found))


# ---- Public API -----------------------------------------------------------------------


def extract(
    page_text: str,
    *,
    title: str = "",
    url: str = "",
    is_sponsored: bool = False,
    literals: KnownLiterals | None = None,
) -> JobPosting:
    """
    Build a JobPosting from a posting page's visible text and document title.

    Raises:
        ChallengePresent: the page is an interstitial, not content.
        NoTitle: neither the page title nor the content yields a title.
    """
    text = page_text or ""
    if is_challenge(text, title):
        raise ChallengePresent(url or "<page>")

    lits = literals or KnownLiterals()

    job_title = clean_title(title) or _title_from_content(text)
    if not job_title:
        raise NoTitle(url or "<page>")

    values = {rule.name: rule.first(text) for rule in FIELD_RULES}

    salary = next((s for s in lits.salary if s and s in text), "") or values["salary"]
    posting_id = values["posting_id"] or posting_id_from_url(url)

    fields = {
        "title": job_title,
        "location": values["location"],
        "salary": salary,
        "contact_info": extract_contacts(text, lits.contact),
        "email": values["email"],
        "category": values["category"],
        "employment_type": values["employment_type"],
        "posted_date": values["posted_date"],
        "requirements": values["requirements"],
        "benefits": values["benefits"],
        "company": values["company"],
    }
    bounded = {name: truncate(value, FIELD_LIMITS[name]) for name, value in fields.items()}

    return JobPosting(
        url=url,
        description=clean_description(_description_window(text)),
        posting_id=posting_id,
        is_sponsored=is_sponsored,
        **bounded,
    )
