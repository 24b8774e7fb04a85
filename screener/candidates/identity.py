from __future__ import annotations

import re
from dataclasses import dataclass

UNKNOWN_CANDIDATE = "Unknown Candidate"

NAME_SCAN_LINES = 10
_MIN_NAME_CHARS = 2
_MAX_NAME_CHARS = 60
_MAX_NAME_TOKENS = 4

_HEADER_LINE_RE = re.compile(r"^(resume|cv|curriculum|vitae|bio|biography)$", re.IGNORECASE)
_SECTION_PREFIX_RE = re.compile(
    r"^(profile|summary|objective|experience|education|skills|contact|phone|email|address"
    r"|career|professional|personal|about|overview)",
    re.IGNORECASE,
)
_BRACKETS_RE = re.compile(r"[()\[\]{}]")
# Letter runs joined by single apostrophes or hyphens ("O'Brien-Smith").
_NAME_TOKEN_RE = re.compile(r"[A-Za-z]+(?:['-][A-Za-z]+)*")

_EMAIL_NAME_PATTERNS = (
    re.compile(r"^([a-z]+)\.([a-z]+)@", re.IGNORECASE),
    re.compile(r"^([a-z]+)_([a-z]+)@", re.IGNORECASE),
    # Greedy split of a run of letters; kept for compatibility with stored names.
    re.compile(r"^([a-z]+)([a-z]+)@", re.IGNORECASE),
)
_EMAIL_SINGLE_NAME_RE = re.compile(r"^([a-z]+)@", re.IGNORECASE)


@dataclass(frozen=True)
class CandidateIdentity:
    name: str
    email: str


def _capitalize(word: str) -> str:
    return word[:1].upper() + word[1:].lower()


def looks_like_name(line: str) -> bool:
    if not _MIN_NAME_CHARS <= len(line) <= _MAX_NAME_CHARS:
        return False
    words = line.split()
    if not 1 <= len(words) <= _MAX_NAME_TOKENS:
        return False
    if not ("A" <= line[0] <= "Z"):
        return False
    if _SECTION_PREFIX_RE.match(line):
        return False
    if "@" in line or "http" in line or line[0].isdigit() or _BRACKETS_RE.search(line):
        return False
    return all(_NAME_TOKEN_RE.fullmatch(word) for word in words)


def name_from_text(text: str) -> str | None:
    lines = [line for line in (text or "").split("\n") if line.strip()]
    for raw in lines[:NAME_SCAN_LINES]:
        line = raw.strip()
        if not line or _HEADER_LINE_RE.match(line):
            continue
        if looks_like_name(line):
            return line
    return None


def name_from_email(email: str) -> str | None:
    for pattern in _EMAIL_NAME_PATTERNS:
        match = pattern.match(email or "")
        if match and match.group(1) and match.group(2):
            return f"{_capitalize(match.group(1))} {_capitalize(match.group(2))}"

    single = _EMAIL_SINGLE_NAME_RE.match(email or "")
    if single and len(single.group(1)) > 2:
        return _capitalize(single.group(1))
    return None


def resolve_candidate_identity(text: str, fallback_email: str) -> CandidateIdentity:
    """Infer a display name from resume text, falling back to the sender address.

    The first of the leading lines that reads like a personal name wins. When
    none does, a name is derived from the local part of ``fallback_email``.
    The email on the result is always ``fallback_email`` unchanged.
    """
    name = name_from_text(text) or name_from_email(fallback_email) or UNKNOWN_CANDIDATE
    return CandidateIdentity(name=name, email=fallback_email)
