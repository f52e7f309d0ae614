"""Text cleaning applied to raw feed fields before enrichment."""

from __future__ import annotations

import re

from selectolax.lexbor import LexborHTMLParser

HTML_FIELDS = (
    "description",
    "functiondescription",
    "offerdescription",
    "requirementsdescription",
    "companydescription",
)
TITLE_FIELDS = ("functiontitle", "title")
DEFAULT_FIELDS = (
    "guid",
    "pubdate",
    "location",
    "company",
    "province",
    "city",
    "functiongroup",
)

# Removed together with their content.
DROPPED_TAGS = ["script", "style", "iframe", "object", "embed", "form", "input", "button", "noscript"]
ALLOWED_TAGS = frozenset(
    {
        "a", "b", "blockquote", "br", "div", "em", "h1", "h2", "h3", "h4", "h5", "h6",
        "i", "li", "ol", "p", "span", "strong", "table", "tbody", "td", "th", "thead",
        "tr", "u", "ul",
    }
)
ALLOWED_ATTRIBUTES = frozenset({"href", "title"})
_STRUCTURAL_TAGS = frozenset({"html", "head", "body"})
# Text and comment nodes report pseudo tags such as "-text" or "!comment".
_ELEMENT_TAG = re.compile(r"^[a-z][a-z0-9]*$")

EMOJI_PATTERN = re.compile(
    "["
    "\U0001F600-\U0001F64F"
    "\U0001F300-\U0001F5FF"
    "\U0001F680-\U0001F6FF"
    "\U0001F900-\U0001F9FF"
    "\U0001F1E0-\U0001F1FF"
    "\u2600-\u26FF"
    "\u2700-\u27BF"
    "]+"
)
GENDER_SUFFIX_PATTERN = re.compile(
    r"\s*[(\[]?\s*\b[mh]\s*/\s*[vfw]\s*(?:/\s*[xd])?\s*[)\]]?\s*$",
    re.IGNORECASE,
)
_BODY_WRAPPER = re.compile(r"^\s*<body[^>]*>|</body>\s*$", re.IGNORECASE)
_WHITESPACE_RUN = re.compile(r"[ \t]{2,}")


def sanitize_html(text: str) -> str:
    """Keep a small set of formatting tags; drop scripts, styles, attributes and emoji."""

    if not text or not text.strip():
        return ""
    text = text.replace("&nbsp;", " ").replace("\xa0", " ")
    tree = LexborHTMLParser(text)
    tree.strip_tags(DROPPED_TAGS)
    if tree.body is None:
        return ""
    unwanted: set[str] = set()
    for node in tree.body.traverse():
        tag = node.tag or ""
        if tag in _STRUCTURAL_TAGS or not _ELEMENT_TAG.match(tag):
            continue
        if tag not in ALLOWED_TAGS:
            unwanted.add(tag)
            continue
        for name in list(node.attributes):
            value = node.attributes.get(name) or ""
            if name not in ALLOWED_ATTRIBUTES or value.strip().lower().startswith("javascript:"):
                del node.attrs[name]
    if unwanted:
        tree.unwrap_tags(sorted(unwanted))
    html = _BODY_WRAPPER.sub("", tree.body.html or "")
    html = EMOJI_PATTERN.sub("", html)
    return _WHITESPACE_RUN.sub(" ", html).strip()


def clean_title(title: str) -> str:
    return GENDER_SUFFIX_PATTERN.sub("", title or "").strip()


def clean_fields(fields: dict[str, str]) -> dict[str, str]:
    """Return a cleaned copy of the raw item fields."""

    cleaned = {key: (value or "").strip() for key, value in fields.items()}
    for name in HTML_FIELDS:
        if name in cleaned:
            cleaned[name] = sanitize_html(cleaned[name])
    for name in TITLE_FIELDS:
        if name in cleaned:
            cleaned[name] = clean_title(cleaned[name])
    for name in DEFAULT_FIELDS:
        cleaned.setdefault(name, "")
    return cleaned


__all__ = ["HTML_FIELDS", "TITLE_FIELDS", "clean_fields", "clean_title", "sanitize_html"]
