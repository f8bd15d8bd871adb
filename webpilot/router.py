"""
Task parsing and routing.

parse_task() pulls the facts the orchestrator enforces (URLs, caller data, whether
submission was requested) out of free text; route_task() maps those facts to an
ordered list of policy names. Both are pure functions.
"""

from __future__ import annotations

import re
from typing import Literal

from pydantic import BaseModel, Field

from .policies import DATA_EXTRACTION, FORM_AUTOMATION, NAVIGATION

TaskKind = Literal["form", "extraction", "navigation"]

_URL_PATTERN = re.compile(
    r"https?://[^\s'\"<>]+"
    r"|(?<![@\w.-])(?:www\.)?[a-z0-9][a-z0-9-]*(?:\.[a-z0-9-]+)*\.[a-z]{2,}(?:/[^\s'\"<>]*)?",
    re.IGNORECASE,
)
_TRAILING_PUNCTUATION = ".,;:!?)]}"

_NEGATED_SUBMIT = re.compile(
    r"\b(?:do\s+not|don'?t|dont|never|not|no|without)\s+(?:\w+\s+)?(?:submit|submitting|send|sending)\b",
    re.IGNORECASE,
)
_SUBMIT = re.compile(
    r"\bsubmit(?:ting)?\b"
    r"|\bsend\s+(?:it|the\s+form|the\s+message)\b"
    r"|\bclick\s+(?:the\s+)?(?:submit|send)\b"
    r"|\bpress\s+(?:the\s+)?(?:submit|send)\b",
    re.IGNORECASE,
)

_QUOTED_VALUE = re.compile(
    r"\b(?P<key>[A-Za-z][\w-]*)(?:\s*[:=]\s*|\s+(?:is\s+|as\s+|of\s+)?)"
    r"['\"‘“](?P<value>[^'\"’”]*)['\"’”]"
)
_SELECTOR_QUOTED = re.compile(r"\b(?:selector|form)\s+['\"](?P<selector>[^'\"]+)['\"]", re.IGNORECASE)
_SELECTOR_USING = re.compile(
    r"\b(?:using|selector)\s+(?P<selector>(?:form)?[#.][\w-]+)", re.IGNORECASE
)
_EMAIL = re.compile(
    r"\be-?mail\s+(?:address\s+)?(?:is\s+|as\s+|of\s+)?(?P<email>[\w.+-]+@[\w-]+(?:\.[\w-]+)+)",
    re.IGNORECASE,
)
_PHONE = re.compile(
    r"\bphone\s+(?:number\s+)?(?:is\s+|as\s+)?(?P<phone>\+?\d[\d\s().-]{5,}\d)", re.IGNORECASE
)

_KEY_ALIASES = {
    "mail": "email",
    "e-mail": "email",
    "msg": "message",
    "comment": "message",
    "comments": "message",
    "tel": "phone",
    "telephone": "phone",
    "mobile": "phone",
}
_NON_FIELD_KEYS = {"selector", "form", "url", "site", "page", "title", "button", "text"}

_KIND_KEYWORDS: dict[str, tuple[str, ...]] = {
    "form": (
        "fill",
        "form",
        "submit",
        "enter",
        "type in",
        "sign up",
        "register",
        "log in",
        "login",
        "contact form",
    ),
    "extraction": (
        "extract",
        "scrape",
        "get all",
        "collect",
        "list all",
        "links",
        "prices",
        "gather",
        "read the content",
        "read the article",
        "text of",
    ),
    "navigation": (
        "go to",
        "navigate",
        "open",
        "visit",
        "click",
        "scroll",
        "page title",
        "title",
    ),
}


class TaskFeatures(BaseModel):
    """Facts extracted from a task description"""

    text: str
    urls: list[str] = Field(default_factory=list)
    submit_requested: bool = False
    field_values: dict[str, str] = Field(default_factory=dict)
    target_selector: str | None = None
    kind_scores: dict[str, int] = Field(default_factory=dict)

    @property
    def primary_kind(self) -> TaskKind:
        form = self.kind_scores.get("form", 0)
        extraction = self.kind_scores.get("extraction", 0)
        navigation = self.kind_scores.get("navigation", 0)
        # navigation is prepended for URL tasks, so specialists win ties
        if form and form >= extraction and form >= navigation:
            return "form"
        if extraction and extraction >= navigation:
            return "extraction"
        return "navigation"


def _extract_urls(text: str) -> list[str]:
    urls: list[str] = []
    for match in _URL_PATTERN.finditer(text):
        url = match.group(0).rstrip(_TRAILING_PUNCTUATION)
        if url and url not in urls:
            urls.append(url)
    return urls


def _without_urls(text: str) -> str:
    return _URL_PATTERN.sub(" ", text)


def _keyword_count(text: str, keywords: tuple[str, ...]) -> int:
    return sum(1 for kw in keywords if re.search(rf"\b{re.escape(kw)}\b", text))


def submission_requested(text: str) -> bool:
    """
    True only when the task explicitly asks for submission.

    Negated forms ("do not submit", "don't submit", "without submitting") win over any
    positive mention. Words inside URLs ("/submit-ticket") do not count.
    """
    text = _without_urls(text)
    if _NEGATED_SUBMIT.search(text):
        return False
    return bool(_SUBMIT.search(text))


def parse_task(text: str) -> TaskFeatures:
    """
    Extract URLs, caller data, target selector and task kind from free text.

    Caller data comes from quoted pairs (name 'Alice', message "Hi") and bare
    "email x@y.com" / "phone 555 1234" phrases.

    Args:
        text: Task description

    Returns:
        TaskFeatures
    """
    target_selector = None
    if match := _SELECTOR_QUOTED.search(text) or _SELECTOR_USING.search(text):
        target_selector = match.group("selector")

    field_values: dict[str, str] = {}
    for match in _QUOTED_VALUE.finditer(text):
        key = match.group("key").lower()
        key = _KEY_ALIASES.get(key, key)
        if key in _NON_FIELD_KEYS:
            continue
        field_values.setdefault(key, match.group("value").strip())

    if "email" not in field_values and (match := _EMAIL.search(text)):
        field_values["email"] = match.group("email")
    if "phone" not in field_values and (match := _PHONE.search(text)):
        field_values["phone"] = match.group("phone").strip()

    lowered = _without_urls(text).lower()
    return TaskFeatures(
        text=text,
        urls=_extract_urls(text),
        submit_requested=submission_requested(text),
        field_values=field_values,
        target_selector=target_selector,
        kind_scores={kind: _keyword_count(lowered, kws) for kind, kws in _KIND_KEYWORDS.items()},
    )


_KIND_TO_POLICY = {
    "form": FORM_AUTOMATION,
    "extraction": DATA_EXTRACTION,
    "navigation": NAVIGATION,
}


def route_task(text: str | TaskFeatures) -> list[str]:
    """
    Ordered policy names for a task.

    A task naming a URL whose primary kind is form work or extraction is split into
    [Navigation, <specialist>].

    Args:
        text: Task description, or features already parsed from it

    Returns:
        Non-empty list of policy names
    """
    features = text if isinstance(text, TaskFeatures) else parse_task(text)
    primary = _KIND_TO_POLICY[features.primary_kind]
    if primary != NAVIGATION and features.urls:
        return [NAVIGATION, primary]
    return [primary]
