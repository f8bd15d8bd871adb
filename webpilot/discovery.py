"""
Target discovery: rank form-like regions of a page against an intent.

The live page is captured once (capture_page_snapshot) and ranked in pure Python
(discover_target), so the same PageSnapshot always yields the same candidate and
strategy.

Strategies, in decreasing order of trust:
    1. exact            caller selector, then well-known ids/classes
    2. attribute        form[action*=keyword]
    3. field_score      +1 per {name, email, phone, message}, +1 for email+message
    4. semantic_text    headings/links/buttons with intent phrases near a container
    5. button_adjacency call-to-action buttons mapped back to their form
    6. fallback         any element whose id/class loosely contains the keyword
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .models import (
    ButtonDescriptor,
    Candidate,
    DiscoveryResult,
    FieldDescriptor,
    FormContainer,
    MatchStrategy,
    PageSnapshot,
)

if TYPE_CHECKING:
    from playwright.async_api import Page

NO_MATCH_MESSAGE = "no matching target found"

EXACT_SCORE = 8.0
ATTRIBUTE_SCORE = 6.0
FIELD_SCORE_THRESHOLD = 2
EMAIL_MESSAGE_BONUS = 1.0
SEMANTIC_BONUS = 2.0
SEMANTIC_MAX_DISTANCE_PX = 400.0
BUTTON_BONUS = 1.0
FALLBACK_SCORE = 0.5

_LOOSE_ORDER_OFFSET = 10_000


@dataclass(frozen=True)
class IntentProfile:
    """Keywords and selectors that describe one discovery intent"""

    keyword: str
    exact_selectors: tuple[str, ...] = ()
    attribute_keywords: tuple[str, ...] = ()
    phrases: tuple[str, ...] = ()
    button_labels: tuple[str, ...] = ()
    fallback_keywords: tuple[str, ...] = ()


CONTACT_PROFILE = IntentProfile(
    keyword="contact",
    exact_selectors=(
        "form#contact",
        "form#contact-form",
        "form#contact-us",
        "#contact",
        ".contact-form",
        ".contact-us",
    ),
    attribute_keywords=("contact", "support", "feedback", "enquiry"),
    phrases=(
        "contact",
        "contact us",
        "get in touch",
        "feedback",
        "support",
        "enquiry",
        "inquiry",
        "message us",
        "help",
        "reach us",
    ),
    button_labels=("send", "submit", "send message", "contact us", "message"),
    fallback_keywords=("contact", "support", "feedback"),
)

_INTENT_STOPWORDS = {"form", "like", "the", "a", "an", "page", "section", "target"}


def intent_profile(intent: str) -> IntentProfile:
    """
    Resolve an intent tag ("contact", "contact-like form", "newsletter") to a profile.

    Unknown intents get a generic profile built around their first meaningful word.
    """
    words = [w for w in re.findall(r"[a-z0-9]+", intent.lower()) if w not in _INTENT_STOPWORDS]
    if not words or "contact" in words:
        return CONTACT_PROFILE

    keyword = words[0]
    return IntentProfile(
        keyword=keyword,
        exact_selectors=(f"form#{keyword}", f"form#{keyword}-form", f"#{keyword}", f".{keyword}-form"),
        attribute_keywords=(keyword,),
        phrases=(keyword,),
        button_labels=("submit", "send"),
        fallback_keywords=(keyword,),
    )


# ========== Field classification ==========

_CATEGORY_PATTERNS: dict[str, re.Pattern[str]] = {
    "name": re.compile(r"(^|[^a-z])(full[\s_-]?name|first[\s_-]?name|last[\s_-]?name|your[\s_-]?name|name)", re.I),
    "email": re.compile(r"e-?mail", re.I),
    "phone": re.compile(r"phone|mobile|\btel\b|telephone", re.I),
    "message": re.compile(r"message|comment|enquiry|inquiry|question", re.I),
}


def field_category(desc: FieldDescriptor) -> str | None:
    """
    Classify a field as name, email, phone or message.

    Type attributes win over text hints (type=email, type=tel, textarea).
    """
    field_type = (desc.type or "").lower()
    if field_type == "email":
        return "email"
    if field_type == "tel":
        return "phone"
    if desc.tag == "textarea":
        return "message"

    haystack = " ".join([desc.name, desc.id, desc.placeholder, desc.label])
    # email before name so "email_name" style attributes classify as email
    for category in ("email", "phone", "message", "name"):
        if _CATEGORY_PATTERNS[category].search(haystack):
            return category
    return None


def score_fields(fields: list[FieldDescriptor]) -> tuple[float, set[str]]:
    """
    Field-presence score of a container.

    Returns:
        (score, categories present)
    """
    categories = {c for c in (field_category(f) for f in fields) if c}
    score = float(len(categories))
    if {"email", "message"} <= categories:
        score += EMAIL_MESSAGE_BONUS
    return score, categories


def _contains_phrase(text: str, phrases: tuple[str, ...]) -> str | None:
    lowered = text.lower()
    for phrase in phrases:
        if re.search(rf"\b{re.escape(phrase)}\b", lowered):
            return phrase
    return None


def _is_cta(text: str, labels: tuple[str, ...]) -> bool:
    lowered = " ".join(text.lower().split())
    return any(lowered == label or lowered.startswith(label + " ") for label in labels)


# ========== Ranking ==========


@dataclass
class _Accumulator:
    selector: str
    strategy: MatchStrategy
    order: int
    score: float = 0.0
    fields: list[FieldDescriptor] = field(default_factory=list)
    buttons: list[ButtonDescriptor] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)

    def add(self, strategy: MatchStrategy, score: float, reason: str) -> None:
        self.score += score
        if strategy.rank < self.strategy.rank:
            self.strategy = strategy
        self.reasons.append(reason)

    def to_candidate(self) -> Candidate:
        return Candidate(
            selector=self.selector,
            matched_strategy=self.strategy,
            score=round(self.score, 3),
            fields=self.fields,
            buttons=self.buttons,
            reasons=self.reasons,
        )


def _build_result(url: str, accumulated: list[_Accumulator]) -> DiscoveryResult:
    accumulated = [a for a in accumulated if a.selector]
    if not accumulated:
        return DiscoveryResult(success=False, message=NO_MATCH_MESSAGE, url=url)

    accumulated.sort(key=lambda a: (-a.score, a.strategy.rank, a.order))
    candidates = [a.to_candidate() for a in accumulated]
    best = candidates[0]

    ambiguous = (
        len(candidates) > 1
        and candidates[1].score == best.score
        and candidates[1].matched_strategy == best.matched_strategy
    )
    if ambiguous:
        tied = [c for c in candidates if c.score == best.score and c.matched_strategy == best.matched_strategy]
        message = (
            f"{len(tied)} candidates tie at score {best.score} via {best.matched_strategy.value}; "
            "target is ambiguous"
        )
    else:
        message = (
            f"Selected {best.selector} via {best.matched_strategy.value} "
            f"(score {best.score})"
        )

    return DiscoveryResult(
        success=True,
        message=message,
        url=url,
        selector=best.selector,
        strategy=best.matched_strategy,
        candidates=candidates,
        ambiguous=ambiguous,
    )


def discover_target(  # noqa: C901
    snapshot: PageSnapshot,
    intent: str = "contact",
    selector: str | None = None,
) -> DiscoveryResult:
    """
    Rank candidate regions of a captured page against an intent.

    Exact and attribute strategies stop early when they produce exactly one target.
    Otherwise every strategy contributes to a per-selector score; the candidate's
    strategy is the most trusted one that contributed.

    Tie-break: highest score, then most trusted strategy, then document order. Equal
    score and equal strategy on the top two marks the result ambiguous.

    Args:
        snapshot: DOM capture from capture_page_snapshot()
        intent: Intent tag, e.g. "contact"
        selector: Optional caller-supplied selector, tried first

    Returns:
        DiscoveryResult (success=False with "no matching target found" if nothing fits)
    """
    profile = intent_profile(intent)
    containers: dict[int, FormContainer] = {c.index: c for c in snapshot.containers}
    pool: dict[str, _Accumulator] = {}

    def entry(
        key_selector: str,
        strategy: MatchStrategy,
        order: int,
        container: FormContainer | None = None,
    ) -> _Accumulator:
        if key_selector not in pool:
            pool[key_selector] = _Accumulator(
                selector=key_selector,
                strategy=strategy,
                order=order,
                fields=list(container.fields) if container else [],
                buttons=list(container.buttons) if container else [],
            )
        return pool[key_selector]

    def exact_target(sel: str) -> tuple[str, int, FormContainer | None]:
        index = snapshot.exact_matches.get(sel)
        if index is not None and index in containers:
            container = containers[index]
            return container.selector, container.index, container
        return sel, _LOOSE_ORDER_OFFSET, None

    # 1. Exact: caller selector wins outright when it resolves
    if selector and selector in snapshot.exact_matches:
        key, order, container = exact_target(selector)
        acc = entry(key, MatchStrategy.EXACT, order, container)
        acc.add(MatchStrategy.EXACT, EXACT_SCORE, f"caller selector {selector} resolved")
        return _build_result(snapshot.url, [acc])

    for known in profile.exact_selectors:
        if known not in snapshot.exact_matches:
            continue
        key, order, container = exact_target(known)
        if key in pool:
            pool[key].reasons.append(f"also matched {known}")
            continue
        entry(key, MatchStrategy.EXACT, order, container).add(
            MatchStrategy.EXACT, EXACT_SCORE, f"matched well-known selector {known}"
        )
    if len(pool) == 1:
        return _build_result(snapshot.url, list(pool.values()))

    # 2. Attribute: form action path mentions an intent keyword
    attribute_hits = []
    for container in snapshot.containers:
        action = container.action.lower()
        keyword = next((kw for kw in profile.attribute_keywords if kw in action), None)
        if keyword:
            attribute_hits.append((container, keyword))
    if not pool and len(attribute_hits) == 1:
        container, keyword = attribute_hits[0]
        acc = entry(container.selector, MatchStrategy.ATTRIBUTE, container.index, container)
        acc.add(MatchStrategy.ATTRIBUTE, ATTRIBUTE_SCORE, f"action contains '{keyword}'")
        return _build_result(snapshot.url, [acc])
    for container, keyword in attribute_hits:
        acc = entry(container.selector, MatchStrategy.ATTRIBUTE, container.index, container)
        acc.add(MatchStrategy.ATTRIBUTE, ATTRIBUTE_SCORE, f"action contains '{keyword}'")

    # 3. Field score
    for container in snapshot.containers:
        score, categories = score_fields(container.fields)
        if score >= FIELD_SCORE_THRESHOLD:
            acc = entry(container.selector, MatchStrategy.FIELD_SCORE, container.index, container)
            acc.add(
                MatchStrategy.FIELD_SCORE,
                score,
                f"fields present: {', '.join(sorted(categories))}",
            )

    # 4. Semantic text near a container
    boosted: set[int] = set()
    for match in snapshot.text_matches:
        phrase = _contains_phrase(match.text, profile.phrases)
        if not phrase:
            continue
        index = match.container_index
        if index is None and match.distance is not None and match.distance <= SEMANTIC_MAX_DISTANCE_PX:
            index = match.nearest_index
        if index is None or index not in containers or index in boosted:
            continue
        boosted.add(index)
        container = containers[index]
        acc = entry(container.selector, MatchStrategy.SEMANTIC_TEXT, container.index, container)
        acc.add(
            MatchStrategy.SEMANTIC_TEXT,
            SEMANTIC_BONUS,
            f"near <{match.tag}> text '{match.text[:40]}'",
        )

    # 5. Call-to-action buttons mapped back to their form
    adjacent: set[int] = set()
    for button in snapshot.buttons:
        index = button.container_index
        if index is None or index not in containers or index in adjacent:
            continue
        if not _is_cta(button.text, profile.button_labels):
            continue
        adjacent.add(index)
        container = containers[index]
        acc = entry(
            container.selector, MatchStrategy.BUTTON_ADJACENCY, container.index, container
        )
        acc.add(MatchStrategy.BUTTON_ADJACENCY, BUTTON_BONUS, f"button '{button.text[:30]}'")

    # 6. Fallback: loose id/class matches, low confidence
    for position, element in enumerate(snapshot.loose_elements):
        attrs = f"{element.id} {element.class_name}".lower()
        keyword = next((kw for kw in profile.fallback_keywords if kw in attrs), None)
        if not keyword or not element.selector:
            continue
        acc = entry(element.selector, MatchStrategy.FALLBACK, _LOOSE_ORDER_OFFSET + position)
        acc.add(MatchStrategy.FALLBACK, FALLBACK_SCORE, f"id/class contains '{keyword}'")

    return _build_result(snapshot.url, list(pool.values()))


# ========== Live page capture ==========

_CAPTURE_SCRIPT = """
(args) => {
    const esc = (s) => (window.CSS && CSS.escape) ? CSS.escape(s) : String(s).replace(/([^\\w-])/g, '\\\\$1');
    const clean = (s) => String(s || '').replace(/\\s+/g, ' ').trim();
    const textOf = (el) => clean(el.innerText || el.textContent || el.value || '');
    const absTop = (el) => el.getBoundingClientRect().top + window.scrollY;
    const absBottom = (el) => el.getBoundingClientRect().bottom + window.scrollY;

    const labelOf = (el) => {
        if (el.id) {
            const l = document.querySelector(`label[for="${esc(el.id)}"]`);
            if (l) return textOf(l);
        }
        const wrap = el.closest('label');
        if (wrap) return textOf(wrap);
        return clean(el.getAttribute('aria-label'));
    };

    const describeField = (el) => ({
        tag: el.tagName.toLowerCase(),
        type: el.getAttribute('type') || 'text',
        name: el.getAttribute('name') || '',
        id: el.id || '',
        placeholder: el.getAttribute('placeholder') || '',
        required: el.hasAttribute('required') || el.getAttribute('aria-required') === 'true',
        selector: el.id ? `#${esc(el.id)}` : (el.getAttribute('name') ? `[name="${el.getAttribute('name')}"]` : ''),
        label: labelOf(el),
    });

    const describeButton = (el) => {
        const text = textOf(el);
        return {
            tag: el.tagName.toLowerCase(),
            type: el.getAttribute('type') || 'button',
            text: text,
            id: el.id || '',
            class_name: el.getAttribute('class') || '',
            selector: el.id ? `#${esc(el.id)}` : `${el.tagName.toLowerCase()}:has-text("${text}")`,
        };
    };

    const skipTypes = new Set(['hidden', 'submit', 'button', 'reset', 'image']);
    const buttonQuery = 'button, input[type="submit"], input[type="button"], [role="button"]';

    const raw = Array.from(document.querySelectorAll('form, [role="form"]'));
    const nodes = raw.filter((el) => !raw.some((other) => other !== el && other.contains(el)));
    const allForms = Array.from(document.querySelectorAll('form'));
    const allRoleForms = Array.from(document.querySelectorAll('[role="form"]'));

    const containers = nodes.map((el, index) => {
        const tag = el.tagName.toLowerCase();
        let selector;
        if (el.id) selector = `#${esc(el.id)}`;
        else if (tag === 'form' && el.getAttribute('name')) selector = `form[name="${el.getAttribute('name')}"]`;
        else if (tag === 'form') selector = `form >> nth=${allForms.indexOf(el)}`;
        else selector = `[role="form"] >> nth=${allRoleForms.indexOf(el)}`;

        const fields = Array.from(el.querySelectorAll('input, textarea, select'))
            .filter((f) => !skipTypes.has((f.getAttribute('type') || '').toLowerCase()))
            .map(describeField);

        return {
            index,
            selector,
            tag,
            id: el.id || '',
            class_name: el.getAttribute('class') || '',
            name: el.getAttribute('name') || '',
            action: el.getAttribute('action') || '',
            top: absTop(el),
            bottom: absBottom(el),
            fields,
            buttons: Array.from(el.querySelectorAll(buttonQuery)).map(describeButton),
        };
    });

    const containerIndexOf = (el) => {
        const i = nodes.findIndex((c) => c === el || c.contains(el));
        return i >= 0 ? i : null;
    };

    const geometry = (el) => {
        const inside = containerIndexOf(el);
        if (inside !== null) return { container_index: inside, nearest_index: inside, distance: 0 };
        const center = (absTop(el) + absBottom(el)) / 2;
        let best = null;
        let bestDistance = null;
        containers.forEach((c) => {
            const d = center < c.top ? c.top - center : (center > c.bottom ? center - c.bottom : 0);
            if (bestDistance === null || d < bestDistance) { best = c.index; bestDistance = d; }
        });
        return { container_index: null, nearest_index: best, distance: bestDistance };
    };

    const phrases = args.phrases.map((p) => p.toLowerCase());
    const textMatches = [];
    document.querySelectorAll('h1, h2, h3, h4, h5, h6, legend, a, button, [role="heading"]').forEach((el) => {
        const text = textOf(el);
        if (!text || text.length > 120) return;
        const lowered = text.toLowerCase();
        if (!phrases.some((p) => lowered.includes(p))) return;
        textMatches.push({ text, tag: el.tagName.toLowerCase(), ...geometry(el) });
    });

    const buttons = Array.from(document.querySelectorAll(buttonQuery)).slice(0, 300).map((el) => ({
        text: textOf(el),
        tag: el.tagName.toLowerCase(),
        ...geometry(el),
    }));

    const looseElements = [];
    const seen = new Set();
    args.fallbackKeywords.forEach((kw) => {
        let found = [];
        try {
            found = Array.from(document.querySelectorAll(`[id*="${kw}" i], [class*="${kw}" i]`));
        } catch (e) {
            found = [];
        }
        found.slice(0, 20).forEach((el) => {
            const tag = el.tagName.toLowerCase();
            const cls = (el.getAttribute('class') || '').split(/\\s+/).find((c) => c.toLowerCase().includes(kw));
            const selector = el.id ? `#${esc(el.id)}` : (cls ? `${tag}.${esc(cls)}` : '');
            if (!selector || seen.has(selector)) return;
            seen.add(selector);
            looseElements.push({ selector, tag, id: el.id || '', class_name: el.getAttribute('class') || '' });
        });
    });

    const exactMatches = {};
    args.exactSelectors.forEach((sel) => {
        let el = null;
        try {
            el = document.querySelector(sel);
        } catch (e) {
            el = null;
        }
        if (!el) return;
        let index = containerIndexOf(el);
        if (index === null) {
            const inner = nodes.findIndex((c) => el.contains(c));
            index = inner >= 0 ? inner : null;
        }
        exactMatches[sel] = index;
    });

    return {
        url: window.location.href,
        containers,
        text_matches: textMatches,
        buttons,
        loose_elements: looseElements,
        exact_matches: exactMatches,
    };
}
"""


async def capture_page_snapshot(
    page: Page, intent: str = "contact", selector: str | None = None
) -> PageSnapshot:
    """
    Capture the DOM facts discovery needs with a single evaluate call.

    Args:
        page: Playwright async Page
        intent: Intent tag used to pick phrases and keywords
        selector: Optional caller selector to resolve alongside the well-known ones

    Returns:
        PageSnapshot
    """
    profile = intent_profile(intent)
    exact_selectors = list(profile.exact_selectors)
    if selector:
        exact_selectors.insert(0, selector)

    args: dict[str, Any] = {
        "phrases": list(profile.phrases),
        "fallbackKeywords": list(profile.fallback_keywords),
        "exactSelectors": exact_selectors,
    }
    raw = await page.evaluate(_CAPTURE_SCRIPT, args)
    return PageSnapshot.model_validate(raw)
