"""Candidate container discovery and scoring."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from statistics import median
from typing import Callable, Dict, Iterable, List, NamedTuple, Optional, Sequence, Tuple
from urllib.parse import urlparse

from .config import ScoringWeights
from .dom import DomDocument, DomNode, SelectorError

logger = logging.getLogger("formsense.scoring")

IGNORED_INPUT_TYPES = {"hidden", "submit", "reset", "button", "image"}
NATIVE_FIELD_TAGS = {"input", "select", "textarea"}
FIELD_ROLES = {
    "textbox",
    "combobox",
    "checkbox",
    "radio",
    "switch",
    "searchbox",
    "listbox",
    "slider",
    "spinbutton",
}
BUTTON_INPUT_TYPES = {"submit", "button", "reset", "image"}
EXPLICIT_CONTAINER_SELECTORS = (
    "form",
    "fieldset",
    "[role=form]",
    "[data-form]",
    "[data-form-id]",
    "[data-testid*=form i]",
    "[class*=form i]",
    "[id*=form i]",
    "[class*=survey i]",
    "[class*=questionnaire i]",
    "[class*=typeform i]",
    "[class*=hs-form i]",
    "[class*=jotform i]",
)
FORM_VOCABULARY = {
    "form",
    "forms",
    "survey",
    "questionnaire",
    "application",
    "apply",
    "signup",
    "register",
    "registration",
    "checkout",
    "contact",
    "login",
    "signin",
    "wizard",
    "quiz",
    "booking",
    "subscribe",
    "newsletter",
    "onboarding",
    "profile",
    "enquiry",
    "inquiry",
}
LAYOUT_VOCABULARY = {
    "nav",
    "navbar",
    "navigation",
    "menu",
    "header",
    "footer",
    "sidebar",
    "toolbar",
    "breadcrumb",
    "breadcrumbs",
    "tooltip",
    "cookie",
    "banner",
    "pagination",
}
LAYOUT_TAGS = {"nav", "header", "footer", "aside"}
SUBMIT_WORDS = re.compile(
    r"\b(submit|send|continue|next|sign ?up|sign ?in|log ?in|register|apply|save|subscribe|book|checkout|get started)\b",
    re.IGNORECASE,
)
_TOKEN_SPLIT = re.compile(r"[\s_\-]+")


class VendorContainer(NamedTuple):
    name: str
    host: str
    path: str
    selector: str


# Hosted form builders whose root container is known by selector.
VENDOR_CONTAINERS = (
    VendorContainer("Google Forms", "docs.google.com", "/forms/", ".freebirdFormviewerViewFormCard"),
    VendorContainer("Typeform", "typeform.com", "", '[data-qa="form"]'),
    VendorContainer("JotForm", "jotform.com", "", ".form-all"),
)
EXPANSION_MAX_DEPTH = 20


@dataclass(slots=True)
class Candidate:
    element: DomNode
    score: float
    field_count: int
    reasons: List[str] = field(default_factory=list)
    explicit: bool = False

    @property
    def document(self) -> Optional[DomDocument]:
        return self.element.document

    def to_dict(self) -> dict:
        return {
            "tag": self.element.tag,
            "id": self.element.element_id,
            "uid": self.element.uid,
            "score": round(self.score, 2),
            "field_count": self.field_count,
            "explicit": self.explicit,
            "reasons": list(self.reasons),
        }


@dataclass(slots=True)
class ScoringContext:
    element: DomNode
    fields: List[DomNode]
    buttons: List[DomNode]
    weights: ScoringWeights

    @property
    def interactive_count(self) -> int:
        return len(self.fields) + len(self.buttons)


RuleResult = Optional[Tuple[float, str]]


@dataclass(frozen=True, slots=True)
class ScoringRule:
    name: str
    lens: str
    evaluate: Callable[[ScoringContext], RuleResult]


# --- element classification -------------------------------------------------


def is_field_element(node: DomNode) -> bool:
    if node.has("disabled") or node.has("readonly"):
        return False
    if node.get("aria-hidden") == "true" or node.role in {"presentation", "none"}:
        return False
    if node.tag == "input":
        return (node.get("type") or "text").strip().lower() not in IGNORED_INPUT_TYPES
    if node.tag in {"select", "textarea"}:
        return True
    if node.role in FIELD_ROLES:
        return True
    editable = node.get("contenteditable")
    return editable is not None and editable.strip().lower() in {"", "true", "plaintext-only"}


def is_button_element(node: DomNode) -> bool:
    if node.tag == "button" or node.role == "button":
        return True
    return node.tag == "input" and (node.get("type") or "").lower() in BUTTON_INPUT_TYPES


def field_kind(node: DomNode) -> str:
    if node.tag == "input":
        return (node.get("type") or "text").strip().lower() or "text"
    if node.tag in {"select", "textarea"}:
        return node.tag
    if node.role in {"combobox", "listbox"}:
        return "select"
    if node.role in {"checkbox", "switch"}:
        return "checkbox"
    if node.role:
        return node.role
    return "contentEditable"


def _style_hidden(node: DomNode) -> bool:
    if node.has("hidden") or node.display == "none":
        return True
    for ancestor in node.ancestors():
        if ancestor.has("hidden") or ancestor.display == "none":
            return True
    for candidate in (node, *node.ancestors()):
        if candidate.visibility:
            return candidate.visibility in {"hidden", "collapse"}
    return False


def _offscreen(node: DomNode) -> bool:
    rect = node.rect
    return rect is not None and (rect.right <= 0 or rect.bottom <= 0)


def _has_visible_label(node: DomNode) -> bool:
    element_id = node.element_id
    document = node.document
    if not element_id or document is None:
        return False
    for label in document.root.iter_descendants():
        if label.tag != "label" or label.get("for") != element_id:
            continue
        if _style_hidden(label) or _offscreen(label):
            continue
        if label.rect is not None and label.rect.is_empty:
            continue
        return True
    return False


def is_visible(node: DomNode) -> bool:
    """Layout visibility; unknown boxes count as visible."""
    if _style_hidden(node):
        return False
    rect = node.rect
    if rect is not None and rect.is_empty:
        return False
    if _offscreen(node):
        return _has_visible_label(node)
    return True


def collect_field_elements(scope: DomNode) -> List[DomNode]:
    """Visible interactive descendants of ``scope`` in document order.

    Role-based and content-editable widgets that wrap a native control are
    skipped in favour of the native control; otherwise the widget itself is the
    field and its subtree is not searched further.
    """

    found: List[DomNode] = []
    stack = list(reversed(scope.children))
    while stack:
        node = stack.pop()
        if is_field_element(node):
            if node.tag in NATIVE_FIELD_TAGS:
                if is_visible(node):
                    found.append(node)
                continue
            if not any(child.tag in NATIVE_FIELD_TAGS for child in node.iter_descendants()):
                if is_visible(node):
                    found.append(node)
                continue
        stack.extend(reversed(node.children))
    return found


def collect_buttons(scope: DomNode) -> List[DomNode]:
    return [
        node
        for node in scope.iter_descendants()
        if is_button_element(node) and not node.has("disabled") and is_visible(node)
    ]


def _tokens(node: DomNode) -> set:
    raw = " ".join([node.get("class") or "", node.get("id") or ""]).lower()
    return {token for token in _TOKEN_SPLIT.split(raw) if token}


# --- rules -------------------------------------------------------------------


def _field_volume(ctx: ScoringContext) -> RuleResult:
    if not ctx.fields:
        return None
    points = min(len(ctx.fields) * ctx.weights.per_field, ctx.weights.field_cap)
    return points, f"{len(ctx.fields)} visible fields (+{points:g})"


def _field_diversity(ctx: ScoringContext) -> RuleResult:
    kinds = {field_kind(node) for node in ctx.fields}
    if not kinds:
        return None
    points = min(len(kinds) * ctx.weights.per_field_type, ctx.weights.field_type_cap)
    return points, f"{len(kinds)} field types (+{points:g})"


def _form_tag(ctx: ScoringContext) -> RuleResult:
    if ctx.element.tag == "form":
        return ctx.weights.form_tag, "semantic <form> element"
    return None


def _fieldset_tag(ctx: ScoringContext) -> RuleResult:
    if ctx.element.tag == "fieldset":
        return ctx.weights.fieldset_tag, "semantic <fieldset> element"
    return None


def _form_role(ctx: ScoringContext) -> RuleResult:
    role = ctx.element.role
    if role == "form":
        return ctx.weights.form_role, "ARIA form role"
    if role in {"group", "radiogroup"}:
        return ctx.weights.group_role, f"ARIA {role} role"
    return None


def _form_vocabulary(ctx: ScoringContext) -> RuleResult:
    matched = sorted(_tokens(ctx.element) & FORM_VOCABULARY)
    if matched:
        return ctx.weights.form_vocabulary, f"form vocabulary ({', '.join(matched)})"
    return None


def _form_data_attribute(ctx: ScoringContext) -> RuleResult:
    for name, value in ctx.element.attrs.items():
        if name.startswith("data-form") or (name == "data-testid" and "form" in value.lower()):
            return ctx.weights.form_data_attribute, f"form data attribute ({name})"
    return None


def _layout_vocabulary(ctx: ScoringContext) -> RuleResult:
    if ctx.element.tag in LAYOUT_TAGS:
        return ctx.weights.layout_vocabulary_penalty, f"layout element <{ctx.element.tag}>"
    matched = sorted(_tokens(ctx.element) & LAYOUT_VOCABULARY)
    if matched:
        return ctx.weights.layout_vocabulary_penalty, f"layout vocabulary ({', '.join(matched)})"
    return None


def _submit_control(ctx: ScoringContext) -> RuleResult:
    for button in ctx.buttons:
        kind = (button.get("type") or "").lower()
        if button.tag == "input" and kind in {"submit", "image"}:
            return ctx.weights.submit_control, "submit control"
        if button.tag == "button" and kind in {"", "submit"}:
            return ctx.weights.submit_control, "submit control"
        label = button.text_content() or button.get("aria-label") or button.get("value") or ""
        if SUBMIT_WORDS.search(label):
            return ctx.weights.submit_control, "submit-like action"
    return None


def _legend(ctx: ScoringContext) -> RuleResult:
    if any(node.tag == "legend" for node in ctx.element.iter_descendants()):
        return ctx.weights.legend, "legend present"
    return None


def _behavioral_density(ctx: ScoringContext) -> RuleResult:
    count = ctx.interactive_count
    if count < ctx.weights.behavioral_min_interactive:
        return None
    points = min(count * ctx.weights.per_interactive, ctx.weights.behavioral_cap)
    return points, f"{count} interactive descendants (+{points:g})"


def _boxes(ctx: ScoringContext) -> List:
    return [node.rect for node in ctx.fields if node.rect is not None and not node.rect.is_empty]


def _consistent_spacing(ctx: ScoringContext) -> RuleResult:
    rects = _boxes(ctx)
    if len(rects) < 2:
        return None
    tolerance = ctx.weights.spacing_tolerance_px
    rows: List[float] = []
    for top in sorted(rect.y for rect in rects):
        if not rows or top - rows[-1] > tolerance:
            rows.append(top)
    gaps = [later - earlier for earlier, later in zip(rows, rows[1:])]
    if not gaps:
        return None
    if any(gap > ctx.weights.max_row_gap_px for gap in gaps):
        return None
    if max(gaps) - min(gaps) > tolerance:
        return None
    return ctx.weights.consistent_spacing, "consistent vertical spacing"


def _left_alignment(ctx: ScoringContext) -> RuleResult:
    rects = _boxes(ctx)
    if len(rects) < 2:
        return None
    anchor = median(rect.x for rect in rects)
    aligned = [rect for rect in rects if abs(rect.x - anchor) <= ctx.weights.alignment_tolerance_px]
    if len(aligned) >= 2 and len(aligned) >= 0.8 * len(rects):
        return ctx.weights.left_alignment, "left edges aligned"
    return None


def _similar_widths(ctx: ScoringContext) -> RuleResult:
    widths = [
        node.rect.width
        for node in ctx.fields
        if node.rect is not None
        and node.rect.width > 0
        and field_kind(node) not in {"checkbox", "radio"}
    ]
    if len(widths) < 2:
        return None
    if max(widths) / min(widths) <= ctx.weights.width_ratio_limit:
        return ctx.weights.similar_widths, "similar field widths"
    return None


def vendors_for(url: str) -> List[VendorContainer]:
    parsed = urlparse(url or "")
    host = (parsed.hostname or "").lower()
    return [
        vendor
        for vendor in VENDOR_CONTAINERS
        if (host == vendor.host or host.endswith("." + vendor.host)) and vendor.path in parsed.path
    ]


def _vendor_container(ctx: ScoringContext) -> RuleResult:
    document = ctx.element.document
    if document is None or not ctx.fields:
        return None
    for vendor in vendors_for(document.url):
        if ctx.element.matches(vendor.selector):
            return ctx.weights.vendor_container, f"{vendor.name} container"
    return None


def _depth_penalty(ctx: ScoringContext) -> RuleResult:
    excess = ctx.element.depth - ctx.weights.depth_penalty_start
    if excess <= 0:
        return None
    points = -min(float(excess), ctx.weights.depth_penalty_cap)
    return points, f"deeply nested ({points:g})"


DEFAULT_RULES: Tuple[ScoringRule, ...] = (
    ScoringRule("field_volume", "base", _field_volume),
    ScoringRule("field_diversity", "base", _field_diversity),
    ScoringRule("form_tag", "semantic", _form_tag),
    ScoringRule("fieldset_tag", "semantic", _fieldset_tag),
    ScoringRule("form_role", "semantic", _form_role),
    ScoringRule("form_vocabulary", "semantic", _form_vocabulary),
    ScoringRule("form_data_attribute", "semantic", _form_data_attribute),
    ScoringRule("layout_vocabulary", "semantic", _layout_vocabulary),
    ScoringRule("submit_control", "semantic", _submit_control),
    ScoringRule("legend", "semantic", _legend),
    ScoringRule("behavioral_density", "behavioral", _behavioral_density),
    ScoringRule("consistent_spacing", "visual", _consistent_spacing),
    ScoringRule("left_alignment", "visual", _left_alignment),
    ScoringRule("similar_widths", "visual", _similar_widths),
    ScoringRule("depth_penalty", "structure", _depth_penalty),
    ScoringRule("vendor_container", "vendor", _vendor_container),
)


def evaluate_rules(
    rules: Sequence[ScoringRule], context: ScoringContext
) -> Tuple[float, List[str], Dict[str, float]]:
    """Sum matching rules; the visual lens total is capped."""
    lens_totals: Dict[str, float] = {}
    reasons: List[str] = []
    for rule in rules:
        try:
            result = rule.evaluate(context)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Scoring rule %s failed: %s", rule.name, exc)
            continue
        if result is None:
            continue
        points, reason = result
        lens_totals[rule.lens] = lens_totals.get(rule.lens, 0.0) + points
        reasons.append(reason)
    if "visual" in lens_totals:
        lens_totals["visual"] = min(lens_totals["visual"], context.weights.visual_cap)
    return sum(lens_totals.values()), reasons, lens_totals


def score_element(
    element: DomNode,
    *,
    weights: Optional[ScoringWeights] = None,
    rules: Sequence[ScoringRule] = DEFAULT_RULES,
    explicit: bool = False,
) -> Candidate:
    context = ScoringContext(
        element=element,
        fields=collect_field_elements(element),
        buttons=collect_buttons(element),
        weights=weights or ScoringWeights(),
    )
    score, reasons, _ = evaluate_rules(rules, context)
    return Candidate(
        element=element,
        score=score,
        field_count=len(context.fields),
        reasons=reasons,
        explicit=explicit,
    )


# --- discovery ---------------------------------------------------------------


def find_explicit_containers(
    document: DomDocument, selectors: Iterable[str] = EXPLICIT_CONTAINER_SELECTORS
) -> List[DomNode]:
    found: List[DomNode] = []
    seen = set()
    vendor = [entry.selector for entry in vendors_for(document.url)]
    for selector in (*vendor, *selectors):
        try:
            matches = document.query_all(selector)
        except SelectorError as exc:
            logger.debug("Skipping explicit selector %r: %s", selector, exc)
            continue
        for node in matches:
            if node not in seen and node.tag not in {"html", "body"}:
                seen.add(node)
                found.append(node)
    return found


def _field_kinds(fields: Iterable[DomNode]) -> set:
    kinds = set()
    for node in fields:
        kind = field_kind(node)
        kinds.add("text" if kind in {"text", "email", "tel", "url"} else kind)
    return kinds


def _grouping_score(container: DomNode, fields: List[DomNode]) -> float:
    score = len(fields) * 5.0
    kinds = _field_kinds(fields)
    if "text" in kinds and "email" in {field_kind(node) for node in fields}:
        score += 20
    if "radio" in kinds and "checkbox" in kinds:
        score += 15
    if "select" in kinds and "text" in kinds:
        score += 15
    if "checkbox" in kinds and "text" in kinds:
        score += 10
    if container.tag == "fieldset":
        score += 30
    elif container.tag == "form":
        score += 25
    if container.role == "group":
        score += 20
    rect = container.rect
    if rect is not None:
        if 100 < rect.height < 2000:
            score += 10
        if 200 < rect.width < 1200:
            score += 10
    depth = container.depth
    if depth > 15:
        score -= min(depth - 15, 30)
    return score


def find_optimal_container(
    field_node: DomNode, members: Dict[DomNode, List[DomNode]], body: DomNode
) -> Optional[DomNode]:
    """Walk up from a field and pick the ancestor that best groups fields."""
    best: Optional[DomNode] = None
    best_score = 0.0
    best_count = 0
    seen: List[Tuple[DomNode, float, int]] = []
    for ancestor in field_node.ancestors():
        if ancestor is body or ancestor.tag in {"html", "body"}:
            break
        fields = members.get(ancestor, [])
        if not fields:
            continue
        score = _grouping_score(ancestor, fields)
        seen.append((ancestor, score, len(fields)))
        if score > best_score or (score >= best_score * 0.8 and len(fields) > best_count):
            best, best_score, best_count = ancestor, score, len(fields)
    if best is not None and len(seen) > 1:
        top = sorted(seen, key=lambda item: (-item[2], -item[1]))[0]
        if top[2] > best_count * 1.2 and top[1] >= best_score * 0.5:
            best = top[0]
    return best


def _ancestor_members(fields: List[DomNode]) -> Dict[DomNode, List[DomNode]]:
    members: Dict[DomNode, List[DomNode]] = {}
    for node in fields:
        for ancestor in node.ancestors():
            members.setdefault(ancestor, []).append(node)
    return members


def find_implicit_containers(
    document: DomDocument, fields: Optional[List[DomNode]] = None
) -> List[DomNode]:
    fields = fields if fields is not None else collect_field_elements(document.root)
    members = _ancestor_members(fields)
    body = document.body
    found: List[DomNode] = []
    for node in fields:
        container = find_optimal_container(node, members, body)
        if container is not None and container not in found:
            found.append(container)
    return found


def find_expanded_container(element: DomNode, growth: float = 1.2) -> Optional[DomNode]:
    """Ancestor holding noticeably more fields than ``element``.

    Stops at ``<body>`` or once an ancestor deeper than ``EXPANSION_MAX_DEPTH``
    has been looked at.
    Returns None when no ancestor beats the element itself.
    """
    best = element
    best_count = len(collect_field_elements(element))
    for ancestor in element.ancestors():
        if ancestor.tag in {"html", "body"}:
            break
        count = len(collect_field_elements(ancestor))
        if count > best_count * growth:
            best, best_count = ancestor, count
        if ancestor.depth > EXPANSION_MAX_DEPTH:
            break
    return None if best is element else best


def merge_candidates(*groups: Iterable[Candidate]) -> List[Candidate]:
    """Merge by element identity: keep the max score, concatenate reasons."""
    merged: Dict[DomNode, Candidate] = {}
    for group in groups:
        for candidate in group:
            existing = merged.get(candidate.element)
            if existing is None:
                merged[candidate.element] = Candidate(
                    element=candidate.element,
                    score=candidate.score,
                    field_count=candidate.field_count,
                    reasons=list(candidate.reasons),
                    explicit=candidate.explicit,
                )
                continue
            existing.score = max(existing.score, candidate.score)
            existing.field_count = max(existing.field_count, candidate.field_count)
            existing.explicit = existing.explicit or candidate.explicit
            existing.reasons.extend(r for r in candidate.reasons if r not in existing.reasons)
    return list(merged.values())


def rank(candidates: Iterable[Candidate], limit: int) -> List[Candidate]:
    return sorted(candidates, key=lambda item: item.score, reverse=True)[:limit]


class CandidateScorer:
    """Scores documents for form-like containers with one set of weights."""

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        *,
        rules: Sequence[ScoringRule] = DEFAULT_RULES,
        explicit_min_fields: int = 1,
        implicit_min_fields: int = 2,
        primary_limit: int = 10,
        scan_limit: int = 20,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.weights = weights or ScoringWeights()
        self.rules = tuple(rules)
        self.explicit_min_fields = explicit_min_fields
        self.implicit_min_fields = implicit_min_fields
        self.primary_limit = primary_limit
        self.scan_limit = scan_limit
        self.logger = logger or logging.getLogger("formsense.scoring")

    def min_score(self, confidence_threshold: float) -> float:
        return confidence_threshold * self.weights.full_confidence_score

    def _score_all(self, elements: Iterable[DomNode], *, explicit: bool) -> List[Candidate]:
        scored: List[Candidate] = []
        for element in elements:
            try:
                scored.append(
                    score_element(element, weights=self.weights, rules=self.rules, explicit=explicit)
                )
            except Exception as exc:  # noqa: BLE001
                self.logger.debug("Failed to score %r: %s", element, exc)
        return scored

    def _retain(self, candidates: Iterable[Candidate], confidence_threshold: float) -> List[Candidate]:
        floor = self.min_score(confidence_threshold)
        kept = []
        for candidate in candidates:
            minimum = self.explicit_min_fields if candidate.explicit else self.implicit_min_fields
            if candidate.field_count >= minimum and candidate.score >= floor:
                kept.append(candidate)
        return kept

    def score_document(self, document: DomDocument, confidence_threshold: float) -> List[Candidate]:
        """Primary single-pass scorer: explicit containers first, implicit for the rest."""
        explicit = self._score_all(find_explicit_containers(document), explicit=True)
        explicit = self._retain(explicit, confidence_threshold)
        fields = collect_field_elements(document.root)
        uncovered = [
            node for node in fields if not any(c.element.contains(node) for c in explicit)
        ]
        implicit = self._score_all(
            find_implicit_containers(document, uncovered), explicit=False
        )
        implicit = self._retain(implicit, confidence_threshold)
        return rank(merge_candidates(explicit, implicit), self.primary_limit)

    def scan_document(self, document: DomDocument, confidence_threshold: float) -> List[Candidate]:
        """Broader scan: every explicit container and every field's grouping container."""
        explicit = self._score_all(find_explicit_containers(document), explicit=True)
        implicit = self._score_all(find_implicit_containers(document), explicit=False)
        merged = merge_candidates(explicit, implicit)
        kept = self._retain(merged, confidence_threshold)
        self.logger.debug(
            "Scanned %s: %s explicit, %s implicit, %s retained",
            document.url,
            len(explicit),
            len(implicit),
            len(kept),
        )
        return rank(kept, self.scan_limit)


__all__ = [
    "Candidate",
    "CandidateScorer",
    "ScoringContext",
    "ScoringRule",
    "DEFAULT_RULES",
    "EXPLICIT_CONTAINER_SELECTORS",
    "VENDOR_CONTAINERS",
    "VendorContainer",
    "collect_buttons",
    "collect_field_elements",
    "evaluate_rules",
    "field_kind",
    "find_expanded_container",
    "find_explicit_containers",
    "find_implicit_containers",
    "find_optimal_container",
    "is_field_element",
    "is_visible",
    "merge_candidates",
    "rank",
    "score_element",
    "vendors_for",
]
