"""Wizard and multi-step form detection."""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set

from .dom import DomDocument, DomNode, SelectorError
from .scoring import collect_field_elements

logger = logging.getLogger("formsense.multistep")

STEP_NAV_SELECTORS = (
    "[data-step-nav]",
    "[data-action=next]",
    "[data-action=prev]",
    "[class*=step-nav i]",
    "[class*=wizard-nav i]",
    "[class*=wizard-button i]",
)
STEP_CONTENT_SELECTORS = (
    "[data-step]",
    "[data-step-index]",
    "[data-page]",
    "[class*=form-step i]",
    "[class*=wizard-step i]",
    "[class*=step-content i]",
    "[class*=step-panel i]",
    "[role=tabpanel]",
)
WIZARD_SELECTORS = (
    "[data-wizard]",
    "[data-multistep]",
    "[data-flow]",
    "[class*=wizard i]",
    "[class*=multi-step i]",
    "[class*=multistep i]",
    "[class*=stepper i]",
    "[class*=form-flow i]",
    "[class*=onboarding i]",
)
PROGRESS_SELECTORS = (
    "progress",
    "[role=progressbar]",
    "[class*=progress i]",
    "[class*=step-indicator i]",
    "[class*=steps-indicator i]",
    "ol[class*=step i]",
    "ul[class*=step i]",
)
NAV_TEXT = re.compile(
    r"^\s*(next|previous|prev|back|go back|continue|proceed|step \d+|next step)\b",
    re.IGNORECASE,
)
MULTISTEP_VOCABULARY = re.compile(
    r"(?<![a-z])(step|steps|wizard|multi-?step|stepper|flow|onboarding|stage)(?![a-z])",
    re.IGNORECASE,
)


@dataclass(slots=True)
class MultiStepMatch:
    element: DomNode
    score: float
    reasons: List[str] = field(default_factory=list)


def _select(document: DomDocument, selectors: Iterable[str]) -> List[DomNode]:
    found: List[DomNode] = []
    seen: Set[DomNode] = set()
    for selector in selectors:
        try:
            matches = document.query_all(selector)
        except SelectorError as exc:
            logger.debug("Skipping multi-step selector %r: %s", selector, exc)
            continue
        for node in matches:
            if node not in seen:
                seen.add(node)
                found.append(node)
    return found


def find_step_navigation(document: DomDocument) -> List[DomNode]:
    found = _select(document, STEP_NAV_SELECTORS)
    for node in document.iter_elements():
        if node in found:
            continue
        is_control = node.tag in {"button", "a"} or node.role == "button" or (
            node.tag == "input" and (node.get("type") or "").lower() in {"button", "submit"}
        )
        if not is_control:
            continue
        text = node.text_content() or node.get("value") or node.get("aria-label") or ""
        if NAV_TEXT.search(text):
            found.append(node)
    return found


def find_step_contents(document: DomDocument) -> List[DomNode]:
    return _select(document, STEP_CONTENT_SELECTORS)


def find_wizard_containers(document: DomDocument) -> List[DomNode]:
    return _select(document, WIZARD_SELECTORS)


def find_progress_indicators(document: DomDocument) -> List[DomNode]:
    return _select(document, PROGRESS_SELECTORS)


def _ancestor_set(nodes: Iterable[DomNode]) -> Set[DomNode]:
    found: Set[DomNode] = set()
    for node in nodes:
        found.update(node.ancestors())
    return found


def _vocabulary(node: DomNode) -> bool:
    marker = " ".join(
        [node.get("class") or "", node.get("id") or ""]
        + [name for name in node.attrs if name.startswith("data-")]
    )
    return bool(MULTISTEP_VOCABULARY.search(marker))


class _MultiStepScorer:
    def __init__(self, document: DomDocument) -> None:
        self.nav = find_step_navigation(document)
        self.steps = find_step_contents(document)
        self.progress = find_progress_indicators(document)
        self.wizards = find_wizard_containers(document)
        self.nav_holders = _ancestor_set(self.nav)
        self.progress_holders = _ancestor_set(self.progress)
        self.step_counts: Counter = Counter()
        for step in self.steps:
            for ancestor in step.ancestors():
                self.step_counts[ancestor] += 1
        self.field_holders = _ancestor_set(collect_field_elements(document.root))
        self.body = document.body

    @property
    def seeds(self) -> List[DomNode]:
        ordered: List[DomNode] = []
        for node in [*self.wizards, *self.steps, *self.nav, *self.progress]:
            if node not in ordered:
                ordered.append(node)
        return ordered

    def score(self, node: DomNode) -> MultiStepMatch:
        score = 0.0
        reasons: List[str] = []
        if node.tag == "form" or node.role == "form":
            score += 30
            reasons.append("form semantics")
        if _vocabulary(node):
            score += 25
            reasons.append("multi-step vocabulary")
        if node in self.nav_holders:
            score += 15
            reasons.append("contains step navigation")
        if node in self.progress_holders:
            score += 15
            reasons.append("contains progress indicator")
        if self.step_counts.get(node, 0) >= 2:
            score += 20
            reasons.append(f"{self.step_counts[node]} step regions")
        if node in self.field_holders:
            score += 10
            reasons.append("contains fields")
        rect = node.rect
        if rect is not None and (rect.width < 200 or rect.height < 100):
            score -= 30
            reasons.append("implausibly small")
        return MultiStepMatch(element=node, score=score, reasons=reasons)

    def best_ancestor(self, seed: DomNode, min_score: float) -> Optional[MultiStepMatch]:
        best: Optional[MultiStepMatch] = None
        node: Optional[DomNode] = seed
        while node is not None and node is not self.body and node.tag not in {"html", "body"}:
            match = self.score(node)
            if best is None or match.score > best.score:
                best = match
            node = node.parent
        if best is not None and best.score >= min_score:
            return best
        return None


def detect_multistep_containers(
    document: DomDocument, *, min_score: float = 40.0, min_fields: int = 1
) -> List[MultiStepMatch]:
    """Containers of wizard-style forms, best-scoring ancestor per signal.

    A match holding fewer than ``min_fields`` visible fields is only step
    chrome (an indicator or a lone "Next" button) and is dropped.
    """
    scorer = _MultiStepScorer(document)
    results: List[MultiStepMatch] = []
    seen: Set[DomNode] = set()
    for seed in scorer.seeds:
        match = scorer.best_ancestor(seed, min_score)
        if match is None or match.element in seen:
            continue
        seen.add(match.element)
        if len(collect_field_elements(match.element)) < min_fields:
            logger.debug("Skipping field-less multi-step match %r", match.element)
            continue
        results.append(match)
    if results:
        logger.debug(
            "Multi-step candidates in %s: %s",
            document.url,
            [(m.element.tag, m.score) for m in results],
        )
    return results


__all__ = [
    "MultiStepMatch",
    "detect_multistep_containers",
    "find_progress_indicators",
    "find_step_contents",
    "find_step_navigation",
    "find_wizard_containers",
]
