"""Progressive multi-pass detection of form-like containers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Protocol

from .config import DetectionConfig, DetectionPass
from .dom import DomDocument, DomNode
from .frames import FrameTraversal
from .monitor import DynamicContentMonitor
from .multistep import detect_multistep_containers
from .network_capture import NetworkCapture
from .scoring import (
    Candidate,
    CandidateScorer,
    collect_field_elements,
    find_expanded_container,
    merge_candidates,
    rank,
    score_element,
)

CONTAINER_MARKER_ATTR = "data-formsense-form-container"


class DocumentSource(Protocol):
    async def load(self) -> DomDocument:  # pragma: no cover - protocol
        ...


@dataclass(slots=True)
class PassResult:
    detection_pass: DetectionPass
    candidates: List[Candidate]
    mean_score: float
    total_fields: int
    aggregate: float
    strong_hits: int = 0
    documents: List[DomDocument] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "pass": self.detection_pass.name,
            "candidates": len(self.candidates),
            "mean_score": round(self.mean_score, 2),
            "total_fields": self.total_fields,
            "aggregate": round(self.aggregate, 2),
        }


@dataclass(slots=True)
class DetectionStats:
    scoring_runs: int = 0
    passes_run: List[str] = field(default_factory=list)
    pass_results: List[PassResult] = field(default_factory=list)
    adopted_pass: Optional[str] = None
    terminated_by: Optional[str] = None
    terminated_after: Optional[str] = None
    multistep_matches: int = 0
    fallback_used: bool = False

    def to_dict(self) -> dict:
        return {
            "scoring_runs": self.scoring_runs,
            "passes_run": list(self.passes_run),
            "pass_results": [result.to_dict() for result in self.pass_results],
            "adopted_pass": self.adopted_pass,
            "terminated_by": self.terminated_by,
            "terminated_after": self.terminated_after,
            "multistep_matches": self.multistep_matches,
            "fallback_used": self.fallback_used,
        }


def summarize_pass(
    detection_pass: DetectionPass,
    candidates: List[Candidate],
    strong_score: float,
    documents: Optional[List[DomDocument]] = None,
) -> PassResult:
    count = len(candidates)
    mean = sum(c.score for c in candidates) / count if count else 0.0
    total_fields = sum(c.field_count for c in candidates)
    return PassResult(
        detection_pass=detection_pass,
        candidates=candidates,
        mean_score=mean,
        total_fields=total_fields,
        aggregate=mean + 2 * total_fields + 5 * count if count else 0.0,
        strong_hits=sum(1 for c in candidates if c.score > strong_score),
        documents=list(documents or []),
    )


def drop_nested(elements: List[DomNode]) -> List[DomNode]:
    """Deduplicate by identity and drop elements inside another selected one."""
    unique: List[DomNode] = []
    for element in elements:
        if element not in unique:
            unique.append(element)
    return [
        element
        for element in unique
        if not any(other is not element and other.contains(element) for other in unique)
    ]


def spatially_distinct(first: DomNode, second: DomNode, config: DetectionConfig) -> bool:
    """Top-left corners far enough apart; unknown boxes count as distinct."""
    a, b = first.rect, second.rect
    if a is None or b is None:
        return True
    return (
        abs(a.y - b.y) > config.distinct_vertical_px
        or abs(a.x - b.x) > config.distinct_horizontal_px
    )


def _semantic_form(element: DomNode) -> bool:
    if element.tag in {"form", "fieldset"} or element.role == "form":
        return True
    return "form" in (element.get("class") or "").lower()


def _inclusion_reason(
    candidate: Candidate, primary: Candidate, selected: List[Candidate], config: DetectionConfig
) -> Optional[str]:
    min_fields = max(
        config.additional_min_fields, int(primary.field_count * config.additional_field_ratio)
    )
    significant = max(
        config.significant_score_floor, primary.score * config.significant_score_ratio
    )
    if candidate.field_count >= min_fields and all(
        spatially_distinct(candidate.element, other.element, config) for other in selected
    ):
        return f"spatially distinct with {candidate.field_count} fields"
    if candidate.score >= significant:
        return f"high score ({candidate.score:g})"
    if _semantic_form(candidate.element) and candidate.field_count >= 2:
        return f"semantic form container with {candidate.field_count} fields"
    return None


def select_containers(
    candidates: List[Candidate],
    config: DetectionConfig,
    logger: Optional[logging.Logger] = None,
) -> List[Candidate]:
    """Pick the primary candidate plus any clearly separate additional ones.

    Nested candidates give way to their outermost selected ancestor first.
    When a single small container survives, a nearby ancestor holding
    noticeably more fields replaces it.
    """
    logger = logger or logging.getLogger("formsense.detection")
    ranked = rank(candidates, len(candidates))
    outer = drop_nested([candidate.element for candidate in ranked])
    ranked = [candidate for candidate in ranked if candidate.element in outer]
    if not ranked:
        return []

    primary = ranked[0]
    selected = [primary]
    for candidate in ranked[1 : config.additional_candidate_limit]:
        reason = _inclusion_reason(candidate, primary, selected, config)
        if reason is None:
            logger.debug("Skipped container %r (score %.1f)", candidate.element, candidate.score)
            continue
        logger.debug("Added container %r: %s", candidate.element, reason)
        selected.append(candidate)

    if len(selected) == 1 and primary.field_count < config.expansion_max_fields:
        expanded = find_expanded_container(primary.element)
        if expanded is not None:
            grown = score_element(expanded, weights=config.weights)
            if grown.field_count > primary.field_count * config.expansion_field_ratio:
                grown.reasons.append(f"expanded from <{primary.element.tag}>")
                logger.debug(
                    "Expanding %r to %r (%s fields)", primary.element, expanded, grown.field_count
                )
                selected = [grown]
    return selected


class ProgressiveDetector:
    """Runs scoring over timed passes with decreasing thresholds.

    Each pass waits its delay, checks for a captured schema signal, waits for
    structural stability, then scans every reachable document. The best pass
    result is kept; early termination ends the loop when the result is already
    convincing.
    """

    def __init__(
        self,
        source: DocumentSource,
        *,
        config: Optional[DetectionConfig] = None,
        traversal: Optional[FrameTraversal] = None,
        monitor: Optional[DynamicContentMonitor] = None,
        network: Optional[NetworkCapture] = None,
        scorer: Optional[CandidateScorer] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.source = source
        self.config = config or DetectionConfig()
        self.logger = logger or logging.getLogger("formsense.detection")
        self.traversal = traversal or FrameTraversal(
            same_origin_only=self.config.same_origin_only,
            max_depth=self.config.max_frame_depth,
            logger=self.logger,
        )
        self.monitor = monitor
        self.network = network
        self.scorer = scorer or CandidateScorer(
            self.config.weights,
            explicit_min_fields=self.config.explicit_min_fields,
            implicit_min_fields=self.config.implicit_min_fields,
            primary_limit=self.config.primary_limit,
            scan_limit=self.config.scan_limit,
            logger=self.logger,
        )
        self.sleep = sleep
        self.stats = DetectionStats()
        self.documents: List[DomDocument] = []
        self.candidates: Dict[DomNode, Candidate] = {}

    async def load_documents(self) -> List[DomDocument]:
        root = await self.source.load()
        self.documents = self.traversal.collect(root)
        return self.documents

    def _scan(self, documents: List[DomDocument], confidence_threshold: float) -> List[Candidate]:
        found: List[Candidate] = []
        for document in documents:
            self.stats.scoring_runs += 1
            try:
                found.extend(self.scorer.scan_document(document, confidence_threshold))
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Scoring failed for %s: %s", document.url, exc)
        return rank(merge_candidates(found), self.config.scan_limit * max(1, len(documents)))

    def _should_adopt(self, result: PassResult, best: Optional[PassResult]) -> bool:
        if best is None:
            return True
        if result.aggregate > best.aggregate + self.config.adopt_margin:
            return True
        previous = len(best.candidates)
        current = len(result.candidates)
        if previous == 0:
            return current > 0
        return current >= previous * self.config.adopt_growth_ratio

    def _termination_reason(
        self, index: int, result: PassResult, has_schema: bool
    ) -> Optional[str]:
        config = self.config
        count = len(result.candidates)
        if has_schema and index > 0 and count and result.mean_score > config.schema_mean_score:
            return "schema"
        if count >= config.strong_candidate_count and result.strong_hits >= config.strong_candidate_hits:
            return "strong"
        if (
            result.detection_pass.name == config.thorough_pass_name
            and count >= config.thorough_min_candidates
            and result.mean_score > config.thorough_mean_score
        ):
            return "thorough"
        return None

    async def _run_passes(self) -> Optional[PassResult]:
        best: Optional[PassResult] = None
        documents = self.documents
        for index, detection_pass in enumerate(self.config.passes):
            try:
                if detection_pass.delay_ms > 0:
                    await self.sleep(detection_pass.delay_ms / 1000.0)
                has_schema = bool(self.network and self.network.has_schema_signal())
                if self.monitor is not None:
                    bound = min(
                        self.config.stability.max_stability_wait_ms,
                        detection_pass.delay_ms + 1000,
                    )
                    await self.monitor.wait_for_stability(documents, bound)
                documents = await self.load_documents()
                candidates = self._scan(documents, detection_pass.confidence_threshold)
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Detection pass %s failed: %s", detection_pass.name, exc)
                continue

            result = summarize_pass(
                detection_pass, candidates, self.config.strong_candidate_score, documents
            )
            self.stats.passes_run.append(detection_pass.name)
            self.stats.pass_results.append(result)
            self.logger.debug(
                "Pass %s: %s candidates, mean %.1f, aggregate %.1f",
                detection_pass.name,
                len(candidates),
                result.mean_score,
                result.aggregate,
            )
            if self._should_adopt(result, best):
                best = result
                self.stats.adopted_pass = detection_pass.name
            reason = self._termination_reason(index, result, has_schema)
            if reason:
                self.stats.terminated_by = reason
                self.stats.terminated_after = detection_pass.name
                self.logger.info("Stopping after %s pass (%s)", detection_pass.name, reason)
                break
        return best

    def _finalize(self, elements: List[DomNode], documents: List[DomDocument]) -> List[DomNode]:
        selected = drop_nested(elements)
        if not selected:
            for document in documents:
                body = document.body
                if collect_field_elements(body):
                    self.stats.fallback_used = True
                    self.logger.info("No scored containers; falling back to %s body", document.url)
                    selected = [body]
                    break
        for element in selected:
            try:
                element.set_attribute(CONTAINER_MARKER_ATTR, "true")
            except Exception as exc:  # noqa: BLE001
                self.logger.debug("Unable to mark container %r: %s", element, exc)
        return selected

    async def _flush(self, documents: List[DomDocument]) -> None:
        for document in documents:
            await document.flush(self.logger)

    async def detect_form_like_containers(self) -> List[DomNode]:
        self.stats = DetectionStats()
        self.candidates = {}
        try:
            await self.load_documents()
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Unable to load documents: %s", exc)
            return []

        best = await self._run_passes()
        documents = self.documents
        if best is not None and best.documents:
            # Candidates belong to the adopted pass's snapshot, not the last one loaded.
            documents = best.documents
            self.documents = documents
        elements: List[DomNode] = []
        if best is not None:
            for candidate in select_containers(best.candidates, self.config, self.logger):
                self.candidates[candidate.element] = candidate
                elements.append(candidate.element)

        for document in documents:
            try:
                matches = detect_multistep_containers(
                    document,
                    min_score=self.config.min_multistep_score,
                    min_fields=self.config.explicit_min_fields,
                )
            except Exception as exc:  # noqa: BLE001
                self.logger.debug("Multi-step detection failed for %s: %s", document.url, exc)
                continue
            self.stats.multistep_matches += len(matches)
            for match in matches:
                elements.append(match.element)
                if match.element not in self.candidates:
                    self.candidates[match.element] = Candidate(
                        element=match.element,
                        score=match.score,
                        field_count=len(collect_field_elements(match.element)),
                        reasons=["multi-step container", *match.reasons],
                    )

        selected = self._finalize(elements, documents)
        await self._flush(documents)
        self.logger.info(
            "Detected %s container(s) after %s pass(es)",
            len(selected),
            len(self.stats.passes_run),
        )
        return selected

    async def detect_once(self) -> List[DomNode]:
        """Single immediate round with the primary scorer, no waiting."""
        self.stats = DetectionStats()
        self.candidates = {}
        try:
            documents = await self.load_documents()
        except Exception as exc:  # noqa: BLE001
            self.logger.warning("Unable to load documents: %s", exc)
            return []
        threshold = self.config.passes[0].confidence_threshold if self.config.passes else 0.8
        found: List[Candidate] = []
        for document in documents:
            self.stats.scoring_runs += 1
            try:
                found.extend(self.scorer.score_document(document, threshold))
            except Exception as exc:  # noqa: BLE001
                self.logger.warning("Scoring failed for %s: %s", document.url, exc)
        ranked = rank(merge_candidates(found), self.config.primary_limit)
        chosen = select_containers(ranked, self.config, self.logger)
        self.candidates = {candidate.element: candidate for candidate in chosen}
        selected = self._finalize([candidate.element for candidate in chosen], documents)
        await self._flush(documents)
        return selected

    def describe(self, elements: List[DomNode]) -> List[dict]:
        described = []
        for element in elements:
            candidate = self.candidates.get(element)
            if candidate is not None:
                described.append(candidate.to_dict())
            else:
                described.append(
                    {"tag": element.tag, "id": element.element_id, "uid": element.uid, "score": None}
                )
        return described


__all__ = [
    "CONTAINER_MARKER_ATTR",
    "DetectionStats",
    "DocumentSource",
    "PassResult",
    "ProgressiveDetector",
    "drop_nested",
    "select_containers",
    "spatially_distinct",
    "summarize_pass",
]
