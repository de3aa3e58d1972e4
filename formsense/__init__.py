"""Form detection and field registry for live web pages."""

from importlib import metadata

from .config import DetectionConfig, DetectionPass, ScoringWeights, StabilityConfig, load_config
from .detection import ProgressiveDetector
from .dom import DomDocument, DomNode, StaticDocumentSource, parse_html
from .frames import FrameTraversal
from .models import Field, FieldOption, FieldType, FieldValidation
from .monitor import DynamicContentMonitor, ManualChangeFeed, MutationRecord
from .network_capture import NetworkCapture
from .registry import UnifiedFieldRegistry
from .scoring import Candidate, CandidateScorer
from .session import DetectionSession

try:
    __version__ = metadata.version("formsense")
except metadata.PackageNotFoundError:  # pragma: no cover
    __version__ = "0.0.0"

__all__ = [
    "Candidate",
    "CandidateScorer",
    "DetectionConfig",
    "DetectionPass",
    "DetectionSession",
    "DomDocument",
    "DomNode",
    "DynamicContentMonitor",
    "Field",
    "FieldOption",
    "FieldType",
    "FieldValidation",
    "FrameTraversal",
    "ManualChangeFeed",
    "MutationRecord",
    "NetworkCapture",
    "ProgressiveDetector",
    "ScoringWeights",
    "StabilityConfig",
    "StaticDocumentSource",
    "UnifiedFieldRegistry",
    "__version__",
    "load_config",
    "parse_html",
]
