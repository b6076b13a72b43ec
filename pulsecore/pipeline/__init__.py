"""
Correlation Pipeline

Redaction, fingerprinting, routing and the create-or-attach decision.
"""

from .redaction import BUILTIN_PROFILES, RedactionProfile, RedactionResult, Redactor
from .fingerprint import FingerprintInput, extract_fingerprint_input, generate_fingerprint
from .router import compute_initial_routing
from .context import PipelineContext
from .correlator import BatchResult, CorrelationResult, Correlator

__all__ = [
    "BUILTIN_PROFILES",
    "BatchResult",
    "CorrelationResult",
    "Correlator",
    "FingerprintInput",
    "PipelineContext",
    "RedactionProfile",
    "RedactionResult",
    "Redactor",
    "compute_initial_routing",
    "extract_fingerprint_input",
    "generate_fingerprint",
]
