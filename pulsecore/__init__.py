"""pulsecore Package"""

__version__ = "0.1.0"

from .pipeline import Correlator, PipelineContext  # noqa: E402

__all__ = ["Correlator", "PipelineContext", "__version__"]
