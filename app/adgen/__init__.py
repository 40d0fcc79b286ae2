"""
Ad Variant Generation Module
Gemini-powered ad variant generation integrated into the FastAPI app.
"""
from .clients import AttemptResult, get_generator
from .errors import AllVariantsFailed, GenerationError
from .orchestrator import GenerationRequest, VariantOrchestrator
from .postprocess import PostProcessor
from .retry import RetryingApiClient, RetryPolicy
from .service import AdStudioService, GenerationOutcome, RecordNotFound

__all__ = [
    "AdStudioService",
    "AllVariantsFailed",
    "AttemptResult",
    "GenerationError",
    "GenerationOutcome",
    "GenerationRequest",
    "PostProcessor",
    "RecordNotFound",
    "RetryPolicy",
    "RetryingApiClient",
    "VariantOrchestrator",
    "get_generator",
]
