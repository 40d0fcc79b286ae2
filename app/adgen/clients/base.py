"""
Base Generator class for the ad variant pipeline.
"""
from dataclasses import dataclass
from typing import List, Optional


@dataclass(frozen=True)
class InlineImage:
    """An image passed inline to the upstream model."""
    data: bytes
    mime_type: str = "image/png"


@dataclass
class AttemptResult:
    """Outcome of one variant attempt, after its retries settled."""
    index: int
    data: Optional[bytes] = None
    reason: str = ""
    retryable: bool = False

    @property
    def success(self) -> bool:
        return self.data is not None

    @classmethod
    def ok(cls, index: int, data: bytes) -> "AttemptResult":
        return cls(index=index, data=data)

    @classmethod
    def failed(cls, index: int, reason: str, retryable: bool = False) -> "AttemptResult":
        return cls(index=index, reason=reason, retryable=retryable)


class BaseGenerator:
    """Abstract base class for image generators."""

    async def generate_image(self, prompt: str, reference_images: List[InlineImage]) -> bytes:
        """
        Generate one image from a prompt and inline reference images.
        Must be implemented by subclasses.

        Args:
            prompt: Full text prompt for this variant
            reference_images: Already-downloaded reference images

        Returns:
            Raw image bytes

        Raises:
            GenerationError: once retries are exhausted or on a terminal failure
        """
        raise NotImplementedError("Subclasses must implement generate_image")

    async def analyze_image(self, image: InlineImage) -> str:
        """Describe an advertisement image as a reusable generation prompt."""
        raise NotImplementedError("Subclasses must implement analyze_image")

    def is_configured(self) -> bool:
        return True

    def get_missing_config(self) -> list:
        return []
