"""
Variant Orchestrator
Runs independent generation attempts concurrently and aggregates partial successes.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Tuple

from .clients import AttemptResult, BaseGenerator, InlineImage
from .errors import AllVariantsFailed, GenerationError, ReferenceImagesUnavailable

logger = logging.getLogger(__name__)

Downloader = Callable[[str], Awaitable[Tuple[bytes, str]]]

# Reference images above this size are skipped to stay within request limits
MAX_REFERENCE_BYTES = 15 * 1024 * 1024

VARIATION_INSTRUCTIONS = [
    "Create a SIGNIFICANTLY different composition - change the camera angle (try a different "
    "perspective like top-down, side view, or close-up), rearrange main elements to different "
    "positions, modify the layout structure (switch from horizontal to vertical arrangement or vice "
    "versa), and experiment with different color saturation levels while keeping the same color palette.",
    "Make SUBSTANTIAL visual changes - alter the background style (change from solid to gradient, or "
    "add texture/pattern), reposition all text elements to different areas, change the visual hierarchy "
    "by making different elements prominent, adjust lighting and shadows dramatically, and vary the "
    "spacing between elements significantly.",
    "Create a DISTINCT variation - change the overall mood and atmosphere (make it more energetic, calm, "
    "or dramatic), use different visual effects or filters, rearrange the composition to focus on "
    "different elements, modify the color temperature (warmer or cooler tones), and change the text "
    "placement and sizing to create a fresh look.",
]

VARIANT_PROMPT_TEMPLATE = """Create a high-quality advertisement image based on the following description:

{analysis}

Variation {number}: {instruction}

IMPORTANT: This variation should be VISIBLY DIFFERENT from the original while maintaining the same marketing message and brand identity. Make creative and substantial changes to create a unique variation.

CRITICAL REQUIREMENTS FOR TEXT:
- ALL text in the image MUST be in ENGLISH ONLY
- Use professional, native English marketing copy, translated with precision and the original tone
- NO Chinese, Japanese, or any other non-English characters
- Text should be clear, legible, high-quality, and properly formatted
- If the original text is already in English, preserve it exactly or improve it slightly

Focus on creating a professional, polished advertisement with EXCEPTIONAL English text quality."""


def variation_instruction(index: int) -> str:
    """Instruction for the zero-based variant `index`, cycling through the list."""
    return VARIATION_INSTRUCTIONS[index % len(VARIATION_INSTRUCTIONS)]


def build_variant_prompt(analysis: str, index: int) -> str:
    return VARIANT_PROMPT_TEMPLATE.format(
        analysis=analysis,
        number=index + 1,
        instruction=variation_instruction(index),
    )


@dataclass(frozen=True)
class GenerationRequest:
    """Inputs for one orchestration call."""
    source_image_url: str
    prompt: str
    overlay_urls: Tuple[str, ...] = field(default_factory=tuple)
    variant_count: int = 3

    def __post_init__(self):
        if self.variant_count < 1:
            raise ValueError("variant_count must be a positive integer")
        # Accept any sequence but store an immutable one.
        object.__setattr__(self, "overlay_urls", tuple(self.overlay_urls))

    @property
    def reference_urls(self) -> List[str]:
        # Logos are composited afterwards, so only the source ad is a reference.
        return [self.source_image_url] if self.source_image_url else []


class VariantOrchestrator:
    """
    Fires `variant_count` generation attempts concurrently.

    The call only fails when every attempt fails. A partial result is
    returned as a success and the shortfall is logged.
    """

    def __init__(self, generator: BaseGenerator, downloader: Downloader):
        self.generator = generator
        self.downloader = downloader

    async def _load_references(self, index: int, urls: List[str]) -> List[InlineImage]:
        images = []
        for n, url in enumerate(urls, 1):
            try:
                data, mime_type = await self.downloader(url)
            except Exception as e:
                logger.warning(f"Variant {index + 1}: reference image {n}/{len(urls)} download failed, skipping: {url} ({e})")
                continue
            if len(data) > MAX_REFERENCE_BYTES:
                logger.warning(f"Variant {index + 1}: reference image {n}/{len(urls)} is too large ({len(data) // (1024 * 1024)}MB), skipping")
                continue
            images.append(InlineImage(data=data, mime_type=mime_type))

        if urls and not images:
            raise ReferenceImagesUnavailable("none of the reference images could be downloaded")
        if len(images) < len(urls):
            logger.warning(f"Variant {index + 1}: using {len(images)} of {len(urls)} reference image(s)")
        return images

    async def _attempt(self, index: int, request: GenerationRequest) -> AttemptResult:
        logger.info(f"Starting variant {index + 1}/{request.variant_count}")
        try:
            references = await self._load_references(index, request.reference_urls)
            prompt = build_variant_prompt(request.prompt, index)
            data = await self.generator.generate_image(prompt, references)
        except GenerationError as e:
            logger.error(f"Variant {index + 1} failed: {e}")
            return AttemptResult.failed(index, str(e), e.retryable)

        logger.info(f"Variant {index + 1}/{request.variant_count} generated ({len(data) // 1024} KB)")
        return AttemptResult.ok(index, data)

    async def run_attempts(self, request: GenerationRequest) -> List[AttemptResult]:
        """Run every attempt to completion; one result per variant index."""
        settled = await asyncio.gather(
            *(self._attempt(i, request) for i in range(request.variant_count)),
            return_exceptions=True,
        )

        results = []
        for i, outcome in enumerate(settled):
            if isinstance(outcome, AttemptResult):
                results.append(outcome)
            elif isinstance(outcome, Exception):
                logger.error(f"Variant {i + 1} raised unexpectedly: {outcome}", exc_info=outcome)
                results.append(AttemptResult.failed(i, f"unexpected error: {outcome}"))
            else:
                raise outcome
        return results

    async def generate_variants(self, request: GenerationRequest) -> List[bytes]:
        """
        Generate variants for `request`.

        Returns:
            Successful images in variant index order (1 to variant_count of them)

        Raises:
            AllVariantsFailed: when no attempt succeeded
        """
        logger.info(f"Generating {request.variant_count} variant(s) in parallel")
        results = await self.run_attempts(request)

        successes = [r for r in results if r.success]
        failures = [r for r in results if not r.success]
        reasons = [f"variant {r.index + 1}: {r.reason}" for r in failures]

        if not successes:
            raise AllVariantsFailed(reasons)

        if failures:
            omitted = ", ".join(str(r.index + 1) for r in failures)
            logger.warning(
                f"{len(failures)} variant(s) failed (omitted: {omitted}), "
                f"returning {len(successes)}/{request.variant_count}. Details: {'; '.join(reasons)}"
            )

        logger.info(f"Parallel generation complete: {len(successes)}/{request.variant_count} succeeded")
        return [r.data for r in successes]
