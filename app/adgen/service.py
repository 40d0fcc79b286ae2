"""
Ad Studio Service
Runs the analyze -> generate -> overlay -> persist pipeline for uploaded ads.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from functools import partial
from typing import List, Optional

import httpx

from ..records import OriginalAd, RecordStore
from .clients import BaseGenerator, InlineImage, get_generator
from .download import download_binary
from .orchestrator import GenerationRequest, VariantOrchestrator
from .postprocess import PostProcessor

logger = logging.getLogger(__name__)


class RecordNotFound(LookupError):
    """Raised when a referenced ad or logo does not exist."""


@dataclass
class GenerationOutcome:
    """Result of a variant generation run."""
    status: str = "completed"
    original_ad_id: int = 0
    requested: int = 0
    generated: int = 0
    generated_urls: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == "completed" and self.generated > 0


class AdStudioService:
    """
    Service for generating ad variants.
    Takes an uploaded ad, generates variants, overlays enabled logos and stores the results.
    """

    def __init__(
        self,
        storage_service,
        records: RecordStore,
        generator: Optional[BaseGenerator] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize AdStudioService.

        Args:
            storage_service: StorageService instance for file operations
            records: RecordStore for ads, logos and generated variants
            generator: Image generator; defaults to Gemini on the shared client
            http: Shared async HTTP client for upstream calls and downloads
        """
        self.storage = storage_service
        self.records = records
        self.http = http or httpx.AsyncClient()
        self.generator = generator or get_generator("gemini", http=self.http)
        downloader = partial(download_binary, self.http)
        self.orchestrator = VariantOrchestrator(self.generator, downloader)
        self.post_processor = PostProcessor(downloader)

    async def aclose(self) -> None:
        await self.http.aclose()

    async def _get_ad(self, ad_id: int) -> OriginalAd:
        ad = await asyncio.to_thread(self.records.get_original_ad, ad_id)
        if ad is None:
            raise RecordNotFound(f"Original ad {ad_id} not found")
        return ad

    async def analyze_ad(self, ad_id: int) -> str:
        """Describe an uploaded ad with Gemini and save the result as its prompt."""
        ad = await self._get_ad(ad_id)
        data = await asyncio.to_thread(self.storage.get_file, ad.file_key)
        if data is None:
            raise RecordNotFound(f"Stored file for ad {ad_id} is missing: {ad.file_key}")

        analysis = await self.generator.analyze_image(InlineImage(data, ad.mime_type or "image/png"))
        await asyncio.to_thread(self.records.update_analysis, ad_id, analysis)
        return analysis

    async def generate_for_ad(self, ad_id: int, prompt: Optional[str] = None, count: int = 3) -> GenerationOutcome:
        """
        Generate `count` variants of an ad, overlay enabled logos and persist them.

        Raises:
            RecordNotFound: if the ad does not exist
            ValueError: if no prompt is given and the ad was never analyzed
            AllVariantsFailed: if no variant could be generated
        """
        ad = await self._get_ad(ad_id)
        prompt = prompt or ad.analysis_prompt
        if not prompt:
            raise ValueError(f"No prompt given and ad {ad_id} has not been analyzed")

        logos = await asyncio.to_thread(self.records.list_logos, enabled_only=True)
        logo_urls = [logo.file_url for logo in logos]
        logger.info(f"Starting variant generation for ad {ad_id}: {count} variant(s), {len(logo_urls)} enabled logo(s)")

        request = GenerationRequest(
            source_image_url=ad.file_url,
            prompt=prompt,
            overlay_urls=logo_urls,
            variant_count=count,
        )
        variants = await self.orchestrator.generate_variants(request)
        processed = await self.post_processor.overlay_many(variants, request.overlay_urls)

        outcome = GenerationOutcome(original_ad_id=ad_id, requested=count)
        for i, data in enumerate(processed, 1):
            file_key = f"generated/{ad_id}/{uuid.uuid4().hex}-variant-{i}.png"
            url = await asyncio.to_thread(self.storage.upload_file, file_key, data, "image/png")
            await asyncio.to_thread(self.records.create_generated_ad, ad_id, file_key, url, prompt)
            outcome.generated_urls.append(url)
            logger.info(f"Variant {i} saved: {file_key}")

        outcome.generated = len(outcome.generated_urls)
        logger.info(f"Successfully generated {outcome.generated}/{count} variant(s) for ad {ad_id}")
        return outcome
