"""
Post Processor - composites logo overlays onto generated variants.

Logos are laid out in a single row anchored to the bottom-right corner of
the base image. Logos that cannot be fetched or decoded are skipped.
"""
import io
import logging
from typing import List, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from .orchestrator import Downloader

logger = logging.getLogger(__name__)

DEFAULT_LOGO_RATIO = 0.15
DEFAULT_MARGIN = 20


def contain_square(img: Image.Image, size: int) -> Image.Image:
    """Fit `img` inside a transparent `size` x `size` square, keeping aspect ratio.

    Each side is at least 1px, so very wide or tall logos still fit.
    """
    img = img.convert("RGBA")
    scale = min(size / img.width, size / img.height)
    fitted_size = (max(1, round(img.width * scale)), max(1, round(img.height * scale)))
    fitted = img.resize(fitted_size, Image.Resampling.LANCZOS)
    square = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    square.paste(fitted, ((size - fitted.width) // 2, (size - fitted.height) // 2))
    return square


def overlay_layout(
    width: int,
    height: int,
    count: int,
    logo_size: int,
    margin: int = DEFAULT_MARGIN,
) -> Tuple[int, List[Tuple[int, int]]]:
    """
    Compute the logo box size and top-left positions for `count` logos.

    The row is anchored bottom-right with `margin` at the edges and between
    logos. The box shrinks when the row would not fit inside the base.
    Returns (size, positions); size is 0 when nothing fits.
    """
    if count <= 0:
        return 0, []

    fit_w = (width - margin * (count + 1)) // count
    fit_h = height - 2 * margin
    size = min(logo_size, fit_w, fit_h)
    if size < 1:
        return 0, []

    total_width = size * count + margin * (count - 1)
    start_x = width - total_width - margin
    start_y = height - size - margin
    return size, [(start_x + (size + margin) * i, start_y) for i in range(count)]


def _decode(data: bytes, label: str) -> Optional[Image.Image]:
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
        return img
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        logger.error(f"[Logo Overlay] Could not decode {label}: {e}")
        return None


def _fit_logos(logos: Sequence[Image.Image], size: int) -> List[Tuple[Image.Image, Image.Image]]:
    fitted = []
    for i, logo in enumerate(logos, 1):
        try:
            fitted.append((logo, contain_square(logo, size)))
        except (ValueError, OSError) as e:
            logger.error(f"[Logo Overlay] Skipping logo {i}: {e}")
    return fitted


def composite_logos(
    base_data: bytes,
    logos: Sequence[Image.Image],
    logo_size: Optional[int] = None,
    margin: int = DEFAULT_MARGIN,
) -> bytes:
    """Composite already-decoded logos onto `base_data` and encode as PNG."""
    if not logos:
        return base_data

    base = _decode(base_data, "base image")
    if base is None:
        return base_data

    canvas = base.convert("RGBA")
    requested = logo_size or int(canvas.width * DEFAULT_LOGO_RATIO)
    size, positions = overlay_layout(canvas.width, canvas.height, len(logos), requested, margin)
    if not size:
        logger.warning(f"[Logo Overlay] No room for {len(logos)} logo(s) on {canvas.width}x{canvas.height} image, returning original")
        return base_data

    squares = _fit_logos(logos, size)
    if len(squares) < len(logos):
        # Lay the row out again around the logos that survived
        usable = [logo for logo, _ in squares]
        size, positions = overlay_layout(canvas.width, canvas.height, len(usable), requested, margin)
        squares = _fit_logos(usable, size) if size else []
    if not squares:
        logger.warning("[Logo Overlay] No logos could be fitted, returning original")
        return base_data

    for (_, square), position in zip(squares, positions):
        canvas.alpha_composite(square, dest=position)

    out = io.BytesIO()
    canvas.save(out, "PNG")
    logger.info(f"[Logo Overlay] Successfully overlaid {len(squares)} logo(s) at {size}px")
    return out.getvalue()


class PostProcessor:
    """Downloads overlay images and composites them onto generated images."""

    def __init__(
        self,
        downloader: Downloader,
        logo_size: Optional[int] = None,
        margin: int = DEFAULT_MARGIN,
    ):
        self.downloader = downloader
        self.logo_size = logo_size
        self.margin = margin

    async def fetch_overlays(self, overlay_urls: Sequence[str]) -> List[Image.Image]:
        logos = []
        for url in overlay_urls:
            try:
                data, _ = await self.downloader(url)
            except Exception as e:
                logger.error(f"[Logo Overlay] Failed to download logo: {url} ({e})")
                continue
            img = _decode(data, f"logo {url}")
            if img is not None:
                logos.append(img)
        return logos

    async def overlay(self, base_data: bytes, overlay_urls: Sequence[str]) -> bytes:
        """
        Overlay logos from `overlay_urls` onto `base_data`.

        Returns `base_data` unchanged when the list is empty or no logo
        could be fetched; otherwise a PNG.
        """
        if not overlay_urls:
            return base_data

        logos = await self.fetch_overlays(overlay_urls)
        if not logos:
            logger.warning("[Logo Overlay] No logos could be processed, returning original image")
            return base_data
        return composite_logos(base_data, logos, self.logo_size, self.margin)

    async def overlay_many(self, images: Sequence[bytes], overlay_urls: Sequence[str]) -> List[bytes]:
        """Overlay the same logos onto every image, downloading them once."""
        if not overlay_urls:
            return list(images)

        logos = await self.fetch_overlays(overlay_urls)
        if not logos:
            logger.warning("[Logo Overlay] No logos could be processed, returning original images")
            return list(images)

        results = []
        for i, image in enumerate(images, 1):
            logger.info(f"[Logo Overlay] Processing image {i}/{len(images)}")
            results.append(composite_logos(image, logos, self.logo_size, self.margin))
        return results
