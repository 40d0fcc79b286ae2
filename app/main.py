import asyncio
import logging
import mimetypes
import os
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, File, Header, HTTPException, Query, UploadFile
from fastapi.responses import Response
from pydantic import BaseModel, Field

from .adgen import AdStudioService, AllVariantsFailed, GenerationError, RecordNotFound
from .records import RecordStore
from .storage import StorageService

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

VALID_IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.webp'}
GENERATION_TIMEOUT_SECONDS = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "600"))

storage = StorageService()
records = RecordStore(os.getenv("RECORDS_DB_PATH", "records.db"))
service = AdStudioService(storage, records)


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await service.aclose()
    records.close()


app = FastAPI(
    title="Ad Variant Studio",
    description="Upload ads, generate AI variants with Gemini and overlay brand logos",
    version="1.0.0",
    lifespan=lifespan,
)

# Security Configuration
API_KEY = os.getenv("API_KEY", "default-insecure-key")


def get_api_key(
    api_key_header: str = Header(None, alias="X-API-Key"),
    api_key_query: str = Query(None, alias="api_key")
):
    """
    Validate API Key from Header or Query Parameter.
    """
    if not API_KEY:
        return True  # Open if no key configured (dev mode)

    key = api_key_header or api_key_query
    if key != API_KEY:
        raise HTTPException(status_code=403, detail="Invalid API Key")
    return key


def _require_image(file: UploadFile) -> str:
    filename = Path(file.filename or "").name
    if Path(filename).suffix.lower() not in VALID_IMAGE_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type: {filename or '(none)'}. Use {', '.join(sorted(VALID_IMAGE_EXTENSIONS))}",
        )
    return filename


def _media_type(filename: str, fallback: str = "application/octet-stream") -> str:
    media_type, _ = mimetypes.guess_type(filename)
    return media_type or fallback


# =============================================================================
# File Storage Endpoints
# =============================================================================

@app.get("/files/{filename:path}")
def get_file(
    filename: str,
    api_key_query: str = Query(None, alias="api_key"),
    api_key_header: str = Header(None, alias="X-API-Key")
):
    """
    Retrieve a file. Public for Images. Protected for others.
    """
    is_image = filename.lower().endswith(('.png', '.jpg', '.jpeg', '.gif', '.bmp', '.webp'))

    if not is_image:
        key = api_key_query or api_key_header
        if API_KEY and key != API_KEY:
            raise HTTPException(status_code=403, detail="Invalid API Key. Required for non-image files.")

    try:
        file_content = storage.get_file(filename)
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
    if file_content is None:
        raise HTTPException(status_code=404, detail="File not found")

    return Response(content=file_content, media_type=_media_type(filename))


@app.post("/files")
async def upload_file(
    file: UploadFile = File(...),
    folder: str = Query(None, description="Target folder path"),
    auth: str = Depends(get_api_key)
):
    """
    Upload a file to storage. Requires API Key.
    """
    try:
        content = await file.read()
        filename = file.filename
        if folder:
            # Sanitize folder path (basic)
            folder = folder.strip("/").replace("\\", "/")
            filename = f"{folder}/{filename}"

        url = await asyncio.to_thread(storage.upload_file, filename, content, file.content_type or _media_type(filename))
        return {"filename": filename, "url": url, "status": "uploaded", "mode": storage.mode}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


@app.get("/files")
def list_files(prefix: str = Query("", description="Only keys under this folder, e.g. generated/")):
    """
    List all available files. Public Access.
    """
    return {"files": storage.list_files(prefix.lstrip("/"))}


@app.delete("/files/{filename:path}")
def delete_file(
    filename: str,
    auth: str = Depends(get_api_key)
):
    """
    Delete a file. Requires API Key.
    """
    try:
        storage.delete_file(filename)
        return {"filename": filename, "status": "deleted"}
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))


# =============================================================================
# Original Ad Endpoints
# =============================================================================

@app.post("/ads", tags=["Ads"])
async def upload_ad(
    file: UploadFile = File(...),
    country: str = Query(None, description="Market/country label for the ad"),
    auth: str = Depends(get_api_key)
):
    """
    Upload an original advertisement image. Requires API Key.
    """
    filename = _require_image(file)
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    mime_type = file.content_type or _media_type(filename, "image/png")
    file_key = f"originals/{uuid.uuid4().hex}-{filename}"
    url = await asyncio.to_thread(storage.upload_file, file_key, content, mime_type)
    ad = await asyncio.to_thread(records.create_original_ad, file_key, url, filename, mime_type, country)
    logger.info(f"Original ad {ad.id} uploaded: {file_key}")
    return ad


@app.get("/ads", tags=["Ads"])
def list_ads():
    return {"ads": records.list_original_ads()}


@app.get("/ads/{ad_id}", tags=["Ads"])
def get_ad(ad_id: int):
    ad = records.get_original_ad(ad_id)
    if ad is None:
        raise HTTPException(status_code=404, detail="Ad not found")
    return ad


@app.delete("/ads/{ad_id}", tags=["Ads"])
def delete_ad(ad_id: int, auth: str = Depends(get_api_key)):
    """
    Delete an original ad and its generated variants. Requires API Key.
    """
    ad = records.get_original_ad(ad_id)
    if ad is None:
        raise HTTPException(status_code=404, detail="Ad not found")

    for generated in records.list_generated_ads(ad_id):
        storage.delete_file(generated.file_key)
    storage.delete_file(ad.file_key)
    records.delete_original_ad(ad_id)
    return {"id": ad_id, "status": "deleted"}


# =============================================================================
# Gemini Endpoints
# =============================================================================

class AnalyzeResponse(BaseModel):
    """Analysis prompt generated for an ad."""
    id: int
    prompt: str


class GenerateRequest(BaseModel):
    """Request body for variant generation."""
    prompt: Optional[str] = Field(default=None, description="Generation prompt; defaults to the ad's saved analysis")
    count: int = Field(default=3, ge=1, le=10, description="Number of variants to generate")

    class Config:
        json_schema_extra = {
            "example": {
                "prompt": "A bright summer sale banner with a bold headline...",
                "count": 3
            }
        }


class GenerateResponse(BaseModel):
    """Response from a variant generation run."""
    success: bool
    status: str
    original_ad_id: int
    requested: int
    generated: int
    generated_urls: List[str]
    error: Optional[str] = None


def _ensure_generator_configured():
    if not service.generator.is_configured():
        missing = service.generator.get_missing_config()
        raise HTTPException(status_code=500, detail=f"Missing required environment variables: {', '.join(missing)}")


@app.post("/ads/{ad_id}/analyze", response_model=AnalyzeResponse, tags=["Gemini"])
async def analyze_ad(ad_id: int, auth: str = Depends(get_api_key)):
    """
    Analyze an uploaded ad and save the resulting generation prompt.

    Requires API Key authentication.
    """
    _ensure_generator_configured()
    try:
        prompt = await service.analyze_ad(ad_id)
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except GenerationError as e:
        logger.error(f"Analysis failed for ad {ad_id}: {e}")
        raise HTTPException(status_code=502, detail=f"Image analysis failed: {e}")
    return AnalyzeResponse(id=ad_id, prompt=prompt)


class AnalysisUpdateRequest(BaseModel):
    """An edited generation prompt for an ad."""
    prompt: str = Field(..., min_length=1, description="Prompt used for future generations")


@app.put("/ads/{ad_id}/analysis", response_model=AnalyzeResponse, tags=["Ads"])
def update_analysis(ad_id: int, request: AnalysisUpdateRequest, auth: str = Depends(get_api_key)):
    """
    Save an edited analysis prompt without re-running Gemini. Requires API Key.
    """
    if records.get_original_ad(ad_id) is None:
        raise HTTPException(status_code=404, detail="Ad not found")
    records.update_analysis(ad_id, request.prompt)
    return AnalyzeResponse(id=ad_id, prompt=request.prompt)


@app.post("/ads/{ad_id}/variants", response_model=GenerateResponse, tags=["Gemini"])
async def generate_variants(ad_id: int, request: GenerateRequest, auth: str = Depends(get_api_key)):
    """
    Generate variants synchronously.

    Runs generation, logo overlay and storage for the ad. Partial success
    (some variants failed) is still a successful response; `generated`
    reports how many were produced.

    Requires API Key authentication.
    """
    _ensure_generator_configured()
    try:
        outcome = await asyncio.wait_for(
            service.generate_for_ad(ad_id, request.prompt, request.count),
            timeout=GENERATION_TIMEOUT_SECONDS,
        )
    except RecordNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except asyncio.TimeoutError:
        logger.error(f"Generation for ad {ad_id} timed out after {GENERATION_TIMEOUT_SECONDS:.0f}s")
        raise HTTPException(status_code=504, detail="Generation timed out, please try again later")
    except AllVariantsFailed as e:
        logger.error(f"Generation failed for ad {ad_id}: {e}")
        raise HTTPException(status_code=502, detail=f"Generation failed: {e}")
    except GenerationError as e:
        raise HTTPException(status_code=502, detail=f"Generation failed: {e}")

    return GenerateResponse(success=outcome.success, **vars(outcome))


# Store for tracking background generation jobs
generation_jobs: dict = {}


@app.post("/ads/{ad_id}/variants/async", tags=["Gemini"])
async def generate_variants_async(
    ad_id: int,
    request: GenerateRequest,
    background_tasks: BackgroundTasks,
    auth: str = Depends(get_api_key)
):
    """
    Generate variants in the background.

    Returns immediately with a job ID.
    Use GET /jobs/{job_id} to check the status of the operation.

    Requires API Key authentication.
    """
    _ensure_generator_configured()
    if await asyncio.to_thread(records.get_original_ad, ad_id) is None:
        raise HTTPException(status_code=404, detail="Ad not found")

    job_id = str(uuid.uuid4())
    generation_jobs[job_id] = {
        "status": "running",
        "original_ad_id": ad_id,
        "requested": request.count,
        "generated": 0,
        "generated_urls": [],
        "error": None
    }

    async def run_generation_job():
        try:
            outcome = await asyncio.wait_for(
                service.generate_for_ad(ad_id, request.prompt, request.count),
                timeout=GENERATION_TIMEOUT_SECONDS,
            )
            generation_jobs[job_id] = dict(vars(outcome))
        except asyncio.TimeoutError:
            generation_jobs[job_id]["status"] = "failed"
            generation_jobs[job_id]["error"] = "Generation timed out"
        except Exception as e:
            logger.error(f"Generation job {job_id} failed: {e}")
            generation_jobs[job_id]["status"] = "failed"
            generation_jobs[job_id]["error"] = str(e)

    background_tasks.add_task(run_generation_job)

    return {
        "job_id": job_id,
        "status": "started",
        "message": "Generation job started. Use GET /jobs/{job_id} to check progress."
    }


@app.get("/jobs/{job_id}", response_model=GenerateResponse, tags=["Gemini"])
def get_job_status(job_id: str):
    """
    Get the status of a background generation job.
    """
    if job_id not in generation_jobs:
        raise HTTPException(status_code=404, detail="Job not found")

    job = generation_jobs[job_id]
    return GenerateResponse(
        success=job["status"] == "completed" and job["generated"] > 0,
        **job
    )


@app.get("/providers", tags=["Gemini"])
def list_providers():
    """
    List available AI providers and their configuration status.
    """
    from .adgen.clients.gemini import GeminiGenerator

    gemini = GeminiGenerator()
    return {
        "providers": [
            {
                "name": "gemini",
                "description": f"Google Gemini with {gemini.model} model",
                "configured": gemini.is_configured(),
                "image_models": gemini.image_models,
                "analysis_models": gemini.analysis_models,
                "required_env_vars": [GeminiGenerator.ENV_API_KEY],
                "optional_env_vars": [
                    GeminiGenerator.ENV_IMAGE_MODELS,
                    GeminiGenerator.ENV_ANALYSIS_MODELS,
                    GeminiGenerator.ENV_API_BASE,
                ],
                "missing": gemini.get_missing_config()
            }
        ]
    }


# =============================================================================
# Logo Endpoints
# =============================================================================

class LogoToggleRequest(BaseModel):
    enabled: bool


@app.post("/logos", tags=["Logos"])
async def upload_logo(
    file: UploadFile = File(...),
    name: str = Query(..., description="Display name for the logo"),
    description: str = Query(None, description="Optional note about the logo"),
    enabled: bool = Query(False, description="Overlay this logo on new variants"),
    auth: str = Depends(get_api_key)
):
    """
    Upload a logo to overlay on generated variants. Requires API Key.
    """
    filename = _require_image(file)
    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    file_key = f"logos/{uuid.uuid4().hex}-{filename}"
    url = await asyncio.to_thread(storage.upload_file, file_key, content, file.content_type or _media_type(filename, "image/png"))
    return await asyncio.to_thread(records.create_logo, name, file_key, url, enabled, description)


@app.get("/logos", tags=["Logos"])
def list_logos(enabled_only: bool = Query(False)):
    return {"logos": records.list_logos(enabled_only=enabled_only)}


@app.patch("/logos/{logo_id}", tags=["Logos"])
def toggle_logo(logo_id: int, request: LogoToggleRequest, auth: str = Depends(get_api_key)):
    """
    Enable or disable a logo. Requires API Key.
    """
    if records.get_logo(logo_id) is None:
        raise HTTPException(status_code=404, detail="Logo not found")
    records.set_logo_enabled(logo_id, request.enabled)
    return {"id": logo_id, "enabled": request.enabled}


@app.delete("/logos/{logo_id}", tags=["Logos"])
def delete_logo(logo_id: int, auth: str = Depends(get_api_key)):
    """
    Delete a logo. Requires API Key.
    """
    logo = records.get_logo(logo_id)
    if logo is None:
        raise HTTPException(status_code=404, detail="Logo not found")
    storage.delete_file(logo.file_key)
    records.delete_logo(logo_id)
    return {"id": logo_id, "status": "deleted"}


# =============================================================================
# Generated Ad Endpoints
# =============================================================================

@app.get("/generated", tags=["Generated"])
def list_generated(original_ad_id: int = Query(None, description="Only variants of this ad")):
    return {"generated": records.list_generated_ads(original_ad_id)}


@app.get("/generated/{generated_id}/download", tags=["Generated"])
def download_generated(generated_id: int):
    """
    Download a generated variant as an attachment.
    """
    generated = records.get_generated_ad(generated_id)
    if generated is None:
        raise HTTPException(status_code=404, detail="Image not found")

    content = storage.get_file(generated.file_key)
    if content is None:
        raise HTTPException(status_code=404, detail="Stored image is missing")

    return Response(
        content=content,
        media_type=_media_type(generated.file_key, "image/png"),
        headers={"Content-Disposition": f'attachment; filename="generated-{generated.id}.png"'},
    )


@app.delete("/generated/{generated_id}", tags=["Generated"])
def delete_generated(generated_id: int, auth: str = Depends(get_api_key)):
    """
    Delete a generated variant and its stored image. Requires API Key.
    """
    generated = records.get_generated_ad(generated_id)
    if generated is None:
        raise HTTPException(status_code=404, detail="Image not found")

    storage.delete_file(generated.file_key)
    records.delete_generated_ads([generated_id])
    return {"id": generated_id, "status": "deleted"}


class GeneratedBatchRequest(BaseModel):
    """A selection of generated variants."""
    ids: List[int]


def _selected_generated(request: GeneratedBatchRequest):
    if not request.ids:
        raise HTTPException(status_code=400, detail="Select at least one image")
    return records.get_generated_ads(request.ids)


@app.post("/generated/delete", tags=["Generated"])
def delete_generated_batch(request: GeneratedBatchRequest, auth: str = Depends(get_api_key)):
    """
    Delete several generated variants at once. Unknown ids are ignored. Requires API Key.
    """
    selected = _selected_generated(request)
    for generated in selected:
        storage.delete_file(generated.file_key)
    deleted = records.delete_generated_ads([g.id for g in selected])
    logger.info(f"Deleted {deleted} generated image(s)")
    return {"deleted_count": deleted, "ids": [g.id for g in selected]}


@app.post("/generated/download/batch", tags=["Generated"])
def download_generated_batch(request: GeneratedBatchRequest, auth: str = Depends(get_api_key)):
    """
    List download links for several generated variants.

    The client fetches each link in turn.
    """
    selected = _selected_generated(request)
    if not selected:
        raise HTTPException(status_code=404, detail="No valid images found")

    return {
        "downloads": [
            {
                "id": g.id,
                "url": f"/generated/{g.id}/download",
                "filename": f"generated-{g.id}.png",
            }
            for g in selected
        ]
    }
