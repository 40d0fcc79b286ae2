"""End-to-end tests for the FastAPI app.

Gemini is replaced by a fake generator; reference and logo downloads go
through an httpx.MockTransport that serves files out of local storage.
"""

import asyncio

import httpx
import pytest
from conftest import make_png, open_png
from fastapi.testclient import TestClient

from app import main
from app.adgen import AdStudioService
from app.adgen.clients import BaseGenerator
from app.adgen.errors import ContentFiltered

AUTH = {"X-API-Key": "test-key"}
RED = (255, 0, 0, 255)


class FakeGenerator(BaseGenerator):
    def __init__(self, fail=False):
        self.fail = fail
        self.prompts = []
        self.analyzed = []

    async def generate_image(self, prompt, reference_images):
        self.prompts.append(prompt)
        if self.fail:
            raise ContentFiltered("SAFETY")
        assert reference_images, "source ad should be passed as a reference"
        return make_png(200, 200)

    async def analyze_image(self, image):
        self.analyzed.append(image)
        return "A bold red summer sale banner"


class SlowGenerator(FakeGenerator):
    async def generate_image(self, prompt, reference_images):
        await asyncio.sleep(5)
        return await super().generate_image(prompt, reference_images)


def serve_storage(request: httpx.Request) -> httpx.Response:
    prefix = "/files/"
    if request.url.path.startswith(prefix):
        data = main.storage.get_file(request.url.path[len(prefix):])
        if data is not None:
            return httpx.Response(200, content=data, headers={"content-type": "image/png"})
    return httpx.Response(404)


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def client(monkeypatch, generator):
    http = httpx.AsyncClient(transport=httpx.MockTransport(serve_storage))
    service = AdStudioService(main.storage, main.records, generator=generator, http=http)
    monkeypatch.setattr(main, "service", service)
    for logo in main.records.list_logos():
        main.records.delete_logo(logo.id)
    return TestClient(main.app)


def upload_ad(client, name="summer.png"):
    response = client.post("/ads", files={"file": (name, make_png(300, 300), "image/png")}, headers=AUTH)
    assert response.status_code == 200, response.text
    return response.json()


def generate(client, ad, count):
    response = client.post(f"/ads/{ad['id']}/variants", json={"prompt": "Sale banner", "count": count}, headers=AUTH)
    assert response.status_code == 200, response.text
    return client.get("/generated", params={"original_ad_id": ad["id"]}).json()["generated"]


def test_upload_requires_api_key(client):
    response = client.post("/ads", files={"file": ("a.png", make_png(10, 10), "image/png")})
    assert response.status_code == 403


def test_upload_rejects_non_images(client):
    response = client.post("/ads", files={"file": ("notes.txt", b"hello", "text/plain")}, headers=AUTH)
    assert response.status_code == 400


def test_uploaded_ad_is_served_publicly(client):
    ad = upload_ad(client)
    assert ad["file_url"].startswith("http://testserver/files/originals/")

    response = client.get(f"/files/{ad['file_key']}")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/png"
    assert client.get(f"/ads/{ad['id']}").json()["filename"] == "summer.png"


def test_analyze_saves_prompt(client, generator):
    ad = upload_ad(client)

    response = client.post(f"/ads/{ad['id']}/analyze", headers=AUTH)

    assert response.status_code == 200
    assert response.json()["prompt"] == "A bold red summer sale banner"
    assert client.get(f"/ads/{ad['id']}").json()["analysis_prompt"] == "A bold red summer sale banner"
    assert generator.analyzed[0].mime_type == "image/png"


def test_generate_variants_with_logo(client, generator):
    ad = upload_ad(client)
    logo = client.post(
        "/logos",
        params={"name": "Brand", "enabled": True},
        files={"file": ("brand.png", make_png(20, 20, RED), "image/png")},
        headers=AUTH,
    ).json()
    assert logo["enabled"] is True

    response = client.post(f"/ads/{ad['id']}/variants", json={"prompt": "Sale banner", "count": 2}, headers=AUTH)

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    assert body["requested"] == 2
    assert body["generated"] == 2
    assert len(body["generated_urls"]) == 2
    assert len(generator.prompts) == 2

    generated = client.get("/generated", params={"original_ad_id": ad["id"]}).json()["generated"]
    assert len(generated) == 2

    download = client.get(f"/generated/{generated[0]['id']}/download")
    assert download.status_code == 200
    assert "attachment" in download.headers["content-disposition"]
    image = open_png(download.content)
    # 200px variant -> 30px logo box anchored 20px from the bottom-right corner
    assert image.getpixel((165, 165)) == RED
    assert image.getpixel((10, 10)) == (255, 255, 255, 255)


def test_generate_uses_saved_analysis(client, generator):
    ad = upload_ad(client)
    client.post(f"/ads/{ad['id']}/analyze", headers=AUTH)

    response = client.post(f"/ads/{ad['id']}/variants", json={"count": 1}, headers=AUTH)

    assert response.status_code == 200
    assert "A bold red summer sale banner" in generator.prompts[0]


def test_generate_without_prompt_or_analysis(client):
    ad = upload_ad(client)
    response = client.post(f"/ads/{ad['id']}/variants", json={"count": 1}, headers=AUTH)
    assert response.status_code == 400


def test_generate_all_failed(client, monkeypatch):
    monkeypatch.setattr(main.service.orchestrator, "generator", FakeGenerator(fail=True))
    ad = upload_ad(client)

    response = client.post(f"/ads/{ad['id']}/variants", json={"prompt": "x", "count": 2}, headers=AUTH)

    assert response.status_code == 502
    assert "variant 1" in response.json()["detail"]
    assert "variant 2" in response.json()["detail"]


def test_generate_unknown_ad(client):
    response = client.post("/ads/999999/variants", json={"prompt": "x"}, headers=AUTH)
    assert response.status_code == 404


def test_generate_rejects_bad_count(client):
    ad = upload_ad(client)
    response = client.post(f"/ads/{ad['id']}/variants", json={"prompt": "x", "count": 0}, headers=AUTH)
    assert response.status_code == 422


def test_async_generation_job(client):
    ad = upload_ad(client)

    started = client.post(f"/ads/{ad['id']}/variants/async", json={"prompt": "x", "count": 1}, headers=AUTH)
    assert started.status_code == 200
    job_id = started.json()["job_id"]

    # Background tasks run before TestClient returns the response.
    status = client.get(f"/jobs/{job_id}").json()
    assert status["status"] == "completed"
    assert status["generated"] == 1
    assert client.get("/jobs/unknown").status_code == 404


def test_logo_toggle_and_delete(client):
    logo = client.post(
        "/logos",
        params={"name": "Brand"},
        files={"file": ("brand.png", make_png(20, 20), "image/png")},
        headers=AUTH,
    ).json()
    assert logo["enabled"] is False

    toggled = client.patch(f"/logos/{logo['id']}", json={"enabled": True}, headers=AUTH)
    assert toggled.json() == {"id": logo["id"], "enabled": True}
    assert [l["id"] for l in client.get("/logos", params={"enabled_only": True}).json()["logos"]] == [logo["id"]]

    assert client.delete(f"/logos/{logo['id']}", headers=AUTH).status_code == 200
    assert client.patch(f"/logos/{logo['id']}", json={"enabled": True}, headers=AUTH).status_code == 404


def test_delete_ad_removes_files(client):
    ad = upload_ad(client)
    assert client.delete(f"/ads/{ad['id']}", headers=AUTH).status_code == 200
    assert client.get(f"/ads/{ad['id']}").status_code == 404
    assert client.get(f"/files/{ad['file_key']}").status_code == 404


def test_unconfigured_generator_is_reported():
    # The default service uses Gemini, and GEMINI_API_KEY is unset in tests.
    client = TestClient(main.app)
    ad = upload_ad(client)

    response = client.post(f"/ads/{ad['id']}/analyze", headers=AUTH)
    assert response.status_code == 500
    assert "GEMINI_API_KEY" in response.json()["detail"]

    providers = client.get("/providers").json()["providers"]
    assert providers[0]["configured"] is False
    assert providers[0]["missing"] == ["GEMINI_API_KEY"]


def test_generation_timeout(client, monkeypatch):
    monkeypatch.setattr(main, "GENERATION_TIMEOUT_SECONDS", 0.05)
    monkeypatch.setattr(main.service.orchestrator, "generator", SlowGenerator())
    ad = upload_ad(client)

    response = client.post(f"/ads/{ad['id']}/variants", json={"prompt": "x", "count": 2}, headers=AUTH)

    assert response.status_code == 504
    assert "timed out" in response.json()["detail"]


def test_edited_analysis_is_used_for_generation(client, generator):
    ad = upload_ad(client)

    response = client.put(f"/ads/{ad['id']}/analysis", json={"prompt": "Minimal blue banner"}, headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {"id": ad["id"], "prompt": "Minimal blue banner"}
    assert generator.analyzed == []
    assert client.get(f"/ads/{ad['id']}").json()["analysis_prompt"] == "Minimal blue banner"

    client.post(f"/ads/{ad['id']}/variants", json={"count": 1}, headers=AUTH)
    assert "Minimal blue banner" in generator.prompts[0]


def test_edit_analysis_validation(client):
    ad = upload_ad(client)
    assert client.put(f"/ads/{ad['id']}/analysis", json={"prompt": "x"}).status_code == 403
    assert client.put(f"/ads/{ad['id']}/analysis", json={"prompt": ""}, headers=AUTH).status_code == 422
    assert client.put("/ads/999999/analysis", json={"prompt": "x"}, headers=AUTH).status_code == 404


def test_delete_generated_removes_file_and_record(client):
    ad = upload_ad(client)
    first, second = generate(client, ad, 2)

    response = client.delete(f"/generated/{first['id']}", headers=AUTH)

    assert response.status_code == 200
    remaining = client.get("/generated", params={"original_ad_id": ad["id"]}).json()["generated"]
    assert [g["id"] for g in remaining] == [second["id"]]
    assert client.get(f"/files/{first['file_key']}").status_code == 404
    assert client.get(f"/files/{second['file_key']}").status_code == 200
    assert client.delete(f"/generated/{first['id']}", headers=AUTH).status_code == 404


def test_batch_delete_generated(client):
    ad = upload_ad(client)
    first, second, third = generate(client, ad, 3)

    response = client.post("/generated/delete", json={"ids": [first["id"], third["id"], 999999]}, headers=AUTH)

    assert response.status_code == 200
    assert response.json() == {"deleted_count": 2, "ids": [first["id"], third["id"]]}
    remaining = client.get("/generated", params={"original_ad_id": ad["id"]}).json()["generated"]
    assert [g["id"] for g in remaining] == [second["id"]]
    assert client.get(f"/files/{third['file_key']}").status_code == 404

    assert client.post("/generated/delete", json={"ids": []}, headers=AUTH).status_code == 400


def test_batch_download_lists_links(client):
    ad = upload_ad(client)
    first, second = generate(client, ad, 2)

    response = client.post("/generated/download/batch", json={"ids": [second["id"], first["id"], 999999]}, headers=AUTH)

    assert response.status_code == 200
    downloads = response.json()["downloads"]
    assert [d["id"] for d in downloads] == [first["id"], second["id"]]
    assert downloads[0]["filename"] == f"generated-{first['id']}.png"
    assert client.get(downloads[0]["url"]).status_code == 200

    assert client.post("/generated/download/batch", json={"ids": [999999]}, headers=AUTH).status_code == 404
    assert client.post("/generated/download/batch", json={"ids": []}, headers=AUTH).status_code == 400


def test_logo_description(client):
    logo = client.post(
        "/logos",
        params={"name": "Brand", "description": "Primary mark, light backgrounds"},
        files={"file": ("brand.png", make_png(20, 20), "image/png")},
        headers=AUTH,
    ).json()

    assert logo["description"] == "Primary mark, light backgrounds"
    assert client.get("/logos").json()["logos"][0]["description"] == "Primary mark, light backgrounds"


def test_list_files_by_prefix(client):
    ad = upload_ad(client)

    originals = client.get("/files", params={"prefix": "originals/"}).json()["files"]
    logos = client.get("/files", params={"prefix": "logos/"}).json()["files"]

    assert ad["file_key"] in originals
    assert all(key.startswith("originals/") for key in originals)
    assert ad["file_key"] not in logos
