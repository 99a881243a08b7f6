from types import SimpleNamespace

import pytest

from ingestion.ocr import OcrClient, OcrError, document_url_for, parse_ocr_response, strip_bitmaps
from tests.conftest import PDF_BYTES, PNG_BASE64

PAYLOAD = {
    "model": "mistral-ocr-latest",
    "pages": [
        {
            "index": 1,
            "markdown": "2. Second page",
            "dimensions": {"width": 1654, "height": 2339, "dpi": 200},
            "images": [],
        },
        {
            "index": 0,
            "markdown": "1. First page\n![img-0.jpeg](img-0.jpeg)",
            "dimensions": {"width": 1654, "height": 2339, "dpi": 200},
            "images": [
                {
                    "id": "img-0.jpeg",
                    "top_left_x": 100, "top_left_y": 200, "bottom_right_x": 400, "bottom_right_y": 500,
                    "image_base64": "data:image/jpeg;base64,/9j/4AAQSkZJRg==",
                },
                {"image_base64": PNG_BASE64},
            ],
        },
    ],
}


def test_parse_ocr_response():
    result = parse_ocr_response(PAYLOAD)

    assert [p.page_number for p in result.pages] == [1, 2]
    assert result.model == "mistral-ocr-latest"

    first = result.pages[0]
    img, unnamed = first.images
    assert img.image_base64 == "/9j/4AAQSkZJRg=="
    assert img.mime_type == "image/jpeg"
    assert (img.page_width, img.page_height) == (1654, 2339)
    assert img.has_position()

    assert unnamed.id == "page-1-img-1"
    assert unnamed.image_base64 == PNG_BASE64
    assert not unnamed.has_position()


def test_raw_json_is_kept_without_bitmaps():
    result = parse_ocr_response(PAYLOAD)
    images = result.raw_json["pages"][1]["images"]
    assert all("image_base64" not in img for img in images)
    # the input payload is not mutated
    assert "image_base64" in PAYLOAD["pages"][1]["images"][0]
    assert strip_bitmaps({}) == {}


def test_document_url_inlines_the_pdf(store):
    store.upload_bytes("pdfs/a.pdf", PDF_BYTES)
    assert document_url_for(store, "pdfs/a.pdf").startswith("data:application/pdf;base64,JVBERi0")


class FakeOcrApi:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    async def process_async(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(model_dump=lambda: reply)


def _ocr_client(replies, max_retries=1):
    api = FakeOcrApi(replies)
    client = OcrClient(api_key="test", max_retries=max_retries)
    client._client = SimpleNamespace(ocr=api)
    return client, api


async def test_process_document_requests_inline_images():
    client, api = _ocr_client([PAYLOAD])
    result = await client.process_document("data:application/pdf;base64,AAAA")

    assert len(result.pages) == 2
    call = api.calls[0]
    assert call["include_image_base64"] is True
    assert call["document"] == {"type": "document_url", "document_url": "data:application/pdf;base64,AAAA"}


async def test_process_document_raises_after_retries():
    client, api = _ocr_client([ConnectionError("reset")])
    with pytest.raises(OcrError):
        await client.process_document("https://example.com/a.pdf")
    assert len(api.calls) == 1


async def test_empty_document_is_an_error():
    client, _ = _ocr_client([{"pages": []}])
    with pytest.raises(OcrError):
        await client.process_document("https://example.com/a.pdf")
