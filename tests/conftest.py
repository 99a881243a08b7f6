import os

# Must be set before any project module creates the global engine.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("GROQ_API_KEY", "test-key")
os.environ.setdefault("MISTRAL_API_KEY", "test-key")

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database.database import Base, make_engine
from database import models  # noqa: F401
from ingestion.schemas import OcrImage, OcrPage, OcrResult
from storage.object_store import LocalObjectStore

# 1x1 transparent PNG
PNG_BASE64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)
PDF_BYTES = b"%PDF-1.4\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF\n"


class FakeLLM:
    """
    Stand-in for LLMClient.generate().

    responses maps a schema class name to a value, a list of values (consumed
    in order), an exception instance (raised) or a callable(prompt) -> value.
    Unmapped schemas return None ("no output").
    """

    def __init__(self, responses=None):
        self.responses = dict(responses or {})
        self.calls = []

    async def generate(self, prompt, schema, system=None, model=None, image_data_url=None, temperature=0.1):
        self.calls.append({
            "schema": schema.__name__,
            "prompt": prompt,
            "model": model,
            "image_data_url": image_data_url,
        })
        value = self.responses.get(schema.__name__)
        if isinstance(value, list):
            value = value.pop(0) if value else None
        if isinstance(value, Exception):
            raise value
        if callable(value):
            value = value(prompt)
        if isinstance(value, dict):
            return schema.model_validate(value)
        return value

    def calls_for(self, schema_name):
        return [c for c in self.calls if c["schema"] == schema_name]


class FakeOcrClient:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.urls = []

    async def process_document(self, document_url):
        self.urls.append(document_url)
        if self.error is not None:
            raise self.error
        return self.result


def make_page(page_number, markdown, images=None, width=1000, height=1400):
    return OcrPage(page_number=page_number, markdown=markdown, images=images or [], width=width, height=height)


def make_image(image_id, page_number=1, box=None, page_size=(1000, 1400), with_bitmap=True):
    """box = (tl_x, tl_y, br_x, br_y); None means no position data."""
    kwargs = {}
    if box is not None:
        kwargs = dict(
            top_left_x=box[0], top_left_y=box[1], bottom_right_x=box[2], bottom_right_y=box[3],
            page_width=page_size[0], page_height=page_size[1],
        )
    return OcrImage(
        id=image_id,
        image_base64=PNG_BASE64 if with_bitmap else None,
        mime_type="image/png",
        page_number=page_number,
        **kwargs,
    )


def make_ocr_result(pages):
    return OcrResult(pages=pages, model="test-ocr", raw_json={"pages": [{"index": p.page_number - 1} for p in pages]})


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(
        root=str(tmp_path / "objects"),
        public_base_url="http://testserver",
        signing_key="test-signing-key",
        ttl_seconds=300,
    )


@pytest.fixture
def fake_llm():
    return FakeLLM()


@pytest.fixture
def pending_exam(db, store):
    from database import crud

    store.upload_bytes("pdfs/test.pdf", PDF_BYTES, content_type="application/pdf")
    return crud.create_exam(db, filename="p4-maths.pdf", pdf_key="pdfs/test.pdf", file_hash="a" * 64)
