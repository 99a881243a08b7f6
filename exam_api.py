"""
Exam Extraction API — Main Application
FastAPI application that turns uploaded PDF exam papers into structured
sections, questions, options, images and answer keys.
"""

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os

from database.database import engine, Base
from database import models  # noqa: F401  (registers tables)

from routers import uploads, exams, files

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
# SDK request logs are noisy at INFO
logging.getLogger("httpx").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables + storage root."""
    Base.metadata.create_all(bind=engine)
    os.makedirs(os.getenv("STORAGE_ROOT", "uploads"), exist_ok=True)
    yield


app = FastAPI(
    title="Exam Extraction API",
    description="PDF exam papers → OCR → structured questions, sections, images and answer keys",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ─── Routers ───────────────────────────────────────────────────────────────────

app.include_router(uploads.router)   # /uploads, /uploads/check-hash
app.include_router(exams.router)     # /exams/*
app.include_router(files.router)     # /storage/{key}?token=


@app.get("/")
def root():
    return {
        "name": "Exam Extraction API",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "uploads": "/uploads",
            "exams": "/exams",
        },
    }


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "exam-extraction-api"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
