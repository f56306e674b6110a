"""
Exam Paper Analyzer API: Main Application
FastAPI application for ingesting exam papers, extracting question trees and
generating model answers.
"""

from dotenv import load_dotenv
load_dotenv()

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from exam_analyzer import __version__, config
from exam_analyzer.database.database import engine, Base
from exam_analyzer.database import models  # noqa: F401  (register tables)
from exam_analyzer.routers import answers, papers


def configure_logging() -> None:
    """Root logger from LOG_LEVEL; noisy parser libraries kept quiet."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # Suppress verbose PDF parsing warnings (pdfminer color space issues)
    logging.getLogger("pdfminer").setLevel(logging.ERROR)
    logging.getLogger("PIL").setLevel(logging.ERROR)
    logging.getLogger("unstructured").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


configure_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables + uploads directory."""
    Base.metadata.create_all(bind=engine)
    os.makedirs(os.path.join(config.UPLOAD_DIR, "exam_papers"), exist_ok=True)
    yield


app = FastAPI(
    title="Exam Paper Analyzer API",
    description="Exam paper ingestion, question-tree extraction and model-answer generation",
    version=__version__,
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

app.include_router(papers.router)             # /question-papers/*
app.include_router(answers.router)            # /question-papers/{id}/answers/*


@app.get("/")
def root():
    return {
        "name": "Exam Paper Analyzer API",
        "version": __version__,
        "endpoints": {
            "docs": "/docs",
            "upload": "/question-papers/upload",
            "papers": "/question-papers",
            "filters": "/question-papers/filters",
            "answers": "/question-papers/{id}/answers",
        },
    }


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "exam-analyzer-api"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8001")))
