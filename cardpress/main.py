# cardpress/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from concurrent.futures import ThreadPoolExecutor
import logging
import os

from cardpress.config.settings import settings
from cardpress.delivery.api.documents import router
from cardpress.domain.render_service import RenderService
from cardpress.infrastructure.storage.blob_store import build_blob_store

logging.getLogger("PIL").setLevel(logging.WARNING)
logger = logging.getLogger("uvicorn.error")

@asynccontextmanager
async def lifespan(app: FastAPI):
    max_workers = min(settings.DECODE_WORKERS, os.cpu_count() or 1)
    app.state.executor = ThreadPoolExecutor(max_workers=max_workers)
    app.state.blob_store = build_blob_store()
    app.state.render_service = RenderService(
        blob_store=app.state.blob_store,
        cpu_executor=app.state.executor,
    )
    logger.info(f"Service '{settings.PROJECT_NAME}' started (mode: {settings.ENVIRONMENT}).")
    logger.info(f"Image decode ThreadPoolExecutor created with {max_workers} workers.")
    yield
    logger.info("Closing blob store and ThreadPoolExecutor...")
    await app.state.blob_store.close()
    app.state.executor.shutdown(wait=True)
    logger.info("Service stopped.")

app = FastAPI(
    title="Card Press Rendering Service",
    description="Streams ID card sheets, admit cards and result sheets as PDF documents",
    version="1.0.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT != "production" else None,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Disposition"],
)

app.include_router(router, prefix=settings.API_V1_STR)

@app.get("/")
async def root():
    return {"message": "Card Press Rendering Service", "version": "1.0.0", "status": "ok"}

@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "Card Press 1.0", "blob_store": settings.BLOB_STORE_BACKEND}
