# ========================
# api_server.py
# ========================

"""
FastAPI Server for the Listing CSV Ingestion Pipeline

Provides REST API endpoints for uploading listing CSV files, tracking
ingestion progress and reading the typed results.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, File, UploadFile, HTTPException, BackgroundTasks, Query
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from src.pipeline import (
    CSVSource,
    IngestionError,
    IngestionOptions,
    IngestionPipeline,
    IngestionResult,
    create_cache_store,
)
from src.utils.config import Config
from src.utils.logging_setup import setup_logging

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

# Configuration
config = Config()
UPLOAD_DIR = Path(config.UPLOAD_DIR)
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)

# Constants
JOB_NOT_FOUND_MSG = "Job not found"
JOB_NOT_COMPLETED_MSG = "Job not completed yet"

# Global state for tracking jobs
pipeline = IngestionPipeline(cache=create_cache_store(config), config=config)
job_status: Dict[str, Dict[str, Any]] = {}
job_results: Dict[str, IngestionResult] = {}

# Initialize FastAPI app
app = FastAPI(
    title="Listing CSV Ingestion API",
    description="Upload listing CSV files and ingest them through a streaming, cached pipeline",
    version="1.0.0"
)

# Add CORS middleware to allow frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

class IngestionJobManager:
    """Manages background ingestion jobs."""

    @staticmethod
    def run_ingestion(job_id: str, source: CSVSource, batch_size: int) -> None:
        """Run ingestion in a background thread, recording progress on the job."""
        job = job_status[job_id]
        job['status'] = 'processing'
        job['started_at'] = datetime.now().isoformat()
        logger.info(f"Starting ingestion job {job_id} for {source!r}")

        def record_progress(snapshot) -> None:
            job['progress'] = snapshot.to_dict()

        run = pipeline.start(source, IngestionOptions(batch_size=batch_size, on_progress=record_progress))
        try:
            for _ in run.batches():
                if run.cooldown_seconds:
                    time.sleep(run.cooldown_seconds)
        except IngestionError as e:
            logger.error(f"Ingestion job {job_id} failed: {e.message}")
            job['status'] = 'failed'
            job['error'] = e.message
            job['error_kind'] = e.kind.value
            job['failed_at'] = datetime.now().isoformat()
            return
        except Exception as e:
            logger.exception(f"Ingestion job {job_id} crashed")
            job['status'] = 'failed'
            job['error'] = str(e)
            job['failed_at'] = datetime.now().isoformat()
            return

        result = run.result
        job_results[job_id] = result
        job['status'] = 'completed'
        job['completed_at'] = datetime.now().isoformat()
        job['cache_key'] = run.cache_key
        job['progress'] = run.progress.to_dict()
        job['summary'] = {
            'rows': len(result.rows),
            'stats': result.stats.to_dict(),
            **result.error_summary(config.ERROR_SAMPLE_LIMIT)
        }
        logger.info(f"Ingestion job {job_id} completed: {len(result.rows)} rows")

@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Listing CSV Ingestion API",
        "version": "1.0.0",
        "endpoints": {
            "upload": "/upload - Upload a listing CSV file",
            "status": "/status/{job_id} - Check job status and progress",
            "jobs": "/jobs - List all jobs",
            "results": "/results/{job_id} - Page through typed rows",
            "cache": "/cache/{job_id} - Evict the cached result of a job's file",
            "health": "/health - Health check",
            "api_docs": "/docs - API documentation"
        },
        "required_columns": list(IngestionOptions().required_columns),
        "api_docs_url": "/docs"
    }

@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.now().isoformat(),
        "active_jobs": len([j for j in job_status.values() if j['status'] == 'processing'])
    }

@app.post("/upload")
async def upload_file(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(...),
    batch_size: int = Query(config.DEFAULT_BATCH_SIZE, description="Rows per batch", ge=1, le=config.MAX_BATCH_SIZE),
    last_modified_ms: Optional[int] = Query(None, description="Client-side modification time (epoch ms)", ge=0)
):
    """
    Upload a CSV file and start ingesting it.

    Args:
        file: CSV file to upload
        batch_size: Rows per batch / backpressure threshold
        last_modified_ms: File modification time used for the cache key

    Returns:
        dict: Job ID and status information
    """
    if not file.filename or not file.filename.lower().endswith('.csv'):
        raise HTTPException(status_code=400, detail="Only CSV files are supported")

    content = await file.read()
    max_bytes = config.MAX_FILE_SIZE_MB * 1024 * 1024
    if len(content) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds the {config.MAX_FILE_SIZE_MB} MB upload limit"
        )

    job_id = str(uuid.uuid4())
    file_path = UPLOAD_DIR / f"{job_id}_{Path(file.filename).name}"

    def write_file():
        with open(file_path, "wb") as buffer:
            buffer.write(content)

    try:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, write_file)
    except OSError as e:
        logger.error(f"Upload failed: {e}")
        raise HTTPException(status_code=500, detail=f"Upload failed: {e}")

    if last_modified_ms is None:
        last_modified_ms = file_path.stat().st_mtime_ns // 1_000_000

    source = CSVSource(
        name=file.filename,
        size_bytes=len(content),
        last_modified_ms=last_modified_ms,
        path=file_path
    )

    job_status[job_id] = {
        'job_id': job_id,
        'filename': file.filename,
        'status': 'queued',
        'created_at': datetime.now().isoformat(),
        'input_file': str(file_path),
        'batch_size': batch_size,
        'file_size': len(content),
        'last_modified_ms': last_modified_ms,
        'progress': None
    }

    background_tasks.add_task(IngestionJobManager.run_ingestion, job_id, source, batch_size)
    logger.info(f"Queued ingestion job {job_id} for file {file.filename}")

    return {
        "job_id": job_id,
        "filename": file.filename,
        "status": "queued",
        "message": "File uploaded successfully. Ingestion started.",
        "estimated_processing_info": "Use /status/{job_id} to check progress"
    }

@app.get("/status/{job_id}")
async def get_job_status(job_id: str):
    """Get the status and latest progress snapshot of an ingestion job."""
    if job_id not in job_status:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_MSG)
    return dict(job_status[job_id])

@app.get("/jobs")
async def list_jobs(
    status: Optional[str] = Query(None, description="Filter by status: queued, processing, completed, failed"),
    limit: int = Query(50, description="Maximum number of jobs to return", ge=1, le=100)
):
    """List ingestion jobs, newest first."""
    jobs = list(job_status.values())
    if status:
        jobs = [job for job in jobs if job['status'] == status]
    jobs.sort(key=lambda job: job['created_at'], reverse=True)
    return {
        "total_jobs": len(jobs),
        "jobs": [
            {key: job.get(key) for key in ('job_id', 'filename', 'status', 'created_at')}
            for job in jobs[:limit]
        ]
    }

@app.get("/results/{job_id}")
async def get_job_results(
    job_id: str,
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000)
):
    """Page through the typed rows of a completed job."""
    if job_id not in job_status:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_MSG)
    if job_status[job_id]['status'] != 'completed':
        raise HTTPException(status_code=400, detail=JOB_NOT_COMPLETED_MSG)

    result = job_results[job_id]
    return {
        "job_id": job_id,
        "total_rows": len(result.rows),
        "offset": offset,
        "limit": limit,
        "rows": [row.to_dict() for row in result.rows[offset:offset + limit]],
        "error_count": len(result.errors),
        "errors": [error.to_dict() for error in result.errors[:limit]]
    }

@app.delete("/jobs/{job_id}")
async def delete_job(job_id: str):
    """Delete a job, its results and its uploaded file."""
    if job_id not in job_status:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_MSG)

    job = job_status.pop(job_id)
    job_results.pop(job_id, None)
    input_path = Path(job['input_file'])
    if input_path.exists():
        input_path.unlink()
        logger.info(f"Deleted upload {input_path}")

    return {"message": f"Job {job_id} deleted successfully"}

@app.delete("/cache/{job_id}")
async def evict_cached_result(job_id: str):
    """Evict the cached result for the file a job ingested."""
    if job_id not in job_status:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_MSG)

    key = job_status[job_id].get('cache_key')
    if key is None:
        raise HTTPException(status_code=400, detail=JOB_NOT_COMPLETED_MSG)

    evicted = pipeline.cache.evict(key)
    logger.info(f"Cache eviction for job {job_id} ('{key}'): {evicted}")
    return {"job_id": job_id, "cache_key": key, "evicted": evicted}

def start_server(host: str = "0.0.0.0", port: int = config.API_PORT, reload: bool = False):
    """Start the FastAPI server."""
    logger.info(f"Starting Listing CSV Ingestion API server on {host}:{port}")
    uvicorn.run(
        "api_server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )

if __name__ == "__main__":
    start_server(reload=True)
