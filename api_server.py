# ========================
# api_server.py
# ========================

"""
FastAPI Server for the Charcoal Pipeline

Provides REST API endpoints for uploading raw charcoal extracts and running
the derivation and binning passes as background jobs.
"""

import asyncio
import logging
import shutil
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

from fastapi import FastAPI, File, UploadFile, HTTPException, BackgroundTasks, Query
from fastapi.responses import FileResponse
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from src.charcoal.orchestrator import CharcoalPipeline
from src.utils.config import Config
from src.utils.data_generator import DataGenerator
from src.utils.logging_setup import setup_logging
from src.utils.job_metadata import JobMetadataManager

config = Config()
setup_logging(log_level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

job_metadata_manager = JobMetadataManager()

app = FastAPI(
    title="Charcoal Pipeline API",
    description="Upload raw charcoal records and bin them onto a common age grid",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

UPLOAD_DIR = Path("data/uploaded")
UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
PROCESSED_DIR = Path(config.DEFAULT_OUTPUT_DIR)

JOB_NOT_FOUND_MSG = "Job not found"
JOB_NOT_COMPLETED_MSG = "Job not completed yet"


def initialize_job_status() -> Dict[str, Dict[str, Any]]:
    """Load saved job metadata and add jobs discovered on disk."""
    job_status = job_metadata_manager.load_job_metadata()
    for job_id, job_data in job_metadata_manager.discover_existing_jobs().items():
        if job_id not in job_status:
            job_status[job_id] = job_data
            logger.info(f"Added discovered job {job_id}: {job_data['filename']}")
    if job_status:
        job_metadata_manager.save_job_metadata(job_status)
    return job_status


job_status: Dict[str, Dict[str, Any]] = initialize_job_status()


def persist_job_status():
    """Save current job status to persistent storage."""
    job_metadata_manager.save_job_metadata(job_status)


def _job_config(bin_step: Optional[float], transform: Optional[str]) -> Config:
    overrides = {}
    if bin_step is not None:
        overrides['BIN_STEP'] = bin_step
    if transform:
        overrides['TRANSFORM'] = transform
    return Config(overrides)


class PipelineJobManager:
    """Manages background pipeline jobs."""

    @staticmethod
    def run_pipeline(job_id: str, input_file: str, output_dir: str,
                     site_list_file: Optional[str], job_config: Config) -> None:
        """Run the pipeline for one job."""
        job = job_status[job_id]
        try:
            logger.info(f"Starting pipeline job {job_id}")
            job['status'] = 'processing'
            job['started_at'] = datetime.now().isoformat()

            pipeline = CharcoalPipeline(
                input_file=input_file,
                output_dir=output_dir,
                site_list_file=site_list_file,
                config=job_config
            )
            if not pipeline.validate_input():
                raise ValueError("Input file validation failed")

            job['results'] = pipeline.run()
            job['status'] = 'completed'
            job['completed_at'] = datetime.now().isoformat()
            logger.info(f"Pipeline job {job_id} completed successfully")

        except Exception as e:
            logger.error(f"Pipeline job {job_id} failed: {e}", exc_info=True)
            job['status'] = 'failed'
            job['error'] = str(e)
            job['failed_at'] = datetime.now().isoformat()
        finally:
            persist_job_status()

    @staticmethod
    def run_synthetic_pipeline(job_id: str, num_sites: int, job_config: Config) -> None:
        """Generate a synthetic extract and run the pipeline on it."""
        job = job_status[job_id]
        try:
            generator = DataGenerator(seed=42, sentinel=job_config.MISSING_SENTINEL)
            job['generation_stats'] = generator.generate_dataset(
                file_path=job['input_file'],
                num_sites=num_sites,
                site_list_path=job['site_list_file'],
            )
        except Exception as e:
            logger.error(f"Synthetic data for job {job_id} failed: {e}", exc_info=True)
            job['status'] = 'failed'
            job['error'] = str(e)
            persist_job_status()
            return

        PipelineJobManager.run_pipeline(
            job_id, job['input_file'], job['output_dir'], job['site_list_file'], job_config
        )


def _new_job(job_id: str, **fields) -> Dict[str, Any]:
    job = {
        'job_id': job_id,
        'status': 'queued',
        'created_at': datetime.now().isoformat(),
        **fields
    }
    job_status[job_id] = job
    persist_job_status()
    return job


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "Charcoal Pipeline API",
        "version": "1.0.0",
        "endpoints": {
            "upload": "/upload - Upload a raw sample extract CSV",
            "run_pipeline": "/run-pipeline - Run on a synthetic extract",
            "status": "/status/{job_id} - Check job status",
            "jobs": "/jobs - List all jobs",
            "download": "/download/{job_id}?file_type= - Download an output",
            "health": "/health - Health check",
            "api_docs": "/docs - API documentation"
        },
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
    bin_step: Optional[float] = Query(None, description="Bin width in age units", gt=0),
    transform: Optional[str] = Query(None, description="Transform name, e.g. zt or minmax-log-zt")
):
    """
    Upload a raw sample extract and start a pipeline job.

    Args:
        file: Extract CSV (site_id, sample_index, sample_id, depth, est_age, quantity, quant_type)
        bin_step: Optional bin width overriding the configured one
        transform: Optional transform overriding the configured one

    Returns:
        dict: Job ID and status information
    """
    if not file.filename.lower().endswith('.csv'):
        raise HTTPException(status_code=400, detail="Only CSV files are supported")

    try:
        job_config = _job_config(bin_step, transform)
        CharcoalPipeline.check_settings(job_config)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    job_id = str(uuid.uuid4())
    file_path = UPLOAD_DIR / f"{job_id}_{file.filename}"
    content = await file.read()

    def write_file():
        with open(file_path, "wb") as buffer:
            buffer.write(content)

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, write_file)

    output_dir = PROCESSED_DIR / job_id
    output_dir.mkdir(parents=True, exist_ok=True)

    _new_job(
        job_id,
        filename=file.filename,
        type='upload',
        input_file=str(file_path),
        site_list_file=None,
        output_dir=str(output_dir),
        bin_step=job_config.BIN_STEP,
        transform=job_config.TRANSFORM,
        file_size=len(content)
    )

    background_tasks.add_task(
        PipelineJobManager.run_pipeline, job_id, str(file_path), str(output_dir), None, job_config
    )
    logger.info(f"Started pipeline job {job_id} for file {file.filename}")

    return {
        "job_id": job_id,
        "filename": file.filename,
        "status": "queued",
        "message": "File uploaded successfully. Pipeline processing started.",
        "estimated_processing_info": "Use /status/{job_id} to check progress"
    }


@app.post("/run-pipeline")
async def run_synthetic_pipeline(
    background_tasks: BackgroundTasks,
    num_sites: int = Query(50, description="Number of synthetic sites", ge=1, le=10000),
    bin_step: Optional[float] = Query(None, description="Bin width in age units", gt=0),
    transform: Optional[str] = Query(None, description="Transform name")
):
    """Generate a synthetic extract and run the pipeline on it."""
    try:
        job_config = _job_config(bin_step, transform)
        CharcoalPipeline.check_settings(job_config)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    job_id = str(uuid.uuid4())
    output_dir = PROCESSED_DIR / job_id
    output_dir.mkdir(parents=True, exist_ok=True)

    _new_job(
        job_id,
        filename=f'synthetic_{num_sites}_sites.csv',
        type='synthetic',
        input_file=str(UPLOAD_DIR / f"{job_id}_synthetic_{num_sites}_sites.csv"),
        site_list_file=str(UPLOAD_DIR / f"{job_id}_site_list.csv"),
        output_dir=str(output_dir),
        bin_step=job_config.BIN_STEP,
        transform=job_config.TRANSFORM,
        num_sites=num_sites
    )

    background_tasks.add_task(PipelineJobManager.run_synthetic_pipeline, job_id, num_sites, job_config)
    logger.info(f"Started synthetic pipeline job {job_id} with {num_sites} sites")

    return {
        "job_id": job_id,
        "type": "synthetic",
        "status": "queued",
        "parameters": {"num_sites": num_sites, "bin_step": job_config.BIN_STEP,
                       "transform": job_config.TRANSFORM},
        "estimated_processing_info": "Use /status/{job_id} to check progress"
    }


@app.get("/status/{job_id}")
async def get_job_status(job_id: str):
    """Get the status of a pipeline job."""
    if job_id not in job_status:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_MSG)

    job = job_status[job_id].copy()
    if job['status'] == 'completed' and 'results' in job:
        results = job['results']
        job['summary'] = {
            'sites_derived': results.get('processing_stats', {}).get('sites_derived', 0),
            'sites_binned': results.get('binning_stats', {}).get('sites_binned', 0),
            'bins_written': results.get('binning_stats', {}).get('bins_written', 0),
            'output_files': len(results.get('saved_files', {}))
        }
    return job


@app.get("/jobs")
async def list_jobs(
    status: Optional[str] = Query(None, description="Filter by status: queued, processing, completed, failed"),
    limit: int = Query(50, description="Maximum number of jobs to return", ge=1, le=100)
):
    """List pipeline jobs, newest first."""
    jobs = list(job_status.values())
    if status:
        jobs = [job for job in jobs if job['status'] == status]
    jobs.sort(key=lambda x: x['created_at'], reverse=True)
    jobs = jobs[:limit]
    return {
        "jobs": jobs,
        "total_count": len(job_status),
        "filtered_count": len(jobs)
    }


@app.get("/download/{job_id}")
async def download_results(job_id: str, file_type: str = Query(..., description="Type of file to download")):
    """
    Download an output of a completed job. Directory outputs (sites_dir,
    binned_dir) are served as a zip archive.
    """
    if job_id not in job_status:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_MSG)

    job = job_status[job_id]
    if job['status'] != 'completed':
        raise HTTPException(status_code=400, detail=JOB_NOT_COMPLETED_MSG)

    saved_files = job.get('results', {}).get('saved_files')
    if not saved_files:
        raise HTTPException(status_code=404, detail="No results available")
    if file_type not in saved_files:
        raise HTTPException(
            status_code=404,
            detail=f"File type '{file_type}' not found. Available types: {list(saved_files.keys())}"
        )

    file_path = Path(saved_files[file_type])
    if not file_path.exists():
        raise HTTPException(status_code=404, detail="File not found on disk")

    if file_path.is_dir():
        archive_base = Path(job['output_dir']) / f"{file_path.name}_archive"
        archive = shutil.make_archive(str(archive_base), 'zip', root_dir=file_path)
        return FileResponse(path=archive, filename=f"{job_id}_{file_type}.zip",
                            media_type='application/zip')

    return FileResponse(
        path=file_path,
        filename=f"{job_id}_{file_type}{file_path.suffix}",
        media_type='application/octet-stream'
    )


@app.delete("/jobs/{job_id}")
async def delete_job(job_id: str):
    """Delete a job and its associated files."""
    if job_id not in job_status:
        raise HTTPException(status_code=404, detail=JOB_NOT_FOUND_MSG)

    job = job_status[job_id]
    try:
        for key in ('input_file', 'site_list_file'):
            if job.get(key):
                path = Path(job[key])
                if path.exists():
                    path.unlink()

        output_dir = Path(job['output_dir'])
        if output_dir.exists():
            shutil.rmtree(output_dir)
    except OSError as e:
        logger.error(f"Failed to delete job {job_id}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to delete job: {str(e)}")

    del job_status[job_id]
    persist_job_status()
    logger.info(f"Deleted job {job_id} and associated files")
    return {"message": f"Job {job_id} and associated files deleted successfully"}


def start_server(host: str = "0.0.0.0", port: int = config.API_PORT, reload: bool = False):
    """Start the FastAPI server."""
    logger.info(f"Starting Charcoal Pipeline API server on {host}:{port}")
    uvicorn.run(
        "api_server:app",
        host=host,
        port=port,
        reload=reload,
        log_level="info"
    )


if __name__ == "__main__":
    start_server(reload=True)
