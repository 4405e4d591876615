# ========================
# src/utils/job_metadata.py
# ========================

"""
Job Metadata Management

Persists pipeline job state for the API server and rediscovers finished jobs
from their output directories after a restart.
"""

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Any

logger = logging.getLogger(__name__)

SUMMARY_FILE = "pipeline_summary.json"


class JobMetadataManager:
    """Manages persistent job metadata storage."""

    def __init__(self,
                 metadata_file: str = "data/job_metadata.json",
                 processed_dir: str = "data/processed",
                 uploaded_dir: str = "data/uploaded"):
        self.metadata_file = Path(metadata_file)
        self.metadata_file.parent.mkdir(parents=True, exist_ok=True)
        self.processed_dir = Path(processed_dir)
        self.uploaded_dir = Path(uploaded_dir)

    def save_job_metadata(self, job_status_dict: Dict[str, Dict[str, Any]]) -> None:
        """Save all job metadata to persistent storage."""
        try:
            with open(self.metadata_file, 'w') as f:
                json.dump(job_status_dict, f, indent=2, default=str)
            logger.debug(f"Saved job metadata for {len(job_status_dict)} jobs")
        except OSError as e:
            logger.error(f"Failed to save job metadata: {e}")

    def load_job_metadata(self) -> Dict[str, Dict[str, Any]]:
        """Load job metadata from persistent storage."""
        if not self.metadata_file.exists():
            return {}
        try:
            with open(self.metadata_file, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load job metadata: {e}")
            return {}
        logger.info(f"Loaded metadata for {len(data)} persisted jobs")
        return data

    def discover_existing_jobs(self) -> Dict[str, Dict[str, Any]]:
        """Discover jobs from per-job output directories named by UUID."""
        discovered_jobs = {}
        if not self.processed_dir.exists():
            return discovered_jobs

        for job_dir in self.processed_dir.iterdir():
            if not (job_dir.is_dir() and self._is_valid_uuid(job_dir.name)):
                continue
            job_id = job_dir.name
            input_file, filename = self._find_upload(job_id)

            summary_file = job_dir / SUMMARY_FILE
            status = "completed" if summary_file.exists() else "unknown"
            completed_at = datetime.fromtimestamp(
                (summary_file if summary_file.exists() else job_dir).stat().st_mtime
            ).isoformat()

            job = {
                'job_id': job_id,
                'filename': filename,
                'status': status,
                'created_at': completed_at,  # best guess
                'completed_at': completed_at,
                'input_file': input_file or f"{self.uploaded_dir}/{job_id}_{filename}",
                'output_dir': str(job_dir),
                'type': 'discovered',
                'discovered_on_startup': True
            }

            if summary_file.exists():
                try:
                    with open(summary_file, 'r') as f:
                        results = json.load(f)
                    results['saved_files'] = self._get_saved_files(job_dir)
                    job['results'] = results
                except (OSError, json.JSONDecodeError) as e:
                    logger.warning(f"Could not read summary for job {job_id}: {e}")

            discovered_jobs[job_id] = job

        if discovered_jobs:
            logger.info(f"Discovered {len(discovered_jobs)} existing jobs from data directories")
        return discovered_jobs

    def _find_upload(self, job_id: str):
        if self.uploaded_dir.exists():
            for uploaded_file in self.uploaded_dir.iterdir():
                if uploaded_file.name.startswith(job_id):
                    return str(uploaded_file), uploaded_file.name.replace(f"{job_id}_", "")
        return None, "unknown_file.csv"

    def _is_valid_uuid(self, uuid_string: str) -> bool:
        try:
            uuid.UUID(uuid_string)
            return True
        except ValueError:
            return False

    def _get_saved_files(self, job_dir: Path) -> Dict[str, str]:
        """Map downloadable file types to paths present in a job directory."""
        saved_files = {}
        file_mappings = {
            'site_flags': 'site_flags.csv',
            'site_log': 'site_log.txt',
            'summary': SUMMARY_FILE,
            'data_dictionary': 'DATA_DICTIONARY.md',
            'sites_dir': 'sites',
        }
        for file_type, filename in file_mappings.items():
            file_path = job_dir / filename
            if file_path.exists():
                saved_files[file_type] = str(file_path)

        # One binned_<transform>_<step> directory per run
        binned_dirs = sorted(p for p in job_dir.glob('binned_*') if p.is_dir())
        if binned_dirs:
            saved_files['binned_dir'] = str(binned_dirs[-1])
        return saved_files
