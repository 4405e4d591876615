# ========================
# tests/test_utils.py
# ========================

import unittest
import tempfile
import shutil
import json
import csv
import sys
import os
import uuid
from pathlib import Path

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.utils.config import Config
from src.utils.data_generator import DataGenerator
from src.utils.job_metadata import JobMetadataManager
from src.utils.performance_monitor import monitor_performance


class TestConfig(unittest.TestCase):

    def test_overrides_are_case_insensitive(self):
        config = Config({'bin_step': 50, 'TRANSFORM': 'minmax-zt', 'not_a_setting': 1})

        self.assertEqual(config.BIN_STEP, 50)
        self.assertEqual(config.TRANSFORM, 'minmax-zt')
        self.assertFalse(hasattr(config, 'NOT_A_SETTING'))

    def test_validate_config(self):
        self.assertTrue(all(Config().validate_config().values()))

        results = Config({'bin_step': 0, 'bin_end': -100}).validate_config()
        self.assertFalse(results['bin_step'])
        self.assertFalse(results['bin_range'])

    def test_save_and_load(self):
        temp_dir = tempfile.mkdtemp()
        try:
            path = os.path.join(temp_dir, 'config.json')
            Config({'bin_step': 100, 'max_workers': 8}).save_to_file(path)
            loaded = Config.load_from_file(path)

            self.assertEqual(loaded.BIN_STEP, 100)
            self.assertEqual(loaded.MAX_WORKERS, 8)
            self.assertEqual(loaded.base_period, (loaded.BASE_PERIOD_START, loaded.BASE_PERIOD_END))
        finally:
            shutil.rmtree(temp_dir)


class TestDataGenerator(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_generate_dataset(self):
        extract = os.path.join(self.temp_dir, 'raw', 'extract.csv')
        site_list = os.path.join(self.temp_dir, 'raw', 'sites.csv')

        stats = DataGenerator(seed=1).generate_dataset(extract, num_sites=8, site_list_path=site_list)

        with open(extract, newline='') as f:
            rows = list(csv.DictReader(f))
        self.assertEqual(len(rows), stats['total_samples'])
        self.assertEqual(sorted({int(r['site_id']) for r in rows}), list(range(1, 9)))

        with open(site_list, newline='') as f:
            self.assertEqual(len(list(csv.DictReader(f))), 8)

    def test_generation_is_reproducible(self):
        first = os.path.join(self.temp_dir, 'a.csv')
        second = os.path.join(self.temp_dir, 'b.csv')
        DataGenerator(seed=3).generate_dataset(first, num_sites=5)
        DataGenerator(seed=3).generate_dataset(second, num_sites=5)

        self.assertEqual(Path(first).read_text(), Path(second).read_text())


class TestJobMetadata(unittest.TestCase):

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.manager = JobMetadataManager(
            metadata_file=str(self.temp_dir / 'jobs.json'),
            processed_dir=str(self.temp_dir / 'processed'),
            uploaded_dir=str(self.temp_dir / 'uploaded'),
        )

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_save_and_load(self):
        jobs = {'abc': {'job_id': 'abc', 'status': 'queued'}}
        self.manager.save_job_metadata(jobs)
        self.assertEqual(self.manager.load_job_metadata(), jobs)

    def test_load_missing_file(self):
        self.assertEqual(self.manager.load_job_metadata(), {})

    def test_discover_existing_jobs(self):
        job_id = str(uuid.uuid4())
        job_dir = self.temp_dir / 'processed' / job_id
        (job_dir / 'binned_zt_020').mkdir(parents=True)
        (job_dir / 'site_flags.csv').write_text('site_id\n')
        (job_dir / 'pipeline_summary.json').write_text(json.dumps({'pipeline_status': 'completed'}))
        (self.temp_dir / 'processed' / 'not-a-job').mkdir()

        jobs = self.manager.discover_existing_jobs()

        self.assertEqual(list(jobs), [job_id])
        job = jobs[job_id]
        self.assertEqual(job['status'], 'completed')
        self.assertIn('site_flags', job['results']['saved_files'])
        self.assertTrue(job['results']['saved_files']['binned_dir'].endswith('binned_zt_020'))


class TestPerformanceMonitor(unittest.TestCase):

    def test_monitor_summary(self):
        with monitor_performance("Test") as monitor:
            monitor.update_progress(10)
            monitor.update_progress(5)
            monitor.add_checkpoint('done')

        summary = monitor.summary
        self.assertEqual(summary['sites_processed'], 2)
        self.assertEqual(summary['samples_processed'], 15)
        self.assertEqual(len(summary['checkpoints']), 1)
        self.assertGreater(summary['peak_memory_usage_mb'], 0)


if __name__ == '__main__':
    unittest.main()
