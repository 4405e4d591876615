# ========================
# tests/test_pipeline.py
# ========================

import unittest
import tempfile
import shutil
import json
import csv
import sys
import os
from pathlib import Path

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.charcoal.cleaning import SampleParser
from src.charcoal.orchestrator import CharcoalPipeline
from src.charcoal.storage import format_step
from src.utils.config import Config
from src.utils.data_generator import DataGenerator

EXTRACT_HEADER = ['site_id', 'sample_index', 'sample_id', 'depth', 'est_age', 'quantity', 'quant_type']


class TestSampleParser(unittest.TestCase):

    def setUp(self):
        self.parser = SampleParser(sentinel=-9999.0)

    def test_parser_valid_record(self):
        """
        Tests parsing of a complete record.
        """
        raw_record = {
            'site_id': '12', 'sample_index': '3', 'sample_id': '1041',
            'depth': '0.125', 'est_age': '850.5', 'quantity': '4.2', 'quant_type': ' conc ',
        }

        sample = self.parser.parse_record(raw_record)

        self.assertIsNotNone(sample)
        self.assertEqual(sample.site_id, 12)
        self.assertEqual(sample.sample_index, 3)
        self.assertEqual(sample.depth, 0.125)
        self.assertEqual(sample.est_age, 850.5)
        self.assertEqual(sample.quant_type_code, 'conc')

    def test_parser_missing_values_become_none(self):
        """
        Sentinel, blank and junk numbers are missing, not dropped.
        """
        raw_record = {
            'site_id': '1', 'sample_index': '1', 'sample_id': '-9999',
            'depth': '-9999', 'est_age': '', 'quantity': 'NA', 'quant_type': 'INFL',
        }

        sample = self.parser.parse_record(raw_record)

        self.assertIsNotNone(sample)
        self.assertIsNone(sample.sample_id)
        self.assertIsNone(sample.depth)
        self.assertIsNone(sample.est_age)
        self.assertIsNone(sample.quantity)
        self.assertEqual(self.parser.missing_values, 3)

    def test_parser_drops_rows_without_site(self):
        """
        Rows without a positive site id or a sample index are dropped.
        """
        for site_id, sample_index in (('', '1'), ('0', '1'), ('-9999', '1'), ('4', '')):
            record = {'site_id': site_id, 'sample_index': sample_index, 'depth': '1'}
            self.assertIsNone(self.parser.parse_record(record), f"Failed for {site_id!r}/{sample_index!r}")

        stats = self.parser.get_statistics()
        self.assertEqual(stats['records_processed'], 4)
        self.assertEqual(stats['records_dropped'], 4)
        self.assertEqual(stats['success_rate'], 0)

    def test_parser_column_aliases(self):
        record = {'id_site': '5', 'index': '2', 'age': '100', 'quant': '1.5', 'ID_QUANTTYPE': 'C0P0'}
        sample = self.parser.parse_record(record)

        self.assertEqual((sample.site_id, sample.sample_index), (5, 2))
        self.assertEqual(sample.est_age, 100.0)
        self.assertEqual(sample.quantity, 1.5)
        self.assertEqual(sample.quant_type_code, 'C0P0')

    def test_format_step(self):
        self.assertEqual(format_step(20), '020')
        self.assertEqual(format_step(500.0), '500')
        self.assertEqual(format_step(2.5), '2.5')


class TestCharcoalPipeline(unittest.TestCase):
    """End-to-end runs on a small extract in a temporary directory."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.input_file = os.path.join(self.temp_dir, 'extract.csv')
        self.output_dir = os.path.join(self.temp_dir, 'out')
        self.config = Config({
            'bin_start': 0, 'bin_end': 200, 'bin_step': 20,
            'transform': 'raw', 'max_workers': 2,
        })

        with open(self.input_file, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(EXTRACT_HEADER)
            writer.writerows([
                [1, 1, 101, 10, 100, 5, 'CONC'],
                [1, 2, 102, 11, 105, 6, 'CONC'],
                [1, 3, 103, 12, 112, 7, 'CONC'],
                [2, 1, 201, 1, 10, 0, 'CONC'],
                [2, 2, 202, 2, 20, 0, 'CONC'],
                [3, 1, 301, 1, 50, 3.5, 'CONC'],
            ])

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def _read_csv(self, path):
        with open(path, newline='') as f:
            return list(csv.DictReader(f))

    def test_full_run(self):
        results = CharcoalPipeline(self.input_file, self.output_dir, config=self.config).run()

        self.assertEqual(results['pipeline_status'], 'completed')
        stats = results['processing_stats']
        self.assertEqual(stats['sites_derived'], 3)
        self.assertEqual(stats['sites_written'], 2)
        self.assertEqual(stats['sites_suppressed'], 1)
        self.assertEqual(stats['samples_derived'], 6)

        binning = results['binning_stats']
        self.assertEqual(binning['sites_requested'], 2)
        self.assertEqual(binning['sites_binned'], 2)
        self.assertEqual(binning['bins_written'], 3)
        self.assertEqual(results['data_quality_stats']['flag_counts']['all_zero_influx'], 1)

    def test_site_outputs(self):
        CharcoalPipeline(self.input_file, self.output_dir, config=self.config).run()
        out = Path(self.output_dir)

        site_1 = self._read_csv(out / 'sites' / '0001_data.csv')
        self.assertAlmostEqual(float(site_1[0]['influx']), 100.0)
        self.assertAlmostEqual(float(site_1[1]['influx']), 100.0)
        self.assertEqual(site_1[0]['influx_provenance'], 'calculated from conc')

        # Missing values come back as the sentinel
        site_3 = self._read_csv(out / 'sites' / '0003_data.csv')
        self.assertEqual(float(site_3[0]['sed_rate']), -9999.0)
        self.assertEqual(site_3[0]['influx_provenance'], 'copied from quant')

        self.assertFalse((out / 'sites' / '0002_data.csv').exists())

        binned = self._read_csv(out / 'binned_raw_020' / '0001_binned_raw_020.csv')
        self.assertEqual([float(r['bin_age']) for r in binned], [100.0, 120.0])
        self.assertEqual([int(r['sample_count']) for r in binned], [2, 1])
        self.assertAlmostEqual(float(binned[0]['mean_value']), 100.0)

        flags = self._read_csv(out / 'site_flags.csv')
        self.assertEqual([r['site_id'] for r in flags], ['1', '2', '3'])
        self.assertEqual(flags[1]['all_zero_influx'], '1')

        summary = json.loads((out / 'pipeline_summary.json').read_text())
        self.assertEqual(summary['processing_stats']['sites_derived'], 3)

    def test_site_log_is_grouped_by_site(self):
        CharcoalPipeline(self.input_file, self.output_dir, config=self.config).run()
        lines = (Path(self.output_dir) / 'site_log.txt').read_text().splitlines()

        self.assertTrue(lines[0].endswith('Site 1 3 samples'))
        first_site_2 = next(i for i, line in enumerate(lines) if 'Site 2 2 samples' in line)
        first_site_3 = next(i for i, line in enumerate(lines) if 'Site 3 1 samples' in line)
        self.assertLess(first_site_2, first_site_3)
        self.assertTrue(any('all influx values zero or missing' in line for line in lines))

    def test_site_list_with_missing_sites(self):
        site_list = os.path.join(self.temp_dir, 'sites.csv')
        with open(site_list, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(['site_id', 'site_name'])
            writer.writerows([[1, 'Lake One'], [2, 'Zero Bog'], [9, 'Nowhere']])

        results = CharcoalPipeline(self.input_file, self.output_dir, site_list, self.config).run()
        binning = results['binning_stats']

        self.assertEqual(binning['sites_requested'], 3)
        self.assertEqual(binning['sites_binned'], 1)
        self.assertEqual(binning['sites_missing_input'], 2)
        log_text = (Path(self.output_dir) / 'site_log.txt').read_text()
        self.assertIn('Site 1 Lake One', log_text)

    def test_invalid_settings_fail_fast(self):
        with self.assertRaises(ValueError):
            CharcoalPipeline(self.input_file, self.output_dir, config=Config({'bin_step': 0}))
        with self.assertRaises(ValueError):
            CharcoalPipeline(self.input_file, self.output_dir, config=Config({'transform': 'cube'}))

    def test_missing_input_file(self):
        pipeline = CharcoalPipeline(os.path.join(self.temp_dir, 'nope.csv'), self.output_dir, config=self.config)
        self.assertFalse(pipeline.validate_input())
        with self.assertRaises(FileNotFoundError):
            pipeline.run()

    def test_alternate_site_column_keeps_sites_apart(self):
        with open(self.input_file, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(['id_site'] + EXTRACT_HEADER[1:])
            writer.writerows([
                [1, 1, 101, 10, 100, 5, 'CONC'],
                [1, 2, 102, 11, 105, 6, 'CONC'],
                [1, 3, 103, 12, 112, 7, 'CONC'],
                [2, 1, 201, 1, 10, 1, 'CONC'],
                [2, 2, 202, 2, 20, 2, 'CONC'],
                [2, 3, 203, 3, 30, 3, 'CONC'],
            ])

        pipeline = CharcoalPipeline(self.input_file, self.output_dir, config=self.config)
        sites = list(pipeline.iter_site_samples())

        self.assertEqual([site_id for site_id, _ in sites], [1, 2])
        self.assertEqual([len(samples) for _, samples in sites], [3, 3])

    def test_unwritable_site_does_not_stop_the_run(self):
        # A directory where the site table should go makes that one write fail
        os.makedirs(os.path.join(self.output_dir, 'sites', '0001_data.csv'))

        results = CharcoalPipeline(self.input_file, self.output_dir, config=self.config).run()
        stats = results['processing_stats']

        self.assertEqual(results['pipeline_status'], 'completed')
        self.assertEqual(stats['sites_failed'], 1)
        self.assertEqual(stats['sites_written'], 1)
        self.assertEqual(stats['sites_suppressed'], 1)
        self.assertTrue(os.path.isfile(os.path.join(self.output_dir, 'sites', '0003_data.csv')))
        self.assertEqual(results['binning_stats']['sites_requested'], 1)

        lines = (Path(self.output_dir) / 'site_log.txt').read_text().splitlines()
        failed = [line for line in lines if 'Site 1 not written' in line]
        self.assertEqual(len(failed), 1)
        self.assertTrue(failed[0].startswith('ERROR'))

    def test_site_outside_grid_writes_no_table(self):
        with open(self.input_file, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(EXTRACT_HEADER)
            writer.writerows([
                [4, 1, 401, 1, 1000, 2, 'CONC'],
                [4, 2, 402, 2, 1010, 2, 'CONC'],
                [4, 3, 403, 3, 1020, 2, 'CONC'],
            ])

        results = CharcoalPipeline(self.input_file, self.output_dir, config=self.config).run()
        binning = results['binning_stats']

        self.assertEqual(binning['sites_requested'], 1)
        self.assertEqual(binning['sites_binned'], 0)
        self.assertEqual(binning['sites_skipped'], 1)
        self.assertEqual(binning['bins_written'], 0)
        out = Path(self.output_dir)
        self.assertFalse((out / 'binned_raw_020' / '0004_binned_raw_020.csv').exists())
        self.assertIn('no samples inside the bin grid', (out / 'site_log.txt').read_text())

    def test_stale_outputs_of_suppressed_site_removed(self):
        out = Path(self.output_dir)
        stale_site = out / 'sites' / '0002_data.csv'
        stale_binned = out / 'binned_raw_020' / '0002_binned_raw_020.csv'
        for path in (stale_site, stale_binned):
            path.parent.mkdir(parents=True, exist_ok=True)
        stale_site.write_text('sample_index,est_age,influx\n1,10,4.0\n')
        stale_binned.write_text('bin_age,mean_value,sample_count\n20,4.0,1\n')

        site_list = os.path.join(self.temp_dir, 'sites.csv')
        with open(site_list, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(['site_id', 'site_name'])
            writer.writerows([[1, 'Lake One'], [2, 'Zero Bog']])

        results = CharcoalPipeline(self.input_file, self.output_dir, site_list, self.config).run()
        binning = results['binning_stats']

        self.assertFalse(stale_site.exists())
        self.assertFalse(stale_binned.exists())
        self.assertEqual(binning['sites_binned'], 1)
        self.assertEqual(binning['sites_missing_input'], 1)

    def test_synthetic_extract(self):
        stats = DataGenerator(seed=7).generate_dataset(self.input_file, num_sites=12, max_samples=20)
        config = Config({'max_workers': 3})

        results = CharcoalPipeline(self.input_file, self.output_dir, config=config).run()

        self.assertEqual(results['processing_stats']['sites_derived'], 12)
        self.assertEqual(results['processing_stats']['samples_derived'], stats['total_samples'])
        binning = results['binning_stats']
        self.assertEqual(
            binning['sites_binned'] + binning['sites_skipped'] + binning['sites_missing_input'],
            binning['sites_requested']
        )


if __name__ == '__main__':
    unittest.main()
