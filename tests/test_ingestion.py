# ========================
# tests/test_ingestion.py
# ========================

import unittest
import tempfile
import os
import sys
import csv

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.charcoal.ingestion import CSVReader, read_enriched_site, read_site_list

HEADER = ['site_id', 'sample_index', 'sample_id', 'depth', 'est_age', 'quantity', 'quant_type']


def write_temp_csv(rows):
    with tempfile.NamedTemporaryFile(mode='w', suffix='.csv', delete=False, newline='') as f:
        csv.writer(f).writerows(rows)
        return f.name


class TestDataIngestion(unittest.TestCase):
    """Test the CSV ingestion module."""

    def test_csv_reader_chunked_processing(self):
        """Test that CSVReader properly chunks data."""
        temp_file_path = write_temp_csv([
            HEADER,
            ['1', '1', '11', '0.10', '120', '3.2', 'CONC'],
            ['1', '2', '12', '0.12', '140', '2.9', 'CONC'],
            ['2', '1', '21', '0.05', '80', '0.4', 'INFL'],
            ['2', '2', '22', '0.07', '95', '0.6', 'INFL'],
        ])

        try:
            reader = CSVReader(temp_file_path)
            chunks = list(reader.read_in_chunks(chunk_size=2))

            self.assertEqual(len(chunks), 2)
            self.assertEqual(len(chunks[0]), 2)
            self.assertEqual(len(chunks[1]), 2)
            self.assertEqual(reader.header, HEADER)
            self.assertEqual(chunks[0][0]['sample_id'], '11')

        finally:
            os.unlink(temp_file_path)

    def test_csv_reader_file_not_found(self):
        """Test CSVReader behavior with non-existent file."""
        reader = CSVReader("non_existent_file.csv")

        with self.assertRaises(FileNotFoundError):
            list(reader.read_in_chunks(chunk_size=10))
        with self.assertRaises(FileNotFoundError):
            list(reader.read_sites())

    def test_csv_reader_empty_file(self):
        """Test CSVReader behavior with empty CSV file."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.csv', delete=False) as f:
            temp_file_path = f.name

        try:
            reader = CSVReader(temp_file_path)
            self.assertEqual(list(reader.read_in_chunks(chunk_size=10)), [])
            self.assertEqual(list(reader.read_sites()), [])

        finally:
            os.unlink(temp_file_path)

    def test_read_sites_groups_consecutive_rows(self):
        """Rows are grouped per site and keep their file order."""
        temp_file_path = write_temp_csv([
            HEADER,
            ['3', '2', '32', '0.2', '200', '1', 'CONC'],
            ['3', '1', '31', '0.1', '100', '1', 'CONC'],
            ['1', '1', '11', '0.1', '100', '1', 'INFL'],
            ['3', '3', '33', '0.3', '300', '1', 'CONC'],
        ])

        try:
            sites = list(CSVReader(temp_file_path).read_sites())

            self.assertEqual([site for site, _ in sites], ['3', '1', '3'])
            self.assertEqual([r['sample_index'] for r in sites[0][1]], ['2', '1'])
            self.assertEqual(len(sites[2][1]), 1)

        finally:
            os.unlink(temp_file_path)

    def test_read_sites_with_alternate_site_column(self):
        """An aliased site column still separates the sites."""
        temp_file_path = write_temp_csv([
            ['id_site', 'sample_index', 'depth', 'est_age', 'quantity'],
            ['1', '1', '0.1', '100', '1'],
            ['1', '2', '0.2', '200', '1'],
            ['2', '1', '0.1', '50', '1'],
            ['2', '2', '0.3', '80', '1'],
        ])

        try:
            sites = list(CSVReader(temp_file_path).read_sites(('site_id', 'id_site')))

            self.assertEqual([site for site, _ in sites], ['1', '2'])
            self.assertEqual([len(rows) for _, rows in sites], [2, 2])

        finally:
            os.unlink(temp_file_path)

    def test_read_sites_without_site_column(self):
        """A header with no site column is a structural error, not one big site."""
        temp_file_path = write_temp_csv([
            ['core', 'sample_index', 'depth'],
            ['1', '1', '0.1'],
        ])

        try:
            with self.assertRaises(ValueError):
                list(CSVReader(temp_file_path).read_sites(('site_id', 'id_site')))

        finally:
            os.unlink(temp_file_path)

    def test_read_site_list(self):
        """Invalid or non-positive site ids are skipped."""
        temp_file_path = write_temp_csv([
            ['site_id', 'site_name'],
            ['1', 'Lake One'],
            ['abc', 'Broken'],
            ['-3', 'Negative'],
            ['12', ' Bog Twelve '],
        ])

        try:
            entries = read_site_list(temp_file_path)

            self.assertEqual([e.site_id for e in entries], [1, 12])
            self.assertEqual(entries[1].site_name, 'Bog Twelve')

        finally:
            os.unlink(temp_file_path)

    def test_read_enriched_site(self):
        """Sentinel and blank values come back as None."""
        temp_file_path = write_temp_csv([
            ['sample_index', 'est_age', 'influx'],
            ['1', '100', '2.5'],
            ['2', '-9999', '3.0'],
            ['3', '300', ''],
        ])

        try:
            points = read_enriched_site(temp_file_path, sentinel=-9999.0)
            self.assertEqual(points, [(100.0, 2.5), (None, 3.0), (300.0, None)])

        finally:
            os.unlink(temp_file_path)

    def test_read_enriched_site_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            read_enriched_site("no_such_site.csv", sentinel=-9999.0)


if __name__ == '__main__':
    unittest.main()
