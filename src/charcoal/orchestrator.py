# ========================
# src/charcoal/orchestrator.py
# ========================

"""
Pipeline Orchestrator Module

Runs the derivation pass over the raw extract, then the binning pass over the
derived sites. Sites are independent, so each pass fans out over a thread
pool; results are collected back in site order and only this thread writes
the shared site log.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from itertools import islice
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple

from .binning import BinningEngine
from .cleaning import SampleParser
from .derivation import DerivationEngine
from .ingestion import CSVReader, SiteEntry, read_enriched_site, read_site_list
from .records import BinGrid, BinningResult, DerivationResult, LogEvent, Sample, SiteFlags
from .storage import DataSaver, format_step
from .transforms import apply_transform, parse_transform
from ..utils.config import Config
from ..utils.performance_monitor import monitor_performance

logger = logging.getLogger(__name__)


class CharcoalPipeline:
    """
    Orchestrates the derivation and binning passes.
    """

    def __init__(self,
                 input_file: str,
                 output_dir: str,
                 site_list_file: Optional[str] = None,
                 config: Optional[Config] = None):
        """
        Initialize the pipeline.

        Args:
            input_file (str): Path to the raw sample extract CSV
            output_dir (str): Directory for output files
            site_list_file (str): Optional site list restricting the binning pass
            config (Config): Configuration object

        Raises:
            ValueError: if the bin grid or transform name is invalid
        """
        self.input_file = input_file
        self.output_dir = output_dir
        self.site_list_file = site_list_file
        self.config = config or Config()

        # Structural problems abort here, before any site is touched
        self.grid = self.check_settings(self.config)
        self.transform = self.config.TRANSFORM

        self.sentinel = self.config.MISSING_SENTINEL
        self.max_workers = max(1, int(self.config.MAX_WORKERS))

        self.reader = CSVReader(self.input_file)
        self.parser = SampleParser(self.sentinel)
        self.derivation = DerivationEngine()
        self.binning = BinningEngine(self.grid)
        self.saver = DataSaver(self.output_dir, self.sentinel)

        self.flags: Dict[int, SiteFlags] = {}
        self.derivation_stats = self._empty_derivation_stats()
        self.binning_stats = self._empty_binning_stats()

        logger.info("CharcoalPipeline initialized:")
        logger.info(f"  Input: {self.input_file}")
        logger.info(f"  Site list: {self.site_list_file or '(all derived sites)'}")
        logger.info(f"  Output: {self.output_dir}")
        logger.info(f"  Transform: {self.transform}, bin step: {self.grid.step}")

    @staticmethod
    def check_settings(config: Config) -> BinGrid:
        """
        Validate the grid and transform settings.

        Raises:
            ValueError: on a non-positive step, an inverted grid or an unknown transform
        """
        grid = BinGrid(float(config.BIN_START), float(config.BIN_END), float(config.BIN_STEP))
        parse_transform(config.TRANSFORM)
        return grid

    @staticmethod
    def _empty_derivation_stats() -> Dict[str, int]:
        return {
            'sites_derived': 0,
            'sites_written': 0,
            'sites_suppressed': 0,
            'sites_failed': 0,
            'samples_derived': 0,
        }

    @staticmethod
    def _empty_binning_stats() -> Dict[str, int]:
        return {
            'sites_requested': 0,
            'sites_binned': 0,
            'sites_skipped': 0,
            'sites_missing_input': 0,
            'bins_written': 0,
        }

    def run(self) -> dict:
        """
        Execute both passes.

        Returns:
            dict: Summary of processing results and saved files
        """
        logger.info(f"Starting charcoal pipeline for '{self.input_file}'...")
        self.saver.start_site_log()
        saved_files: Dict[str, str] = {}

        with monitor_performance("Derivation") as derivation_monitor:
            derived_ids = self._run_derivation(derivation_monitor)

        saved_files['site_flags'] = self.saver.save_site_flags(self.flags)

        with monitor_performance("Binning") as binning_monitor:
            self._run_binning(self._sites_to_bin(derived_ids), binning_monitor)

        saved_files['sites_dir'] = str(self.saver.sites_dir)
        saved_files['binned_dir'] = str(self.saver.binned_dir(self.transform, self.grid.step))
        saved_files['site_log'] = str(Path(self.output_dir) / DataSaver.SITE_LOG_NAME)
        saved_files['data_dictionary'] = self.saver.create_data_dictionary()

        results = {
            'pipeline_status': 'completed',
            'input_file': self.input_file,
            'output_directory': self.output_dir,
            'transform': self.transform,
            'bin_step': self.grid.step,
            'saved_files': saved_files,
            'processing_stats': dict(self.derivation_stats),
            'binning_stats': dict(self.binning_stats),
            'data_quality_stats': {
                **self.parser.get_statistics(),
                'flag_counts': self._flag_counts(),
            },
            'performance': {
                'derivation': derivation_monitor.summary,
                'binning': binning_monitor.summary,
            },
        }
        saved_files['summary'] = self.saver.save_summary(results)

        logger.info("Pipeline finished successfully.")
        self._log_final_summary(results)
        return results

    # ------------------------------------------------------------------
    # Derivation pass

    def iter_site_samples(self) -> Iterator[Tuple[int, List[Sample]]]:
        """Yield (site id, parsed samples) per site in extract order."""
        site_columns = SampleParser.COLUMN_ALIASES['site_id']
        for raw_site, rows in self.reader.read_sites(site_columns):
            samples = [s for s in (self.parser.parse_record(r) for r in rows) if s is not None]
            if not samples:
                logger.warning(f"Site '{raw_site}': no usable rows, skipped")
                continue
            yield samples[0].site_id, samples

    def _derive_and_save(self, item: Tuple[int, List[Sample]]) -> Tuple[int, int, Optional[DerivationResult], Optional[str]]:
        site_id, samples = item
        result = self.derivation.derive_site(site_id, samples)
        if result is None:
            return site_id, 0, None, None
        if result.flags.all_zero_influx:
            # Reported and flagged, but no table is handed to the binning pass
            if self.saver.remove_site_data(site_id):
                result.events.append(LogEvent(site_id, "info", f"Site {site_id} stale table from an earlier run removed"))
            return site_id, len(samples), result, None
        return site_id, len(samples), result, self.saver.save_site_data(result)

    def _run_derivation(self, monitor) -> List[int]:
        derived: List[int] = []
        for item, outcome in self._map_sites(self._derive_and_save, self.iter_site_samples()):
            site_id = item[0]
            if isinstance(outcome, OSError):
                self.derivation_stats['sites_failed'] += 1
                self._write_events([LogEvent(site_id, "error", f"Site {site_id} not written: {outcome}")])
                logger.error(f"Site {site_id}: could not write output: {outcome}")
                continue

            _, n_samples, result, path = outcome
            if result is None:
                continue
            self.flags[site_id] = result.flags
            self.derivation_stats['sites_derived'] += 1
            self.derivation_stats['samples_derived'] += n_samples
            events = list(result.events)
            if path is None:
                self.derivation_stats['sites_suppressed'] += 1
                events.append(LogEvent(site_id, "info", f"Site {site_id} no non-zero influx, table not written"))
            else:
                self.derivation_stats['sites_written'] += 1
                derived.append(site_id)
            self._write_events(events)
            monitor.update_progress(n_samples)

        monitor.add_checkpoint('derivation', dict(self.derivation_stats))
        return derived

    # ------------------------------------------------------------------
    # Binning pass

    def _sites_to_bin(self, derived_ids: List[int]) -> List[SiteEntry]:
        if self.site_list_file:
            return read_site_list(self.site_list_file)
        return [SiteEntry(site_id, '') for site_id in derived_ids]

    def _bin_and_save(self, entry: SiteEntry) -> Tuple[BinningResult, Optional[str], int]:
        # A skipped site must not keep a binned table from a previous run
        self.saver.remove_binned(entry.site_id, self.transform, self.grid.step)

        path = self.saver.site_data_path(entry.site_id)
        points = read_enriched_site(path, self.sentinel)
        transformed = apply_transform(self.transform, points, self.config.base_period)
        result = self.binning.bin_site(entry.site_id, transformed)
        result.events.insert(0, LogEvent(entry.site_id, "info", f"Site {entry.site_id} {entry.site_name}".rstrip()))
        if result.skipped:
            return result, None, len(points)
        if not result.records:
            result.events.append(LogEvent(
                entry.site_id, "warning", f"Site {entry.site_id} no samples inside the bin grid, nothing written"
            ))
            return result, None, len(points)
        saved = self.saver.save_binned(entry.site_id, result.records, self.transform, self.grid.step)
        return result, saved, len(points)

    def _run_binning(self, sites: List[SiteEntry], monitor) -> None:
        self.binning_stats['sites_requested'] = len(sites)
        for entry, outcome in self._map_sites(self._bin_and_save, sites):
            if isinstance(outcome, OSError):
                self.binning_stats['sites_missing_input'] += 1
                self._write_events([LogEvent(entry.site_id, "warning", f"Site {entry.site_id} skipped: {outcome}")])
                logger.warning(f"Site {entry.site_id}: skipped for binning: {outcome}")
                continue

            result, saved, n_points = outcome
            if saved is None:
                self.binning_stats['sites_skipped'] += 1
            else:
                self.binning_stats['sites_binned'] += 1
                self.binning_stats['bins_written'] += len(result.records)
            self._write_events(result.events)
            monitor.update_progress(n_points)

        monitor.add_checkpoint('binning', dict(self.binning_stats))

    # ------------------------------------------------------------------
    # Helpers

    def _map_sites(self, fn: Callable, items: Iterable) -> Iterator[Tuple[Any, Any]]:
        """
        Apply `fn` to each site concurrently, yielding (item, outcome) in input
        order. OSError from a site (collaborator failure) is yielded as the
        outcome instead of aborting the run; anything else propagates.
        Items are consumed in batches so the extract is never fully loaded.
        """
        batch_size = self.max_workers * 4
        iterator = iter(items)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            while True:
                batch = list(islice(iterator, batch_size))
                if not batch:
                    break
                futures = [executor.submit(fn, item) for item in batch]
                for item, future in zip(batch, futures):
                    try:
                        outcome = future.result()
                    except OSError as e:
                        outcome = e
                    yield item, outcome

    def _write_events(self, events: List[LogEvent]) -> None:
        self.saver.append_site_log(events)

    def _flag_counts(self) -> Dict[str, int]:
        counts = {name: 0 for name in SiteFlags.FLAG_NAMES}
        for flags in self.flags.values():
            for name in flags.triggered():
                counts[name] += 1
        return counts

    def _log_final_summary(self, results: dict) -> None:
        """Log final pipeline summary."""
        logger.info("=" * 60)
        logger.info("PIPELINE EXECUTION SUMMARY")
        logger.info("=" * 60)

        derivation = results['processing_stats']
        binning = results['binning_stats']
        quality = results['data_quality_stats']

        logger.info(f"Input file: {results['input_file']}")
        logger.info(f"Rows parsed: {quality['records_parsed']:,} of {quality['records_processed']:,}")
        logger.info(f"Sites derived: {derivation['sites_derived']} "
                    f"({derivation['sites_suppressed']} without influx)")
        logger.info(f"Sites binned: {binning['sites_binned']} of {binning['sites_requested']} "
                    f"({binning['sites_skipped']} ineligible, {binning['sites_missing_input']} missing input)")
        logger.info(f"Transform: {results['transform']}, step {format_step(results['bin_step'])}")
        for name, count in quality['flag_counts'].items():
            if count:
                logger.info(f"  {name}: {count} sites")
        logger.info(f"Output directory: {results['output_directory']}")
        logger.info("=" * 60)

    def validate_input(self) -> bool:
        """
        Validate input files exist and are readable.

        Returns:
            bool: True if input is valid
        """
        paths = [self.input_file] + ([self.site_list_file] if self.site_list_file else [])
        for path_str in paths:
            input_path = Path(path_str)
            if not input_path.is_file():
                logger.error(f"Input file does not exist: {path_str}")
                return False
            try:
                with open(input_path, 'r', encoding='utf-8') as f:
                    f.readline()
            except OSError as e:
                logger.error(f"Cannot read input file {path_str}: {e}")
                return False

        logger.info(f"Input validation passed: {', '.join(paths)}")
        return True

    def estimate_processing_time(self) -> dict:
        """
        Rough processing estimate from the extract size.

        Returns:
            dict: Processing time estimates
        """
        try:
            file_size = Path(self.input_file).stat().st_size
        except OSError as e:
            logger.warning(f"Could not estimate processing time: {e}")
            return {}

        estimated_rows = file_size // 60  # ~60 bytes per sample row
        base_rate = 50000  # samples per second, conservative
        return {
            'file_size_mb': file_size / (1024 * 1024),
            'estimated_samples': estimated_rows,
            'estimated_processing_time_seconds': estimated_rows / base_rate,
        }
