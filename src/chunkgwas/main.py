# main.py

import os
import sys
import shutil
import logging
import dataclasses
from enum import Enum

from chunkgwas.utils import (
    check_num_cores,
    setup_logging,
    log_step_start,
    log_step_end,
    log_parameters,
    parse_arguments
)
from chunkgwas.variant_processing import PositionIndex
from chunkgwas.chunking import count_chunks, chunk_id_width, split_positions
from chunkgwas.dispatch import CommandTestRunner, dispatch_chunks, preprocess_tables
from chunkgwas.aggregation import aggregate_results, collect_artifacts


class RunState(Enum):
    INITIALIZED = 'Initialized'
    SPLITTING = 'Splitting'
    DISPATCHING = 'Resolving&Dispatching'
    AGGREGATING = 'Aggregating'
    COMPLETED = 'Completed'
    FAILED = 'Failed'


class Pipeline:
    """
    One run: split the variant file into chunks, test every region and
    merge the chunk results.

    `runner` replaces the external test command; it is called as
    runner(region, output_path) and may raise TestInvocationFailure.
    """

    def __init__(self, config, runner=None):
        self.config = config
        self.runner = runner
        self.state = RunState.INITIALIZED
        self.report = None

    def _enter(self, state):
        logging.info(f"Run state: {self.state.value} -> {state.value}")
        self.state = state

    def run(self):
        try:
            return self._run()
        except Exception:
            self._enter(RunState.FAILED)
            raise

    def _run(self):
        cfg = self.config
        if os.path.exists(cfg.tmp_dir):
            shutil.rmtree(cfg.tmp_dir)
        os.makedirs(cfg.tmp_dir)
        index = PositionIndex(cfg.genotypes, cfg.index)

        # 0. Preprocess phenotypes and covariates
        step_name = "Preprocess phenotypes and covariates"
        start_time = log_step_start(step_name)
        phenotypes, covariates = preprocess_tables(cfg)
        runner = self.runner or CommandTestRunner(cfg, phenotypes, covariates)
        log_step_end(step_name, start_time)

        # 1. Split positions into chunks
        self._enter(RunState.SPLITTING)
        step_name = "Split variant positions into chunks"
        start_time = log_step_start(step_name)
        n_positions = index.count()
        n_chunks = count_chunks(n_positions, cfg.chunk_size)
        width = chunk_id_width(n_chunks)
        expected_ids = [str(i).zfill(width) for i in range(n_chunks)]
        chunks = split_positions(index, cfg.chunk_size, n_positions)
        logging.info(f"Total chunk count: {n_chunks} (chunk size {cfg.chunk_size})")
        log_step_end(step_name, start_time)

        # 2. Resolve regions and run the test on each
        self._enter(RunState.DISPATCHING)
        step_name = "Parallel chunk processing"
        start_time = log_step_start(step_name)
        results = dispatch_chunks(chunks, runner, cfg.tmp_dir,
                                  num_cores=cfg.num_cores, backend=cfg.backend)
        log_step_end(step_name, start_time)

        # 3. Merge chunk results
        self._enter(RunState.AGGREGATING)
        step_name = "Merge chunk results"
        start_time = log_step_start(step_name)
        failed_regions = [f for r in results for f in r.failures]
        self.report = aggregate_results(
            collect_artifacts(cfg.tmp_dir),
            cfg.output_path,
            interaction=cfg.interaction,
            expected_ids=expected_ids,
            failed_regions=failed_regions,
            strict=cfg.strict
        )
        if not cfg.keep_tmp:
            shutil.rmtree(cfg.tmp_dir, ignore_errors=True)
        log_step_end(step_name, start_time)

        self._enter(RunState.COMPLETED)
        return self.report


def main(argv=None):
    # Parse and validate arguments before anything runs
    config = parse_arguments(argv)

    os.makedirs(config.save_dir, exist_ok=True)
    setup_logging(config.save_dir, config.debug)
    config = dataclasses.replace(config, num_cores=check_num_cores(config.num_cores))

    logging.info("Command Line: " + " ".join(sys.argv if argv is None else argv))
    logging.info("=== [chunkgwas] Program Started ===\n")
    log_parameters(config)

    try:
        report = Pipeline(config).run()
    except Exception as e:
        logging.error(f"An error occurred: {e}", exc_info=True)
        sys.exit(1)

    if report.complete:
        logging.info(f"=== All steps completed successfully: {report.output_path} ===")
    else:
        logging.warning(f"=== Completed with missing results: {report.output_path} "
                        f"(details in {report.sidecar_path}) ===")
    return 0


if __name__ == '__main__':
    main()
