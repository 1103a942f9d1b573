# utils.py

import os
import time
import multiprocessing
import logging
from logging.handlers import RotatingFileHandler
import argparse

from chunkgwas.config import RunConfig, TRANSFORMS, BACKENDS
from chunkgwas.errors import ConfigurationError


class HelpAction(argparse.Action):
    """Print help and exit non-zero: a help request never counts as a run."""

    def __init__(self, option_strings, dest=argparse.SUPPRESS, default=argparse.SUPPRESS, help=None):
        super().__init__(option_strings=option_strings, dest=dest, default=default, nargs=0, help=help)

    def __call__(self, parser, namespace, values, option_string=None):
        parser.print_help()
        parser.exit(1)


def build_parser():
    parser = argparse.ArgumentParser(
        prog='chunkgwas',
        add_help=False,
        description='Chunked multivariate GWAS: split an indexed VCF into chunks, '
                    'test every region in parallel and merge the results.')
    parser.add_argument('-h', '--help', action=HelpAction,
                        help='Show this help message and exit (status 1, no run).')

    # Mandatory inputs
    parser.add_argument('--phenotypes', required=True, help='Phenotype table.')
    parser.add_argument('--covariates', required=True, help='Covariate table.')
    parser.add_argument('--genotypes', required=True, help='Indexed VCF/BCF file.')
    parser.add_argument('--index', default=None,
                        help='Index of the genotype file (default: <genotypes>.tbi or .csi).')

    # Analysis parameters
    parser.add_argument('-l', '--chunk-size', type=int, default=500,
                        help='Number of variants per chunk (default: 500)')
    parser.add_argument('-t', '--transform', choices=TRANSFORMS, default='none',
                        help='Phenotype transformation (default: none)')
    parser.add_argument('-i', '--interaction', default='none',
                        help="Covariate to test for interaction with the genotype, or 'none' (default: none)")
    parser.add_argument('--min-nb-ind-geno', type=int, default=10,
                        help='Minimum number of individuals per genotype group (default: 10)')

    # Output
    parser.add_argument('--save-dir', default='result', help='Output directory (default: result)')
    parser.add_argument('--output', default='mvgwas.tsv', help='Output file name (default: mvgwas.tsv)')
    parser.add_argument('--keep-tmp', action='store_true',
                        help='Keep the intermediate chunk files.')

    # Execution
    parser.add_argument('--num-cores', type=int, default=4,
                        help='Number of cores to use for parallel processing.')
    parser.add_argument('--backend', choices=BACKENDS, default='threading',
                        help='joblib backend for the worker pool (default: threading)')
    parser.add_argument('--test-cmd', default='test.R',
                        help='Command running the association test for one region (default: test.R)')
    parser.add_argument('--preprocess-cmd', default=None,
                        help='Command preprocessing the phenotype and covariate tables (optional).')
    parser.add_argument('--timeout', type=float, default=None,
                        help='Timeout in seconds for one test invocation (default: none)')
    parser.add_argument('--strict', action='store_true',
                        help='Fail the run if any region fails or any chunk result is missing.')
    parser.add_argument('--debug', action='store_true', help='Verbose logging')
    return parser


def parse_arguments(argv=None):
    """
    Parses command-line arguments into a validated RunConfig.
    Exits with a usage message on missing or invalid inputs.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    config = RunConfig.from_args(args)
    try:
        config.validate()
    except ConfigurationError as e:
        parser.error(str(e))
    return config


def setup_logging(save_dir, debug=False):
    """
    Initializes the logging settings.
    Sets up both log file and console output.
    """
    log_file = os.path.join(save_dir, 'processing.log')

    # Use RotatingFileHandler to limit log file size and create backups
    handler = RotatingFileHandler(log_file, maxBytes=10**7, backupCount=5)

    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format='%(asctime)s:%(levelname)s:%(message)s',
        handlers=[
            handler,
            logging.StreamHandler()
        ],
        force=True
    )


def log_step_start(step_name):
    """
    Logs the start of a step and returns the start time.
    """
    logging.info(f"=== Step Start: {step_name} ===")
    return time.time()


def log_step_end(step_name, start_time):
    """
    Logs the end of a step, calculates the elapsed time, and logs it.
    Formats the elapsed time as "00h 00m 00s".
    """
    duration = time.time() - start_time
    formatted_duration = time.strftime("%Hh %Mm %Ss", time.gmtime(duration))
    logging.info(f"=== Step End: {step_name} | Elapsed Time: {formatted_duration} ===\n")


def check_num_cores(num_cores):
    max_cores = multiprocessing.cpu_count()
    if num_cores > max_cores:
        logging.info(f"Warning: Specified number of cores ({num_cores}) exceeds available cores ({max_cores}). Using {max_cores} cores instead.")
        num_cores = max_cores
    return num_cores


def log_parameters(config):
    """Log the run parameters, one per line."""
    logging.info("M V G W A S  ~  chunked association run")
    logging.info("=" * 40)
    for name in ('phenotypes', 'covariates', 'genotypes', 'chunk_size', 'transform',
                 'interaction', 'min_nb_ind_geno', 'save_dir', 'output', 'num_cores',
                 'backend', 'test_cmd', 'preprocess_cmd', 'timeout', 'strict'):
        logging.info(f"{name:<16}: {getattr(config, name)}")
