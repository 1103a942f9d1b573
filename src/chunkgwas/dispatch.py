# dispatch.py

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass, field
from typing import List, Optional

from joblib import Parallel, delayed

from chunkgwas.aggregation import append_rows
from chunkgwas.chunking import Region, resolve_regions
from chunkgwas.errors import ConfigurationError, PreprocessingFailure, TestInvocationFailure

STDERR_TAIL = 5


@dataclass(frozen=True)
class RegionOutcome:
    """Result-or-error of one external test invocation."""
    chunk_id: str
    k: int
    region: Region
    path: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self):
        return self.error is None


@dataclass
class ChunkResult:
    chunk_id: str
    path: str
    outcomes: List[RegionOutcome] = field(default_factory=list)

    @property
    def failures(self):
        return [o for o in self.outcomes if not o.ok]


def chunk_artifact(tmp_dir, chunk_id):
    return os.path.join(tmp_dir, f"chunk_{chunk_id}.tsv")


def region_partial(tmp_dir, chunk_id, k):
    return os.path.join(tmp_dir, f"chunk_{chunk_id}.{k}.tsv")


def _stderr_tail(stderr):
    if not stderr:
        return ''
    if isinstance(stderr, bytes):
        stderr = stderr.decode(errors='replace')
    return ' | '.join(stderr.strip().splitlines()[-STDERR_TAIL:])


def _run_command(argv, timeout=None):
    """
    Run an external command, raising OSError if the executable is missing or
    cannot be executed, and CalledProcessError / TimeoutExpired on failure.
    """
    logging.debug("Running: " + " ".join(shlex.quote(a) for a in argv))
    return subprocess.run(argv, check=True, capture_output=True, text=True, timeout=timeout)


def preprocess_tables(config):
    """
    Run the optional preprocessing command on the phenotype and covariate
    tables. Returns the paths handed to every test invocation.
    """
    if not config.preprocess_cmd:
        logging.info("No preprocessing command given, using input tables as-is")
        return config.phenotypes, config.covariates

    os.makedirs(config.tmp_dir, exist_ok=True)
    out_pheno = os.path.join(config.tmp_dir, 'pheno_preproc.tsv.gz')
    out_cov = os.path.join(config.tmp_dir, 'cov_preproc.tsv')
    argv = shlex.split(config.preprocess_cmd) + [
        '--phenotypes', config.phenotypes,
        '--covariates', config.covariates,
        '--out_pheno', out_pheno,
        '--out_cov', out_cov,
    ]
    try:
        _run_command(argv, timeout=config.timeout)
    except FileNotFoundError as e:
        raise ConfigurationError(f"Preprocessing command not found: {argv[0]}") from e
    except OSError as e:
        raise ConfigurationError(f"Preprocessing command cannot be executed: {argv[0]} ({e})") from e
    except subprocess.CalledProcessError as e:
        raise PreprocessingFailure(
            f"Preprocessing exited with status {e.returncode}: {_stderr_tail(e.stderr)}") from e
    except subprocess.TimeoutExpired as e:
        raise PreprocessingFailure(f"Preprocessing timed out after {e.timeout}s") from e

    for path in (out_pheno, out_cov):
        if not os.path.exists(path):
            raise PreprocessingFailure(f"Preprocessing did not produce {path}")
    logging.info(f"Preprocessed tables: {out_pheno}, {out_cov}")
    return out_pheno, out_cov


class CommandTestRunner:
    """
    Runs the external association test for one region.

    Called as runner(region, output_path). Writing nothing to output_path
    is a valid outcome (too few individuals in the region).
    """

    def __init__(self, config, phenotypes, covariates):
        self.command = shlex.split(config.test_cmd)
        self.phenotypes = phenotypes
        self.covariates = covariates
        self.genotypes = config.genotypes
        self.min_nb_ind_geno = config.min_nb_ind_geno
        self.transform = config.transform
        self.interaction = config.interaction
        self.timeout = config.timeout
        if not self.command:
            raise ConfigurationError("Empty test command")

    def argv(self, region, output_path):
        return self.command + [
            '--phenotypes', self.phenotypes,
            '--covariates', self.covariates,
            '--genotypes', self.genotypes,
            '--region', str(region),
            '--min_nb_ind_geno', str(self.min_nb_ind_geno),
            '--transform', self.transform,
            '--interaction', self.interaction,
            '--output', output_path,
        ]

    def __call__(self, region, output_path):
        argv = self.argv(region, output_path)
        try:
            _run_command(argv, timeout=self.timeout)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Test command not found: {argv[0]}") from e
        except OSError as e:
            raise ConfigurationError(f"Test command cannot be executed: {argv[0]} ({e})") from e
        except subprocess.CalledProcessError as e:
            raise TestInvocationFailure(
                f"exited with status {e.returncode}: {_stderr_tail(e.stderr)}") from e
        except subprocess.TimeoutExpired as e:
            raise TestInvocationFailure(f"timed out after {e.timeout}s") from e


def run_region(runner, chunk_id, k, region, tmp_dir):
    """Run the test for one region. Only TestInvocationFailure is caught."""
    out_path = region_partial(tmp_dir, chunk_id, k)
    if os.path.exists(out_path):
        os.remove(out_path)
    try:
        runner(region, out_path)
    except TestInvocationFailure as e:
        e.chunk_id, e.region = chunk_id, region
        logging.warning(f"Test failed: {e}")
        if os.path.exists(out_path):
            os.remove(out_path)
        return RegionOutcome(chunk_id, k, region, error=str(e.args[0]) if e.args else 'failed')
    return RegionOutcome(chunk_id, k, region, path=out_path if os.path.exists(out_path) else None)


def process_one_chunk_and_dump(chunk, runner, tmp_dir):
    """
    Run every region of a chunk in order and write the chunk artifact,
    the concatenation of the region outputs in region order.
    """
    regions = resolve_regions(chunk)
    logging.info(f"[CHUNK {chunk.chunk_id}] Start {len(chunk)} positions, "
                 f"{len(regions)} region(s): {', '.join(str(r) for r in regions)}")

    outcomes = [run_region(runner, chunk.chunk_id, k, region, tmp_dir)
                for k, region in enumerate(regions, 1)]

    out_path = chunk_artifact(tmp_dir, chunk.chunk_id)
    tmp_path = out_path + '.part'
    with open(tmp_path, 'wb') as out:
        for outcome in outcomes:
            if outcome.path is None:
                continue
            append_rows(outcome.path, out)
            os.remove(outcome.path)
    os.replace(tmp_path, out_path)

    failed = sum(1 for o in outcomes if not o.ok)
    logging.info(f"[CHUNK {chunk.chunk_id}] => {out_path} ({failed} failed region(s))")
    return ChunkResult(chunk.chunk_id, out_path, outcomes)


def dispatch_chunks(chunks, runner, tmp_dir, num_cores=4, backend='threading'):
    """
    Process chunks in parallel. Completion order is not preserved; results
    carry their chunk id. A fatal error in any job stops the pool.
    """
    os.makedirs(tmp_dir, exist_ok=True)
    results = Parallel(n_jobs=num_cores, backend=backend)(
        delayed(process_one_chunk_and_dump)(chunk, runner, tmp_dir)
        for chunk in chunks
    )
    failures = [f for r in results for f in r.failures]
    logging.info(f"Dispatched {len(results)} chunk(s), {len(failures)} failed region(s)")
    return results
