# config.py

import os
from dataclasses import dataclass
from typing import Optional

from chunkgwas.errors import ConfigurationError

TRANSFORMS = ('none', 'sqrt', 'log')
BACKENDS = ('threading', 'loky', 'multiprocessing')


@dataclass(frozen=True)
class RunConfig:
    """
    Parameters of one run. Built once at startup and passed to every stage.
    """
    phenotypes: str
    covariates: str
    genotypes: str
    index: Optional[str] = None
    chunk_size: int = 500
    transform: str = 'none'
    interaction: str = 'none'
    min_nb_ind_geno: int = 10
    save_dir: str = 'result'
    output: str = 'mvgwas.tsv'
    num_cores: int = 4
    backend: str = 'threading'
    test_cmd: str = 'test.R'
    preprocess_cmd: Optional[str] = None
    timeout: Optional[float] = None
    strict: bool = False
    keep_tmp: bool = False
    debug: bool = False

    @classmethod
    def from_args(cls, args):
        """Build a config from an argparse namespace."""
        return cls(
            phenotypes=args.phenotypes,
            covariates=args.covariates,
            genotypes=args.genotypes,
            index=args.index,
            chunk_size=args.chunk_size,
            transform=args.transform,
            interaction=args.interaction,
            min_nb_ind_geno=args.min_nb_ind_geno,
            save_dir=args.save_dir,
            output=args.output,
            num_cores=args.num_cores,
            backend=args.backend,
            test_cmd=args.test_cmd,
            preprocess_cmd=args.preprocess_cmd,
            timeout=args.timeout,
            strict=args.strict,
            keep_tmp=args.keep_tmp,
            debug=args.debug,
        )

    @property
    def tmp_dir(self):
        return os.path.join(self.save_dir, 'tmp_chunks')

    @property
    def output_path(self):
        return os.path.join(self.save_dir, self.output)

    def validate(self, check_files=True):
        """
        Raise ConfigurationError on the first invalid parameter.
        """
        for name in ('phenotypes', 'covariates', 'genotypes'):
            if not getattr(self, name):
                raise ConfigurationError(f"Missing mandatory input: --{name}")
        if check_files:
            for name in ('phenotypes', 'covariates', 'genotypes'):
                path = getattr(self, name)
                if not os.path.exists(path):
                    raise ConfigurationError(f"Input file for --{name} not found: {path}")
        if not isinstance(self.chunk_size, int) or isinstance(self.chunk_size, bool) or self.chunk_size <= 0:
            raise ConfigurationError(f"Chunk size must be a positive integer, got {self.chunk_size!r}")
        if not isinstance(self.min_nb_ind_geno, int) or isinstance(self.min_nb_ind_geno, bool) or self.min_nb_ind_geno <= 0:
            raise ConfigurationError(
                f"Minimum individuals per genotype group must be a positive integer, got {self.min_nb_ind_geno!r}")
        if self.transform not in TRANSFORMS:
            raise ConfigurationError(
                f"Unknown transform '{self.transform}' (choose from {', '.join(TRANSFORMS)})")
        if not self.interaction or not self.interaction.strip():
            raise ConfigurationError("Interaction must be 'none' or a covariate name")
        if self.num_cores <= 0:
            raise ConfigurationError(f"Number of cores must be positive, got {self.num_cores}")
        if self.backend not in BACKENDS:
            raise ConfigurationError(
                f"Unknown backend '{self.backend}' (choose from {', '.join(BACKENDS)})")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError(f"Timeout must be positive, got {self.timeout}")
        if not self.output or os.sep in self.output:
            raise ConfigurationError(f"Output must be a plain file name, got {self.output!r}")
        return self
