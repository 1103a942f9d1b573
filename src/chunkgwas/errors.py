# errors.py


class ChunkgwasError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(ChunkgwasError):
    """Missing inputs or invalid parameters. Raised before any stage runs."""


class SourceUnreadable(ChunkgwasError):
    """The variant source or its index cannot be opened."""


class InvariantViolation(ChunkgwasError):
    """Empty chunk or malformed region."""


class PreprocessingFailure(ChunkgwasError):
    """The phenotype/covariate preprocessing command failed."""


class TestInvocationFailure(ChunkgwasError):
    """
    The external test failed or timed out for one region.
    Recoverable: the region is left out of the aggregate.
    """
    __test__ = False  # not a pytest class

    def __init__(self, message, chunk_id=None, region=None):
        super().__init__(message)
        self.chunk_id = chunk_id
        self.region = region

    def __str__(self):
        msg = super().__str__()
        if self.chunk_id is None:
            return msg
        return f"[CHUNK {self.chunk_id}] {self.region}: {msg}"


class AggregationIncomplete(ChunkgwasError):
    """Some chunk artifacts are missing or some regions failed."""

    def __init__(self, message, missing_chunks=(), failed_regions=()):
        super().__init__(message)
        self.missing_chunks = list(missing_chunks)
        self.failed_regions = list(failed_regions)
