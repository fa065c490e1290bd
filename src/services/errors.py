"""Exception taxonomy for embedding generation, storage and similarity search"""


class SimilaritySearchError(Exception):
    """Base class for all similarity subsystem errors"""

    pass


class ClientError(SimilaritySearchError):
    """Caller supplied something unusable; always surfaced, never turned into 'no results'"""

    pass


class InvalidInput(ClientError):
    """Text to embed or search for is empty or too long"""

    pass


class InvalidQueryVector(ClientError):
    """Query vector has the wrong length, non-finite entries or zero norm"""

    pass


class DimensionMismatch(ClientError):
    """Vector length differs from the configured embedding dimension"""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Embedding has wrong number of dimensions: expected {expected}, got {actual}"
        )


class NotFound(ClientError):
    """Referenced analysis document or file does not exist"""

    pass


class MissingEmbedding(ClientError):
    """Referenced file exists but carries no embedding to search with"""

    pass


class UpstreamError(SimilaritySearchError):
    """An external collaborator (embedding provider, index, store) failed"""

    pass


class ProviderUnavailable(UpstreamError):
    """Embedding provider call failed (network, timeout, quota, model load)"""

    pass


class InvalidEmbeddingShape(UpstreamError):
    """Embedding provider returned malformed or dimension-mismatched output"""

    pass


class IndexUnavailable(UpstreamError):
    """ANN index query failed or the index does not exist"""

    pass


class StoreError(UpstreamError):
    """Underlying document store failed during a write"""

    pass


class ConfigurationError(SimilaritySearchError):
    """Deployment is inconsistent (e.g. model and index disagree on dimensionality)"""

    pass
