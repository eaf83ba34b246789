"""
Error taxonomy for the knowledge retrieval core.

Path-finding never raises these to callers (it degrades to None/[]).
Hybrid retrieval and the embedding cache propagate them, and only the
retrieval facade turns ProviderUnavailableError into a keyword fallback.
"""


class KnowledgeCoreError(Exception):
    """Base class for knowledge core errors."""
    pass


class ProviderUnavailableError(KnowledgeCoreError):
    """Embedding provider is not configured, unreachable, or returned a bad response."""
    pass


class BackendUnavailableError(KnowledgeCoreError):
    """Relational, graph, or cache backend failed to execute a request."""
    pass


class ParameterBindingUnsupportedError(KnowledgeCoreError):
    """
    The graph backend rejected a bound parameter object.

    Raised only for the AGE error whose message contains
    PARAM_BINDING_ERROR_SIGNATURE; the graph client answers it by retrying
    with literal substitution.
    """
    pass


PARAM_BINDING_ERROR_SIGNATURE = "third argument of cypher function must be a parameter"
