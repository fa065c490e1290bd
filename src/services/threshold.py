"""Similarity floor selection"""

from src.config import AppConfig, config


def resolve_min_score(
    min_score: float | None,
    exclude_document_id: str | None,
    settings: AppConfig | None = None,
) -> float:
    """
    Pick the similarity floor for a search

    An explicit floor always wins. Without one, a search seeded by an existing
    document (signalled by an exclusion id) only surfaces close matches, while a
    free-text search is more permissive.

    Args:
        min_score: Floor supplied by the caller, if any
        exclude_document_id: Document the search originates from, if any
        settings: Configuration providing the defaults (global config if omitted)

    Returns:
        float: Effective similarity floor
    """
    settings = settings or config

    if min_score is not None:
        return min_score
    if exclude_document_id:
        return settings.contextual_min_score
    return settings.general_min_score
