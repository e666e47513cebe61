"""Exceptions raised at the persistence boundaries of the resolution service."""


class AssetMatcherError(Exception):
    """Base class for resolution engine errors."""


class CatalogLoadError(AssetMatcherError):
    """The canonical catalog could not be loaded; the batch cannot be resolved."""


class CorrectionRecordError(AssetMatcherError):
    """
    A "teach this match" write failed.

    Recoverable: the in-memory learning mirror and the result cache are left
    untouched, so the caller can simply retry.
    """
