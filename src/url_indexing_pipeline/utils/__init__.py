"""Utilities for shared application concerns."""

from url_indexing_pipeline import __version__
from url_indexing_pipeline.utils.logging import (
    add_request_logging_middleware,
    setup_logging,
)

__all__ = ["__version__", "add_request_logging_middleware", "setup_logging"]
