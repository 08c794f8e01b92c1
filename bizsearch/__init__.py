"""
Business-directory search backend.

Derives search keyword phrases for company records from their services,
products, descriptions and taxonomy, and serves catalog navigation and
search from an in-memory snapshot of the companies export.  Nothing is
loaded on import; ``bizsearch.api`` builds the FastAPI app and
``bizsearch.cli`` runs the same operations in batch.
"""

__version__ = "0.1.0"
