"""Two-way synchronisation between Pipedrive records and Google Sheets."""
from __future__ import annotations

__version__ = "0.4.0"

__all__ = ["__version__"]
