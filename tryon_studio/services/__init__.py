"""Services package for Try-On Studio."""

from .analyzer_service import AnalyzerService
from .ark_client import ArkClient
from .tryon_service import TryOnService

__all__ = ["AnalyzerService", "ArkClient", "TryOnService"]
