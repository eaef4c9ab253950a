"""取り込みパイプライン。"""

from .normalize import normalize_app_details
from .pipeline import IngestionPipeline

__all__ = ["IngestionPipeline", "normalize_app_details"]
