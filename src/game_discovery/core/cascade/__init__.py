"""自動取り込みのカスケード制御。"""

from .controller import AutoIngestController, AutoIngestReport

__all__ = ["AutoIngestController", "AutoIngestReport"]
