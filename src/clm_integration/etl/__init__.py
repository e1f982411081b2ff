"""
Batch ETL: staging, transform/validate, promotion and session lifecycle.
"""

from .promotion import PromotionStage
from .session_manager import SessionManager
from .staging import StagingStore
from .transform import TransformValidateStage

__all__ = ["PromotionStage", "SessionManager", "StagingStore", "TransformValidateStage"]
