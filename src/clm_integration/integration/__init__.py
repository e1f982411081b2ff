"""
Integration message routing: idempotency ledger, aggregation, handlers and router.
"""

from .aggregator import CorrelationBuffer
from .handlers import default_handlers
from .ledger import IdempotencyLedger
from .router import IntegrationRouter

__all__ = ["CorrelationBuffer", "IdempotencyLedger", "IntegrationRouter", "default_handlers"]
