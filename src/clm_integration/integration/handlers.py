"""
Event handlers invoked by the integration router.

Each handler takes an IntegrationMessage (or an AggregatedMessage for
aggregating event types) and returns a short detail string. Handlers raise
on failure; the router marks the message FAILED and re-raises.
"""

from typing import Any, Callable

from clm_integration.core.errors import IllegalTransitionError, MessageHandlingError
from clm_integration.core.models import AggregatedMessage, EventType, IntegrationMessage, SessionStatus
from clm_integration.core.state_machine import ContractStatus, can_transition
from clm_integration.observability.logger import get_logger
from clm_integration.warehouse.repository import Repository

logger = get_logger(__name__)

Handler = Callable[[Any], str | None]


def _fingerprint(message: IntegrationMessage | AggregatedMessage) -> str:
    if isinstance(message, AggregatedMessage):
        return ",".join(message.fingerprints)
    return message.fingerprint()


def _event_name(message: IntegrationMessage | AggregatedMessage) -> str:
    if isinstance(message, AggregatedMessage):
        return message.event_type.value
    return message.event_type


def require_tenant(message: IntegrationMessage | AggregatedMessage) -> str:
    tenant_id = message.payload.get("tenantId", message.tenant_id)
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise MessageHandlingError(
            _event_name(message), _fingerprint(message), "Invalid or missing tenantId"
        )
    return tenant_id


def require_id(message: IntegrationMessage | AggregatedMessage, field_name: str) -> int:
    value = message.payload.get(field_name)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MessageHandlingError(
            _event_name(message), _fingerprint(message), f"Invalid or missing {field_name}"
        )
    return int(value)


class ContractEventHandler:
    """Contract lifecycle events."""

    def __init__(self, repository: Repository):
        self.repository = repository

    def on_created(self, message: IntegrationMessage) -> str:
        return self._log_event(EventType.CONTRACT_CREATED, message)

    def on_updated(self, message: AggregatedMessage) -> str:
        detail = self._log_event(EventType.CONTRACT_UPDATED, message)
        if message.partial:
            logger.warning(
                "Contract update delivered from a partial aggregate",
                extra={"correlation_id": message.correlation_id, "message_count": len(message.messages)},
            )
        return detail

    def on_status_changed(self, message: IntegrationMessage) -> str:
        tenant_id = require_tenant(message)
        contract_id = require_id(message, "contractId")
        try:
            old_status = ContractStatus.parse(message.payload.get("oldStatus"))
            new_status = ContractStatus.parse(message.payload.get("newStatus"))
        except ValueError as e:
            raise MessageHandlingError(message.event_type, message.fingerprint(), str(e)) from e

        if not can_transition(old_status, new_status):
            raise IllegalTransitionError(old_status.value, new_status.value)

        contract = self.repository.get_contract(tenant_id, contract_id)
        if contract is None:
            logger.warning(
                "Status change for unknown contract",
                extra={"tenant_id": tenant_id, "contract_id": contract_id},
            )
            return f"contract {contract_id} not found"

        logger.info(
            f"Contract status transition: {old_status.value} -> {new_status.value}",
            extra={
                "tenant_id": tenant_id,
                "contract_id": contract_id,
                "contract_number": contract.contract_number,
                "old_status": old_status.value,
                "new_status": new_status.value,
            },
        )
        return f"contract {contract.contract_number} {old_status.value} -> {new_status.value}"

    def _log_event(self, event_type: EventType, message: IntegrationMessage | AggregatedMessage) -> str:
        tenant_id = require_tenant(message)
        contract_id = require_id(message, "contractId")
        contract = self.repository.get_contract(tenant_id, contract_id)
        if contract is None:
            logger.warning(
                f"{event_type.value} for unknown contract",
                extra={"tenant_id": tenant_id, "contract_id": contract_id},
            )
            return f"contract {contract_id} not found"

        logger.info(
            f"[{event_type.value}] Contract {contract.contract_number}",
            extra={
                "tenant_id": tenant_id,
                "contract_id": contract_id,
                "contract_number": contract.contract_number,
                "status": contract.status.value,
            },
        )
        return f"contract {contract.contract_number} ({contract.status.value})"


class CustomerEventHandler:
    """Customer master data events."""

    def __init__(self, repository: Repository):
        self.repository = repository

    def on_created(self, message: IntegrationMessage) -> str:
        return self._log_event(EventType.CUSTOMER_CREATED, message)

    def on_updated(self, message: IntegrationMessage) -> str:
        return self._log_event(EventType.CUSTOMER_UPDATED, message)

    def _log_event(self, event_type: EventType, message: IntegrationMessage) -> str:
        tenant_id = require_tenant(message)
        customer_id = require_id(message, "customerId")
        customer = self.repository.get_customer(tenant_id, customer_id)
        if customer is None:
            logger.warning(
                f"{event_type.value} for unknown customer",
                extra={"tenant_id": tenant_id, "customer_id": customer_id},
            )
            return f"customer {customer_id} not found"

        # repr masks tax id and email
        logger.info(f"[{event_type.value}] {customer!r}", extra={"tenant_id": tenant_id})
        return f"customer {customer.customer_code}"


class EtlBatchHandler:
    """
    Runs an ETL batch delivered as a message.

    Payload: {"entityType": "contract", "sourceSystem": "crm", "records": [...]}

    A session that ends FAILED raises MessageHandlingError; the batch then
    runs again on redelivery.
    """

    def __init__(self, service: Any):
        self.service = service

    def __call__(self, message: IntegrationMessage) -> str:
        payload = message.payload
        entity_type = payload.get("entityType")
        source_system = payload.get("sourceSystem") or message.source_system
        records = payload.get("records")
        if not entity_type or not source_system or not isinstance(records, list):
            raise MessageHandlingError(
                message.event_type,
                message.fingerprint(),
                "ETL_BATCH requires entityType, sourceSystem and a records list",
            )
        session_id = self.service.open_session(source_system, entity_type, records)
        session = self.service.get_session_status(session_id)
        if session.status is SessionStatus.FAILED:
            raise MessageHandlingError(
                message.event_type,
                message.fingerprint(),
                f"Ingestion session {session_id} failed: {session.error_message}",
            )
        return f"session {session_id}"


class EtlCompleteHandler:
    """Receives the notification routed when an ingestion session finishes."""

    def __call__(self, message: IntegrationMessage) -> str:
        payload = message.payload
        logger.info(
            "ETL session completed",
            extra={
                "session_id": payload.get("sessionId"),
                "status": payload.get("status"),
                "promoted": payload.get("promoted"),
                "failed": payload.get("failed"),
            },
        )
        return f"session {payload.get('sessionId')} {payload.get('status')}"


def default_handlers(repository: Repository, service: Any) -> dict[EventType, Handler]:
    """Handler table covering every EventType."""
    contracts = ContractEventHandler(repository)
    customers = CustomerEventHandler(repository)
    return {
        EventType.CONTRACT_CREATED: contracts.on_created,
        EventType.CONTRACT_UPDATED: contracts.on_updated,
        EventType.CONTRACT_STATUS_CHANGED: contracts.on_status_changed,
        EventType.CUSTOMER_CREATED: customers.on_created,
        EventType.CUSTOMER_UPDATED: customers.on_updated,
        EventType.ETL_BATCH: EtlBatchHandler(service),
        EventType.ETL_COMPLETE: EtlCompleteHandler(),
    }
