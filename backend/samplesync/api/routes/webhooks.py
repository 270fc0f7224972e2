"""Webhook routes for LIMS change notifications.

Provides:
- POST /webhooks/lims: entity created/updated/deleted events

Events for other schemas, non custom entities or registry codes outside
the sample prefix are acknowledged with 200 and ignored so the LIMS does
not redeliver them.
"""

import hashlib
import hmac
import json
import logging
from typing import Any

from fastapi import APIRouter, Request, Response, status

from samplesync.core.config import settings
from samplesync.core.exceptions import sanitize_error
from samplesync.integrations.sample_sync import get_sample_sync_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "X-Benchling-Signature"
CUSTOM_ENTITY_TYPE = "CustomEntity"


def verify_webhook_signature(
    payload: bytes,
    signature: str,
    secret: str,
) -> bool:
    """Verify a LIMS webhook signature using HMAC-SHA256.

    Args:
        payload: Raw request body bytes.
        signature: Hex digest from the signature header.
        secret: Shared webhook secret.

    Returns:
        True if signature is valid, False otherwise.
    """
    if not secret or not signature:
        return False

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        payload,
        hashlib.sha256,
    ).hexdigest()

    # Constant-time comparison
    return hmac.compare_digest(signature, expected_signature)


def _ignore_reason(data: dict[str, Any]) -> str | None:
    schema_id = data.get("schemaId")
    if schema_id and schema_id != settings.LIMS_SCHEMA_ID:
        return "not a sample schema"
    if data.get("entityType") != CUSTOM_ENTITY_TYPE:
        return "not a custom entity"
    registry_code = data.get("entityRegistryId")
    if registry_code and not registry_code.startswith(settings.LIMS_ID_PREFIX):
        return "registry code outside sample prefix"
    if not data.get("entityId"):
        return "missing entity id"
    return None


@router.post("/lims", status_code=status.HTTP_200_OK)
async def lims_webhook(request: Request, response: Response) -> dict[str, Any]:
    """Handle a LIMS entity change notification.

    The body is verified against ``LIMS_WEBHOOK_SECRET`` when one is
    configured. Relevant events are applied immediately; a transient failure
    leaves the event in the sync queue and still acknowledges it.

    Args:
        request: FastAPI request with raw payload.
        response: Outgoing response, for the status code on failure.

    Returns:
        Receipt acknowledgement with the processing result.
    """
    payload = await request.body()

    webhook_secret = settings.LIMS_WEBHOOK_SECRET
    if webhook_secret:
        signature = request.headers.get(SIGNATURE_HEADER, "")
        if not verify_webhook_signature(payload, signature, webhook_secret):
            logger.warning(
                "LIMS webhook signature verification failed",
                extra={"signature_present": bool(signature)},
            )
            response.status_code = status.HTTP_401_UNAUTHORIZED
            return {"received": False, "error": "Invalid signature"}

    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("LIMS webhook payload is not valid JSON")
        response.status_code = status.HTTP_400_BAD_REQUEST
        return {"received": False, "error": "Invalid JSON"}

    if not isinstance(data, dict):
        response.status_code = status.HTTP_400_BAD_REQUEST
        return {"received": False, "error": "Invalid payload"}

    reason = _ignore_reason(data)
    if reason:
        logger.debug("Ignoring LIMS webhook event", extra={"reason": reason})
        return {"received": True, "ignored": True, "reason": reason}

    event_type = data.get("eventType", "unknown")
    registry_code = data.get("entityRegistryId")
    logger.info(
        "Received LIMS webhook",
        extra={"event_type": event_type, "registry_code": registry_code},
    )

    try:
        result = await get_sample_sync_service().handle_inbound_notification(
            event_type,
            data["entityId"],
            registry_code=registry_code,
            modified_at=data.get("modifiedAt"),
        )
    except Exception as e:
        logger.exception(
            "Error processing LIMS webhook",
            extra={"event_type": event_type, "registry_code": registry_code},
        )
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return {"received": False, "error": sanitize_error(e)}

    return {"received": True, "event_type": event_type, "result": result}
