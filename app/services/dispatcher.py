"""
Message dispatcher: sends a batch sequentially, one outcome per recipient
"""
from typing import List

from app.models.dispatch import DispatchResult, OutboundMessage
from app.services.whatsapp import WhatsAppClient
from app.utils.exceptions import ConfigurationError, ExternalServiceError
from app.utils.logging_config import get_logger, PerformanceMonitor

logger = get_logger(__name__)


class MessageDispatcher:
    def __init__(self, client: WhatsAppClient):
        self.client = client

    async def send_one(self, item: OutboundMessage) -> DispatchResult:
        if not item.number:
            logger.warning(f"Skipping {item.candidate}: no valid phone number")
            return DispatchResult(recipient=item.candidate, success=False, skipped=True,
                                  error="missing phone number")
        try:
            if item.kind == "template":
                result = await self.client.send_template(item.number, item.template or {})
            else:
                result = await self.client.send_text(item.number, item.message)
        except ConfigurationError:
            raise
        except ExternalServiceError as e:
            logger.error(f"Send to {item.candidate} ({item.number}) failed: {e.message}")
            return DispatchResult(recipient=item.candidate, phone=item.number, success=False, error=e.message)
        return DispatchResult(
            recipient=item.candidate,
            phone=item.number,
            success=True,
            message_id=self.client.message_id(result),
        )

    async def send_batch(self, items: List[OutboundMessage]) -> List[DispatchResult]:
        """Send each item in order; one failure never stops the rest.

        Missing credentials raise ConfigurationError before anything is sent.
        """
        if not items:
            return []
        self.client.ensure_configured()
        results = []
        with PerformanceMonitor(f"send_batch[{len(items)}]", logger, threshold_ms=10000):
            for item in items:
                results.append(await self.send_one(item))
        sent = sum(1 for r in results if r.success)
        logger.info(f"Dispatched {sent}/{len(items)} messages")
        return results
