"""Notification sinks for operator attention."""

from collections.abc import Mapping
from typing import Any

from atende_compliance.compliance.types import NotificationSink
from atende_compliance.core.audit import PayloadMasker
from atende_compliance.core.logging import get_logger

logger = get_logger(__name__)


class LoggingNotificationSink:
    """Default sink: emits notifications as warning log events."""

    async def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.warning("compliance_notification", notification=event, payload=payload)


class MaskingNotifier:
    """Masks payloads before handing them to the configured sink."""

    def __init__(self, sink: NotificationSink, masker: PayloadMasker):
        self._sink = sink
        self._masker = masker

    async def notify(self, event: str, payload: Mapping[str, Any]) -> None:
        await self._sink.notify(event, self._masker.mask(payload))
