"""
Mail transport base class.

Provides the bookkeeping shared by all transports (name, type, enable
switch, timeout) and turns unexpected exceptions from ``deliver`` into
failed DeliveryResults.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pgbackup.alerts.protocol import DeliveryResult, MailMessage, TransportType
from pgbackup.core.logging import get_logger

logger = get_logger(__name__)


class BaseTransport(ABC):
    """Base class for mail transport implementations."""

    def __init__(
        self,
        name: str,
        transport_type: TransportType,
        *,
        timeout: float = 30.0,
        enabled: bool = True,
    ):
        self._name = name
        self._transport_type = transport_type
        self._timeout = timeout
        self._enabled = enabled

    @property
    def name(self) -> str:
        return self._name

    @property
    def transport_type(self) -> TransportType:
        return self._transport_type

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True

    def disable(self) -> None:
        self._enabled = False

    def send(self, message: MailMessage) -> DeliveryResult:
        """Deliver ``message``; never raises."""
        if not message.recipients:
            return DeliveryResult.fail(self._name, ValueError("no recipients configured"))
        try:
            return self.deliver(message)
        except Exception as e:
            logger.warning("notify.transport_error", transport=self._name, error=str(e))
            return DeliveryResult.fail(self._name, e)

    @abstractmethod
    def deliver(self, message: MailMessage) -> DeliveryResult:
        """Transport-specific delivery."""
        ...
