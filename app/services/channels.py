"""Shapes shared by the delivery worker and the channel senders."""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from uuid import UUID


@dataclass(frozen=True)
class Recipient:
    id: UUID
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None


@dataclass(frozen=True)
class RenderedMessage:
    text: str
    subject: Optional[str] = None
    html: Optional[str] = None
    sender_email: Optional[str] = None
    sender_name: Optional[str] = None


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    # Permanent failures (bad address, unconfigured channel) are not retried
    retryable: bool = True


ChannelSender = Callable[[Recipient, RenderedMessage], Awaitable[DeliveryResult]]
