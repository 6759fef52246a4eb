"""Typed dependency bundle handed to every command handler."""

from dataclasses import dataclass

from cardflow.core.config import Settings, get_settings
from cardflow.repositories.base import Repositories, get_repositories
from cardflow.services.publisher import EventPublisher, get_event_publisher
from cardflow.whatsapp.client import MessageSender, WppClient
from cardflow.whatsapp.config import WhatsAppConfig


@dataclass
class Container:
    settings: Settings
    repos: Repositories
    publisher: EventPublisher
    sender: MessageSender
    whatsapp: WhatsAppConfig

    async def close(self) -> None:
        await self.publisher.close()


def build_container(
    settings: Settings | None = None,
    repos: Repositories | None = None,
    publisher: EventPublisher | None = None,
    sender: MessageSender | None = None,
) -> Container:
    settings = settings or get_settings()
    whatsapp = WhatsAppConfig.from_settings(settings)
    return Container(
        settings=settings,
        repos=repos or get_repositories(settings),
        publisher=publisher or get_event_publisher(settings),
        sender=sender or WppClient(whatsapp),
        whatsapp=whatsapp,
    )
