"""Object graph for one process: context, controller, forwarder, relay."""

import os
from dataclasses import dataclass
from typing import Callable

from wacollector.config import Settings
from wacollector.domain.forwarding import MessageForwarder
from wacollector.domain.relevance import RelevancePolicy
from wacollector.infra.credentials import CredentialStore
from wacollector.infra.group_names import GroupNameCache
from wacollector.infra.webhook_relay import WebhookRelay
from wacollector.observability.logging import get_logger
from wacollector.observability.redaction import safe_log_context
from wacollector.session.client import SessionFactory
from wacollector.session.context import SessionContext
from wacollector.session.controller import ConnectionController
from wacollector.whatsapp.evolution_session import EvolutionSession
from wacollector.whatsapp.jid import OwnerIdentity

logger = get_logger(__name__)


@dataclass
class Runtime:
    settings: Settings
    context: SessionContext
    controller: ConnectionController
    forwarder: MessageForwarder
    group_names: GroupNameCache
    credentials: CredentialStore


def _evolution_factory(settings: Settings) -> SessionFactory:
    def factory() -> EvolutionSession:
        return EvolutionSession(settings.evolution, queue_size=settings.event_queue_size)

    return factory


def build_runtime(
    settings: Settings,
    *,
    session_factory: SessionFactory | None = None,
    exit_process: Callable[[int], None] = os._exit,
) -> Runtime:
    """Wire every component from ``settings``.

    The owner identity starts from configuration and is completed from the
    credential store, then from the session once it opens.
    """
    owner = OwnerIdentity.from_config(
        phone=settings.my_phone,
        opaque=settings.my_lid_base,
        aliases=settings.owner_aliases,
        display_name=settings.owner_display_name,
    )
    credentials = CredentialStore(settings.auth_dir)
    stored = credentials.load_self()
    if stored is not None and owner.set_owner(stored.id, stored.lid, stored.name):
        logger.info(
            "owner identity restored from credentials",
            extra={"extra_fields": safe_log_context(has_lid=owner.opaque is not None)},
        )

    context = SessionContext(owner=owner)

    async def lookup(group_id: str) -> dict:
        # resolved at call time: controller is bound below
        return await controller.group_metadata(group_id)

    group_names = GroupNameCache(lookup)
    forwarder = MessageForwarder(
        owner,
        RelevancePolicy(
            forward_all=settings.forward_all,
            pattern=settings.tag_pattern,
            ignore_quoted=settings.ignore_quoted,
            text_fallback=settings.mention_text_fallback,
        ),
        group_names,
        WebhookRelay(
            settings.webhook_url,
            secret=settings.webhook_secret,
            timeout=settings.webhook_timeout,
        ),
        include_debug_fields=settings.include_debug_fields,
    )
    controller = ConnectionController(
        context,
        session_factory or _evolution_factory(settings),
        forwarder.process_batch,
        restart_mode=settings.restart_mode,
        reconnect_delay=settings.reconnect_delay,
        restart_delay=settings.restart_delay,
        credentials=credentials,
        exit_process=exit_process,
    )

    return Runtime(
        settings=settings,
        context=context,
        controller=controller,
        forwarder=forwarder,
        group_names=group_names,
        credentials=credentials,
    )
