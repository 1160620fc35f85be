"""
FastAPI dependency wiring

One DispatchEngine per process holds the registries, collaborators and the
services built on them. Routers only see the Depends providers below;
tests swap the whole engine through ``app.dependency_overrides[get_engine]``.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends

from src.core.config import Settings, settings
from src.core.database import init_database
from src.domains.completion.coordinator import CompletionCoordinator
from src.domains.dispatch.scheduler import DispatchScheduler
from src.domains.dispatch.service import DispatchService
from src.domains.rescuers.registry import MemoryRescuerRegistry, RescuerRegistry
from src.domains.rescuers.repository import SqlRescuerRegistry
from src.domains.tickets.intake import IntakeService
from src.domains.tickets.registry import MemoryTicketRegistry, TicketRegistry
from src.domains.tickets.repository import SqlTicketRegistry
from src.infra.clients.notifier import LoggingNotifier, Notifier, WebhookNotifier
from src.infra.clients.payout import LoggingPayoutClient, PayoutClient, WebhookPayoutClient
from src.infra.clients.webhook_client import WebhookClient
from src.infra.config.dispatch_policy import DispatchPolicy, get_policy

logger = logging.getLogger(__name__)


class DispatchEngine:
    """Registries plus every service that coordinates them"""

    def __init__(
        self,
        tickets: TicketRegistry,
        rescuers: RescuerRegistry,
        notifier: Notifier,
        payout: PayoutClient,
        policy: DispatchPolicy,
        auto_dispatch: bool = True,
    ) -> None:
        self.tickets = tickets
        self.rescuers = rescuers
        self.notifier = notifier
        self.payout = payout
        self.policy = policy
        self.scheduler = DispatchScheduler(tickets, rescuers, policy)
        self.dispatch = DispatchService(tickets, rescuers, self.scheduler, notifier)
        self.intake = IntakeService(tickets, policy, dispatcher=self.dispatch, auto_dispatch=auto_dispatch)
        self.completion = CompletionCoordinator(tickets, rescuers, notifier, payout, policy)


def build_registries(cfg: Settings) -> tuple[TicketRegistry, RescuerRegistry]:
    backend = cfg.store_backend.lower()
    if backend == "memory":
        return MemoryTicketRegistry(), MemoryRescuerRegistry()
    if backend == "sql":
        session_factory = init_database(cfg.database_url)
        return SqlTicketRegistry(session_factory), SqlRescuerRegistry(session_factory)
    raise RuntimeError(f"unknown store_backend: {cfg.store_backend!r} (expected memory or sql)")


def build_engine(cfg: Settings, policy: Optional[DispatchPolicy] = None) -> DispatchEngine:
    tickets, rescuers = build_registries(cfg)

    notifier: Notifier = LoggingNotifier()
    if cfg.notify_webhook_url:
        notifier = WebhookNotifier(WebhookClient(cfg.notify_webhook_url, timeout=cfg.webhook_timeout))

    payout: PayoutClient = LoggingPayoutClient()
    if cfg.payout_webhook_url:
        payout = WebhookPayoutClient(WebhookClient(cfg.payout_webhook_url, timeout=cfg.webhook_timeout))

    logger.info(
        f"Dispatch engine: backend={cfg.store_backend}, notifier={type(notifier).__name__}, "
        f"payout={type(payout).__name__}, auto_dispatch={cfg.auto_dispatch_on_intake}"
    )
    return DispatchEngine(
        tickets=tickets,
        rescuers=rescuers,
        notifier=notifier,
        payout=payout,
        policy=policy or get_policy(),
        auto_dispatch=cfg.auto_dispatch_on_intake,
    )


_engine: Optional[DispatchEngine] = None


def get_engine() -> DispatchEngine:
    """Process-wide engine singleton"""
    global _engine
    if _engine is None:
        _engine = build_engine(settings)
    return _engine


def get_ticket_registry(engine: DispatchEngine = Depends(get_engine)) -> TicketRegistry:
    return engine.tickets


def get_rescuer_registry(engine: DispatchEngine = Depends(get_engine)) -> RescuerRegistry:
    return engine.rescuers


def get_dispatch_service(engine: DispatchEngine = Depends(get_engine)) -> DispatchService:
    return engine.dispatch


def get_intake_service(engine: DispatchEngine = Depends(get_engine)) -> IntakeService:
    return engine.intake


def get_completion_coordinator(engine: DispatchEngine = Depends(get_engine)) -> CompletionCoordinator:
    return engine.completion
