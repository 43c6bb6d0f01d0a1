"""Composition root: one object owning every CRM collaborator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from modules.crm.board_state import BoardStateStore
from modules.crm.boards import BoardReconciler
from modules.crm.channels import ChannelResolver
from modules.crm.client_cards import ClientCardReconciler
from modules.crm.job_threads import JobThreadReconciler
from modules.crm.operations import CrmService
from modules.crm.store import SheetRecordStore, WorksheetOpener
from modules.crm.sync import Notifier, SyncOrchestrator, SyncQueue
from shared.config import (
    get_board_state_tab,
    get_crm_sheet_id,
    get_entity_cache_ttl_sec,
    get_invoice_cache_ttl_sec,
    get_invoice_number_start,
    get_sheet_tab,
    get_smart_sync_debounce_sec,
    get_thread_settle_delay_sec,
)
from shared.sheets.cache_service import CacheService


@dataclass
class CrmContext:
    cache: CacheService
    store: SheetRecordStore
    board_state: BoardStateStore
    resolver: ChannelResolver
    job_threads: JobThreadReconciler
    client_cards: ClientCardReconciler
    boards: BoardReconciler
    orchestrator: SyncOrchestrator
    queue: SyncQueue
    service: CrmService

    async def close(self) -> None:
        await self.queue.shutdown()


def build_context(
    *,
    notify: Optional[Notifier] = None,
    worksheet_opener: Optional[WorksheetOpener] = None,
) -> CrmContext:
    """Wire the CRM from config; tests build the pieces by hand instead."""

    sheet_id = get_crm_sheet_id()
    cache = CacheService()
    store = SheetRecordStore(
        sheet_id,
        cache=cache,
        tabs={entity: get_sheet_tab(entity) for entity in ("clients", "jobs", "tasks", "invoices")},
        worksheet_opener=worksheet_opener,
        entity_ttl_sec=get_entity_cache_ttl_sec(),
        invoice_ttl_sec=get_invoice_cache_ttl_sec(),
        invoice_number_start=get_invoice_number_start(),
    )
    board_state = BoardStateStore(sheet_id, get_board_state_tab())
    resolver = ChannelResolver()
    job_threads = JobThreadReconciler(store)
    client_cards = ClientCardReconciler(store, resolver, job_threads)
    boards = BoardReconciler(
        store,
        resolver,
        board_state,
        client_cards,
        job_threads,
        settle_delay=get_thread_settle_delay_sec(),
    )
    orchestrator = SyncOrchestrator(store, client_cards, job_threads, boards, notify=notify)
    queue = SyncQueue(orchestrator, debounce_sec=get_smart_sync_debounce_sec())
    service = CrmService(store, queue, resolver)
    return CrmContext(
        cache=cache,
        store=store,
        board_state=board_state,
        resolver=resolver,
        job_threads=job_threads,
        client_cards=client_cards,
        boards=boards,
        orchestrator=orchestrator,
        queue=queue,
        service=service,
    )


__all__ = ["CrmContext", "build_context"]
