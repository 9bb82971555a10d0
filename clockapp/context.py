from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine

from clockapp.db import create_db_engine, create_session_factory
from clockapp.services.action_resolver import ActionResolver
from clockapp.services.blob_sink import BlobSink, FileSystemBlobSink, HttpBlobSink
from clockapp.services.capture import CaptureService
from clockapp.services.media import MediaStager
from clockapp.services.pending_events import PendingEventStore
from clockapp.services.remote_store import DocumentStore, SqlDocumentStore
from clockapp.services.sync_trigger import SyncTrigger
from clockapp.services.synchronizer import Synchronizer
from clockapp.settings import Settings, get_blob_sink_kind, get_remote_timestamp_mode, resolve_timezone


@dataclass(slots=True)
class KioskContext:
    settings: Settings
    local_engine: Engine | None
    remote_engine: Engine | None
    pending_store: PendingEventStore
    document_store: DocumentStore
    blob_sink: BlobSink
    capture_service: CaptureService
    synchronizer: Synchronizer
    sync_trigger: SyncTrigger | None = None

    def dispose(self) -> None:
        for engine in (self.local_engine, self.remote_engine):
            if engine is not None:
                engine.dispose()


def build_blob_sink(settings: Settings) -> BlobSink:
    if get_blob_sink_kind(settings) == "http":
        if not settings.blob_http_base_url:
            raise ValueError("blob_http_base_url is required when blob_sink_kind=http")
        return HttpBlobSink(
            settings.blob_http_base_url,
            token=settings.blob_http_token,
            timeout=settings.blob_http_timeout_seconds,
        )
    return FileSystemBlobSink(settings.blob_root, public_base_url=settings.blob_public_base_url)


def build_kiosk_context(
    settings: Settings,
    *,
    document_store: DocumentStore | None = None,
    blob_sink: BlobSink | None = None,
) -> KioskContext:
    tz = resolve_timezone(settings.attendance_timezone)

    local_engine = create_db_engine(settings.local_database_url)
    pending_store = PendingEventStore(local_engine, create_session_factory(local_engine))

    remote_engine: Engine | None = None
    if document_store is None:
        remote_engine = create_db_engine(
            settings.remote_database_url,
            connect_timeout_seconds=settings.remote_connect_timeout_seconds,
        )
        document_store = SqlDocumentStore(create_session_factory(remote_engine))
    if blob_sink is None:
        blob_sink = build_blob_sink(settings)

    resolver = ActionResolver(
        document_store,
        tz=tz,
        lookback_days=settings.action_lookback_days,
        pending_store=pending_store if settings.resolver_include_pending else None,
    )
    capture_service = CaptureService(
        document_store=document_store,
        resolver=resolver,
        store=pending_store,
        stager=MediaStager(settings.media_root),
        photo_required=settings.photo_required,
    )
    synchronizer = Synchronizer(
        store=pending_store,
        document_store=document_store,
        blob_sink=blob_sink,
        tz=tz,
        timestamp_mode=get_remote_timestamp_mode(settings),
        kiosk_id=settings.kiosk_id,
        delete_local_photo=settings.delete_local_photo_after_sync,
    )
    sync_trigger: SyncTrigger | None = None
    if settings.sync_worker_enabled:
        sync_trigger = SyncTrigger(
            synchronizer.run,
            interval_seconds=settings.sync_interval_seconds,
            retry_delay_seconds=settings.sync_retry_delay_seconds,
            cleanup=pending_store.purge_synced if settings.purge_synced_after_run else None,
        )

    return KioskContext(
        settings=settings,
        local_engine=local_engine,
        remote_engine=remote_engine,
        pending_store=pending_store,
        document_store=document_store,
        blob_sink=blob_sink,
        capture_service=capture_service,
        synchronizer=synchronizer,
        sync_trigger=sync_trigger,
    )
