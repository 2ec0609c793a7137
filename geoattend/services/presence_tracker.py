from __future__ import annotations

import logging
from typing import Iterable

from geoattend.config import settings
from geoattend.core.errors import AuthFailure
from geoattend.core.time_provider import default_time_provider
from geoattend.schemas import ActiveUserSession, Coordinates, Role, User
from geoattend.store import ACTIVE_USERS, RecordStore, record_path


logger = logging.getLogger(__name__)


def record_heartbeat(
    store: RecordStore,
    user: User,
    coords: Coordinates | None = None,
    *,
    ip: str = '',
    user_agent: str = '',
    connection_id: str | None = None,
    time_provider=default_time_provider,
) -> ActiveUserSession:
    """Upsert ``active_users/{id}`` with ``lastSeen = now``.

    With a ``connection_id`` the record is also registered for removal when
    that connection drops. A connection id already held by another user is
    refused.
    """
    if connection_id:
        owner = store.connection_owner(connection_id)
        if owner is not None and owner != user.id:
            raise AuthFailure('forbidden')
    record = ActiveUserSession(
        user_id=user.id,
        name=user.name,
        role=user.role,
        ip=ip,
        user_agent=user_agent,
        last_seen=time_provider.now_ms(),
        location=coords,
        photo_url=user.photo_url,
    )
    store.save(ACTIVE_USERS, user.id, record)
    if connection_id:
        store.register_disconnect_cleanup(connection_id, record_path(ACTIVE_USERS, user.id), user.id)
    logger.debug('presence_heartbeat user_id=%s connection_id=%s', user.id, connection_id)
    return record


def is_online(record: ActiveUserSession, now_ms: int, threshold_ms: int | None = None) -> bool:
    threshold = settings.presence_online_threshold_ms if threshold_ms is None else threshold_ms
    return now_ms - record.last_seen < threshold


def online_users(
    records: Iterable[ActiveUserSession],
    now_ms: int,
    threshold_ms: int | None = None,
) -> list[ActiveUserSession]:
    rows = [record for record in records if is_online(record, now_ms, threshold_ms)]
    rows.sort(key=lambda record: record.last_seen, reverse=True)
    return rows


def list_online_users(store: RecordStore, *, time_provider=default_time_provider) -> list[ActiveUserSession]:
    return online_users(store.list_records(ACTIVE_USERS, ActiveUserSession), time_provider.now_ms())


def deregister(store: RecordStore, user_id: str) -> None:
    store.remove(ACTIVE_USERS, user_id)
    forgotten = store.forget_owner(user_id)
    logger.info('presence_deregistered user_id=%s connections=%s', user_id, len(forgotten))


def drop_connection(store: RecordStore, connection_id: str, user: User) -> list[str]:
    owner = store.connection_owner(connection_id)
    if owner is not None and owner != user.id and user.role != Role.ADMIN:
        raise AuthFailure('forbidden')
    removed = store.disconnect(connection_id)
    logger.info('presence_connection_dropped connection_id=%s removed=%s', connection_id, len(removed))
    return removed
