from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from geoattend.core.errors import AttendanceError
from geoattend.core.router_guard import http_error, resolve_token, require_admin, require_auth_user
from geoattend.route_logging import EndpointNameRoute
from geoattend.schemas import HeartbeatRequest
from geoattend.services.auth_service import clear_session_token
from geoattend.services.presence_tracker import deregister, drop_connection, list_online_users, record_heartbeat
from geoattend.store import RecordStore, get_store


router = APIRouter(prefix='/api/presence', tags=['Presence'], route_class=EndpointNameRoute)


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get('x-forwarded-for', '')
    if forwarded:
        return forwarded.split(',', 1)[0].strip()
    return request.client.host if request.client else ''


@router.post('/heartbeat')
def heartbeat(payload: HeartbeatRequest, request: Request, store: RecordStore = Depends(get_store)):
    user = require_auth_user(request)
    try:
        record = record_heartbeat(
            store,
            user,
            payload.coordinates,
            ip=_client_ip(request),
            user_agent=request.headers.get('user-agent', ''),
            connection_id=payload.connection_id,
        )
    except AttendanceError as exc:
        raise http_error(exc) from exc
    return record.to_store()


@router.get('/online')
def online(request: Request, store: RecordStore = Depends(get_store)):
    require_admin(request)
    return {'items': [record.to_store() for record in list_online_users(store)]}


@router.post('/connections/{connection_id}/disconnect')
def disconnect(connection_id: str, request: Request, store: RecordStore = Depends(get_store)):
    user = require_auth_user(request)
    try:
        removed = drop_connection(store, connection_id, user)
    except AttendanceError as exc:
        raise http_error(exc) from exc
    return {'removed': removed}


@router.post('/logout')
def logout(request: Request, store: RecordStore = Depends(get_store)):
    user = require_auth_user(request)
    deregister(store, user.id)
    clear_session_token(resolve_token(request))
    return {'ok': True}
