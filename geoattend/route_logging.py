from __future__ import annotations

from fastapi.routing import APIRoute
from starlette.requests import Request

from geoattend.db import current_endpoint


def endpoint_label(method: str, path_format: str) -> str:
    return f'{method} {path_format}'


class EndpointNameRoute(APIRoute):
    """Labels database work done inside a handler with the route template,
    so ``slow_query`` lines name ``POST /api/sessions/{session_id}/finish``
    rather than a concrete session id."""

    def get_route_handler(self):
        handler = super().get_route_handler()

        async def labelled_handler(request: Request):
            token = current_endpoint.set(endpoint_label(request.method, self.path_format))
            try:
                return await handler(request)
            finally:
                current_endpoint.reset(token)

        return labelled_handler
