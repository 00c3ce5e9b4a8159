"""WSGI integration.

Runs every request inside its own unit of work, so results cached while
serving one request never leak into another one and memory used by the
cache is released when the request is done.
"""

from typing import TYPE_CHECKING

from batch_loader.context import unit_of_work

if TYPE_CHECKING:
    from collections.abc import Iterable

if TYPE_CHECKING:
    from _typeshed.wsgi import StartResponse, WSGIApplication, WSGIEnvironment

if TYPE_CHECKING:
    from batch_loader.models import LoaderSettings


class BatchLoaderMiddleware:
    """WSGI middleware clearing the resolution context around each request.

    Usage:

        app = BatchLoaderMiddleware(app)

    Loaders must be resolved before the wrapped application returns its
    response iterable: the context is cleared right after the call.
    """

    def __init__(self, app: 'WSGIApplication', *,
                 settings: 'LoaderSettings | None' = None) -> None:
        """Wrap a WSGI application.

        Args:
            app: The WSGI application.
            settings: Settings for the per-request resolution contexts.
        """
        self.app = app
        self.settings = settings

    def __call__(self, environ: 'WSGIEnvironment',
                 start_response: 'StartResponse') -> 'Iterable[bytes]':
        """Handle a request in a fresh unit of work."""
        with unit_of_work(self.settings):
            return self.app(environ, start_response)
