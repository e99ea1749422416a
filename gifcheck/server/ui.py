# This serves the static upload page, if one is configured.  The page itself isn't
# part of this package: it just needs to post to /upload.

import logging, mimetypes
from aiohttp import web
from pathlib import Path

log = logging.getLogger(__name__)

def add_routes(router, static_dir):
    router.add_get('/', handle_resource(static_dir, 'index.html'))
    router.add_get('/{path:.+}', handle_file)

def handle_resource(static_dir, path):
    """
    Handle returning a specific file inside the static directory.
    """
    path = static_dir / path

    def handle_file(request):
        if not path.exists():
            raise web.HTTPNotFound()

        return web.FileResponse(path, headers={
            'Cache-Control': 'public, no-cache',
        })

    return handle_file

def _resolve_path(request, path):
    """
    Resolve a request path relative to the static directory.
    """
    static_dir = request.app['static_dir']
    path = (static_dir / path).resolve()
    if not path.is_relative_to(static_dir):
        log.info(f'Access denied to {path}')
        raise web.HTTPForbidden()

    return path

def handle_file(request):
    path = Path(request.match_info['path'])
    path = _resolve_path(request, path)
    if not path.is_file():
        raise web.HTTPNotFound()

    mime_type, encoding = mimetypes.guess_type(path.name)
    headers = {
        'Cache-Control': 'public, no-cache',
    }
    if mime_type is not None:
        headers['Content-Type'] = mime_type

    return web.FileResponse(path, headers=headers)
