import asyncio, json, logging, io
from aiohttp import web

from . import api, ui
from ..util import misc

log = logging.getLogger(__name__)

class APIServer:
    """
    Run and manage the HTTP server for the upload API.
    """
    def __init__(self, server):
        self.server = server
        self.sites = []
        self.runner = None
        self.running_requests = {}

    async def start(self):
        app = self.create_app()

        # Create the aiohttp runner.
        self.runner = web.AppRunner(app, access_log_class=misc.AccessLogger, keepalive_timeout=75)
        await self.runner.setup()

        http_conf = self.server.settings.get_http()
        host = http_conf['host']
        port = http_conf['port']

        log.info(f'Starting HTTP server on {host}:{port}')
        site = web.TCPSite(self.runner, host=host, port=port, shutdown_timeout=1, backlog=128)
        await site.start()
        self.sites.append(site)

    async def shutdown(self):
        """
        Stop the webserver.
        """
        futures = [site.stop() for site in self.sites]
        if futures:
            await asyncio.gather(*futures)
        self.sites = []

        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None

    def create_app(self):
        """
        Create a web.Application for running our HTTP server.
        """
        app = web.Application(middlewares=[self.register_request_middleware])

        # Store the server on the app so it can be accessed from requests.
        app['server'] = self.server

        app.on_response_prepare.append(self.check_origin)
        app.on_shutdown.append(self.shutdown_requests)

        # Handle all OPTIONS requests.
        app.router.add_route('OPTIONS', '/{all:.*}', self._handle_options)

        # Add a handler for each API call.
        for route, func in api.handlers.items():
            handler = self.create_handler_for_command(func)
            app.router.add_post(route, handler)

        # Add the static page routes last, since they handle every other GET.
        static_dir = self.server.settings.get_static_dir()
        app['static_dir'] = static_dir
        if static_dir is not None:
            log.info(f'Serving static files from {static_dir}')
            ui.add_routes(app.router, static_dir)

        # For some reason, aiohttp is returning 405 Method Not Allowed by default instead of 404.
        app.router.add_route('GET', '/{all:.*}', self._not_found)

        return app

    @web.middleware
    async def register_request_middleware(self, request, handler):
        """
        Keep track of running requests, so we can cancel them on shutdown.
        """
        try:
            self.running_requests[request.task] = request
            return await handler(request)
        finally:
            del self.running_requests[request.task]

    async def _handle_options(self, request):
        """
        Handle CORS preflights.

        This always returns success, and is just here to return CORS headers.
        """
        return web.Response(status=200)

    def _not_found(self, request):
        raise web.HTTPNotFound()

    async def shutdown_requests(self, app):
        """
        Shut down any running requests.
        """
        requests_to_cancel = list(self.running_requests.keys())
        for task in requests_to_cancel:
            task.cancel()

        # Wait for requests to actually shut down.  If they're still running when the
        # process exits, it can cause a bunch of confusing exceptions.
        async with asyncio.timeout(3):
            await asyncio.gather(*requests_to_cancel, return_exceptions=True)

    def create_handler_for_command(self, handler):
        async def handle(request):
            info = api.RequestInfo(request)

            status = 200
            try:
                result = await handler(info)
            except misc.Error as e:
                result = e.data()
                status = e.status
            except Exception as e:
                # The stack only goes to the log.  Don't send internal details to clients.
                log.exception('Error handling request')
                result = { 'success': False, 'code': 'internal-error', 'reason': 'Internal server error' }
                status = 500

            # Don't use web.json_response.  It doesn't let us control JSON formatting
            # and gives really ugly JSON.
            try:
                data = json.dumps(result, indent=4, ensure_ascii=False) + '\n'
            except TypeError as e:
                # Something in the result isn't serializable.
                log.warning('Invalid response data: %s', e)

                result = { 'success': False, 'code': 'internal-error', 'reason': 'Internal server error' }
                data = json.dumps(result, indent=4, ensure_ascii=False) + '\n'
                status = 500

            data = data.encode('utf-8')
            data = io.BytesIO(data)

            # Put the error message in the status line.  This isn't part of the API, it's
            # just convenient for debugging.
            message = None
            if not result.get('success'):
                message = result.get('reason') or 'Error message missing'
                message = message.splitlines()[0]
            return web.Response(body=data, status=status, reason=message, content_type='application/json')

        return handle

    async def check_origin(self, request, response):
        """
        Add CORS headers.
        """
        origin = request.headers.get('Origin')
        if origin:
            response.headers['Access-Control-Allow-Origin'] = origin
            response.headers['Access-Control-Allow-Methods'] = 'POST, GET, OPTIONS'
            response.headers['Access-Control-Allow-Headers'] = 'Accept, Cache-Control, Origin, X-Requested-With'
            response.headers['Access-Control-Expose-Headers'] = '*'
            response.headers['Access-Control-Max-Age'] = '1000000'
            response.headers['Vary'] = 'Origin'
