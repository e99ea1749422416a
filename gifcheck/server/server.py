import argparse, asyncio, logging, signal

from .settings import Settings
from .api_server import APIServer
from ..util import misc

log = logging.getLogger(__name__)

class Server:
    """
    The main top-level class for the upload server.
    """
    def __init__(self, settings):
        self.settings = settings
        self.api_server = None

    def main(self):
        """
        Run the server until it's told to exit.
        """
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        self._main_task = self._main()
        self._main_task = loop.create_task(self._main_task)
        self._main_task.set_name('Server')

        # KeyboardInterrupt has a lot of problems (bad interactions with asyncio, breaks
        # thread.wait() in weird ways, etc.), so catch SIGINT and cancel cleanly.  
        def sigint(sig, sig_info):
            log.info('^C received')
            self.exit('^C')
        signal.signal(signal.SIGINT, sigint)

        try:
            # self._main will run until the application is ready to exit.
            loop.run_until_complete(self._main_task)
        except asyncio.CancelledError as e:
            # We're cancelled when self.exit() is called.  Don't propagate this to the caller.
            pass
        finally:
            # Shut down all tasks.
            while True:
                tasks = asyncio.all_tasks(loop)
                if not tasks:
                    break

                for task in tasks:
                    task.cancel()

                loop.run_until_complete(asyncio.gather(*tasks, return_exceptions=True))

                for task in tasks:
                    if not task.cancelled() and task.exception() is not None:
                        loop.call_exception_handler({
                            'message': 'unhandled exception during asyncio.run() shutdown',
                            'exception': task.exception(),
                            'task': task,
                        })

            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()

    async def _main(self):
        """
        The main task.  Start the HTTP server, loop until this task is cancelled, then
        shut down.
        """
        await self._init()

        try:
            while True:
                # SIGINT is only noticed when the loop wakes up, so don't sleep for too long.
                await asyncio.sleep(.1)
        finally:
            await self._shutdown()

    async def _init(self):
        upload_dir = self.settings.get_upload()['directory']
        upload_dir.mkdir(parents=True, exist_ok=True)
        log.info('Storing uploads in %s', upload_dir)

        self.api_server = APIServer(self)
        await self.api_server.start()

    async def _shutdown(self):
        log.info('Shutting down server')
        if self.api_server is not None:
            await self.api_server.shutdown()

    def exit(self, reason='not specified'):
        """
        Exit the application.
        """
        # Ending the main task will exit the application.
        log.info(f'Server exiting (reason: {reason})')
        self._main_task.cancel(reason)

def run(argv=None):
    parser = argparse.ArgumentParser(description='Run the GIF upload and analysis server')
    parser.add_argument('--settings', '-s', default=None, help='Path to a JSON settings file')
    parser.add_argument('--verbose', '-v', action='store_true', help='Log debug messages')
    args = parser.parse_args(argv)

    misc.config_logging(verbose=args.verbose)

    settings = Settings(args.settings)
    Server(settings).main()

if __name__ == '__main__':
    run()
