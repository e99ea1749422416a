# Helpers that don't have dependancies on our other modules.
import asyncio, logging, sys, tempfile, uuid
from pathlib import Path
import urllib.parse

from aiohttp import abc, web

log = logging.getLogger(__name__)

image_types = {
    '.gif': 'image/gif',
}

default_upload_dir = Path(tempfile.gettempdir()) / 'gifcheck-uploads'

def get_temporary_path(directory=None, ext='.bin'):
    """
    Return a Path to a temporary file in directory, or in the default upload directory.

    This is just a unique filesystem path.  The file won't be opened or created and
    this doesn't handle deleting the file.
    """
    directory = Path(directory) if directory is not None else default_upload_dir
    directory.mkdir(parents=True, exist_ok=True)

    temp_filename = f'gifcheck-{uuid.uuid4()}{ext}'
    return directory / temp_filename

class Error(Exception):
    def __init__(self, code, reason, *, status=400, details=None):
        super().__init__(reason)
        self.code = code
        self.reason = reason
        self.status = status
        self.details = details

    def data(self):
        result = {
            'success': False,
            'code': self.code,
            'reason': self.reason,
        }
        if self.details is not None:
            result['details'] = self.details
        return result

def config_logging(verbose=False):
    # Add a logging factory to make some extra tags available for logging.
    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)

        # Add logTime, which is relativeCreated in seconds instead of milliseconds.
        record.logTime = record.relativeCreated / 1000.0

        # If we're logging while inside a task, make the name of the task available for logging.
        #
        # asyncio assumes that you always know whether you're running in a task already and should
        # never ask about the task if you're not in one, but we don't since we're inside a generic
        # logger.
        try:
            task = asyncio.current_task()
        except RuntimeError:
            task = None

        if task is None:
            record.task_name = ''
        else:
            record.task_name = task.get_name()

        return record
        
    logging.setLogRecordFactory(record_factory)

    # basicConfig doesn't let us give it a log filter, so we just set up logging ourself.
    logging.root.setLevel(logging.INFO)
    logging.captureWarnings(True)

    if sys.stderr is not None:
        add_root_logging_handler(logging.StreamHandler())

    logging.getLogger('gifcheck').setLevel(logging.DEBUG if verbose else logging.INFO)

def add_root_logging_handler(handler):
    """
    Add a logging handler to the root logger.

    This is needed so we can add our formatter and filter in one place.  The logging module has
    a hierarchy of loggers and handlers, but every handler has its own format and filters and
    you can't simply set them once on the root logger.
    """
    formatter = logging.Formatter('%(task_name)20s %(logTime)8.3f %(levelname)8s:%(name)-30s: %(message)s')
    handler.setFormatter(formatter)
    handler.addFilter(log_filter)
    logging.root.addHandler(handler)

def log_filter(log_record):
    # Ignore "Cannot write to closing transport" exceptions that asyncio floods our
    # logs with.  https://github.com/aio-libs/aiohttp/issues/5182 https://github.com/aio-libs/aiohttp/issues/5766
    if log_record.exc_info is not None and isinstance(log_record.exc_info, tuple):
        exc_class, exc, exc_tb = log_record.exc_info
        if isinstance(exc, ConnectionResetError) and \
            exc.args == ('Cannot write to closing transport',):
            return False

    return True

class AccessLogger(abc.AbstractAccessLogger):
    """
    A more readable access log.
    """
    def __init__(self, logger, log_format):
        self.logger = logging.getLogger('gifcheck.request')

    def log(self, request, response, duration):
        path = urllib.parse.unquote(request.path)
        message = ''
        level = self.logger.info
        if isinstance(response, web.FileResponse):
            # Static files are only interesting when something goes wrong.
            message += 'File: '
            if response.status == 200:
                level = self.logger.debug
        elif response.headers.get('Content-Type') == 'application/json':
            message += 'API:  '
            if response.status != 200:
                message += '(%i): ' % response.status
        else:
            message += 'Other:  '
        message += path
        message += ' (%.3fs)' % duration

        level(message)
