import asyncio, logging
from aiohttp import BodyPartReader, hdrs

from ..util import misc, gif_metadata

log = logging.getLogger(__name__)

handlers = {}

def reg(route):
    def decorator(func):
        handlers[route] = func
        return func
    return decorator

class RequestInfo:
    def __init__(self, request):
        self.request = request
        self.server = request.app['server']
        self.settings = self.server.settings

async def _find_upload_part(request, field_name):
    """
    Return the multipart part holding the uploaded file, or None if there isn't one.
    """
    if not request.content_type.startswith('multipart/'):
        return None

    reader = await request.multipart()
    while True:
        part = await reader.next()
        if part is None:
            return None

        # Ignore nested multipart bodies and fields other than the one we want.
        if isinstance(part, BodyPartReader) and part.name == field_name and part.filename:
            return part

        await part.release()

async def _store_upload(part, path, max_size):
    """
    Write an uploaded file to path, and return its size.
    """
    # File writes are done in a thread, so a slow disk doesn't hold up other requests.
    size = 0
    f = await asyncio.to_thread(open, path, 'wb')
    try:
        while True:
            chunk = await part.read_chunk()
            if not chunk:
                break

            size += len(chunk)
            if size > max_size:
                raise misc.Error('file-too-large', 'File is larger than %i bytes' % max_size, status=413)

            await asyncio.to_thread(f.write, chunk)
    finally:
        await asyncio.to_thread(f.close)

    return size

def _remove_upload(path):
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log.error('Error deleting %s: %s', path, e)

@reg('/upload')
async def api_upload(info):
    """
    Receive an uploaded GIF and return its animation info.

    The file is stored in the upload directory while it's analyzed, and is always removed
    afterwards.
    """
    upload_settings = info.settings.get_upload()
    analysis_settings = info.settings.get_analysis()

    log.info('Upload request received')

    part = await _find_upload_part(info.request, upload_settings['field_name'])
    if part is None:
        log.info('No file in request')
        raise misc.Error('no-file', 'No file uploaded')

    filename = part.filename
    content_type = part.headers.get(hdrs.CONTENT_TYPE, '').split(';')[0].strip().lower()
    if content_type != misc.image_types['.gif']:
        log.info('Rejected %s with content type %s', filename, content_type)
        raise misc.Error('invalid-file-type', 'Only .gif files are allowed')

    path = misc.get_temporary_path(upload_settings['directory'], '.gif')
    try:
        size = await _store_upload(part, path, upload_settings['max_size'])
        log.info('File received: %s, size: %i', filename, size)

        data = await asyncio.to_thread(path.read_bytes)
        try:
            analysis = await asyncio.to_thread(gif_metadata.analyze_gif, data, **analysis_settings)
        except gif_metadata.GifParseError as e:
            log.info('Error analyzing %s: %s', filename, e)
            raise misc.Error('invalid-gif', 'Invalid or unreadable GIF file', details=str(e))
    finally:
        _remove_upload(path)

    log.info('Analysis of %s complete: %s', filename, analysis)

    return {
        'success': True,
        'filename': filename,
        'analysis': analysis.data(),
    }
