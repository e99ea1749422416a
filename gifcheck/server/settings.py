# Server settings, stored in a JSON file.  Everything has a default, so the file is
# optional.
#
# {
#     "http": { "host": "localhost", "port": 3000 },
#     "upload": { "directory": "/tmp/gifcheck-uploads", "max_size": 20971520, "field_name": "gifFile" },
#     "analysis": { "max_duration": 15, "max_loops": 3, "recovery": "lenient" },
#     "static_dir": "public"
# }

import errno, logging, json, os
from pathlib import Path

from ..util import misc
from ..util.gif_metadata import recovery_modes

log = logging.getLogger(__name__)

class Settings:
    def __init__(self, filename=None, *, environ=None):
        self.filename = Path(filename) if filename is not None else None
        self.environ = environ if environ is not None else os.environ
        self.load()

    def load(self):
        self.data = self._read()

    def _read(self):
        if self.filename is None:
            return {}

        try:
            with open(self.filename, 'r') as f:
                data = f.read()
                return json.loads(data)
        except OSError as e:
            if e.errno != errno.ENOENT:
                raise
            log.info('Settings file %s doesn\'t exist, using defaults', self.filename)
            return {}

    def get_http(self):
        http = self.data.get('http', {})

        # PORT in the environment overrides the settings file.
        port = self.environ.get('PORT') or http.get('port', 3000)
        return {
            'host': http.get('host', 'localhost'),
            'port': int(port),
        }

    def get_upload(self):
        upload = self.data.get('upload', {})
        directory = upload.get('directory')
        return {
            'directory': Path(directory) if directory else misc.default_upload_dir,
            'max_size': int(upload.get('max_size', 20*1024*1024)),
            'field_name': upload.get('field_name', 'gifFile'),
        }

    def get_analysis(self):
        analysis = self.data.get('analysis', {})
        recovery = analysis.get('recovery', 'lenient')
        if recovery not in recovery_modes:
            raise ValueError('Invalid recovery mode in %s: %r' % (self.filename, recovery))

        return {
            'max_duration': analysis.get('max_duration', 15),
            'max_loops': analysis.get('max_loops', 3),
            'recovery': recovery,
        }

    def get_static_dir(self):
        """
        Return the directory to serve static files from, or None if static files
        aren't served.
        """
        static_dir = self.data.get('static_dir')
        if static_dir is None:
            return None

        # Relative paths are relative to the settings file.
        path = Path(static_dir)
        if not path.is_absolute() and self.filename is not None:
            path = self.filename.parent / path
        return path.resolve()
