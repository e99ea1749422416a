# Analyze GIFs from the command line:
#
# python -m gifcheck.analyze animation.gif [more.gif ...]
#
# This prints one JSON object per file, in the same format the upload API returns.

import argparse, json, logging, sys

from .util import misc
from .util.gif_metadata import analyze_gif_file, GifParseError, RECOVERY_LENIENT, RECOVERY_STRICT

log = logging.getLogger(__name__)

def analyze_files(paths, *, recovery=RECOVERY_LENIENT, max_duration=15, max_loops=3):
    """
    Analyze each file in paths.  Yield (path, result), where result is the JSON data
    for the file.  Files that can't be read still give a result, with success false.
    """
    for path in paths:
        try:
            analysis = analyze_gif_file(path, recovery=recovery, max_duration=max_duration, max_loops=max_loops)
        except (OSError, GifParseError) as e:
            log.info('Error analyzing %s: %s', path, e)
            yield path, { 'success': False, 'filename': str(path), 'reason': str(e) }
            continue

        yield path, { 'success': True, 'filename': str(path), 'analysis': analysis.data() }

def main(argv=None):
    parser = argparse.ArgumentParser(description='Print animation info for GIF files')
    parser.add_argument('files', nargs='+', help='GIF files to analyze')
    parser.add_argument('--strict', action='store_true', help='Reject files with unknown blocks or no trailer')
    parser.add_argument('--max-duration', type=float, default=15, help='Duration limit in seconds (default %(default)s)')
    parser.add_argument('--max-loops', type=int, default=3, help='Loop limit (default %(default)s)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Log debug messages')
    args = parser.parse_args(argv)

    misc.config_logging(verbose=args.verbose)

    recovery = RECOVERY_STRICT if args.strict else RECOVERY_LENIENT
    failed = False
    for path, result in analyze_files(args.files, recovery=recovery, max_duration=args.max_duration, max_loops=args.max_loops):
        print(json.dumps(result, indent=4, ensure_ascii=False))
        failed = failed or not result['success']

    return 1 if failed else 0

if __name__ == '__main__':
    sys.exit(main())
