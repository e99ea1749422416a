# Extract animation metadata from GIFs: frame count, total delay and the NETSCAPE
# loop count.
#
# This only walks the block structure.  Image data is never decompressed, so this is
# much faster than opening the file with PIL, which decodes every frame to find out
# how many there are.

import logging, struct
from collections import namedtuple

from .gif_analysis import ParseAccumulator, aggregate

log = logging.getLogger(__name__)

class Block:
    EXTENSION_INTRODUCER = 0x21
    IMAGE_SEPARATOR = 0x2C
    TRAILER = 0x3B
    TERMINATOR = 0x00

class Label:
    GRAPHIC_CONTROL = 0xF9
    APPLICATION = 0xFF
    PLAIN_TEXT = 0x01

NETSCAPE_IDENTIFIER = b'NETSCAPE'
NETSCAPE_LOOP_SUB_BLOCK = 0x01

# What to do with a byte that doesn't start a block we know about.  Lenient skips it
# and keeps scanning, strict refuses the file.
RECOVERY_LENIENT = 'lenient'
RECOVERY_STRICT = 'strict'
recovery_modes = (RECOVERY_LENIENT, RECOVERY_STRICT)

class GifParseError(ValueError):
    """
    The base class for errors that make a file unreadable as a GIF.
    """
    pass

class SignatureError(GifParseError): pass

class TruncatedDataError(GifParseError):
    def __init__(self, offset, size, length):
        self.offset = offset
        self.size = size
        super().__init__('Unexpected end of file: wanted %i bytes at offset %i, file is %i bytes' % (size, offset, length))

class UnknownBlockError(GifParseError):
    def __init__(self, offset, block_type):
        self.offset = offset
        self.block_type = block_type
        super().__init__('Unknown block type %02x at offset %i' % (block_type, offset))

ScreenDescriptor = namedtuple('ScreenDescriptor', (
    'width', 'height', 'has_global_color_table', 'global_color_table_size',
    'background_color', 'pixel_aspect_ratio'))

ImageDescriptor = namedtuple('ImageDescriptor', (
    'left', 'top', 'width', 'height', 'has_local_color_table', 'local_color_table_size'))

# What each extension told us.  Other extensions are skipped without keeping anything.
GraphicControl = namedtuple('GraphicControl', ('delay',))
ApplicationLoop = namedtuple('ApplicationLoop', ('loop_count',))
OtherExtension = namedtuple('OtherExtension', ('label',))

def _color_table_size(flags):
    """
    Return the number of entries in a color table from a packed flags byte.  The same
    layout is used by the screen descriptor and by image descriptors.
    """
    return 1 << ((flags & 0b00000111) + 1)

class parse_gif_metadata:
    """
    Walk the blocks of a GIF held entirely in memory.

    The parse runs when this is created, and the results are left in self.accumulator.
    self.offset is the only thing that moves: every read goes through _read or _skip,
    which check it against the end of the buffer first.
    """
    def __init__(self, data, *, recovery=RECOVERY_LENIENT):
        if recovery not in recovery_modes:
            raise ValueError('Unknown recovery mode: %r' % recovery)

        self.data = bytes(data)
        self.offset = 0
        self.recovery = recovery
        self.accumulator = ParseAccumulator()

        # True if we've seen a Graphic Control Extension that hasn't been followed by an
        # image yet.
        self._pending_graphic_control = False

        self.parse_signature()
        self.screen = self.parse_screen_descriptor()
        self.parse_blocks()

    def _read(self, size):
        if self.offset + size > len(self.data):
            raise TruncatedDataError(self.offset, size, len(self.data))

        result = self.data[self.offset:self.offset+size]
        self.offset += size
        return result

    def _read_unpack(self, fmt):
        return struct.unpack(fmt, self._read(struct.calcsize(fmt)))

    def _read_byte(self):
        return self._read(1)[0]

    def _skip(self, size):
        if self.offset + size > len(self.data):
            raise TruncatedDataError(self.offset, size, len(self.data))
        self.offset += size

    def parse_signature(self):
        if self.data[0:3] != b'GIF':
            raise SignatureError('Not a GIF file')

        # The version is "87a" or "89a", but we don't care which.
        version = self._read(6)[3:]
        log.debug('GIF version %s', version.decode('ascii', errors='replace'))

    def parse_screen_descriptor(self):
        width, height, flags, background_color, pixel_aspect_ratio = self._read_unpack('<HHBBB')

        has_global_color_table = bool(flags & 0b10000000)
        # color_resolution     = (flags & 0b01110000) >> 4
        # sorted               = (flags & 0b00001000) >> 3
        color_table_size       = _color_table_size(flags)

        # Each color table entry is an RGB triplet.
        if has_global_color_table:
            self._skip(color_table_size * 3)

        return ScreenDescriptor(width, height, has_global_color_table, color_table_size,
            background_color, pixel_aspect_ratio)

    def parse_blocks(self):
        # Every pass either moves forward or stops, so this can't take more passes than there
        # are bytes.  The limit is a backstop in case that ever stops being true.
        max_iterations = len(self.data)
        iterations = 0

        while self.offset < len(self.data) and iterations < max_iterations:
            iterations += 1

            block_offset = self.offset
            block_type = self._read_byte()
            match block_type:
                case Block.EXTENSION_INTRODUCER:
                    observation = self.parse_extension_block()
                    self._observe_extension(observation)

                case Block.IMAGE_SEPARATOR:
                    self.skip_image()
                    self.accumulator.frame_count += 1
                    self._pending_graphic_control = False

                case Block.TRAILER:
                    # Leave the cursor on the trailer.
                    self.offset = block_offset
                    self._finish()
                    return

                case _:
                    if self.recovery == RECOVERY_STRICT:
                        raise UnknownBlockError(block_offset, block_type)

                    log.debug('Skipping unknown block type %02x at offset %i', block_type, block_offset)

        # The file ended without a trailer.  Only strict mode treats this as truncation, so in
        # lenient mode a file cut off exactly between blocks still gives a result for the
        # blocks before the cut.
        if self.recovery == RECOVERY_STRICT:
            raise TruncatedDataError(self.offset, 1, len(self.data))

        log.debug('No trailer, stopped at offset %i of %i', self.offset, len(self.data))
        self._finish()

    def _observe_extension(self, observation):
        match observation:
            case GraphicControl(delay=delay):
                if self._pending_graphic_control:
                    self.accumulator.dangling_graphic_controls += 1
                self._pending_graphic_control = True
                self.accumulator.total_delay_centiseconds += delay

            case ApplicationLoop(loop_count=loop_count):
                # If there's more than one, the last one wins.
                self.accumulator.raw_loop_count = loop_count

            case OtherExtension(label=Label.PLAIN_TEXT):
                # Plain text can also use a Graphic Control Extension.  Its delay still counts
                # towards the total, but no image follows it.
                if self._pending_graphic_control:
                    self.accumulator.dangling_graphic_controls += 1
                    self._pending_graphic_control = False

    def _finish(self):
        if self._pending_graphic_control:
            self.accumulator.dangling_graphic_controls += 1
            self._pending_graphic_control = False

        # These delays are still counted in the total, but they don't belong to any frame,
        # so the duration may be longer than the animation actually plays.
        if self.accumulator.dangling_graphic_controls:
            log.warning('%i graphic control extensions have no image following them',
                self.accumulator.dangling_graphic_controls)

    def parse_extension_block(self):
        label = self._read_byte()
        match label:
            case Label.GRAPHIC_CONTROL:
                return self.parse_graphic_control()
            case Label.APPLICATION:
                return self.parse_application_extension()
            case _:
                # Comments, plain text, and anything else.  Skip the first block, then its
                # sub-blocks.
                size = self._read_byte()
                self._skip(size)
                self.skip_sub_blocks()
                return OtherExtension(label)

    def parse_graphic_control(self):
        # The block is normally 4 bytes: flags, a 2-byte delay, and the transparency index.
        # The delay is always read from the same place, whatever the block claims its size is.
        size_offset = self.offset
        size = self._read_byte()

        # flags                 = data[0]
        # disposal_method       = flags & 0b00011100
        # user_input            = flags & 0b00000010
        # has_transparent_color = flags & 0b00000001
        self._skip(1)
        delay, = self._read_unpack('<H')

        self.offset = size_offset + 1
        self._skip(size)

        # There are never any sub-blocks here in practice, but skip them the same way as
        # everything else to reach the terminator.
        self.skip_sub_blocks()
        return GraphicControl(delay)

    def parse_application_extension(self):
        header_size = self._read_byte()
        identifier = self._read(header_size)
        if not identifier.startswith(NETSCAPE_IDENTIFIER):
            log.debug('Skipping application extension %r', identifier)
            self.skip_sub_blocks()
            return OtherExtension(Label.APPLICATION)

        # Look through the sub-blocks for the loop count.  This is a sub-block starting with 1,
        # followed by a 2-byte count of how many times to repeat after the first play.
        loop_count = None
        while True:
            size = self._read_byte()
            if size == Block.TERMINATOR:
                break

            sub_block = self._read(size)
            if size >= 3 and sub_block[0] == NETSCAPE_LOOP_SUB_BLOCK:
                loop_count, = struct.unpack('<H', sub_block[1:3])

        if loop_count is None:
            return OtherExtension(Label.APPLICATION)
        return ApplicationLoop(loop_count)

    def skip_image(self):
        left, top, width, height, flags = self._read_unpack('<HHHHB')

        has_local_color_table   = bool(flags & 0b10000000)
        # interlaced            = flags & 0b01000000
        # sorted                = flags & 0b00100000
        # reserved              = flags & 0b00011000
        local_color_table_size  = _color_table_size(flags)

        # Skip the local color table, if any.
        if has_local_color_table:
            self._skip(local_color_table_size * 3)

        # Skip the LZW minimum code size, then the image data itself.
        self._skip(1)
        self.skip_sub_blocks()

        return ImageDescriptor(left, top, width, height, has_local_color_table, local_color_table_size)

    def skip_sub_blocks(self):
        while True:
            size = self._read_byte()
            if size == Block.TERMINATOR:
                break

            self._skip(size)

def analyze_gif(data, *, recovery=RECOVERY_LENIENT, max_duration=15, max_loops=3):
    """
    Parse a GIF held in memory and return an AnalysisResult.

    Raise GifParseError if the file isn't a GIF or is damaged.
    """
    result = parse_gif_metadata(data, recovery=recovery)
    return aggregate(result.accumulator, max_duration=max_duration, max_loops=max_loops)

def analyze_gif_file(path, **kwargs):
    with open(path, 'rb') as f:
        data = f.read()

    return analyze_gif(data, **kwargs)
