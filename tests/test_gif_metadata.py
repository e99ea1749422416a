import io, logging
import pytest
from PIL import Image

import gifdata
from gifdata import gif, image, graphic_control, netscape_loop, comment, application, screen_descriptor
from gifcheck.util.gif_analysis import LoopCount
from gifcheck.util.gif_metadata import (
    analyze_gif, analyze_gif_file, parse_gif_metadata,
    GifParseError, SignatureError, TruncatedDataError, UnknownBlockError,
)

def test_static_frame():
    result = analyze_gif(gifdata.static_gif())
    assert result.frame_count == 1
    assert result.duration_seconds == 0.0
    assert result.loop_count == LoopCount.finite(1)
    assert not result.exceeds_duration
    assert not result.exceeds_loops
    assert not result.is_animated

def test_infinite_loop_animation():
    result = analyze_gif(gifdata.looping_gif(loop_count=0, delay=50, frames=2))
    assert result.frame_count == 2
    assert result.duration_seconds == 1.0
    assert result.loop_count == LoopCount.INFINITE
    assert not result.exceeds_duration
    assert result.exceeds_loops
    assert result.is_animated

def test_long_animation():
    result = analyze_gif(gifdata.looping_gif(loop_count=1, delay=800, frames=2))
    assert result.duration_seconds == 16.0
    assert result.exceeds_duration
    assert result.loop_count == LoopCount.finite(2)
    assert not result.exceeds_loops

@pytest.mark.parametrize('data', [
    b'',
    b'GI',
    b'\x89PNG\r\n\x1a\n' + b'\x00' * 32,
    b'not a gif at all',
])
def test_not_a_gif(data):
    with pytest.raises(SignatureError):
        analyze_gif(data)

def test_version_isnt_checked():
    data = gif(image())
    data = b'GIF87a' + data[6:]
    assert analyze_gif(data).frame_count == 1

def test_deterministic():
    data = gifdata.looping_gif(loop_count=7, delay=13, frames=5)
    assert analyze_gif(data) == analyze_gif(data)
    assert analyze_gif(bytearray(data)) == analyze_gif(data)

@pytest.mark.parametrize('raw', [1, 2, 5, 255, 65535])
def test_finite_loop_counts(raw):
    result = analyze_gif(gifdata.looping_gif(loop_count=raw))
    assert result.loop_count == LoopCount.finite(raw + 1)

def test_last_loop_count_wins():
    data = gif(netscape_loop(5), image(), netscape_loop(2), image())
    parser = parse_gif_metadata(data)
    assert parser.accumulator.raw_loop_count == 2

def test_netscape_without_loop_sub_block():
    # A NETSCAPE extension whose sub-block isn't a loop count is ignored.
    data = gif(application(b'NETSCAPE2.0', b'\x02\x00\x10\x00\x00'), image(), image())
    assert analyze_gif(data).loop_count == LoopCount.finite(1)

def test_other_application_extension_is_skipped():
    # This looks like a loop sub-block, but it isn't in a NETSCAPE extension.
    data = gif(application(b'XMP DataXMP', b'\x01\x00\x00' + b'x' * 300), image())
    result = analyze_gif(data)
    assert result.loop_count == LoopCount.finite(1)
    assert result.frame_count == 1

def test_comment_is_skipped():
    data = gif(comment(b'hello ' * 100), graphic_control(10), image(), comment(b'bye'))
    result = analyze_gif(data)
    assert result.frame_count == 1
    assert result.duration_seconds == 0.1

def test_plain_text_extension_is_skipped():
    plain_text = b'\x21\x01\x0c' + b'\x00' * 12 + gifdata.sub_blocks(b'text')
    data = gif(plain_text, image())
    assert analyze_gif(data).frame_count == 1

def test_duration_ignores_block_order():
    ordered = gif(graphic_control(30), image(), graphic_control(70), image())
    shuffled = gif(image(), graphic_control(30), image(), comment(b'x'), graphic_control(70))
    assert analyze_gif(ordered).duration_seconds == 1.0
    assert analyze_gif(shuffled).duration_seconds == 1.0

def test_graphic_control_without_image(caplog):
    data = gif(graphic_control(30), graphic_control(70), image(), graphic_control(100))
    with caplog.at_level(logging.WARNING, logger='gifcheck'):
        parser = parse_gif_metadata(data)

    # The delays are still counted, but they're reported.
    assert parser.accumulator.total_delay_centiseconds == 200
    assert parser.accumulator.dangling_graphic_controls == 2
    assert 'no image following them' in caplog.text

def test_graphic_control_before_plain_text(caplog):
    plain_text = b'\x21\x01\x0c' + b'\x00' * 12 + gifdata.sub_blocks(b'text')
    data = gif(graphic_control(30), plain_text, image())
    with caplog.at_level(logging.WARNING, logger='gifcheck'):
        parser = parse_gif_metadata(data)

    # The delay belongs to the plain text, not to the image after it.
    assert parser.accumulator.dangling_graphic_controls == 1
    assert parser.accumulator.total_delay_centiseconds == 30
    assert parser.accumulator.frame_count == 1
    assert 'no image following them' in caplog.text

def test_graphic_control_with_unusual_block_size():
    # A Graphic Control Extension with a larger block than usual.  The delay is still at
    # the same place, and the extra bytes are skipped.
    extension = b'\x21\xF9\x06\x00\x19\x00\x00\xAA\xBB\x00'
    data = gif(extension, image())
    result = analyze_gif(data)
    assert result.duration_seconds == 0.25
    assert result.frame_count == 1

def test_color_tables_are_skipped():
    data = gif(
        graphic_control(10), image(color_table_bits=7),
        graphic_control(10), image(color_table_bits=0),
        screen=screen_descriptor(color_table_bits=7))
    parser = parse_gif_metadata(data)
    assert parser.screen.has_global_color_table
    assert parser.screen.global_color_table_size == 256
    assert parser.accumulator.frame_count == 2
    assert parser.offset == len(data) - 1

def test_color_table_past_end_of_file():
    # The flags say there's a 256-entry table, but the file ends first.
    data = gifdata.header() + b'\x01\x00\x01\x00\x87\x00\x00' + b'\x00' * 30
    with pytest.raises(TruncatedDataError):
        analyze_gif(data)

def test_local_color_table_past_end_of_file():
    data = gif(trailer=False) + b'\x2C' + b'\x00' * 8 + b'\x87' + b'\x00' * 30
    with pytest.raises(TruncatedDataError):
        analyze_gif(data)

def test_truncated_sub_block():
    data = gif(image(data=b'\x01' * 100), trailer=False)
    with pytest.raises(TruncatedDataError) as e:
        analyze_gif(data[:-10])
    assert e.value.offset < len(data)

def test_data_after_trailer_is_ignored():
    data = gif(image()) + b'\x2C garbage'
    parser = parse_gif_metadata(data)
    assert parser.accumulator.frame_count == 1
    assert parser.data[parser.offset] == 0x3B

def test_unknown_block_lenient():
    data = gif(image(), trailer=False) + b'\x99\x00\x42' + image() + gifdata.TRAILER
    assert analyze_gif(data).frame_count == 2

def test_unknown_block_strict():
    prefix = gif(image(), trailer=False)
    data = prefix + b'\x99' + image() + gifdata.TRAILER
    with pytest.raises(UnknownBlockError) as e:
        analyze_gif(data, recovery='strict')
    assert e.value.offset == len(prefix)
    assert e.value.block_type == 0x99

def test_missing_trailer():
    data = gif(graphic_control(20), image(), trailer=False)
    result = analyze_gif(data)
    assert result.frame_count == 1
    assert result.duration_seconds == 0.2

    with pytest.raises(TruncatedDataError):
        analyze_gif(data, recovery='strict')

def test_screen_descriptor_only():
    # Lenient parsing accepts a stream that stops between blocks, strict parsing doesn't.
    data = gif(trailer=False)
    result = analyze_gif(data)
    assert result.frame_count == 0
    assert not result.is_animated

    with pytest.raises(TruncatedDataError):
        analyze_gif(data, recovery='strict')

def test_unknown_recovery_mode():
    with pytest.raises(ValueError):
        analyze_gif(gifdata.static_gif(), recovery='sloppy')

def test_truncated_prefixes():
    data = gifdata.looping_gif(loop_count=3, delay=50, frames=3)
    full = analyze_gif(data, recovery='strict')
    assert full.frame_count == 3

    for length in range(len(data)):
        prefix = data[:length]

        # Strict parsing requires the trailer, so every prefix fails.
        with pytest.raises((SignatureError, TruncatedDataError)):
            analyze_gif(prefix, recovery='strict')

        # Lenient parsing stops at the end of the buffer if it's between blocks, but it
        # never reads past the end or fails with anything other than a parse error.
        try:
            result = analyze_gif(prefix)
        except GifParseError:
            continue

        assert result.frame_count <= full.frame_count
        assert result.is_animated == (result.frame_count > 1)

def test_stray_bytes_never_escape_the_buffer():
    # Random junk after a valid header is either skipped or rejected, never read past.
    data = gif(trailer=False) + bytes(range(256)) * 4
    for length in range(len(data)):
        try:
            analyze_gif(data[:length])
        except GifParseError:
            pass

def test_analyze_gif_file(tmp_path):
    path = tmp_path / 'test.gif'
    path.write_bytes(gifdata.looping_gif(loop_count=0, delay=50, frames=2))
    assert analyze_gif_file(path).loop_count == LoopCount.INFINITE

def _save_pillow_gif(**kwargs):
    colors = [(255, 0, 0), (0, 255, 0), (0, 0, 255)]
    frames = [Image.new('RGB', (8, 8), color) for color in colors]

    f = io.BytesIO()
    frames[0].save(f, format='GIF', save_all=True, append_images=frames[1:], **kwargs)
    return f.getvalue()

def test_pillow_infinite_animation():
    result = analyze_gif(_save_pillow_gif(duration=100, loop=0), recovery='strict')
    assert result.frame_count == 3
    assert result.duration_seconds == 0.3
    assert result.loop_count == LoopCount.INFINITE
    assert result.is_animated

def test_pillow_finite_animation():
    result = analyze_gif(_save_pillow_gif(duration=2000, loop=2), recovery='strict')
    assert result.frame_count == 3
    assert result.duration_seconds == 6.0
    assert result.loop_count == LoopCount.finite(3)
    assert not result.exceeds_duration
    assert not result.exceeds_loops

def test_pillow_static_image():
    f = io.BytesIO()
    Image.new('RGB', (8, 8), (10, 20, 30)).save(f, format='GIF')

    result = analyze_gif(f.getvalue(), recovery='strict')
    assert result.frame_count == 1
    assert result.loop_count == LoopCount.finite(1)
    assert not result.is_animated
