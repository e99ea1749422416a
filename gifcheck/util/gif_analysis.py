# Turn what the GIF parser saw into the result we report for an upload.

from collections import namedtuple

class ParseAccumulator:
    """
    Counts collected while walking a GIF's blocks.
    """
    def __init__(self):
        self.frame_count = 0

        # The sum of every Graphic Control Extension delay, in hundredths of a second.
        # This includes delays that don't have an image after them.
        self.total_delay_centiseconds = 0

        # The raw NETSCAPE2.0 loop count, or None if the file didn't have one.
        self.raw_loop_count = None

        # The number of Graphic Control Extensions that weren't followed by an image.
        self.dangling_graphic_controls = 0

    def __repr__(self):
        return 'ParseAccumulator(frames=%i, delay=%i, loop=%r)' % (
            self.frame_count, self.total_delay_centiseconds, self.raw_loop_count)

class LoopCount:
    """
    How many times an animation plays: either a number of times, or forever.

    Use LoopCount.finite(n) or LoopCount.INFINITE.
    """
    __slots__ = ('_count',)

    def __init__(self, count):
        self._count = count

    @classmethod
    def finite(cls, count):
        if count < 0:
            raise ValueError('Negative loop count: %i' % count)
        return cls(count)

    @classmethod
    def from_raw(cls, raw_loop_count):
        """
        Convert a NETSCAPE2.0 loop count.

        The extension stores the number of extra loops after the first play, and 0 means
        loop forever.  With no extension at all, the animation plays once.
        """
        if raw_loop_count is None:
            return cls.finite(1)
        if raw_loop_count == 0:
            return cls.INFINITE
        return cls.finite(raw_loop_count + 1)

    @property
    def infinite(self):
        return self._count is None

    @property
    def count(self):
        """
        The number of plays, or None if this loops forever.
        """
        return self._count

    def exceeds(self, limit):
        return self.infinite or self._count > limit

    def data(self):
        """
        Return this for JSON.  JSON has no infinity, so that's returned as a string.
        """
        return 'infinite' if self.infinite else self._count

    def __eq__(self, other):
        if not isinstance(other, LoopCount):
            return NotImplemented
        return self._count == other._count

    def __hash__(self):
        return hash(('LoopCount', self._count))

    def __repr__(self):
        if self.infinite:
            return 'LoopCount.INFINITE'
        return 'LoopCount.finite(%i)' % self._count

LoopCount.INFINITE = LoopCount(None)

class AnalysisResult(namedtuple('AnalysisResult', (
        'frame_count', 'duration_seconds', 'loop_count',
        'exceeds_duration', 'exceeds_loops', 'is_animated'))):
    __slots__ = ()

    def data(self):
        return {
            'frameCount': self.frame_count,
            'durationSeconds': self.duration_seconds,
            'loopCount': self.loop_count.data(),
            'exceedsDuration': self.exceeds_duration,
            'exceedsLoops': self.exceeds_loops,
            'isAnimated': self.is_animated,
        }

def aggregate(accumulator, *, max_duration=15, max_loops=3):
    """
    Return an AnalysisResult for a ParseAccumulator.

    An animation exceeds the limits if it's longer than max_duration seconds, or plays
    more than max_loops times.  Looping forever always exceeds the loop limit.
    """
    duration_seconds = round(accumulator.total_delay_centiseconds / 100, 2)
    loop_count = LoopCount.from_raw(accumulator.raw_loop_count)

    return AnalysisResult(
        frame_count=accumulator.frame_count,
        duration_seconds=duration_seconds,
        loop_count=loop_count,
        exceeds_duration=duration_seconds > max_duration,
        exceeds_loops=loop_count.exceeds(max_loops),
        is_animated=accumulator.frame_count > 1,
    )
