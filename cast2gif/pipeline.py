"""Ordered concurrent rasterization

Snapshots are produced one at a time by the frame sampler, rasterized in
parallel by a pool of worker threads and handed to the encoder strictly in
frame index order.

Everything except rasterization runs on the thread calling
`OrderedPipeline.run`: pulling the next snapshot from the sampler,
dispatching it, reordering completed frames and submitting them to the
encoder. At most `workers + slack` frames are in flight at any time (queued,
being rasterized, or rasterized and waiting for an earlier frame). When this
window is full, `run` waits for completions instead of pulling the next
snapshot, which in turn stops the replay of the session: memory use does not
depend on the length of the session.
"""
import logging
import os
import queue
import threading
from collections import namedtuple

logger = logging.getLogger(__name__)

DEFAULT_SLACK = 2

Progress = namedtuple('Progress', ['submitted', 'rasterized', 'encoded'])
Progress.__doc__ = 'Number of frames that went through each stage of the pipeline'

PENDING = 'pending'
READY = 'ready'


class ConversionCancelled(Exception):
    """The pipeline was cancelled before all frames were encoded"""


class _Slot:
    __slots__ = ('state', 'frame')

    def __init__(self):
        self.state = PENDING
        self.frame = None


class ReorderBuffer:
    """Fixed capacity table of in-flight frames keyed by frame index

    Each slot is either PENDING (the snapshot was dispatched) or READY (the
    frame was rasterized). Frames leave the buffer through `pop_ready` in
    index order only, starting from `next_index`.
    """
    def __init__(self, capacity):
        if capacity < 1:
            raise ValueError('Capacity must be at least 1')
        self.capacity = capacity
        self.next_index = 0
        self._next_reserved = 0
        self._slots = {}

    def __len__(self):
        return len(self._slots)

    def full(self):
        return len(self._slots) >= self.capacity

    def ready_count(self):
        return sum(1 for slot in self._slots.values() if slot.state == READY)

    def reserve(self, index):
        """Create a PENDING slot for the frame `index`

        Indices must be reserved contiguously starting from 0."""
        if index != self._next_reserved:
            raise ValueError('Frame #{} reserved out of order (expected #{})'
                             .format(index, self._next_reserved))
        if self.full():
            raise OverflowError('Reorder buffer is full ({} frames)'.format(self.capacity))
        self._slots[index] = _Slot()
        self._next_reserved += 1

    def complete(self, index, frame):
        """Mark the slot of frame `index` as READY"""
        slot = self._slots.get(index)
        if slot is None or slot.state != PENDING:
            raise ValueError('Frame #{} was not expected'.format(index))
        slot.state = READY
        slot.frame = frame

    def pop_ready(self):
        """Yield and release consecutive READY frames starting from
        `next_index`"""
        while True:
            slot = self._slots.get(self.next_index)
            if slot is None or slot.state != READY:
                return
            del self._slots[self.next_index]
            self.next_index += 1
            yield slot.frame


class OrderedPipeline:
    """Rasterize snapshots in parallel and submit frames to `sink` in order

    :param render: Callable turning a ScreenSnapshot into a PixelFrame. It is
    called from worker threads.
    :param sink: Encoder receiving frames through `submit`, called from the
    thread running `run` only
    :param workers: Number of worker threads (defaults to the number of CPUs)
    :param slack: Number of frames allowed in flight on top of one per worker
    :param validate: Optional callable checking each snapshot before it is
    dispatched. Exceptions it raises abort the run.
    :param progress: Optional callable receiving a Progress instance each
    time a frame moves to the next stage
    :param poll_interval: Maximum time in seconds between two checks for
    cancellation while waiting for a worker
    """
    def __init__(self, render, sink, workers=None, slack=DEFAULT_SLACK,
                 validate=None, progress=None, poll_interval=0.05):
        if workers is None:
            workers = os.cpu_count() or 1
        if workers < 1:
            raise ValueError('At least one worker is required')
        if slack < 0:
            raise ValueError('Slack must be positive or zero')
        self.render = render
        self.sink = sink
        self.workers = workers
        self.window = workers + slack
        self.validate = validate
        self.progress = progress
        self.poll_interval = poll_interval

        self.max_queue_occupancy = 0
        self.max_reorder_occupancy = 0

        self._work_queue = queue.Queue(maxsize=self.window)
        self._done_queue = queue.Queue(maxsize=self.window)
        self._reorder = ReorderBuffer(self.window)
        self._cancelled = threading.Event()
        self._aborted = threading.Event()
        self._threads = []
        self._submitted = 0
        self._rasterized = 0
        self._encoded = 0

    def cancel(self):
        """Stop the pipeline as soon as possible. May be called from any
        thread."""
        self._cancelled.set()

    @property
    def cancelled(self):
        return self._cancelled.is_set()

    def run(self, snapshots):
        """Rasterize and encode all snapshots, return the number of frames
        submitted to the sink

        The first error raised by the sampler, the validation function, a
        worker or the sink aborts the pipeline and is raised again unchanged.
        Raise ConversionCancelled if `cancel` was called."""
        if self._threads:
            raise RuntimeError('A pipeline can only be run once')
        self._start_workers()
        try:
            for snapshot in snapshots:
                self._check_cancelled()
                if self.validate is not None:
                    self.validate(snapshot)
                while self._reorder.full():
                    self._collect(block=True)
                self._dispatch(snapshot)
                self._collect(block=False)

            while len(self._reorder):
                self._collect(block=True)
        except BaseException:
            self._aborted.set()
            raise
        finally:
            self._stop_workers()

        logger.debug('Pipeline done: {} frames, work queue peak {}, reorder buffer peak {}'
                     .format(self._encoded, self.max_queue_occupancy,
                             self.max_reorder_occupancy))
        return self._encoded

    def _check_cancelled(self):
        if self._cancelled.is_set():
            raise ConversionCancelled('Conversion cancelled after {} frames'
                                      .format(self._encoded))

    def _dispatch(self, snapshot):
        self._reorder.reserve(snapshot.index)
        # Never blocks: the queue can hold a whole window
        self._work_queue.put_nowait(snapshot)
        self._submitted += 1
        self.max_queue_occupancy = max(self.max_queue_occupancy, self._work_queue.qsize())
        self.max_reorder_occupancy = max(self.max_reorder_occupancy, len(self._reorder))
        self._report_progress()

    def _collect(self, block):
        """Process the completed frames available, waiting for at least one if
        `block` is True"""
        while True:
            try:
                if block:
                    result = self._done_queue.get(timeout=self.poll_interval)
                else:
                    result = self._done_queue.get_nowait()
            except queue.Empty:
                if not block:
                    return
                self._check_cancelled()
                continue

            index, frame, error = result
            if error is not None:
                raise error
            self._rasterized += 1
            self._reorder.complete(index, frame)
            self._report_progress()
            for ready_frame in self._reorder.pop_ready():
                self._check_cancelled()
                self.sink.submit(ready_frame)
                self._encoded += 1
                self._report_progress()
            block = False

    def _report_progress(self):
        if self.progress is not None:
            self.progress(Progress(self._submitted, self._rasterized, self._encoded))

    def _work(self):
        while True:
            snapshot = self._work_queue.get()
            if snapshot is None:
                return
            if self._aborted.is_set() or self._cancelled.is_set():
                # Abandoned
                continue
            try:
                frame = self.render(snapshot)
            except Exception as exc:
                self._done_queue.put((snapshot.index, None, exc))
            else:
                self._done_queue.put((snapshot.index, frame, None))

    def _start_workers(self):
        for number in range(self.workers):
            thread = threading.Thread(target=self._work,
                                      name='cast2gif-raster-{}'.format(number),
                                      daemon=True)
            thread.start()
            self._threads.append(thread)

    def _stop_workers(self):
        if self._aborted.is_set():
            while True:
                try:
                    self._work_queue.get_nowait()
                except queue.Empty:
                    break
            # Make room for the results of snapshots being rasterized
            while True:
                try:
                    self._done_queue.get_nowait()
                except queue.Empty:
                    break
        for _ in self._threads:
            self._work_queue.put(None)
        for thread in self._threads:
            thread.join()
