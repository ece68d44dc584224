"""
The dispatch model for the bridge.

All connection, heartbeat and usage state is mutated from callbacks run by a single EventLoop.
Blocking work (socket connect and read) runs on background threads, which hand their results back to the
loop with call_soon_threadsafe(). Timers are owned by whoever scheduled them and are cancelled through the
returned TimerHandle.
"""
import heapq
import itertools
import logging
import threading
import time
from queue import Queue, Empty

logger = logging.getLogger(__name__)


class TimerHandle:
    """ A scheduled callback. Recurring when interval is set. """

    def __init__(self, when, callback, args=(), interval=None):
        self.when = when
        self.callback = callback
        self.args = args
        self.interval = interval
        self.cancelled = False

    def cancel(self):
        self.cancelled = True

    @property
    def active(self):
        return not self.cancelled

    def __lt__(self, other):
        return self.when < other.when


class EventLoop:
    """
    A single-threaded dispatcher of callbacks and timers.

    :param clock: a callable returning the current time in seconds. Tests pass a fake clock and
        call run_pending() to step the loop deterministically.
    """

    def __init__(self, clock=time.monotonic, log=logger):
        self.clock = clock
        self.logger = log
        self._ready = Queue()
        self._timers = []
        self._sequence = itertools.count()
        self._timers_lock = threading.Lock()
        self._wakeup = threading.Event()
        self._stop_event = threading.Event()
        self.thread = None

    def time(self):
        return self.clock()

    def call_soon(self, callback, *args):
        """ queues the callback to run on the loop's next pass. Safe to call from any thread. """
        self._ready.put((callback, args))
        self._wakeup.set()

    call_soon_threadsafe = call_soon

    def call_later(self, delay, callback, *args) -> TimerHandle:
        handle = TimerHandle(self.clock() + delay, callback, args)
        self._schedule(handle)
        return handle

    def call_every(self, interval, callback, *args) -> TimerHandle:
        """ runs the callback every interval seconds, the first time one interval from now. """
        if interval <= 0:
            raise ValueError("interval must be positive, not %s" % interval)
        handle = TimerHandle(self.clock() + interval, callback, args, interval)
        self._schedule(handle)
        return handle

    def _schedule(self, handle):
        with self._timers_lock:
            heapq.heappush(self._timers, (handle.when, next(self._sequence), handle))
        self._wakeup.set()

    def pending_timers(self):
        """ the number of timers that have not been cancelled and are still due to fire """
        with self._timers_lock:
            return sum(1 for _, _, handle in self._timers if handle.active)

    def _pop_due(self, now):
        due = []
        with self._timers_lock:
            while self._timers and self._timers[0][0] <= now:
                due.append(heapq.heappop(self._timers)[2])
        return due

    def _run_callback(self, callback, args):
        try:
            callback(*args)
        except Exception as e:
            self.logger.exception("callback %s raised %s" % (callback, e))

    def run_pending(self):
        """
        Runs queued callbacks and timers that are due, including any they schedule that are also due.
        :return: the number of callbacks run
        """
        count = 0
        while True:
            ran = 0
            while True:
                try:
                    callback, args = self._ready.get_nowait()
                except Empty:
                    break
                self._run_callback(callback, args)
                ran += 1
            now = self.clock()
            for handle in self._pop_due(now):
                if handle.cancelled:
                    continue
                if handle.interval is not None:
                    handle.when = now + handle.interval
                    self._schedule(handle)
                self._run_callback(handle.callback, handle.args)
                ran += 1
            if not ran:
                return count
            count += ran

    def _next_timeout(self, maximum=1.0):
        with self._timers_lock:
            if not self._timers:
                return maximum
            return max(0, min(maximum, self._timers[0][0] - self.clock()))

    def run_forever(self):
        """ dispatches callbacks on the calling thread until stop() is called. """
        self.thread = threading.current_thread()
        self._stop_event.clear()
        while not self._stop_event.is_set():
            self.run_pending()
            self._wakeup.wait(self._next_timeout())
            self._wakeup.clear()
        self.run_pending()

    def stop(self):
        self._stop_event.set()
        self._wakeup.set()


class AsyncLoop:
    """ Continually runs a given function on a background thread until stopped.
        Exceptions are logged and posted to exception_handler.
        The background thread is registered as a daemon.
    """

    def __init__(self, fn=None, args=(), log=logger, name=None):
        """
        :param fn the function to run
        :param args arguments to pass to fn
        """
        self.fn = fn
        self.args = args
        self.name = name
        self.stop_event = threading.Event()
        self.background_thread = None
        self.logger = log

    def start(self):
        if self.background_thread is None:
            t = threading.Thread(target=self._run, name=self.name)
            t.daemon = True
            self.background_thread = t
            t.start()

    def exception_handler(self, e):
        self.logger.exception(e)
        self.stop_event.set()

    def _run(self):
        self._do(self.startup)
        while self.running():
            self._do(self.loop)
        self._do(self.shutdown)
        self.logger.debug("background thread %s exiting" % self.name)

    def _do(self, callme):
        """ runs a function and captures any exceptions """
        try:
            callme()
        except Exception as e:
            self.exception_handler(e)

    def startup(self):
        """ template method called when the thread starts"""
        pass

    def loop(self):
        self.fn(*self.args)

    def shutdown(self):
        """ template method called when the thread exits """
        pass

    def running(self):
        return not self.stop_event.is_set()

    def stop(self, join=True):
        self.stop_event.set()
        thread = self.background_thread
        self.background_thread = None
        if join and thread and thread is not threading.current_thread():
            thread.join()
