"""Runs sync tasks once or on their interval.

One-off tasks run first, in configuration order. Every recurring task becomes
an APScheduler interval job which feeds the task into a shared queue each time
its interval elapses. A single loop drains that queue, so no two tasks ever
run at the same time.

A task has at most one pending run. A tick for a task that is already queued
is dropped; a tick arriving while the task runs queues exactly one more run,
which starts right after the current one.
"""

import queue
import threading

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger


# how often the loop looks for a stop request while the queue is empty
POLL_INTERVAL = 1


class Scheduler:
    def __init__(self, syncer, log, poll_interval=POLL_INTERVAL):
        self.syncer = syncer
        self.log = log
        self.poll_interval = poll_interval
        self._lock = threading.Lock()
        self._pending = set()
        self._stopped = threading.Event()
        self._queue = None
        self._jobs = BackgroundScheduler(job_defaults={
            'coalesce': True,
            'max_instances': 1,
        })

    def run_all(self, tasks):
        self.syncer.prepare()

        for t in tasks:
            if self._stopped.is_set():
                break
            if not t.is_recurring:
                self.run_task(t)

        recurring = [t for t in tasks if t.is_recurring]
        if recurring and not self._stopped.is_set():
            self.start(recurring)
            self.loop()

        self.log.info('all done')

    def start(self, tasks):
        # a task is queued at most once, so put never blocks
        self._queue = queue.Queue(maxsize=len(tasks))
        for t in tasks:
            self._jobs.add_job(
                func=self.tick,
                args=[t],
                trigger=IntervalTrigger(seconds=t.interval),
                id=t.name,
                name='tick ' + t.name,
                replace_existing=True,
            )
        self._jobs.start()

    def loop(self):
        self.log.info('waiting for next sync task...')
        try:
            while not self._stopped.is_set():
                try:
                    t = self._queue.get(timeout=self.poll_interval)
                except queue.Empty:
                    continue
                with self._lock:
                    self._pending.discard(t.name)
                if self._stopped.is_set():
                    break
                self.run_task(t)
                self.log.info('waiting for next sync task...')
        finally:
            self._shutdown_jobs()

    def tick(self, t):
        """Queue a run of ``t`` unless one is already pending."""
        with self._lock:
            if self._stopped.is_set() or t.name in self._pending:
                return False
            self._pending.add(t.name)
        self._queue.put(t)
        return True

    def stop(self):
        """Request shutdown; the running task finishes, nothing new starts."""
        self._stopped.set()

    def run_task(self, t):
        try:
            return self.syncer.sync_task(t)
        except Exception:
            self.log.exception('task failed', task=t.name)
            return None

    def _shutdown_jobs(self):
        if self._jobs.running:
            self._jobs.shutdown(wait=False)
