"""Test doubles shared by the test modules."""

import structlog
from structlog.testing import LogCapture

from regsync.config import Location, Mapping, Task
from regsync.errors import CommandError
from regsync.image import Image, split_ref


def capture_logger():
    cap = LogCapture()
    return structlog.wrap_logger(None, processors=[cap]), cap


def make_task(name='task', source='docker.io', target='registry.example.com', mappings=None, interval=0, verbose=False):
    return Task(
        name=name,
        source=Location(registry=source),
        target=Location(registry=target),
        mappings=mappings or [Mapping(from_='library/alpine', to='mirror/alpine')],
        interval=interval,
        verbose=verbose,
    )


class FakeClient:
    """In-memory registry client recording every call.

    ``images`` maps a reference (with or without tag) to the image ids and
    tags ``list`` returns for it.
    """

    def __init__(self, images=None, fail_pull=(), fail_list=(), fail_tag=(), fail_push=()):
        self.images = images or {}
        self.fail_pull = set(fail_pull)
        self.fail_list = set(fail_list)
        self.fail_tag = set(fail_tag)
        self.fail_push = set(fail_push)
        self.calls = []
        self.target_tags = {}

    def _fail(self, what):
        raise CommandError(1, '', what + ' failed')

    def ping(self, max_attempts, interval):
        self.calls.append(('ping', max_attempts, interval))
        return '24.0.7'

    def pull(self, ref, auth, all_tags, verbose):
        self.calls.append(('pull', ref, auth, all_tags))
        if ref in self.fail_pull:
            self._fail('pull ' + ref)

    def list(self, ref):
        self.calls.append(('list', ref))
        if ref in self.fail_list:
            self._fail('list ' + ref)
        repo, path, _ = split_ref(ref)
        return [Image(id=i, repo=repo, path=path, tags=list(tags)) for i, tags in self.images.get(ref, [])]

    def tag(self, image_id, new_ref):
        self.calls.append(('tag', image_id, new_ref))
        if new_ref in self.fail_tag:
            self._fail('tag ' + new_ref)
        self.target_tags[new_ref] = image_id

    def push(self, ref, all_tags, auth, verbose):
        self.calls.append(('push', ref, all_tags, auth))
        if ref in self.fail_push:
            self._fail('push ' + ref)

    def called(self, name):
        return [c for c in self.calls if c[0] == name]
