import re
from dataclasses import dataclass, field
from typing import List, Tuple


DOCKER_HOSTS = [
    'index.docker.io',
    'index.docker.com',
    'registry.docker.io',
    'registry.docker.com',
    'registry-1.docker.io',
    'registry-1.docker.com',
    'docker.io',
    'docker.com',
]


@dataclass(frozen=True)
class Image:
    id: str
    repo: str
    path: str
    tags: List[str] = field(default_factory=list)

    @property
    def ref(self):
        return join_ref(self.repo, self.path)

    @property
    def ref_with_tags(self):
        return self.ref + ':[' + ', '.join(self.tags) + ']'

    def retag(self, repo, path):
        """A new image bound to ``repo/path`` carrying the same id and tags."""
        return Image(id=self.id, repo=repo, path=path, tags=list(self.tags))


def join_ref(*parts):
    return '/'.join(p.strip('/') for p in parts if p and p.strip('/'))


def is_registry_host(component):
    return '.' in component or ':' in component or component == 'localhost'


def split_ref(ref) -> Tuple[str, str, str]:
    """Split ``[registry/]path[:tag][@digest]`` into ``(registry, path, tag)``.

    The first component only counts as registry when it looks like a host,
    which is how the docker CLI reads references.
    """
    ref = re.sub(r'^[a-z]+://', '', ref.strip())
    ref = ref.split('@', 1)[0]

    repo = ''
    path = ref
    if '/' in ref:
        first, rest = ref.split('/', 1)
        if is_registry_host(first):
            repo, path = first, rest

    tag = ''
    m = re.search(r'^(?P<path>[^:]*)(?::(?P<tag>[^/:]+))?$', path)
    if m:
        path = m.group('path')
        tag = m.group('tag') or ''

    return repo, path.strip('/'), tag


def with_tag(ref, tag):
    return ref + ':' + tag if tag else ref


def login_server(ref):
    """The server to log into for ``ref``; empty for Docker Hub."""
    repo, _, _ = split_ref(ref)
    if not repo or repo in DOCKER_HOSTS:
        return ''
    return repo


def familiar_ref(ref):
    """The short form the docker daemon files Docker Hub images under.

    ``docker.io/library/alpine:3.18`` becomes ``alpine:3.18``, references to
    other registries are returned unchanged.
    """
    repo, path, tag = split_ref(ref)
    if repo and repo not in DOCKER_HOSTS:
        return with_tag(join_ref(repo, path), tag)
    if path.startswith('library/') and '/' not in path[len('library/'):]:
        path = path[len('library/'):]
    return with_tag(path, tag)
