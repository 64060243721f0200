from typing import List

from regsync.ecr import ECR
from regsync.errors import PullError, PushError, RegsyncError, TagError
from regsync.image import Image, split_ref, with_tag


PING_ATTEMPTS = 30
PING_INTERVAL = 10


class Syncer:
    """Moves the images of a task from its source to its target registry.

    ``client`` is the registry client (see :class:`regsync.docker_cli.DockerCLI`)
    and is owned by the syncer. It is not safe for concurrent use, the
    scheduler only ever runs one task at a time.
    """

    def __init__(self, client, log, ecr=None):
        self.client = client
        self.log = log
        self.ecr = ecr or ECR()

    def prepare(self, max_attempts=PING_ATTEMPTS, interval=PING_INTERVAL):
        # the daemon may still be starting, e.g. a docker-in-docker sidecar
        self.log.info('pinging docker daemon...')
        try:
            version = self.client.ping(max_attempts, interval)
        except RegsyncError as err:
            self.log.error('docker daemon not available', error=str(err))
            return False
        self.log.info('docker daemon ok', version=version)
        return True

    def sync_task(self, t):
        """Sync every mapping of task ``t``, returns the number of failed mappings."""
        log = self.log.bind(task=t.name)
        log.info('syncing task', source=t.source.registry, target=t.target.registry)
        for loc in (t.source, t.target):
            if loc.skip_tls_verify:
                log.warning('skip-tls-verify has no effect, list the registry under insecure-registries of the docker daemon',
                            registry=loc.registry)

        failed = 0
        for m in t.mappings:
            log.info('mapping', source=m.from_, target=m.to)
            src, trgt = t.mapping_refs(m)

            src_auth = self.refresh_auth(log, t.source)
            trgt_auth = self.refresh_auth(log, t.target)

            try:
                if t.ensure_target_exists(trgt, self.ecr):
                    log.info('created target repository', ref=trgt)
            except RegsyncError as err:
                log.error('cannot ensure target repository exists', ref=trgt, error=str(err))

            try:
                self.sync(src, src_auth, trgt, trgt_auth, m.tags, t.verbose)
            except RegsyncError as err:
                failed += 1
                log.error('mapping failed', source=src, target=trgt, error=str(err))

        log.info('task done', mappings=len(t.mappings), failed=failed)
        return failed

    def refresh_auth(self, log, location):
        try:
            return location.refresh_auth(self.ecr)
        except RegsyncError as err:
            log.error('cannot refresh credentials', registry=location.registry, error=str(err))
            return location.auth

    def sync(self, src_ref, src_auth, trgt_ref, trgt_auth, tags, verbose) -> List[Image]:
        self.log.info('pulling source image', ref=src_ref, tags=tags or 'all')
        if not tags:
            self.pull(src_ref, src_auth, True, verbose)
        else:
            for tag in tags:
                self.pull(with_tag(src_ref, tag), src_auth, False, verbose)

        self.log.info('listing relevant tags', ref=src_ref)
        src_images = []
        if not tags:
            src_images = self.list(src_ref)
        else:
            for tag in tags:
                src_images += self.list(with_tag(src_ref, tag))

        for img in src_images:
            self.log.info('relevant image', image=img.ref_with_tags, id=img.id)

        self.log.info('setting tags for target image', ref=trgt_ref)
        tagged = self.tag(src_images, trgt_ref)

        self.log.info('pushing target image', ref=trgt_ref)
        try:
            self.client.push(trgt_ref, True, trgt_auth, verbose)
        except RegsyncError as err:
            raise PushError('error pushing target image ' + trgt_ref + ': ' + str(err)) from err

        return tagged

    def pull(self, ref, auth, all_tags, verbose):
        try:
            self.client.pull(ref, auth, all_tags, verbose)
        except RegsyncError as err:
            raise PullError('error pulling source image ' + ref + ': ' + str(err)) from err

    def list(self, ref):
        try:
            return self.client.list(ref)
        except RegsyncError as err:
            self.log.error('error listing source image', ref=ref, error=str(err))
            return []

    def tag(self, images, target_ref):
        repo, path, _ = split_ref(target_ref)
        tagged = []
        for img in images:
            target = img.retag(repo, path)
            for tag in img.tags:
                try:
                    self.client.tag(img.id, with_tag(target.ref, tag))
                except RegsyncError as err:
                    raise TagError('error setting tag ' + tag + ' on ' + target.ref + ': ' + str(err)) from err
            tagged.append(target)
        return tagged
