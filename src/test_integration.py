#!/usr/bin/env python3

"""
Integration tests for regsync with a mocked docker CLI.
These tests run the scheduler, syncer and docker client together without
touching a real daemon or registry.
"""

import json
import unittest
from unittest.mock import Mock, patch

from fakes import capture_logger
from regsync.config import parse_config
from regsync.docker_cli import DockerCLI
from regsync.errors import CommandError
from regsync.scheduler import Scheduler
from regsync.sync import Syncer


def daemon_name(repo):
    if repo.startswith('docker.io/'):
        repo = repo[len('docker.io/'):]
    if repo.startswith('library/'):
        repo = repo[len('library/'):]
    return repo


class MockDocker:
    """Answers docker commands from an in-memory image store"""

    def __init__(self, tags, missing=()):
        # source repository -> tag -> image id
        self.tags = tags
        self.missing = set(missing)
        self.local = {}
        self.pushed = []

    def __call__(self, cmd, ignoreError=False, input=None, env=None):
        args = cmd.split(' ')
        args = [a.strip("'") for a in args[args.index("--config") + 2:]]
        verb = args[0]

        if verb == 'version':
            return 0, '24.0.7\n', ''
        if verb == 'pull':
            ref = args[-1]
            repo, _, tag = ref.partition(':')
            if repo in self.missing:
                raise CommandError(1, '', 'Error response from daemon: manifest unknown')
            for t, image_id in self.tags.get(repo, {}).items():
                if not tag or t == tag:
                    self.local[daemon_name(repo) + ':' + t] = image_id
            return 0, '', ''
        if verb == 'image':
            # the daemon only knows Docker Hub images by their short name
            ref = args[-1]
            rows = []
            for local_ref, image_id in self.local.items():
                repo, _, tag = local_ref.partition(':')
                if local_ref == ref or repo == ref:
                    rows.append(json.dumps({'ID': image_id, 'Repository': repo, 'Tag': tag}))
            return 0, '\n'.join(rows), ''
        if verb == 'tag':
            self.local[args[2]] = args[1]
            return 0, '', ''
        if verb == 'push':
            ref = args[-1]
            self.pushed.append((ref, '--all-tags' in args))
            return 0, '', ''
        raise AssertionError('unexpected docker command: ' + cmd)

    def target_tags(self, ref):
        return sorted(r.partition(':')[2] for r in self.local if r.partition(':')[0] == ref)


@patch('regsync.docker_cli.shutil.which', return_value='/usr/bin/docker')
class TestIntegrationWithMockedDocker(unittest.TestCase):
    """Integration tests with fully mocked docker operations"""

    def setUp(self):
        self.log, self.cap = capture_logger()
        self.docker = MockDocker(tags={
            'docker.io/library/alpine': {'3.18': 'sha256:a', '3.19': 'sha256:b', 'edge': 'sha256:c'},
            'docker.io/library/busybox': {'1.36': 'sha256:d'},
        }, missing=['docker.io/library/gone'])

    def run_tasks(self, tasks):
        client = DockerCLI(self.log)
        self.addCleanup(client.close)
        with patch('regsync.docker_cli.execute', side_effect=self.docker):
            conf = parse_config({'tasks': tasks})
            Scheduler(Syncer(client, self.log, ecr=Mock()), self.log).run_all(conf.tasks)

    def test_mirror_filtered_tags(self, mock_which):
        """Test two alpine tags end up in the private registry with one push"""
        self.run_tasks([{
            'name': 'alpine',
            'source': {'registry': 'docker.io/library/alpine'},
            'target': {'registry': 'myregistry.example.com/mirror/alpine'},
            'mappings': [{'tags': ['3.18', '3.19']}],
        }])

        self.assertEqual(self.docker.target_tags('myregistry.example.com/mirror/alpine'), ['3.18', '3.19'])
        self.assertEqual(self.docker.pushed, [('myregistry.example.com/mirror/alpine', True)])

    def test_mirror_all_tags(self, mock_which):
        """Test an empty tag filter mirrors every tag"""
        self.run_tasks([{
            'name': 'alpine',
            'source': {'registry': 'docker.io'},
            'target': {'registry': 'myregistry.example.com'},
            'mappings': [{'from': 'library/alpine', 'to': 'mirror/alpine'}],
        }])

        self.assertEqual(self.docker.target_tags('myregistry.example.com/mirror/alpine'), ['3.18', '3.19', 'edge'])

    def test_failing_mapping_does_not_stop_task(self, mock_which):
        """Test a missing source image only fails its own mapping"""
        self.run_tasks([{
            'name': 'mixed',
            'source': {'registry': 'docker.io'},
            'target': {'registry': 'myregistry.example.com'},
            'mappings': [
                {'from': 'library/gone', 'to': 'mirror/gone'},
                {'from': 'library/busybox', 'to': 'mirror/busybox'},
            ],
        }])

        self.assertEqual(self.docker.target_tags('myregistry.example.com/mirror/gone'), [])
        self.assertEqual(self.docker.target_tags('myregistry.example.com/mirror/busybox'), ['1.36'])
        self.assertEqual(self.docker.pushed, [('myregistry.example.com/mirror/busybox', True)])
        errors = [e for e in self.cap.entries if e['log_level'] == 'error']
        self.assertEqual(len(errors), 1)
        self.assertIn('manifest unknown', errors[0]['error'])

    def test_resync_is_idempotent(self, mock_which):
        """Test running the same task twice yields the same target tags"""
        task = {
            'name': 'alpine',
            'source': {'registry': 'docker.io'},
            'target': {'registry': 'myregistry.example.com'},
            'mappings': [{'from': 'library/alpine', 'to': 'mirror/alpine', 'tags': ['edge']}],
        }
        self.run_tasks([task])
        first = dict(self.docker.local)
        self.run_tasks([task])

        self.assertEqual(self.docker.local, first)
        self.assertEqual(len(self.docker.pushed), 2)


if __name__ == '__main__':
    unittest.main()
