"""Registry client driving the local Docker daemon through the docker CLI."""

import json
import os
import shutil
import subprocess
import sys
import tempfile
from time import sleep

from regsync.ecr import decode_auth
from regsync.errors import ClientError, CommandError
from regsync.image import Image, familiar_ref, login_server, split_ref


DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 900


def execute(cmd, ignoreError=False, input=None, env=None):
    pipes = subprocess.Popen(cmd, shell=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE, stdin=subprocess.PIPE, env=env)
    std_out, std_err = pipes.communicate(input=input.encode() if input is not None else None)
    exit_code = pipes.returncode
    std_out = std_out.decode(sys.getfilesystemencoding(), errors='replace')
    std_err = std_err.decode(sys.getfilesystemencoding(), errors='replace')

    if not ignoreError and exit_code != 0:
        raise CommandError(exit_code, std_out, std_err)

    return exit_code, std_out, std_err


def escapeParamSingleQuotes(param):
    return param.replace('\'', '\'"\'"\'')


def quote(param):
    return '\'' + escapeParamSingleQuotes(param) + '\''


def is_rate_limited(err):
    return isinstance(err, CommandError) and 'toomanyrequests' in (err.std_err + err.std_out)


def withRetryRateLimit(func, attempts=DEFAULT_RETRY_ATTEMPTS, delay=DEFAULT_RETRY_DELAY, log=None):
    attempt = 0
    while True:
        attempt += 1
        try:
            return func()
        except CommandError as err:
            if not is_rate_limited(err) or attempt >= attempts:
                raise
            if log is not None:
                log.warning('rate limit reached, retrying', delay=delay, attempt=attempt, error=str(err))
            sleep(delay)


class DockerCLI:
    """Pulls, lists, tags and pushes images via the ``docker`` binary.

    Logins go into a private docker config directory so the operator's own
    ``~/.docker/config.json`` is never touched. The instance is not meant to
    be used from more than one thread at a time.
    """

    def __init__(self, log, dockerhost=None, api_version=None, binary='docker',
                 retry_attempts=DEFAULT_RETRY_ATTEMPTS, retry_delay=DEFAULT_RETRY_DELAY):
        self.log = log
        self.binary = shutil.which(binary)
        if not self.binary:
            raise ClientError('cannot create Docker client: ' + binary + ' not found in PATH')
        self.dockerhost = dockerhost
        self.api_version = api_version
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        try:
            self.config_dir = tempfile.mkdtemp(prefix='regsync-docker-')
        except OSError as err:
            raise ClientError('cannot create Docker client: ' + str(err)) from err

    def close(self):
        shutil.rmtree(self.config_dir, ignore_errors=True)

    def command(self, *args):
        cmd = quote(self.binary) + ' --config ' + quote(self.config_dir)
        if self.dockerhost:
            cmd += ' --host ' + quote(self.dockerhost)
        return cmd + ''.join(' ' + a for a in args)

    def environment(self):
        env = dict(os.environ)
        if self.api_version:
            env['DOCKER_API_VERSION'] = self.api_version
        return env

    def run(self, *args, input=None, verbose=False):
        cmd = self.command(*args)
        exit_code, std_out, std_err = withRetryRateLimit(
            lambda: execute(cmd, input=input, env=self.environment()),
            attempts=self.retry_attempts, delay=self.retry_delay, log=self.log)
        if verbose:
            for line in std_out.splitlines():
                if line.strip():
                    self.log.info(line.rstrip())
        return std_out

    def ping(self, max_attempts, interval):
        """Wait for the daemon to answer, returns its version."""
        last_err = None
        for attempt in range(1, max_attempts + 1):
            try:
                return self.run('version', '--format', quote('{{.Server.Version}}')).strip()
            except CommandError as err:
                last_err = err
                self.log.debug('docker daemon not ready', attempt=attempt, error=str(err))
                if attempt < max_attempts:
                    sleep(interval)
        raise ClientError('docker daemon not reachable after ' + str(max_attempts) + ' attempts: ' + str(last_err))

    def login(self, ref, auth):
        if not auth:
            return
        username, password = decode_auth(auth)
        server = login_server(ref)
        args = ['login', '--username', quote(username), '--password-stdin']
        if server:
            args.append(quote(server))
        self.run(*args, input=password)

    def pull(self, ref, auth, all_tags, verbose):
        self.login(ref, auth)
        args = ['pull']
        if all_tags:
            args.append('--all-tags')
        if not verbose:
            args.append('--quiet')
        self.run(*args, quote(ref), verbose=verbose)

    def list(self, ref):
        """List the local images matching ``ref``, one entry per image id."""
        repo, path, _ = split_ref(ref)
        std_out = self.run('image', 'ls', '--no-trunc', '--format', quote('{{json .}}'), quote(familiar_ref(ref)))

        images = {}
        for line in std_out.splitlines():
            if not line.strip():
                continue
            try:
                o = json.loads(line)
            except ValueError:
                self.log.warning('unexpected output from docker image ls', line=line)
                continue
            image_id = o.get('ID')
            if not image_id:
                continue
            tags = images.setdefault(image_id, [])
            tag = o.get('Tag')
            if tag and tag != '<none>' and tag not in tags:
                tags.append(tag)

        return [Image(id=i, repo=repo, path=path, tags=tags) for i, tags in images.items()]

    def tag(self, image_id, new_ref):
        self.run('tag', quote(image_id), quote(new_ref))

    def push(self, ref, all_tags, auth, verbose):
        self.login(ref, auth)
        args = ['push']
        if all_tags:
            args.append('--all-tags')
        if not verbose:
            args.append('--quiet')
        self.run(*args, quote(ref), verbose=verbose)
