"""AWS ECR support.

ECR hands out registry logins that expire after twelve hours, so a fresh token
is fetched before every mapping. ECR also needs repositories to exist before
anything can be pushed into them.
"""

import base64
import json
import re
from typing import NamedTuple, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from regsync.errors import AuthError, RepositoryError


ECR_ENDPOINT = re.compile(
    r'^(?:https?://)?(?P<account>\d{12})\.dkr\.ecr\.(?P<region>[a-z0-9-]+)\.amazonaws\.com(?:\.cn)?'
    r'(?:/(?P<repository>[^:@]*))?/?$'
)


class ECRIdentity(NamedTuple):
    account: str
    region: str
    repository: str = ''


def parse_identity(endpoint) -> Optional[ECRIdentity]:
    """Resolve a registry endpoint to its ECR account and region, if it is ECR."""
    if not endpoint:
        return None
    m = ECR_ENDPOINT.match(endpoint.strip())
    if not m:
        return None
    return ECRIdentity(
        account=m.group('account'),
        region=m.group('region'),
        repository=(m.group('repository') or '').strip('/'),
    )


def encode_auth(username, password):
    """Encode a login the way credentials are written in the config file."""
    auth = json.dumps({'username': username, 'password': password})
    return base64.b64encode(auth.encode('utf-8')).decode('ascii')


def decode_auth(auth):
    """Inverse of :func:`encode_auth`; returns ``(username, password)``."""
    try:
        o = json.loads(base64.b64decode(auth).decode('utf-8'))
        return o['username'], o['password']
    except (ValueError, TypeError, KeyError) as err:
        raise AuthError('invalid credential, expected base64 encoded JSON with username and password') from err


class ECR:
    def __init__(self, session=None):
        self.session = session
        self._clients = {}

    def client(self, region):
        if region not in self._clients:
            if self.session is None:
                self.session = boto3.session.Session()
            self._clients[region] = self.session.client('ecr', region_name=region)
        return self._clients[region]

    def issue_token(self, identity: ECRIdentity) -> str:
        try:
            resp = self.client(identity.region).get_authorization_token(registryIds=[identity.account])
        except (ClientError, BotoCoreError) as err:
            raise AuthError('cannot get ECR authorization token for ' + identity.account + ': ' + str(err)) from err

        for data in resp.get('authorizationData', []):
            token = data.get('authorizationToken')
            if not token:
                continue
            try:
                login = base64.b64decode(token, validate=True).decode('utf-8')
            except ValueError as err:
                raise AuthError('malformed ECR authorization token for ' + identity.account + ': ' + str(err)) from err
            parts = login.split(':', 1)
            if len(parts) == 2:
                return encode_auth(parts[0], parts[1])

        raise AuthError('no authorization data for ECR registry ' + identity.account + ' in ' + identity.region)

    def ensure_repository(self, identity: ECRIdentity, name):
        """Create repository ``name`` unless it already exists."""
        try:
            client = self.client(identity.region)
            resp = client.describe_repositories(registryId=identity.account, repositoryNames=[name])
            if resp.get('repositories'):
                return False
        except ClientError as err:
            if _error_code(err) != 'RepositoryNotFoundException':
                raise RepositoryError('cannot look up ECR repository ' + name + ': ' + str(err)) from err
        except BotoCoreError as err:
            raise RepositoryError('cannot look up ECR repository ' + name + ': ' + str(err)) from err

        try:
            client.create_repository(registryId=identity.account, repositoryName=name)
        except ClientError as err:
            # created concurrently
            if _error_code(err) == 'RepositoryAlreadyExistsException':
                return False
            raise RepositoryError('cannot create ECR repository ' + name + ': ' + str(err)) from err
        except BotoCoreError as err:
            raise RepositoryError('cannot create ECR repository ' + name + ': ' + str(err)) from err
        return True

    def delete_repository(self, identity: ECRIdentity, name, force=False):
        try:
            self.client(identity.region).delete_repository(registryId=identity.account, repositoryName=name, force=force)
        except ClientError as err:
            if _error_code(err) == 'RepositoryNotFoundException':
                return False
            raise RepositoryError('cannot delete ECR repository ' + name + ': ' + str(err)) from err
        except BotoCoreError as err:
            raise RepositoryError('cannot delete ECR repository ' + name + ': ' + str(err)) from err
        return True


def _error_code(err):
    return err.response.get('Error', {}).get('Code')
