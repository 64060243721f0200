import os
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from regsync import ecr
from regsync.errors import ConfigError
from regsync.image import join_ref, split_ref


MINIMUM_TASK_INTERVAL = 30


class Location(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='forbid')

    registry: str
    auth: str = ''
    skip_tls_verify: bool = Field(default=False, alias='skip-tls-verify')

    @field_validator('registry')
    def validate_registry(cls, v: str) -> str:
        v = v.strip().rstrip('/')
        if not v:
            raise ValueError('registry must not be empty')
        return v

    def ecr_identity(self) -> Optional[ecr.ECRIdentity]:
        return ecr.parse_identity(self.registry)

    def is_ecr(self):
        return self.ecr_identity() is not None

    def refresh_auth(self, service) -> str:
        """Return a current credential for this location.

        ECR locations get a freshly issued token from ``service`` on every
        call, all others keep their configured credential.
        """
        identity = self.ecr_identity()
        if identity is None:
            return self.auth
        return service.issue_token(identity)


class Mapping(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='forbid')

    from_: str = Field(default='', alias='from')
    to: str = ''
    tags: List[str] = Field(default_factory=list)

    @field_validator('from_', 'to', mode='before')
    def strip_slashes(cls, v):
        if v is None:
            return ''
        return str(v).strip().strip('/')

    @field_validator('tags', mode='before')
    def validate_tags(cls, v):
        if v is None:
            return []
        tags = []
        for t in v:
            t = str(t).strip()
            if not t:
                raise ValueError('tags must not be empty')
            if t not in tags:
                tags.append(t)
        return tags

    @model_validator(mode='before')
    def default_target(cls, data):
        if isinstance(data, dict) and not data.get('to'):
            data = dict(data)
            data['to'] = data.get('from', data.get('from_'))
        return data


class Task(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    name: str
    source: Location
    target: Location
    mappings: List[Mapping] = Field(default_factory=list)
    interval: int = 0
    verbose: bool = False

    @field_validator('name')
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError('task name must not be empty')
        return v

    @field_validator('interval', mode='before')
    def validate_interval(cls, v):
        if v is None:
            return 0
        v = int(v)
        if v != 0 and v < MINIMUM_TASK_INTERVAL:
            raise ValueError('interval must be 0 or at least ' + str(MINIMUM_TASK_INTERVAL) + ' seconds')
        return v

    @model_validator(mode='after')
    def validate_mappings(self):
        if not self.mappings:
            raise ValueError('task ' + self.name + ' has no mappings')
        return self

    @property
    def is_recurring(self):
        return self.interval > 0

    def mapping_refs(self, m: Mapping):
        return join_ref(self.source.registry, m.from_), join_ref(self.target.registry, m.to)

    def ensure_target_exists(self, ref, service):
        """Create the target repository where the registry requires it.

        Only ECR needs this, for every other registry it is a no-op.
        """
        identity = self.target.ecr_identity()
        if identity is None:
            return False
        repo, path, _ = split_ref(ref)
        if not repo or not path:
            return False
        return service.ensure_repository(identity, path)


class DockerSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    dockerhost: Optional[str] = None
    api_version: Optional[str] = Field(default=None, alias='api-version')

    @field_validator('api_version', mode='before')
    def stringify_version(cls, v):
        return None if v is None else str(v)


class Config(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='forbid')

    relay: Literal['docker'] = 'docker'
    docker: DockerSettings = Field(default_factory=DockerSettings)
    tasks: List[Task] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_tasks(self):
        names = set()
        for t in self.tasks:
            if t.name in names:
                raise ValueError('duplicate task name: ' + t.name)
            names.add(t.name)
        return self


def parse_config(data) -> Config:
    if data is None:
        raise ConfigError('configuration is empty')
    try:
        return Config.model_validate(data)
    except ValidationError as err:
        raise ConfigError('invalid configuration: ' + str(err)) from err


def load_config(path) -> Config:
    path = os.path.expanduser(path)
    try:
        with open(path) as reader:
            data = yaml.safe_load(reader)
    except OSError as err:
        raise ConfigError('cannot read configuration ' + path + ': ' + str(err)) from err
    except yaml.YAMLError as err:
        raise ConfigError('cannot parse configuration ' + path + ': ' + str(err)) from err
    return parse_config(data)
