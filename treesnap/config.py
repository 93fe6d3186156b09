#repository settings, stored as json in .treesnap/config
import os
import json
import logging

from collections import namedtuple

from . import data
from .errors import IOFailure

logger = logging.getLogger(__name__)

CONFIG_FILE = 'config'
AUTHOR_ENV = 'TREESNAP_AUTHOR'

Config = namedtuple('Config', ['author', 'default_branch'])

DEFAULTS = Config(author=None, default_branch='main')


def load_config(repo):
    """Resolve settings: defaults, then the config file, then the environment."""
    values = DEFAULTS._asdict()
    path = os.path.join(repo.git_dir, CONFIG_FILE)
    if os.path.isfile(path):
        try:
            with open(path) as f:
                stored = json.load(f)
        except (OSError, ValueError) as e:
            raise IOFailure(path, e) from e
        values.update((k, v) for k, v in stored.items() if k in values)
    author = os.environ.get(AUTHOR_ENV)
    if author:
        values['author'] = author
    return Config(**values)


def save_config(repo, config):
    path = os.path.join(repo.git_dir, CONFIG_FILE)
    payload = json.dumps(config._asdict(), indent=2, sort_keys=True) + '\n'
    data.atomic_write(path, payload.encode())
    logger.debug('wrote config %s', path)
