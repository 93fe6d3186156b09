#serves as disk: objects, refs and the index all live under .treesnap/
import os
import json
import zlib
import string
import hashlib
import logging
import operator
import tempfile

from collections import namedtuple
from contextlib import contextmanager

from .errors import (
    IOFailure,
    InvalidRef,
    ObjectCorrupted,
    ObjectNotFound,
    RepoNotInitialized,
    UnexpectedObjectType,
)

logger = logging.getLogger(__name__)

GIT_DIR = '.treesnap'
TYPES = ('blob', 'tree', 'commit')
OID_LENGTH = 40


@contextmanager
def _fs(path):
    #turns OSError into IOFailure carrying the path
    try:
        yield
    except OSError as e:
        raise IOFailure(path, e) from e


def atomic_write(path, payload):
    """Write bytes to path so that readers only ever see the old or the new file."""
    directory = os.path.dirname(path)
    with _fs(path):
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=directory, prefix='.tmp-')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise


def read_file(path):
    with _fs(path):
        with open(path, 'rb') as f:
            return f.read()


def write_file(path, content):
    with _fs(path):
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, 'wb') as f:
            f.write(content)


def remove_file(path):
    with _fs(path):
        os.remove(path)


def remove_dir(path):
    with _fs(path):
        os.rmdir(path)


def is_oid(value):
    return (isinstance(value, str) and len(value) == OID_LENGTH
            and all(c in string.hexdigits for c in value) and value == value.lower())


# -- hash codec --

def _frame(data, type_):
    return f'{type_} {len(data)}'.encode() + b'\x00' + data


def hash_object(data, type_='blob'):
    #sha1 over "<type> <len>\0<payload>", same bytes always give the same oid
    return hashlib.sha1(_frame(data, type_)).hexdigest()


# -- object model --

Blob = namedtuple('Blob', ['data'])

TreeEntry = namedtuple('TreeEntry', ['name', 'oid', 'kind'])


def check_entry_name(name):
    if not name or name in ('.', '..') or any(c in name for c in '/\x00\n'):
        raise ValueError(f'invalid tree entry name {name!r}')


class Tree(namedtuple('Tree', ['entries'])):
    """Directory snapshot; entries are kept sorted by name so equal sets hash equally."""

    __slots__ = ()

    def __new__(cls, entries=()):
        entries = tuple(sorted((TreeEntry(*e) for e in entries), key=operator.attrgetter('name')))
        for entry in entries:
            check_entry_name(entry.name)
            if entry.kind not in ('blob', 'tree'):
                raise ValueError(f'unknown tree entry kind {entry.kind!r}')
        for prev, entry in zip(entries, entries[1:]):
            if prev.name == entry.name:
                raise ValueError(f'duplicate tree entry {entry.name!r}')
        return super().__new__(cls, entries)

    def get(self, name):
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None


class Commit(namedtuple('Commit', ['tree', 'parent', 'author', 'timestamp', 'message'])):
    __slots__ = ()

    def __new__(cls, tree, parent, author, timestamp, message):
        #stored as whole seconds, so keep the in-memory value the same
        return super().__new__(cls, tree, parent, author, int(timestamp), message)

    @property
    def oid(self):
        type_, payload = encode_object(self)
        return hash_object(payload, type_)


def encode_object(obj):
    """Return the (type tag, payload bytes) pair for a Blob, Tree or Commit."""
    if isinstance(obj, Blob):
        return 'blob', bytes(obj.data)
    if isinstance(obj, Tree):
        tree = ''.join(f'{e.kind} {e.oid} {e.name}\n' for e in obj.entries)
        return 'tree', tree.encode('utf-8', 'surrogateescape')
    if isinstance(obj, Commit):
        if '\n' in obj.author:
            raise ValueError('author must be a single line')
        commit = f'tree {obj.tree}\n'
        if obj.parent:
            commit += f'parent {obj.parent}\n'
        commit += f'author {obj.author}\n'
        commit += f'timestamp {int(obj.timestamp)}\n'
        commit += '\n'
        commit += obj.message
        return 'commit', commit.encode('utf-8', 'surrogateescape')
    raise TypeError(f'cannot encode {type(obj).__name__}')


def decode_object(type_, data, oid=None):
    try:
        if type_ == 'blob':
            return Blob(data)
        if type_ == 'tree':
            entries = []
            for line in data.decode('utf-8', 'surrogateescape').split('\n')[:-1]:
                kind, entry_oid, name = line.split(' ', 2)
                entries.append(TreeEntry(name, entry_oid, kind))
            return Tree(entries)
        if type_ == 'commit':
            header, _, message = data.decode('utf-8', 'surrogateescape').partition('\n\n')
            fields = {'parent': None}
            for line in header.split('\n'):
                key, value = line.split(' ', 1)
                if key not in ('tree', 'parent', 'author', 'timestamp'):
                    raise ValueError(f'unknown field {key}')
                fields[key] = value
            return Commit(tree=fields['tree'], parent=fields['parent'], author=fields['author'],
                          timestamp=int(fields['timestamp']), message=message)
    except (KeyError, ValueError) as e:
        raise ObjectCorrupted(oid, f'cannot decode {type_}: {e}') from e
    raise ObjectCorrupted(oid, f'unknown type {type_!r}')


# -- object store --

class ObjectStore:
    """Content-addressed mapping from oid to compressed object bytes.

    Backends implement _load, _save, __contains__ and __iter__; hashing,
    compression, dedup and integrity checks live here so every backend
    behaves the same.
    """

    def _load(self, oid):
        raise NotImplementedError

    def _save(self, oid, raw):
        raise NotImplementedError

    def __contains__(self, oid):
        raise NotImplementedError

    def __iter__(self):
        raise NotImplementedError

    def write(self, obj):
        type_, data = encode_object(obj)
        return self.write_raw(data, type_)

    def write_raw(self, data, type_='blob'):
        if type_ not in TYPES:
            raise ValueError(f'unknown object type {type_!r}')
        oid = hash_object(data, type_)
        if oid in self:
            logger.debug('%s %s already stored', type_, oid)
            return oid
        self._save(oid, zlib.compress(_frame(data, type_)))
        logger.debug('stored %s %s (%d bytes)', type_, oid, len(data))
        return oid

    def read_raw(self, oid):
        """Return (type, payload) after checking length and hash."""
        if not is_oid(oid):
            raise ObjectNotFound(oid)
        raw = self._load(oid)
        if raw is None:
            raise ObjectNotFound(oid)
        try:
            obj = zlib.decompress(raw)
        except zlib.error as e:
            raise ObjectCorrupted(oid, 'cannot decompress') from e
        header, sep, data = obj.partition(b'\x00')
        try:
            type_, size = header.decode('ascii').split(' ')
            size = int(size)
        except ValueError as e:
            raise ObjectCorrupted(oid, 'malformed header') from e
        if not sep or type_ not in TYPES:
            raise ObjectCorrupted(oid, 'malformed header')
        if size != len(data):
            raise ObjectCorrupted(oid, f'length mismatch ({size} declared, {len(data)} found)')
        if hash_object(data, type_) != oid:
            raise ObjectCorrupted(oid, 'hash mismatch')
        return type_, data

    def read(self, oid, expected=None):
        type_, data = self.read_raw(oid)
        if expected is not None and type_ != expected:
            raise UnexpectedObjectType(oid, expected, type_)
        return decode_object(type_, data, oid)

    def find(self, prefix):
        prefix = prefix.lower()
        return sorted(oid for oid in self if oid.startswith(prefix))


class MemoryObjectStore(ObjectStore):

    def __init__(self):
        self._objects = {}

    def _load(self, oid):
        return self._objects.get(oid)

    def _save(self, oid, raw):
        self._objects[oid] = raw

    def __contains__(self, oid):
        return oid in self._objects

    def __iter__(self):
        return iter(sorted(self._objects))

    def __len__(self):
        return len(self._objects)


class DiskObjectStore(ObjectStore):
    """Objects live at <root>/<first two hex>/<remaining 38 hex>."""

    def __init__(self, root):
        self.root = root

    def _path(self, oid):
        return os.path.join(self.root, oid[:2], oid[2:])

    def _load(self, oid):
        path = self._path(oid)
        try:
            with open(path, 'rb') as f:
                return f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise IOFailure(path, e) from e

    def _save(self, oid, raw):
        atomic_write(self._path(oid), raw)

    def __contains__(self, oid):
        return is_oid(oid) and os.path.isfile(self._path(oid))

    def __iter__(self):
        if not os.path.isdir(self.root):
            return
        with _fs(self.root):
            shards = sorted(os.listdir(self.root))
        for shard in shards:
            shard_dir = os.path.join(self.root, shard)
            if len(shard) != 2 or not os.path.isdir(shard_dir):
                continue
            with _fs(shard_dir):
                names = sorted(os.listdir(shard_dir))
            for name in names:
                if is_oid(shard + name):
                    yield shard + name


# -- repository handle --

class Repository:
    """Handle on one working tree and its .treesnap directory."""

    def __init__(self, worktree, objects=None):
        self.worktree = os.path.abspath(worktree)
        self.git_dir = os.path.join(self.worktree, GIT_DIR)
        if not os.path.isdir(self.git_dir):
            raise RepoNotInitialized(self.worktree)
        if objects is None:
            objects = DiskObjectStore(os.path.join(self.git_dir, 'objects'))
        self.objects = objects

    def path(self, *parts):
        return os.path.join(self.git_dir, *parts)

    def __repr__(self):
        return f'Repository({self.worktree!r})'


def init(worktree, objects=None):  #makes .treesnap with its objects and refs directories
    git_dir = os.path.join(os.path.abspath(worktree), GIT_DIR)
    with _fs(git_dir):
        os.makedirs(os.path.join(git_dir, 'objects'), exist_ok=True)
        os.makedirs(os.path.join(git_dir, 'refs', 'heads'), exist_ok=True)
        os.makedirs(os.path.join(git_dir, 'refs', 'tags'), exist_ok=True)
    return Repository(worktree, objects)


def open_repo(worktree, objects=None):
    return Repository(worktree, objects)


def find_repo(start='.'):
    """Walk up from start to the nearest directory holding .treesnap."""
    path = os.path.abspath(start)
    while True:
        if os.path.isdir(os.path.join(path, GIT_DIR)):
            return Repository(path)
        parent = os.path.dirname(path)
        if parent == path:
            raise RepoNotInitialized(os.path.abspath(start))
        path = parent


# -- refs --

RefValue = namedtuple('RefValue', ['symbolic', 'value'])

MAX_SYMREF_DEPTH = 5


def _ref_path(repo, ref):
    path = os.path.normpath(repo.path(ref))
    if not path.startswith(repo.git_dir + os.sep):
        raise InvalidRef(ref)
    return path


def update_ref(repo, ref, value, deref=True):
    ref = _get_ref_internal(repo, ref, deref)[0]
    if not value.value:
        raise InvalidRef(ref)
    if value.symbolic:
        text = f'ref: {value.value}'
    else:
        if not is_oid(value.value):
            raise InvalidRef(value.value)
        text = value.value
    atomic_write(_ref_path(repo, ref), f'{text}\n'.encode())
    logger.debug('updated %s -> %s', ref, text)


def get_ref(repo, ref, deref=True):
    return _get_ref_internal(repo, ref, deref)[1]


def _get_ref_internal(repo, ref, deref, depth=0):
    #returns the ref actually pointed at and its RefValue
    if depth > MAX_SYMREF_DEPTH:
        raise InvalidRef(ref)
    ref_path = _ref_path(repo, ref)
    value = None
    if os.path.isfile(ref_path):
        with _fs(ref_path):
            with open(ref_path) as f:
                value = f.read().strip()
    symbolic = bool(value) and value.startswith('ref:')
    if symbolic:
        value = value.split(':', 1)[1].strip()
        if deref:
            return _get_ref_internal(repo, value, deref=True, depth=depth + 1)
    return ref, RefValue(symbolic=symbolic, value=value or None)


def iter_refs(repo, prefix='', deref=True):
    refs = ['HEAD']
    refs_dir = repo.path('refs')
    for root, _, filenames in os.walk(refs_dir):
        root = os.path.relpath(root, repo.git_dir).replace(os.sep, '/')
        refs.extend(f'{root}/{name}' for name in sorted(filenames) if not name.startswith('.tmp-'))
    for refname in refs[:1] + sorted(refs[1:]):
        if not refname.startswith(prefix):
            continue
        ref = get_ref(repo, refname, deref=deref)
        if ref.value:
            yield refname, ref


# -- index --

IndexEntry = namedtuple('IndexEntry', ['oid', 'state'])

STAGED = 'staged'
CLEAN = 'clean'
INDEX_VERSION = 1


def read_index(repo):
    path = repo.path('index')
    if not os.path.isfile(path):
        return {}
    try:
        with open(path) as f:
            raw = json.load(f)
        if raw.get('version') != INDEX_VERSION:
            raise ValueError(f'unsupported index version {raw.get("version")}')
        return {p: IndexEntry(e['oid'], e['state']) for p, e in raw['entries'].items()}
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
        raise IOFailure(path, e) from e


def write_index(repo, index):
    entries = {p: {'oid': e.oid, 'state': e.state} for p, e in sorted(index.items())}
    payload = json.dumps({'version': INDEX_VERSION, 'entries': entries}, indent=1)
    atomic_write(repo.path('index'), payload.encode())
    logger.debug('wrote index with %d entries', len(entries))


@contextmanager
def get_index(repo):
    #saved only when the block finishes without raising
    index = read_index(repo)
    yield index
    write_index(repo, index)
