import os
import time
import string
import fnmatch
import logging

from collections import namedtuple

from . import data
from . import config
from .errors import (
    Conflict,
    InvalidAuthor,
    InvalidPath,
    InvalidRef,
    NothingToCommit,
    ObjectNotFound,
    PathNotFound,
    RefExists,
    UnbornBranch,
)

logger = logging.getLogger(__name__)

IGNORE_FILE = '.treesnapignore'
HEADS = 'refs/heads/'
TAGS = 'refs/tags/'

UNTRACKED = 'untracked'
ADDED = 'added'
MODIFIED = 'modified'
DELETED = 'deleted'
UNMODIFIED = 'unmodified'

StatusEntry = namedtuple('StatusEntry', ['path', 'state', 'staged'])


def init(worktree='.', default_branch=None, objects=None):
    """Create (or reopen) a repository; HEAD starts on an unborn default branch."""
    repo = data.init(worktree, objects)
    if not os.path.isfile(repo.path(config.CONFIG_FILE)):
        branch = default_branch or config.DEFAULTS.default_branch
        config.save_config(repo, config.DEFAULTS._replace(default_branch=branch))
    if data.get_ref(repo, 'HEAD', deref=False).value is None:
        branch = default_branch or config.load_config(repo).default_branch
        _check_ref_name(branch)
        data.update_ref(repo, 'HEAD', data.RefValue(symbolic=True, value=HEADS + branch), deref=False)
    logger.info('initialized repository in %s', repo.git_dir)
    return repo


# -- ignore rules and the working tree --

def load_ignores(repo):
    patterns = []
    path = os.path.join(repo.worktree, IGNORE_FILE)
    if not os.path.isfile(path):
        return patterns
    for line in data.read_file(path).decode('utf-8', 'replace').splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        patterns.append(line)
    return patterns


def is_ignored(path, ignores=()):
    norm = path.replace(os.sep, '/')
    if norm == data.GIT_DIR or norm.startswith(data.GIT_DIR + '/'):
        return True
    for pattern in ignores:
        if pattern.endswith('/'):
            base = pattern.rstrip('/')
            if norm == base or norm.startswith(base + '/'):
                return True
        if fnmatch.fnmatch(norm, pattern):
            return True
    return False


def iter_working_files(repo, top='', ignores=()):
    """Yield worktree-relative posix paths of the non-ignored files under top."""
    start = os.path.join(repo.worktree, top)
    for dirpath, dirnames, filenames in os.walk(start):
        rel_dir = os.path.relpath(dirpath, repo.worktree).replace(os.sep, '/')
        if rel_dir == '.':
            rel_dir = ''
        dirnames[:] = sorted(
            d for d in dirnames
            if not is_ignored(f'{rel_dir}/{d}' if rel_dir else d, ignores)
        )
        for filename in sorted(filenames):
            path = f'{rel_dir}/{filename}' if rel_dir else filename
            if is_ignored(path, ignores) or not os.path.isfile(os.path.join(dirpath, filename)):
                continue
            yield path


def get_working_tree(repo, ignores=()):
    result = {}
    for path in iter_working_files(repo, '', ignores):
        result[path] = data.hash_object(data.read_file(_full_path(repo, path)))
    return result


def _full_path(repo, path):
    return os.path.join(repo.worktree, *path.split('/'))


def _worktree_path(repo, path):
    #normalizes to a posix path relative to the worktree, '' for the worktree itself
    full = os.path.normpath(os.path.join(repo.worktree, path))
    rel = os.path.relpath(full, repo.worktree)
    if rel == os.curdir:
        return ''
    if rel == os.pardir or rel.startswith(os.pardir + os.sep) or os.path.isabs(rel):
        raise PathNotFound(path)
    rel = rel.replace(os.sep, '/')
    if is_ignored(rel):
        raise PathNotFound(path)
    return rel


# -- index --

def add(repo, paths):
    """Stage files; returns {path: oid} with None for staged removals."""
    ignores = load_ignores(repo)
    staged = {}

    def add_file(path):
        for segment in path.split('/'):
            try:
                data.check_entry_name(segment)
            except ValueError as e:
                raise InvalidPath(path) from e
        oid = repo.objects.write(data.Blob(data.read_file(_full_path(repo, path))))
        # a file replaces whatever the index had at its parents or below it
        segments = path.split('/')
        for i in range(1, len(segments)):
            parent = '/'.join(segments[:i])
            if parent in index:
                del index[parent]
                staged[parent] = None
        for other in [p for p in index if p.startswith(path + '/')]:
            del index[other]
            staged[other] = None
        index[path] = data.IndexEntry(oid, data.STAGED)
        staged[path] = oid

    def remove_missing(prefix):
        #index entries under prefix whose files are gone
        found = False
        for path in list(index):
            if path == prefix or not prefix or path.startswith(prefix + '/'):
                found = True
                if not os.path.isfile(_full_path(repo, path)):
                    del index[path]
                    staged[path] = None
        return found

    with data.get_index(repo) as index:
        for name in paths:
            path = _worktree_path(repo, name)
            full = os.path.join(repo.worktree, path)
            if path and os.path.isfile(full):
                add_file(path)
            elif os.path.isdir(full):
                for file_path in iter_working_files(repo, path, ignores):
                    add_file(file_path)
                remove_missing(path)
            elif not remove_missing(path):
                raise PathNotFound(name)
    logger.debug('staged %d path(s)', len(staged))
    return staged


def get_head_tree(repo):
    try:
        head = resolve_head(repo)
    except UnbornBranch:
        return {}
    return get_tree(repo, get_commit(repo, head).tree)


def _classify(working, staged, committed):
    if staged is None and committed is None:
        return UNTRACKED
    if working is None:
        return DELETED
    if working != (staged if staged is not None else committed):
        return MODIFIED
    if committed is None:
        return ADDED
    if staged is not None and staged != committed:
        return MODIFIED
    return UNMODIFIED


def status(repo):
    """Classify every path in the working tree, the index or the HEAD tree."""
    working = get_working_tree(repo, load_ignores(repo))
    index = data.read_index(repo)
    head = get_head_tree(repo)
    #tracked files stay visible even when an ignore pattern matches them
    for path in (set(index) | set(head)) - set(working):
        full = _full_path(repo, path)
        if os.path.isfile(full):
            working[path] = data.hash_object(data.read_file(full))

    result = []
    for path in sorted(set(working) | set(index) | set(head)):
        entry = index.get(path)
        state = _classify(working.get(path), entry.oid if entry else None, head.get(path))
        result.append(StatusEntry(path, state, entry is not None and entry.state == data.STAGED))
    return result


# -- trees --

def build_tree(store, entries):
    """Write the nested trees for a flat {path: blob oid} mapping, return the root oid."""
    # Index is flat, we need it as a tree of dicts
    index_as_tree = {}
    for path, oid in entries.items():
        path = path.split('/')
        dirpath, filename = path[:-1], path[-1]

        current = index_as_tree
        # Find the dict for the directory of this file
        for dirname in dirpath:
            current = current.setdefault(dirname, {})
            if not isinstance(current, dict):
                raise ValueError(f'{"/".join(path)} is inside file {dirname}')
        if isinstance(current.get(filename), dict):
            raise ValueError(f'{"/".join(path)} is also a directory')
        current[filename] = oid

    def write_tree_recursive(tree_dict):
        tree_entries = []
        for name, value in tree_dict.items():
            if isinstance(value, dict):
                tree_entries.append(data.TreeEntry(name, write_tree_recursive(value), 'tree'))
            else:
                tree_entries.append(data.TreeEntry(name, value, 'blob'))
        return store.write(data.Tree(tree_entries))

    return write_tree_recursive(index_as_tree)


def write_tree(repo):
    return build_tree(repo.objects, {p: e.oid for p, e in data.read_index(repo).items()})


def get_tree(repo, oid, base_path=''):
    #returns a flat dict path->blob oid, walking subtrees with a stack
    result = {}
    stack = [(oid, base_path)]
    while stack:
        tree_oid, prefix = stack.pop()
        for entry in repo.objects.read(tree_oid, 'tree').entries:
            path = prefix + entry.name
            if entry.kind == 'blob':
                result[path] = entry.oid
            else:
                stack.append((entry.oid, f'{path}/'))
    return result


# -- commits and refs --

def get_commit(repo, oid):
    return repo.objects.read(oid, 'commit')


def resolve_head(repo):
    head = data.get_ref(repo, 'HEAD').value
    if head is None:
        raise UnbornBranch(get_branch_name(repo) or 'HEAD')
    return head


def commit(repo, message, author, timestamp=None, allow_empty=False):
    """Snapshot the index as a new commit on top of HEAD and return its oid."""
    if not author or '\n' in author:
        raise InvalidAuthor(author)
    with data.get_index(repo) as index:
        tree = build_tree(repo.objects, {p: e.oid for p, e in index.items()})
        try:
            parent = resolve_head(repo)
        except UnbornBranch:
            parent = None
        if not allow_empty:
            if parent is None and not index:
                raise NothingToCommit()
            if parent is not None and get_commit(repo, parent).tree == tree:
                raise NothingToCommit()

        if timestamp is None:
            timestamp = time.time()
        oid = repo.objects.write(data.Commit(
            tree=tree, parent=parent, author=author, timestamp=int(timestamp), message=message))
        # the branch only moves once the commit object is on disk
        data.update_ref(repo, 'HEAD', data.RefValue(symbolic=False, value=oid))

        for path, entry in index.items():
            index[path] = entry._replace(state=data.CLEAN)
    logger.info('committed %s on %s', oid[:10], get_branch_name(repo) or 'detached HEAD')
    return oid


class CommitLog:
    """History from one commit back to the root, most recent first.

    Iterating again starts over from the same commit.
    """

    def __init__(self, repo, start):
        self.repo = repo
        self.start = start

    def __iter__(self):
        oid = self.start
        while oid:
            commit = get_commit(self.repo, oid)
            yield oid, commit
            oid = commit.parent


def log(repo, start=None):
    if start is None:
        try:
            start = resolve_head(repo)
        except UnbornBranch:
            start = None
    else:
        start = get_oid(repo, start)
    return CommitLog(repo, start)


def _check_ref_name(name):
    segments = name.split('/') if name else ['']
    for segment in segments:
        if (not segment or segment.startswith('.') or segment.endswith('.lock')
                or any(c in segment for c in ' ~^:?*[\\\t\n') or segment == '@'):
            raise InvalidRef(name)
    if name == 'HEAD':
        raise InvalidRef(name)


def _create_ref(repo, prefix, name, oid):
    _check_ref_name(name)
    if data.get_ref(repo, prefix + name).value is not None:
        raise RefExists(prefix + name)
    if oid is None:
        oid = resolve_head(repo)
    get_commit(repo, oid)
    data.update_ref(repo, prefix + name, data.RefValue(symbolic=False, value=oid))
    logger.info('created %s%s at %s', prefix, name, oid[:10])
    return oid


#creates a branch by name, at HEAD unless told otherwise
def create_branch(repo, name, oid=None):
    return _create_ref(repo, HEADS, name, oid)


def create_tag(repo, name, oid=None):
    return _create_ref(repo, TAGS, name, oid)


def iter_branch_names(repo):
    for refname, _ in data.iter_refs(repo, HEADS):
        yield refname[len(HEADS):]


def is_branch(repo, branch):
    try:
        _check_ref_name(branch)
    except InvalidRef:
        return False
    return data.get_ref(repo, HEADS + branch).value is not None


def get_branch_name(repo):
    HEAD = data.get_ref(repo, 'HEAD', deref=False)
    if not HEAD.symbolic:
        return None
    assert HEAD.value.startswith(HEADS)
    return HEAD.value[len(HEADS):]


#on passing a ref name, a full hash or an unambiguous hash prefix it gives the oid
def get_oid(repo, name):
    if name == '@':
        name = 'HEAD'
    if name == 'HEAD':
        return resolve_head(repo)

    refs_to_try = [
        f'refs/{name}',
        f'{TAGS}{name}',
        f'{HEADS}{name}',
    ]
    if name.startswith('refs/'):
        refs_to_try.insert(0, name)
    try:
        _check_ref_name(name)
    except InvalidRef:
        refs_to_try = []
    for ref in refs_to_try:
        value = data.get_ref(repo, ref).value
        if value:
            return value

    lowered = name.lower()
    if data.is_oid(lowered):
        return lowered
    if len(name) >= 4 and all(c in string.hexdigits for c in name):
        matches = repo.objects.find(lowered)
        if len(matches) == 1:
            return matches[0]
    raise InvalidRef(name)


# -- checkout --

def _prune_empty_dirs(repo, ignores):
    #bottom up, so parents empty out after their children are gone
    for root, dirnames, _ in os.walk(repo.worktree, topdown=False):
        for dirname in dirnames:
            full = os.path.join(root, dirname)
            rel = os.path.relpath(full, repo.worktree).replace(os.sep, '/')
            if is_ignored(rel, ignores) or os.path.islink(full):
                continue
            if not os.listdir(full):
                data.remove_dir(full)


def read_tree(repo, tree_oid):
    """Make the working tree hold exactly the files of tree_oid."""
    ignores = load_ignores(repo)
    tree = get_tree(repo, tree_oid)
    for oid in set(tree.values()):
        if oid not in repo.objects:
            raise ObjectNotFound(oid)

    for path in list(iter_working_files(repo, '', ignores)):
        if path not in tree:
            data.remove_file(_full_path(repo, path))
            logger.debug('removed %s', path)
    _prune_empty_dirs(repo, ignores)

    for path, oid in sorted(tree.items()):
        full = _full_path(repo, path)
        if os.path.isfile(full) and data.hash_object(data.read_file(full)) == oid:
            continue
        data.write_file(full, repo.objects.read(oid, 'blob').data)
        logger.debug('wrote %s', path)
    return tree


#opens another version, that version is our HEAD now
def checkout(repo, name, force=False):
    branch = name[len(HEADS):] if name.startswith(HEADS) else name
    if name in ('HEAD', '@'):
        #stay on the current branch, or stay detached
        branch = get_branch_name(repo)
        oid = resolve_head(repo)
    elif is_branch(repo, branch):
        oid = data.get_ref(repo, HEADS + branch).value
    else:
        branch = None
        oid = get_oid(repo, name)
    commit = get_commit(repo, oid)

    if not force:
        dirty = [entry.path for entry in status(repo) if entry.state != UNMODIFIED]
        if dirty:
            raise Conflict(dirty)

    tree = read_tree(repo, commit.tree)

    if branch:
        HEAD = data.RefValue(symbolic=True, value=HEADS + branch)
    else:
        HEAD = data.RefValue(symbolic=False, value=oid)
    data.update_ref(repo, 'HEAD', HEAD, deref=False)

    data.write_index(repo, {path: data.IndexEntry(blob, data.CLEAN) for path, blob in tree.items()})
    logger.info('checked out %s (%s)', name, oid[:10])
    return oid
