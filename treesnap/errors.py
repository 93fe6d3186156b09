#typed failures raised by the storage and operations layers
#the command layer prints str(error) and exits non-zero


class TreesnapError(Exception):
    pass


class ObjectNotFound(TreesnapError):
    def __init__(self, oid):
        self.oid = oid
        super().__init__(f'object {oid} not found')


class ObjectCorrupted(TreesnapError):
    def __init__(self, oid, reason):
        self.oid = oid
        self.reason = reason
        super().__init__(f'object {oid} is corrupted: {reason}')


class UnexpectedObjectType(TreesnapError):
    def __init__(self, oid, expected, actual):
        self.oid = oid
        self.expected = expected
        self.actual = actual
        super().__init__(f'object {oid} is a {actual}, expected {expected}')


class RepoNotInitialized(TreesnapError):
    def __init__(self, path):
        self.path = path
        super().__init__(f'not a treesnap repository: {path}')


class UnbornBranch(TreesnapError):
    def __init__(self, branch):
        self.branch = branch
        super().__init__(f'branch {branch} has no commits yet')


class PathNotFound(TreesnapError):
    def __init__(self, path):
        self.path = path
        super().__init__(f'pathspec {path} did not match any files')


class Conflict(TreesnapError):
    def __init__(self, paths):
        self.paths = sorted(paths)
        listing = ', '.join(self.paths)
        super().__init__(f'checkout would discard uncommitted changes in: {listing}')


class IOFailure(TreesnapError):
    def __init__(self, path, cause):
        self.path = path
        self.cause = cause
        super().__init__(f'{path}: {cause}')


class InvalidRef(TreesnapError, ValueError):
    def __init__(self, name):
        self.name = name
        super().__init__(f'{name} is not a valid reference or object ID')


class NothingToCommit(TreesnapError):
    def __init__(self):
        super().__init__('nothing to commit, working tree matches HEAD')


class InvalidPath(TreesnapError):
    def __init__(self, path):
        self.path = path
        super().__init__(f'path {path!r} cannot be stored in a tree')


class RefExists(TreesnapError, ValueError):
    def __init__(self, name):
        self.name = name
        super().__init__(f'{name} already exists')


class InvalidAuthor(TreesnapError, ValueError):
    def __init__(self, author):
        self.author = author
        super().__init__(f'invalid commit author {author!r}: must be a non-empty single line')
