import argparse
import os
import sys
import textwrap
import datetime

from . import base
from . import config
from . import data
from .errors import TreesnapError
from .log_setup import setup_logging


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose)
    try:
        if args.directory:
            os.chdir(args.directory)
        return args.func(args) or 0
    except TreesnapError as e:
        print(f'error: {e}', file=sys.stderr)
        return 1


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog='treesnap')
    parser.add_argument('-v', '--verbose', action='store_true', help='show debug logging')
    parser.add_argument('-C', dest='directory', help='run as if started in this directory')
    commands = parser.add_subparsers(dest='command')
    commands.required = True

    init_parser = commands.add_parser('init')
    init_parser.set_defaults(func=init)
    init_parser.add_argument('path', nargs='?', default='.')
    init_parser.add_argument('-b', '--initial-branch', dest='branch')

    hash_object_parser = commands.add_parser('hash-object')
    hash_object_parser.set_defaults(func=hash_object)
    hash_object_parser.add_argument('file')
    hash_object_parser.add_argument('-t', '--type', default='blob', choices=data.TYPES)
    hash_object_parser.add_argument('-w', '--write', action='store_true',
                                    help='store the object in the repository')

    cat_file_parser = commands.add_parser('cat-file')
    cat_file_parser.set_defaults(func=cat_file)
    cat_file_parser.add_argument('object')

    write_tree_parser = commands.add_parser('write-tree')
    write_tree_parser.set_defaults(func=write_tree)

    add_parser = commands.add_parser('add')
    add_parser.set_defaults(func=add)
    add_parser.add_argument('paths', nargs='+')

    commit_parser = commands.add_parser('commit')
    commit_parser.set_defaults(func=commit)
    commit_parser.add_argument('-m', '--message', required=True)
    commit_parser.add_argument('--author')
    commit_parser.add_argument('--allow-empty', action='store_true')

    log_parser = commands.add_parser('log')
    log_parser.set_defaults(func=log)
    log_parser.add_argument('oid', nargs='?')

    status_parser = commands.add_parser('status')
    status_parser.set_defaults(func=status)

    checkout_parser = commands.add_parser('checkout')
    checkout_parser.set_defaults(func=checkout)
    checkout_parser.add_argument('commit')
    checkout_parser.add_argument('-f', '--force', action='store_true',
                                 help='discard uncommitted changes')

    branch_parser = commands.add_parser('branch')
    branch_parser.set_defaults(func=branch)
    branch_parser.add_argument('name', nargs='?')
    branch_parser.add_argument('start_point', nargs='?')

    tag_parser = commands.add_parser('tag')
    tag_parser.set_defaults(func=tag)
    tag_parser.add_argument('name')
    tag_parser.add_argument('oid', nargs='?')

    return parser.parse_args(argv)


def _repo():
    return data.find_repo('.')


def init(args):
    repo = base.init(args.path, default_branch=args.branch)
    print(f'Initialized empty treesnap repository in {repo.git_dir}')


def hash_object(args):
    content = data.read_file(args.file)
    if args.write:
        print(_repo().objects.write_raw(content, args.type))
    else:
        print(data.hash_object(content, args.type))


def cat_file(args):
    repo = _repo()
    _, content = repo.objects.read_raw(base.get_oid(repo, args.object))
    sys.stdout.flush()
    sys.stdout.buffer.write(content)
    sys.stdout.flush()


def write_tree(args):
    print(base.write_tree(_repo()))


def add(args):
    repo = _repo()
    staged = base.add(repo, [os.path.abspath(p) for p in args.paths])
    for path, oid in sorted(staged.items()):
        print(f'{"removed" if oid is None else "added"}: {path}')


def commit(args):
    repo = _repo()
    author = args.author or config.load_config(repo).author
    if not author:
        print(f'error: no author given; pass --author or set {config.AUTHOR_ENV}', file=sys.stderr)
        return 1
    oid = base.commit(repo, args.message, author, allow_empty=args.allow_empty)
    print(oid)


def log(args):
    repo = _repo()
    refs = {}
    for refname, ref in data.iter_refs(repo):
        refs.setdefault(ref.value, []).append(refname)
    for oid, commit in base.log(repo, args.oid):
        refs_str = f' ({", ".join(refs[oid])})' if oid in refs else ''
        when = datetime.datetime.fromtimestamp(commit.timestamp, datetime.timezone.utc)
        print(f'commit {oid}{refs_str}')
        print(f'Author: {commit.author}')
        print(f'Date:   {when:%Y-%m-%d %H:%M:%S %z}\n')
        print(textwrap.indent(commit.message, '    '))
        print('')


def status(args):
    repo = _repo()
    branch = base.get_branch_name(repo)
    if branch:
        print(f'On branch {branch}')
    else:
        print(f'HEAD detached at {base.resolve_head(repo)[:10]}')
    for entry in base.status(repo):
        if entry.state == base.UNMODIFIED and not entry.staged:
            continue
        marker = '+' if entry.staged else ' '
        print(f'{marker} {entry.state}: {entry.path}')


def checkout(args):
    repo = _repo()
    oid = base.checkout(repo, args.commit, force=args.force)
    branch = base.get_branch_name(repo)
    print(f'Switched to branch {branch}' if branch else f'HEAD is now at {oid[:10]}')


def branch(args):
    repo = _repo()
    if not args.name:
        current = base.get_branch_name(repo)
        for name in base.iter_branch_names(repo):
            prefix = '*' if name == current else ' '
            print(f'{prefix} {name}')
    else:
        start = base.get_oid(repo, args.start_point) if args.start_point else None
        oid = base.create_branch(repo, args.name, start)
        print(f'Branch {args.name} created at {oid[:10]}')


def tag(args):
    repo = _repo()
    start = base.get_oid(repo, args.oid) if args.oid else None
    base.create_tag(repo, args.name, start)
