"""Group a thread's flat comment rows into a parent/child forest.

Rows come back from the store ordered by creation time. ``build_comment_tree``
links them in a single pass after building an id lookup, so the children of
every node keep the order the rows were supplied in. Nothing is re-sorted.

Bad parent references never lose content: a comment whose parent is missing
from the input (a partial fetch), points at itself, or sits on a parent cycle is
promoted to a root and logged as a data-integrity warning.
"""
import logging
from operator import attrgetter

logger = logging.getLogger(__name__)


class CommentNode:
    __slots__ = ('comment', 'children', 'depth', 'upvotes', 'downvotes', 'user_vote')

    def __init__(self, comment, depth=0):
        self.comment = comment
        self.children = []
        self.depth = depth
        self.upvotes = 0
        self.downvotes = 0
        self.user_vote = None

    @property
    def score(self):
        return self.upvotes - self.downvotes

    def __repr__(self):
        return f'<CommentNode {self.comment!r} children={len(self.children)}>'


def _getter(name):
    attr = attrgetter(name)

    def get(record):
        if isinstance(record, dict):
            return record.get(name)
        return attr(record)
    return get


def build_comment_tree(records, id_of=None, parent_of=None):
    """Return the root nodes of the forest built from ``records``.

    ``id_of`` and ``parent_of`` pull the id and the (optional) parent id out
    of a record; by default they read ``id`` / ``parent_id`` from attributes
    or dict keys.
    """
    id_of = id_of or _getter('id')
    parent_of = parent_of or _getter('parent_id')

    lookup = {}
    ordered = []
    for record in records:
        key = id_of(record)
        if key in lookup:
            logger.warning('duplicate comment id %r in input, keeping the first', key)
            continue
        node = CommentNode(record)
        lookup[key] = node
        ordered.append((key, node))

    roots = []
    for key, node in ordered:
        parent_key = parent_of(node.comment)
        if parent_key is None:
            roots.append(node)
        elif parent_key == key:
            logger.warning('comment %r names itself as parent, treating as root', key)
            roots.append(node)
        elif parent_key not in lookup:
            logger.warning('comment %r has missing parent %r, treating as root', key, parent_key)
            roots.append(node)
        else:
            lookup[parent_key].children.append(node)

    # Nodes on a parent cycle hang off each other and are unreachable from any root.
    reached = {id(node) for node, _ in iter_tree(roots)}
    for _, node in ordered:
        if id(node) in reached:
            continue
        seen = set()
        while id(node) not in seen:
            seen.add(id(node))
            node = lookup[parent_of(node.comment)]
        logger.warning('comment %r is part of a parent cycle, treating as root', id_of(node.comment))
        lookup[parent_of(node.comment)].children.remove(node)
        roots.append(node)
        reached.update(id(n) for n, _ in iter_tree([node]))

    for node, depth in iter_tree(roots):
        node.depth = depth
    return roots


def iter_tree(roots):
    """Yield ``(node, depth)`` pairs depth-first, parents before children."""
    stack = [(node, 0) for node in reversed(roots)]
    while stack:
        node, depth = stack.pop()
        yield node, depth
        stack.extend((child, depth + 1) for child in reversed(node.children))


def count_nodes(roots):
    return sum(1 for _ in iter_tree(roots))


def annotate_votes(roots, counts, user_votes=None, id_of=None):
    """Attach vote tallies, keyed by comment id, to every node in place.

    ``id_of`` must match the accessor the tree was built with.
    """
    id_of = id_of or _getter('id')
    user_votes = user_votes or {}
    for node, _ in iter_tree(roots):
        key = id_of(node.comment)
        tally = counts.get(key)
        if tally is not None:
            node.upvotes = tally.upvotes
            node.downvotes = tally.downvotes
        node.user_vote = user_votes.get(key)
    return roots
