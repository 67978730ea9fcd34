"""Read-side queries: vote/comment aggregates and thread listings."""
import math
import re
from collections import namedtuple

from sqlalchemy import func, or_

from errors import ValidationError
from models import db, Category, Comment, Tag, Thread, Vote

class VoteCounts(namedtuple('VoteCounts', 'upvotes downvotes')):
    __slots__ = ()

    @property
    def score(self):
        return self.upvotes - self.downvotes


NO_VOTES = VoteCounts(0, 0)

ThreadSummary = namedtuple('ThreadSummary', 'thread votes comment_count')

TAG_RE = re.compile(r'^[a-z0-9][a-z0-9 _.+#-]{0,39}$')


# ---------- Aggregates ----------

def vote_counts_for(entity_type, ids):
    ids = list(ids)
    result = {i: NO_VOTES for i in ids}
    if not ids:
        return result
    rows = db.session.query(Vote.entity_id, Vote.vote_type, func.count(Vote.id)) \
        .filter(Vote.entity_type == entity_type, Vote.entity_id.in_(ids)) \
        .group_by(Vote.entity_id, Vote.vote_type).all()
    for entity_id, vote_type, n in rows:
        up, down = result[entity_id]
        if vote_type == 'up':
            up = n
        else:
            down = n
        result[entity_id] = VoteCounts(up, down)
    return result


def vote_counts(entity_type, entity_id):
    return vote_counts_for(entity_type, [entity_id])[entity_id]


def comment_counts_for(thread_ids):
    thread_ids = list(thread_ids)
    result = {i: 0 for i in thread_ids}
    if not thread_ids:
        return result
    rows = db.session.query(Comment.thread_id, func.count(Comment.id)) \
        .filter(Comment.thread_id.in_(thread_ids)) \
        .group_by(Comment.thread_id).all()
    result.update(rows)
    return result


def comment_count(thread_id):
    return comment_counts_for([thread_id])[thread_id]


def user_votes_for(user_id, entity_type, ids):
    ids = list(ids)
    if user_id is None or not ids:
        return {}
    rows = db.session.query(Vote.entity_id, Vote.vote_type) \
        .filter(Vote.user_id == user_id, Vote.entity_type == entity_type,
                Vote.entity_id.in_(ids)).all()
    return dict(rows)


def summarize(threads):
    threads = list(threads)
    ids = [t.id for t in threads]
    votes = vote_counts_for('thread', ids)
    comments = comment_counts_for(ids)
    return [ThreadSummary(t, votes[t.id], comments[t.id]) for t in threads]


# ---------- Paging ----------

class Page:
    def __init__(self, items, page, per_page, total):
        self.items = items
        self.page = page
        self.per_page = per_page
        self.total = total

    @property
    def pages(self):
        return max(1, math.ceil(self.total / self.per_page))

    @property
    def has_prev(self):
        return self.page > 1

    @property
    def has_next(self):
        return self.page < self.pages

    @property
    def prev_num(self):
        return self.page - 1 if self.has_prev else None

    @property
    def next_num(self):
        return self.page + 1 if self.has_next else None


def paginate_list(items, page=1, per_page=10):
    items = list(items)
    page = max(1, page or 1)
    start = (page - 1) * per_page
    return Page(items[start:start + per_page], page, per_page, len(items))


# ---------- Thread listings ----------

def _search(query, q):
    q = (q or '').strip()
    if not q:
        return query
    pattern = f'%{q}%'
    return query.filter(or_(Thread.title.ilike(pattern), Thread.content.ilike(pattern)))


def recent_threads(q=None):
    return summarize(_search(Thread.query, q).order_by(Thread.created_at.desc(), Thread.id.desc()))


def popular_threads(q=None):
    summaries = recent_threads(q)
    # stable sort keeps newest-first among equal scores
    return sorted(summaries, key=lambda s: s.votes.score, reverse=True)


def unanswered_threads(q=None):
    return [s for s in recent_threads(q) if s.comment_count == 0]


def featured_threads(q=None):
    query = _search(Thread.query.filter_by(is_featured=True), q)
    return summarize(query.order_by(Thread.created_at.desc(), Thread.id.desc()))


def pinned_threads():
    return summarize(Thread.query.filter_by(is_pinned=True).order_by(Thread.created_at.desc()))


def category_threads(category_id, q=None):
    query = _search(Thread.query.filter_by(category_id=category_id), q)
    return summarize(query.order_by(Thread.is_pinned.desc(), Thread.created_at.desc(), Thread.id.desc()))


def author_threads(user_id, q=None):
    query = _search(Thread.query.filter_by(author_id=user_id), q)
    return summarize(query.order_by(Thread.created_at.desc(), Thread.id.desc()))


def tagged_threads(tag_name, q=None):
    query = _search(Thread.query.join(Thread.tags).filter(Tag.name == tag_name.lower()), q)
    return summarize(query.order_by(Thread.created_at.desc(), Thread.id.desc()))


def thread_comments(thread_id):
    return Comment.query.filter_by(thread_id=thread_id) \
        .order_by(Comment.created_at, Comment.id).all()


# ---------- Categories ----------

def list_categories(q=None, sort='name'):
    categories = Category.query.order_by(Category.name).all()
    q = (q or '').strip().lower()
    if q:
        categories = [c for c in categories
                      if q in c.name.lower() or q in (c.description or '').lower()]
    if sort == 'popular':
        categories.sort(key=lambda c: c.thread_count, reverse=True)
    return categories


# ---------- Tags ----------

def parse_tags(raw, max_tags=5):
    names = []
    for part in (raw or '').split(','):
        name = ' '.join(part.split()).lower()
        if not name or name in names:
            continue
        if not TAG_RE.match(name):
            raise ValidationError(f'Invalid tag: {name}')
        names.append(name)
    if len(names) > max_tags:
        raise ValidationError(f'Add at most {max_tags} tags.')
    return names


def get_or_create_tags(names):
    existing = {t.name: t for t in Tag.query.filter(Tag.name.in_(names)).all()} if names else {}
    tags = []
    for name in names:
        tag = existing.get(name)
        if tag is None:
            tag = Tag(name=name)
            db.session.add(tag)
        tags.append(tag)
    return tags
