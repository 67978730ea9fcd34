"""Up/down vote bookkeeping.

``VoteTally`` holds the counts for one entity plus the current user's choice
(``None``, ``'up'`` or ``'down'``). ``ReconciledVote`` keeps the server's tally
separate from an optimistic one shown before the server answers. ``cast_vote``
applies the same rules to the store, which allows one vote row per user and
entity.
"""
import logging
from collections import namedtuple

from errors import ValidationError
from models import db, Comment, Thread, Vote, VOTE_DIRECTIONS, VOTE_ENTITY_TYPES
from queries import vote_counts

logger = logging.getLogger(__name__)

ENTITY_MODELS = {'thread': Thread, 'comment': Comment}


class VoteTally(namedtuple('VoteTally', 'upvotes downvotes current')):
    __slots__ = ()

    def __new__(cls, upvotes=0, downvotes=0, current=None):
        if current is not None and current not in VOTE_DIRECTIONS:
            raise ValidationError(f'Unknown vote direction: {current!r}')
        return super().__new__(cls, upvotes, downvotes, current)

    @property
    def score(self):
        return self.upvotes - self.downvotes

    def cast(self, direction):
        """Return the tally after the user casts ``direction``.

        Casting the direction already held retracts it; casting the other
        direction moves the user's single vote across.
        """
        if direction not in VOTE_DIRECTIONS:
            raise ValidationError(f'Unknown vote direction: {direction!r}')
        up, down = self.upvotes, self.downvotes
        if self.current == 'up':
            up -= 1
        elif self.current == 'down':
            down -= 1
        if self.current == direction:
            return VoteTally(up, down, None)
        if direction == 'up':
            up += 1
        else:
            down += 1
        return VoteTally(up, down, direction)

    def as_dict(self):
        return {
            'upvotes': self.upvotes,
            'downvotes': self.downvotes,
            'score': self.score,
            'vote': self.current,
        }


class ReconciledVote:
    """Server tally plus an optional optimistic tally awaiting confirmation."""

    def __init__(self, authoritative=None):
        self.authoritative = authoritative or VoteTally()
        self.pending = None

    @property
    def displayed(self):
        return self.pending if self.pending is not None else self.authoritative

    def optimistic(self, direction):
        self.pending = self.displayed.cast(direction)
        return self.pending

    def confirm(self, server_tally):
        self.authoritative = server_tally
        self.pending = None
        return self.authoritative

    def rollback(self):
        self.pending = None
        return self.authoritative


def _check_entity_type(entity_type):
    if entity_type not in VOTE_ENTITY_TYPES:
        raise ValidationError(f'Cannot vote on {entity_type!r}.')


def tally_for(user_id, entity_type, entity_id):
    counts = vote_counts(entity_type, entity_id)
    current = None
    if user_id is not None:
        current = db.session.query(Vote.vote_type).filter_by(
            user_id=user_id, entity_type=entity_type, entity_id=entity_id).scalar()
    return VoteTally(counts.upvotes, counts.downvotes, current)


def cast_vote(user, entity_type, entity_id, direction):
    """Record ``user``'s vote and return the tally recomputed from the store."""
    _check_entity_type(entity_type)
    if direction not in VOTE_DIRECTIONS:
        raise ValidationError(f'Unknown vote direction: {direction!r}')
    db.get_or_404(ENTITY_MODELS[entity_type], entity_id)

    existing = Vote.query.filter_by(
        user_id=user.id, entity_type=entity_type, entity_id=entity_id).first()
    if existing is None:
        db.session.add(Vote(user_id=user.id, entity_type=entity_type,
                            entity_id=entity_id, vote_type=direction))
    elif existing.vote_type == direction:
        db.session.delete(existing)
    else:
        existing.vote_type = direction
    db.session.commit()
    logger.debug('user %s voted %s on %s %s', user.id, direction, entity_type, entity_id)
    return tally_for(user.id, entity_type, entity_id)


def delete_votes(entity_type, entity_ids):
    _check_entity_type(entity_type)
    ids = list(entity_ids)
    if not ids:
        return 0
    return Vote.query.filter(Vote.entity_type == entity_type,
                             Vote.entity_id.in_(ids)).delete(synchronize_session=False)
