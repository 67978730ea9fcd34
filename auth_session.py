"""Explicit auth session context for views and templates.

Flask-Login keeps the logged-in user; ``AuthSession`` wraps it together with
the cached profile snapshot and lets callers observe login/logout through
Flask-Login's blinker signals. Subscriptions hand back an unsubscribe
callable, and ``subscription()`` guarantees it runs on teardown.
"""
from contextlib import contextmanager

from blinker import ANY
from flask import session
from flask_login import current_user, user_logged_in, user_logged_out

PROFILE_CACHE_KEY = 'profile_cache'


class AuthSession:

    @property
    def user(self):
        return current_user if current_user.is_authenticated else None

    @property
    def is_authenticated(self):
        return bool(current_user.is_authenticated)

    @property
    def profile(self):
        """Last-known profile of the current user; not authoritative."""
        if not self.is_authenticated:
            return None
        cached = session.get(PROFILE_CACHE_KEY)
        if cached is None or cached.get('id') != current_user.id:
            cached = refresh_profile_cache(current_user)
        return cached

    def subscribe(self, callback, sender=ANY):
        """Call ``callback(event, user)`` on login and logout.

        ``event`` is ``'signed_in'`` or ``'signed_out'``. Pass the app as
        ``sender`` to only hear about that app. Returns a callable that
        disconnects the callback.
        """
        def on_login(app, user, **extra):
            callback('signed_in', user)

        def on_logout(app, user, **extra):
            callback('signed_out', user)

        user_logged_in.connect(on_login, sender=sender, weak=False)
        user_logged_out.connect(on_logout, sender=sender, weak=False)

        def unsubscribe():
            user_logged_in.disconnect(on_login)
            user_logged_out.disconnect(on_logout)
        return unsubscribe

    @contextmanager
    def subscription(self, callback, sender=ANY):
        unsubscribe = self.subscribe(callback, sender)
        try:
            yield self
        finally:
            unsubscribe()


def refresh_profile_cache(user):
    snapshot = user.profile_snapshot()
    session[PROFILE_CACHE_KEY] = snapshot
    return snapshot


def clear_profile_cache():
    session.pop(PROFILE_CACHE_KEY, None)


def sync_profile_cache(event, user):
    if event == 'signed_in':
        refresh_profile_cache(user)
    else:
        clear_profile_cache()
