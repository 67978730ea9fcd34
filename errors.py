"""Error taxonomy for forum operations.

Three kinds of failure reach the user: a validation error they can fix,
an auth error that sends them to the login form, and a transient backend
error they retry by hand. Handlers are registered on the app by
``register_error_handlers``.
"""
import logging

from flask import flash, jsonify, redirect, request, url_for
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class ForumError(Exception):
    status_code = 500
    default_message = 'Something went wrong.'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(ForumError):
    status_code = 400
    default_message = 'Invalid input.'


class AuthError(ForumError):
    status_code = 401
    default_message = 'Please log in to continue.'


class BackendError(ForumError):
    status_code = 503
    default_message = 'The forum is temporarily unavailable. Please try again.'


def wants_json():
    if request.is_json:
        return True
    best = request.accept_mimetypes.best_match(['application/json', 'text/html'])
    return best == 'application/json' and \
        request.accept_mimetypes[best] > request.accept_mimetypes['text/html']


def _back(fallback='index'):
    target = request.referrer
    if target and target.startswith(request.host_url):
        return redirect(target)
    return redirect(url_for(fallback))


def register_error_handlers(app, db):

    @app.errorhandler(ValidationError)
    def _validation_error(err):
        if wants_json():
            return jsonify(error=err.message), err.status_code
        flash(err.message, 'danger')
        return _back()

    @app.errorhandler(AuthError)
    def _auth_error(err):
        if wants_json():
            return jsonify(error=err.message), err.status_code
        flash(err.message, 'warning')
        return redirect(url_for('login', next=request.path))

    @app.errorhandler(BackendError)
    def _backend_error(err):
        db.session.rollback()
        if wants_json():
            return jsonify(error=err.message), err.status_code
        flash(err.message, 'danger')
        return _back()

    @app.errorhandler(SQLAlchemyError)
    def _database_error(err):
        logger.exception('database error on %s %s', request.method, request.path)
        return _backend_error(BackendError())
