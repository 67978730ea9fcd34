import os
from datetime import timedelta
BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'change-me-to-a-secret-key'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
                              f"sqlite:///{os.path.join(BASE_DIR, 'threadhub.db')}"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    PERMANENT_SESSION_LIFETIME = timedelta(days=7)
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    THREADS_PER_PAGE = int(os.environ.get('THREADS_PER_PAGE', 10))
    COMMENTS_MAX_DEPTH_DISPLAY = 6
    MAX_TAGS = 5
    BCRYPT_LOG_ROUNDS = 12

class TestConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    BCRYPT_LOG_ROUNDS = 4
    LOG_LEVEL = 'DEBUG'
