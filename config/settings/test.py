"""Test settings.

File-backed SQLite with immediate transactions so tests can run real
threads against the booking ledger; in-memory notification broker; Celery
tasks run eagerly.
"""

from .base import *  # noqa: F401,F403

DEBUG = False

SECRET_KEY = 'test-secret-key'
ENCRYPTION_KEY = 'test-encryption-key'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'test-db.sqlite3',
        'OPTIONS': {
            'transaction_mode': 'IMMEDIATE',
            'timeout': 20,
        },
        'TEST': {
            'NAME': BASE_DIR / 'test-db.sqlite3',
        },
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True
CELERY_BROKER_URL = 'memory://'
CELERY_RESULT_BACKEND = 'cache+memory://'

NOTIFICATIONS_BROKER_CLASS = 'apps.notifications.broker.InMemoryNotificationBroker'
NOTIFICATIONS_STREAM_HEARTBEAT_SECONDS = 1

PAYMENTS_TEST_MODE = True
PAYMENTS_DEFAULT_PROVIDER = 'STRIPE'
APP_URL = 'http://testserver'

STORAGES = {
    'default': {'BACKEND': 'django.core.files.storage.FileSystemStorage'},
    'staticfiles': {'BACKEND': 'django.contrib.staticfiles.storage.StaticFilesStorage'},
}
