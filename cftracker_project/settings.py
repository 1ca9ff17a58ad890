from pathlib import Path

from celery.schedules import crontab
from decouple import config, Csv
from kombu import Queue
import dj_database_url

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Quick-start development settings - unsuitable for production
SECRET_KEY = config('SECRET_KEY', default='django-insecure-cftracker-dev-key')

DEBUG = config('DEBUG', default=False, cast=bool)

ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='localhost,127.0.0.1', cast=Csv())

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Local
    'core',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'cftracker_project.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'cftracker_project.wsgi.application'

# Database
# Uses DATABASE_URL from .env
DATABASES = {
    'default': dj_database_url.config(
        default=config('DATABASE_URL', default='sqlite:///db.sqlite3')
    )
}

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

# Session/CSRF security
SESSION_COOKIE_HTTPONLY = True
if not DEBUG:
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True

# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Logging
LOG_LEVEL = config('LOG_LEVEL', default='INFO')
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '%(asctime)s %(levelname)s %(name)s %(message)s',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'core': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
    },
}

# Email (reminder transport)
EMAIL_BACKEND = config('EMAIL_BACKEND', default='django.core.mail.backends.smtp.EmailBackend')
EMAIL_HOST = config('EMAIL_HOST', default='localhost')
EMAIL_PORT = config('EMAIL_PORT', default=587, cast=int)
EMAIL_HOST_USER = config('EMAIL_HOST_USER', default='')
EMAIL_HOST_PASSWORD = config('EMAIL_HOST_PASSWORD', default='')
EMAIL_USE_TLS = config('EMAIL_USE_TLS', default=True, cast=bool)
EMAIL_TIMEOUT = config('EMAIL_TIMEOUT', default=20, cast=int)
REMINDER_FROM_EMAIL = config('REMINDER_FROM_EMAIL', default=EMAIL_HOST_USER or 'noreply@localhost')

# Celery Configuration
CELERY_BROKER_URL = config('CELERY_BROKER_URL', default='redis://localhost:6379/0')
CELERY_RESULT_BACKEND = config('CELERY_RESULT_BACKEND', default='redis://localhost:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_DEFAULT_QUEUE = 'celery'
CELERY_TASK_QUEUES = (
    Queue('celery'),
    Queue('sync_fast'),
)
CELERY_TASK_ROUTES = {
    'core.tasks.sync_student': {'queue': 'sync_fast'},
}
CELERY_BEAT_SCHEDULE = {
    'sync-and-notify-daily': {
        'task': 'core.tasks.sync_all_students',
        'schedule': crontab(hour=2, minute=0),
    },
}

# Codeforces remote API
CODEFORCES_API_URL = config('CODEFORCES_API_URL', default='https://codeforces.com/api')
CODEFORCES_TIMEOUT_SECONDS = config('CODEFORCES_TIMEOUT_SECONDS', default=10, cast=float)
CODEFORCES_MAX_ATTEMPTS = config('CODEFORCES_MAX_ATTEMPTS', default=4, cast=int)
CODEFORCES_BACKOFF_SECONDS = config('CODEFORCES_BACKOFF_SECONDS', default=1.0, cast=float)
CODEFORCES_MIN_REQUEST_INTERVAL_SECONDS = config('CODEFORCES_MIN_REQUEST_INTERVAL_SECONDS', default=2.0, cast=float)
CODEFORCES_SUBMISSIONS_PAGE_SIZE = config('CODEFORCES_SUBMISSIONS_PAGE_SIZE', default=1000, cast=int)
CODEFORCES_SUBMISSIONS_MAX_COUNT = config('CODEFORCES_SUBMISSIONS_MAX_COUNT', default=5000, cast=int)

# Sync / notify engine
SYNC_MAX_WORKERS = config('SYNC_MAX_WORKERS', default=4, cast=int)
SYNC_ACCOUNT_TIMEOUT_SECONDS = config('SYNC_ACCOUNT_TIMEOUT_SECONDS', default=180, cast=int)
SYNC_LEASE_SECONDS = config('SYNC_LEASE_SECONDS', default=30 * 60, cast=int)
INACTIVITY_WINDOW_DAYS = config('INACTIVITY_WINDOW_DAYS', default=7, cast=int)
