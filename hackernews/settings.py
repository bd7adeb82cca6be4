"""Django settings for the hackernews project.

Anything that differs between deployments can be set from the environment.
"""

import os

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def env_flag(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ('1', 'true', 'yes', 'on')


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-hackernews-development-key')

DEBUG = env_flag('DJANGO_DEBUG', True)

ALLOWED_HOSTS = [h for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
                 if h]


# Application definition

INSTALLED_APPS = [
    'django.contrib.staticfiles',  # for GraphiQL
    'graphene_django',
    'links',
    'users',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'hackernews.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
            ],
        },
    },
]

WSGI_APPLICATION = 'hackernews.wsgi.application'
ASGI_APPLICATION = 'hackernews.asgi.application'


# Database

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.environ.get('HACKERNEWS_DB_PATH', os.path.join(BASE_DIR, 'db.sqlite3')),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# Passwords are hashed with Django's hashers even though django.contrib.auth isn't installed.

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.PBKDF2PasswordHasher',
    'django.contrib.auth.hashers.PBKDF2SHA1PasswordHasher',
]


# Internationalization

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True


# Static files (CSS, JavaScript, Images)

STATIC_URL = '/static/'


# GraphQL

GRAPHENE = {
    'SCHEMA': 'hackernews.schema.schema',
}

# Bearer tokens are signed with this. Changing it logs everybody out.
HACKERNEWS_APP_SECRET = os.environ.get('HACKERNEWS_APP_SECRET', 'GraphQL-is-aw3some')

# Token lifetime in seconds; 0 means tokens never expire.
HACKERNEWS_TOKEN_TTL = int(os.environ.get('HACKERNEWS_TOKEN_TTL', '0'))


# Logging

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'simple': {
            'format': '{asctime} {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'simple',
        },
    },
    'loggers': {
        'hackernews': {
            'handlers': ['console'],
            'level': os.environ.get('HACKERNEWS_LOG_LEVEL', 'INFO'),
        },
        'links': {
            'handlers': ['console'],
            'level': os.environ.get('HACKERNEWS_LOG_LEVEL', 'INFO'),
        },
        'users': {
            'handlers': ['console'],
            'level': os.environ.get('HACKERNEWS_LOG_LEVEL', 'INFO'),
        },
    },
}
