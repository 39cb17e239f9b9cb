import os
from pathlib import Path

import environ

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env(
    DEBUG=(bool, False),
    LEDGER_TIMEOUT=(float, 15.0),
    LEDGER_NETWORK_RETRIES=(int, 2),
    GATEWAY_SESSION_TIMEOUT=(float, 300.0),
    GATEWAY_POLL_INTERVAL=(float, 3.0),
)
environ.Env.read_env(os.path.join(BASE_DIR, '.env'))

SECRET_KEY = env('SECRET_KEY', default='escrow-client-insecure-dev-key')
DEBUG = env('DEBUG')

INSTALLED_APPS = [
    'rest_framework',
    'ledger',
    'gateway',
    'milestones',
    'journal',
    'escrow',
]

# The escrow ledger lives server-side; nothing is stored locally in a database.
DATABASES = {}

USE_TZ = True
TIME_ZONE = 'UTC'

# Ledger REST API
LEDGER_BASE_URL = env('LEDGER_BASE_URL', default='http://localhost:5000/api')
LEDGER_AUTH_TOKEN = env('LEDGER_AUTH_TOKEN', default='')
LEDGER_TIMEOUT = env('LEDGER_TIMEOUT')
LEDGER_NETWORK_RETRIES = env('LEDGER_NETWORK_RETRIES')

DEFAULT_CURRENCY = env('DEFAULT_CURRENCY', default='INR')

# Hosted checkout
GATEWAY_PROVIDER = env('GATEWAY_PROVIDER', default='callback')
GATEWAY_SESSION_TIMEOUT = env('GATEWAY_SESSION_TIMEOUT')  # abandoned checkouts are given up after 5 minutes by default
GATEWAY_POLL_INTERVAL = env('GATEWAY_POLL_INTERVAL')

STRIPE_SECRET_KEY = env('STRIPE_SECRET_KEY', default='')
STRIPE_SUCCESS_URL = env('STRIPE_SUCCESS_URL', default='http://localhost:3000/payment/success')
STRIPE_CANCEL_URL = env('STRIPE_CANCEL_URL', default='http://localhost:3000/payment/cancelled')

# Local payment journal
JOURNAL_CACHE_ALIAS = env('JOURNAL_CACHE_ALIAS', default='journal')
JOURNAL_CACHE_DIR = env('JOURNAL_CACHE_DIR', default=str(BASE_DIR / '.journal'))

CACHES = {
    'default': {
        'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
    },
    'journal': {
        'BACKEND': 'django.core.cache.backends.filebased.FileBasedCache',
        'LOCATION': JOURNAL_CACHE_DIR,
        'TIMEOUT': None,
    },
}

LOG_LEVEL = env('LOG_LEVEL', default='INFO')

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'audit': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'ledger': {'handlers': ['console'], 'level': LOG_LEVEL},
        'gateway': {'handlers': ['console'], 'level': LOG_LEVEL},
        'escrow': {'handlers': ['console'], 'level': LOG_LEVEL},
        'journal': {'handlers': ['console'], 'level': LOG_LEVEL},
        'milestones': {'handlers': ['console'], 'level': LOG_LEVEL},
    },
}
