"""
Django Settings for SOLTIP Project

Configuration file for SOLTIP, a platform for creators to receive SOL tips
from their supporters.

Key Features Configured:
- MySQL database support with PyMySQL (SQLite when no MySQL database is set)
- Solana RPC endpoint and platform fee wallet
- External image upload service
- Optional on-chain verification of recorded donations
- Logging for the application and Django

Environment Variables:
- DJANGO_SECRET_KEY: Django secret key for cryptographic signing
- DJANGO_DEBUG / DJANGO_ALLOWED_HOSTS: Debug flag and comma-separated hosts
- MYSQL_* variables: Database connection parameters
- SOLANA_RPC_URL / SOLANA_CLUSTER: RPC endpoint and explorer cluster
- PLATFORM_FEE_ACCOUNT: Wallet receiving platform fees
- SITE_URL: Public base URL, used for receipt metadata URIs
- UPLOAD_ENDPOINT_URL / UPLOAD_API_KEY / UPLOAD_MAX_BYTES: Image upload service
- VERIFY_DONATION_SIGNATURES: Check signatures on chain before recording

For more information on Django settings:
https://docs.djangoproject.com/en/5.2/topics/settings/
"""

import os
from pathlib import Path

import pymysql
from dotenv import load_dotenv

# Configure PyMySQL to work as MySQLdb replacement
pymysql.install_as_MySQLdb()

# Build paths inside the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv()

# SECURITY WARNING: Don't run with debug turned on in production!
DEBUG = os.getenv("DJANGO_DEBUG", "False") == "True"

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'django-insecure-soltip-development-key')

ALLOWED_HOSTS = [h.strip() for h in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',') if h.strip()]

# Application Definition
INSTALLED_APPS = [
    # Default Django applications
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # SOLTIP main application
    'soltip',
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

ROOT_URLCONF = 'core.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'core.wsgi.application'


# Database
# https://docs.djangoproject.com/en/5.2/ref/settings/#databases

if os.environ.get('MYSQL_DATABASE'):
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.mysql',
            'NAME': os.environ['MYSQL_DATABASE'],
            'USER': os.environ.get('MYSQL_USER', 'soltip'),
            'PASSWORD': os.environ.get('MYSQL_PASSWORD', ''),
            'HOST': os.environ.get('MYSQL_HOST', 'localhost'),
            'PORT': os.environ.get('MYSQL_PORT', '3306'),
            'OPTIONS': {'charset': 'utf8mb4'},
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

# Password validation
# https://docs.djangoproject.com/en/5.2/ref/settings/#auth-password-validators

AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]


# Internationalization
# https://docs.djangoproject.com/en/5.2/topics/i18n/

LANGUAGE_CODE = 'en-us'

TIME_ZONE = 'UTC'

USE_I18N = True

USE_TZ = True


# Static files (CSS, JavaScript, Images)
# https://docs.djangoproject.com/en/5.2/howto/static-files/

STATIC_URL = 'static/'

# Default primary key field type
# https://docs.djangoproject.com/en/5.2/ref/settings/#default-auto-field

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# Solana
SOLANA_RPC_URL = os.environ.get('SOLANA_RPC_URL', 'https://api.devnet.solana.com')
SOLANA_CLUSTER = os.environ.get('SOLANA_CLUSTER', 'devnet')
SOLANA_RPC_TIMEOUT = float(os.environ.get('SOLANA_RPC_TIMEOUT', '10'))
PLATFORM_FEE_ACCOUNT = os.environ.get('PLATFORM_FEE_ACCOUNT', '7pDCLJpmLRbrxoA25YSPh8eMNFvBiKnLNjMCambmdXvG')
VERIFY_DONATION_SIGNATURES = os.environ.get('VERIFY_DONATION_SIGNATURES', 'False') == 'True'

# Commemorative receipt token
SITE_URL = os.environ.get('SITE_URL', 'http://localhost:8000')
RECEIPT_NAME = os.environ.get('RECEIPT_NAME', 'SOLTIP Receipt')
RECEIPT_SYMBOL = os.environ.get('RECEIPT_SYMBOL', 'TIP')

# Image uploads (proxied to an external storage service)
UPLOAD_ENDPOINT_URL = os.environ.get('UPLOAD_ENDPOINT_URL', '')
UPLOAD_API_KEY = os.environ.get('UPLOAD_API_KEY', '')
UPLOAD_MAX_BYTES = int(os.environ.get('UPLOAD_MAX_BYTES', str(5 * 1024 * 1024)))
DATA_UPLOAD_MAX_MEMORY_SIZE = UPLOAD_MAX_BYTES + 1024 * 1024


# Logging
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG' if DEBUG else 'INFO')

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
    'root': {
        'handlers': ['console'],
        'level': 'WARNING',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
        'soltip': {
            'handlers': ['console'],
            'level': LOG_LEVEL,
            'propagate': False,
        },
    },
}
