from pathlib import Path
from datetime import timedelta
from decouple import config, Csv
import sys, os
import environ

BASE_DIR = Path(__file__).resolve().parent.parent

TESTING = "pytest" in sys.modules or "test" in sys.argv


# Environment detection
def detect_environment():
    """Auto-detect the current environment"""
    env_name = config('ENVIRONMENT', default=None)
    if env_name:
        return env_name.lower()
    hostname = os.environ.get('HOSTNAME', '').lower()
    if any(x in hostname for x in ['prod', 'production']):
        return 'production'
    elif any(x in hostname for x in ['staging', 'stage']):
        return 'staging'
    return 'development'


def is_production():
    """Check if running in production"""
    return detect_environment() == 'production'


current_env = detect_environment()

env = environ.Env()
environ.Env.read_env(os.path.join(BASE_DIR, '.env'))

SECRET_KEY = env('SECRET_KEY', default='django-insecure-medipay-development-key')
DEBUG = env.bool('DEBUG', default=not is_production())
ALLOWED_HOSTS = env.list('ALLOWED_HOSTS', default=['localhost', '127.0.0.1', 'testserver'])

# Site URL for callbacks and webhooks
SITE_URL = config('SITE_URL', default='http://127.0.0.1:8000')
CLIENT_URL = config('CLIENT_URL', default='http://localhost:3000')

CSRF_TRUSTED_ORIGINS = config('CSRF_TRUSTED_ORIGINS', default='', cast=Csv())

DEPLOYMENT_REGION = config('DEPLOYMENT_REGION', default='default')

DATABASES = {
    'default': env.db('DATABASE_URL', default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}
DATABASES['default']['ATOMIC_REQUESTS'] = False

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "rest_framework_simplejwt",
    "django_filters",
    "drf_spectacular",
    "core",
    "appointments",
    "communication",
    "payments",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "backend.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"
    },
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

AUTH_USER_MODEL = "core.Participant"

LANGUAGE_CODE = "en"
TIME_ZONE = "Asia/Kolkata"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAuthenticated",
    ],
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 20,
    "DEFAULT_FILTER_BACKENDS": [
        "django_filters.rest_framework.DjangoFilterBackend",
        "rest_framework.filters.OrderingFilter",
    ],
    "DEFAULT_RENDERER_CLASSES": [
        "rest_framework.renderers.JSONRenderer",
    ],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
}

SPECTACULAR_SETTINGS = {
    "TITLE": "MediPay Healthcare Payments API",
    "DESCRIPTION": "Appointment payments, gateway reconciliation, refunds and hospital settlements",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "COMPONENT_SPLIT_REQUEST": True,
    "SCHEMA_PATH_PREFIX": "/api/v1/",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(hours=24),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=30),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": False,
    "USER_ID_FIELD": "uid",
    "USER_ID_CLAIM": "uid",
}

CELERY_BROKER_URL = config("CELERY_BROKER_URL", default="memory://localhost/")
CELERY_RESULT_BACKEND = config("CELERY_RESULT_BACKEND", default="cache+memory://")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = "UTC"
CELERY_ENABLE_UTC = True
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 30 * 60
CELERY_RESULT_EXPIRES = 3600
CELERY_TASK_ALWAYS_EAGER = TESTING

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "medipay-cache",
    }
}

# Override for testing
if TESTING:
    CACHES["default"]["LOCATION"] = "unique-test-cache"

# ============================================================================
# PAYMENT GATEWAYS
# ============================================================================

# Active gateway for new orders; both stay registered so webhooks and
# callbacks for orders created under the other gateway still reconcile.
PAYMENT_PROVIDER = env('PAYMENT_PROVIDER', default='razorpay')
PAYMENT_CURRENCY = 'INR'
PAYMENT_ORDER_TTL_MINUTES = 30
PAYMENT_RETURN_URL = config('PAYMENT_RETURN_URL', default=f'{CLIENT_URL}/payment/status')

RAZORPAY_KEY_ID = env('RAZORPAY_KEY_ID', default='rzp_test_medipay')
RAZORPAY_KEY_SECRET = env('RAZORPAY_KEY_SECRET', default='razorpay-test-secret')
RAZORPAY_WEBHOOK_SECRET = env('RAZORPAY_WEBHOOK_SECRET', default='razorpay-webhook-secret')

CASHFREE_ENVIRONMENT = env('CASHFREE_ENV', default='sandbox')  # 'sandbox' or 'production'
CASHFREE_APP_ID = env('CASHFREE_APP_ID', default='cashfree-test-app')
CASHFREE_SECRET_KEY = env('CASHFREE_SECRET_KEY', default='cashfree-test-secret')
CASHFREE_WEBHOOK_SECRET = env('CASHFREE_WEBHOOK_SECRET', default=CASHFREE_SECRET_KEY)

PAYMENT_PROVIDERS = {
    'razorpay': {
        'BACKEND': 'payments.providers.razorpay.RazorpayProvider',
        'KEY_ID': RAZORPAY_KEY_ID,
        'KEY_SECRET': RAZORPAY_KEY_SECRET,
        'WEBHOOK_SECRET': RAZORPAY_WEBHOOK_SECRET,
        'BASE_URL': 'https://api.razorpay.com/v1',
        'TIMEOUT': 30,
    },
    'cashfree': {
        'BACKEND': 'payments.providers.cashfree.CashfreeProvider',
        'APP_ID': CASHFREE_APP_ID,
        'SECRET_KEY': CASHFREE_SECRET_KEY,
        'WEBHOOK_SECRET': CASHFREE_WEBHOOK_SECRET,
        'ENVIRONMENT': CASHFREE_ENVIRONMENT,
        'API_VERSION': '2023-08-01',
        'RETURN_URL': PAYMENT_RETURN_URL,
        'NOTIFY_URL': f'{SITE_URL}/api/v1/payments/webhook/cashfree/',
        'TIMEOUT': 30,
        'FETCH_TIMEOUT': 15,
    },
}

# Platform fee schedule (percent of consultation fee, clamp in paisa)
PLATFORM_FEES = {
    'online': 7,
    'in_person': 4,
    'walk_in': 2,
    'follow_up': 3,
    'DEFAULT_PERCENTAGE': 7,
    'MINIMUM_FEE': 2000,
    'MAXIMUM_FEE': 50000,
}
GST_RATE = 18  # percent, applied on the platform fee only

# Production currently charges the consultation fee only
CHARGE_PLATFORM_FEE = env.bool('CHARGE_PLATFORM_FEE', default=False)

REFUND_POLICY = {
    'FULL_REFUND_HOURS': 24,
    'PARTIAL_75_HOURS': 4,
    'PARTIAL_50_HOURS': 1,
    'FULL_PERCENT': 100,
    'PARTIAL_75_PERCENT': 75,
    'PARTIAL_50_PERCENT': 50,
    'DOCTOR_CANCEL_CREDIT': 5000,  # paisa
}

# ============================================================================
# LOGGING
# ============================================================================

from core.logging_config import get_logging_config

LOGGING = get_logging_config(BASE_DIR, DEPLOYMENT_REGION, use_files=not TESTING)

SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

# ============================================================================
# SENTRY
# ============================================================================

import sentry_sdk
from sentry_sdk.integrations.django import DjangoIntegration
from sentry_sdk.integrations.celery import CeleryIntegration

SENTRY_DSN = config("SENTRY_DSN", default="")

if SENTRY_DSN and not TESTING:
    sentry_sdk.init(
        dsn=SENTRY_DSN,
        integrations=[
            DjangoIntegration(),
            CeleryIntegration(),
        ],
        traces_sample_rate=config("SENTRY_TRACES_SAMPLE_RATE", default=0.1, cast=float),
        send_default_pii=False,
        environment=current_env,
        release=config("RELEASE_VERSION", default="1.0.0"),
        before_send=lambda event, hint: event if not DEBUG else None,
    )
