"""
Centralized logging configuration for multi-region deployment
"""
from pathlib import Path


def get_logging_config(base_dir, region='default', use_files=True):
    """
    Get logging configuration for the deployment region

    Region deployments log JSON through python-json-logger so that payment
    transitions can be searched by field. ``use_files`` is turned off for
    test runs.
    """
    logs_dir = Path(base_dir) / 'logs'
    if use_files:
        logs_dir.mkdir(exist_ok=True)

    config = {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'verbose': {
                'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
                'style': '{',
            },
            'simple': {
                'format': '{levelname} {message}',
                'style': '{',
            },
            'json': {
                '()': 'pythonjsonlogger.jsonlogger.JsonFormatter',
                'format': '%(asctime)s %(name)s %(levelname)s %(message)s',
            } if region != 'default' else {
                'format': '{levelname} {asctime} {module} {message}',
                'style': '{',
            },
        },
        'handlers': {
            'console': {
                'level': 'INFO',
                'class': 'logging.StreamHandler',
                'formatter': 'verbose',
            },
        },
        'loggers': {
            'django': {
                'handlers': ['console'],
                'level': 'INFO',
                'propagate': False,
            },
            'django.request': {
                'handlers': ['console'],
                'level': 'ERROR',
                'propagate': False,
            },
            'payments': {
                'handlers': ['console'],
                'level': 'INFO',
                'propagate': False,
            },
            'appointments': {
                'handlers': ['console'],
                'level': 'INFO',
                'propagate': False,
            },
            'communication': {
                'handlers': ['console'],
                'level': 'INFO',
                'propagate': False,
            },
        },
    }

    if use_files:
        config['handlers'].update({
            'error_file': {
                'level': 'ERROR',
                'class': 'logging.handlers.RotatingFileHandler',
                'filename': logs_dir / f'{region}_errors.log',
                'maxBytes': 1024 * 1024 * 10,  # 10MB
                'backupCount': 5,
                'formatter': 'verbose',
            },
            'payments_file': {
                'level': 'INFO',
                'class': 'logging.handlers.RotatingFileHandler',
                'filename': logs_dir / f'{region}_payments.log',
                'maxBytes': 1024 * 1024 * 10,  # 10MB
                'backupCount': 10,
                'formatter': 'json',
            },
        })
        config['loggers']['django']['handlers'].append('error_file')
        config['loggers']['django.request']['handlers'].append('error_file')
        config['loggers']['payments']['handlers'] += ['payments_file', 'error_file']
        config['loggers']['appointments']['handlers'].append('error_file')

    return config
