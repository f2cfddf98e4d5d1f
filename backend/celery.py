import os
from celery import Celery
from celery.schedules import crontab

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "backend.settings")

app = Celery("MediPay")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

app.conf.beat_schedule = {
    "expire-stale-payments": {
        "task": "payments.tasks.expire_stale_payments",
        "schedule": crontab(minute="*/5"),
    },
    "poll-pending-payments": {
        "task": "payments.tasks.poll_pending_payments",
        "schedule": crontab(minute="*/5"),
        "options": {"expires": 60 * 4},
    },
    "sweep-unconfirmed-appointments": {
        "task": "payments.tasks.sweep_unconfirmed_appointments",
        "schedule": crontab(minute="*/10"),
    },
    "poll-pending-refunds": {
        "task": "payments.tasks.poll_pending_refunds",
        "schedule": crontab(minute=15),
    },
    "generate-weekly-settlements": {
        "task": "payments.tasks.generate_weekly_settlements",
        "schedule": crontab(hour=2, minute=0, day_of_week=1),
    },
}
