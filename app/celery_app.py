from celery import Celery

from app.services.scheduler_config import build_beat_schedule, get_celery_config

celery_app = Celery("sports_market", include=["app.tasks.payments"])
celery_app.conf.update(get_celery_config())
celery_app.conf.beat_schedule = build_beat_schedule()
celery_app.conf.task_acks_late = True
