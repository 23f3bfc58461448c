from celery import Celery
from celery import signals
import time
from prometheus_client import Counter, Histogram
from minihog.config import get_settings
from minihog.infrastructure.metrics import registry

settings = get_settings()

celery_app = Celery(
    "minihog",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "minihog.tasks.ingestion",
    ],
)

celery_app.conf.update(task_serializer="json", result_serializer="json", accept_content=["json"], timezone="UTC", enable_utc=True)

TASK_SUCCESS = Counter('celery_task_success_total', 'Celery task successes', ['task'], registry=registry)
TASK_FAILURE = Counter('celery_task_failure_total', 'Celery task failures', ['task'], registry=registry)
TASK_DURATION = Histogram('celery_task_duration_seconds', 'Celery task runtime', ['task'], registry=registry, buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60))

_task_start_times: dict[str, float] = {}


@signals.task_prerun.connect
def _task_prerun(sender=None, task_id=None, **kwargs):  # noqa
    _task_start_times[task_id] = time.time()


@signals.task_postrun.connect
def _task_postrun(sender=None, task_id=None, state=None, **kwargs):  # noqa
    task = sender.name if sender else 'unknown'
    start = _task_start_times.pop(task_id, None)
    if start is not None:
        TASK_DURATION.labels(task=task).observe(time.time() - start)
    if state == 'SUCCESS':
        TASK_SUCCESS.labels(task=task).inc()
    elif state is not None:
        TASK_FAILURE.labels(task=task).inc()
