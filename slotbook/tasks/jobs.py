from slotbook.tasks.celery_app import celery
from slotbook.tasks import worker_jobs


@celery.task(name="slotbook.tasks.jobs.expire_requests")
def expire_requests():
    return worker_jobs.expire_requests()
