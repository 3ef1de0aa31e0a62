from app.services.jobs.tasks import enqueue_parse, parse_cas_task

__all__ = [
    "enqueue_parse",
    "parse_cas_task",
]
