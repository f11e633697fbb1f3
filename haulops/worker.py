import threading
from .config import get_settings
from .jobs import JobRunner

_job_runner = None

def start_worker():
    global _job_runner
    if _job_runner is None:
        _job_runner = JobRunner(poll_seconds=get_settings().WORKER_POLL_SECONDS)
        thread = threading.Thread(target=_job_runner.run, name="haulops-worker", daemon=True)
        thread.start()
    return _job_runner

def stop_worker():
    global _job_runner
    if _job_runner is not None:
        _job_runner.stop()
        _job_runner = None
