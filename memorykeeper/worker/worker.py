# memorykeeper/worker/worker.py

import logging
import threading

from memorykeeper.core.config import HANDLER_TIMEOUT_SECONDS, JOB_LEASE_SECONDS, LOG_LEVEL, SCHEDULER_INTERVAL_SECONDS
from memorykeeper.core.errors import StoreUnavailable
from memorykeeper.core.logging import setup_logging
from memorykeeper.services.scheduler import run_scheduler_pass

log = logging.getLogger("worker")


def run_worker(stop_event: threading.Event | None = None, interval: float = SCHEDULER_INTERVAL_SECONDS, **pass_options):
    """Periodic trigger: one scheduler pass every `interval` seconds until stopped."""
    stop_event = stop_event or threading.Event()
    log.info("worker started (interval=%ss)", interval, extra={"event": "worker_start"})

    timeout = pass_options.get("handler_timeout", HANDLER_TIMEOUT_SECONDS)
    if not timeout or timeout >= JOB_LEASE_SECONDS:
        # a handler still running when its lease expires can be claimed twice
        log.warning("handler timeout %ss does not fit inside the %ss job lease", timeout, JOB_LEASE_SECONDS,
                    extra={"event": "worker_lease_config"})

    while not stop_event.is_set():
        try:
            run_scheduler_pass(**pass_options)

        except StoreUnavailable as e:
            log.warning("job store unavailable, retrying next tick: %s", e,
                        extra={"event": "scheduler_store_unavailable"})

        except Exception:
            log.error("worker loop error", extra={"event": "worker_loop_error"}, exc_info=True)

        stop_event.wait(interval)

    log.info("worker stopped", extra={"event": "worker_stop"})


if __name__ == "__main__":
    from memorykeeper.core.database import Base, engine
    import memorykeeper.models.job_model  # noqa: F401  register tables

    setup_logging(LOG_LEVEL)
    Base.metadata.create_all(bind=engine)
    try:
        run_worker()
    except KeyboardInterrupt:
        pass
