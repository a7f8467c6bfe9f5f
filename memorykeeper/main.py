import logging
import threading

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from memorykeeper.core.config import LOG_LEVEL, START_WORKER
from memorykeeper.core.database import Base, engine
from memorykeeper.core.errors import StoreUnavailable
from memorykeeper.core.logging import setup_logging
from memorykeeper.controllers.job_controller import router as job_router
from memorykeeper.models import job_model, rate_limit_model  # noqa: F401  register tables
from memorykeeper.worker.worker import run_worker

setup_logging(LOG_LEVEL)
log = logging.getLogger("api")

app = FastAPI(title="MemoryKeeper Jobs")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], # allow all origins for CORS
    allow_credentials=True, # browsers allowed to send cookies along with requests
    allow_methods=["*"],  # browsers allowed to use any HTTP method (GET, POST, etc)
    allow_headers=["*"],  # browsers allowed to send any headers (Authorization, Content-Type, etc)
)

stop_event = threading.Event()


def start_worker_thread():
    worker_thread = threading.Thread(
        target=run_worker, # periodic trigger for scheduler passes
        args=(stop_event,),
        name="scheduler-trigger",
        daemon=True    # daemon thread will exit when main program exits
    )
    worker_thread.start()
    log.info("background worker thread started", extra={"event": "worker_thread_start"})


@app.on_event("startup")
def startup_event():
    Base.metadata.create_all(bind=engine)
    log.info("database tables created/verified", extra={"event": "startup"})

    if START_WORKER:
        start_worker_thread()


@app.on_event("shutdown")
def shutdown_event():
    stop_event.set()


@app.exception_handler(StoreUnavailable)
def store_unavailable_handler(request: Request, exc: StoreUnavailable):
    log.error("store unavailable: %s", exc, extra={"event": "store_unavailable"})
    return JSONResponse(status_code=503, content={"detail": "Job store unavailable, try again later"})


@app.get("/healthz")
def healthz():
    return {"ok": True}


app.include_router(job_router) # include job-related endpoints in the main app

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "memorykeeper.main:app",
        host="0.0.0.0", # it will make backend accessible
        port=8000,
    )
