from __future__ import annotations

from fastapi import FastAPI, HTTPException, Query

from flock_errors import ConfigurationError, SessionBusy
from flock_session import TrainingSession

app = FastAPI(title="flock training service", version="1.0.0")
session = TrainingSession()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/snapshot")
def snapshot(trace: bool = Query(default=False, description="Include per-tick agent frames")) -> dict[str, object]:
    return session.snapshot(include_trace=trace).to_dict()


@app.post("/train")
def train(
    generations: int = Query(default=1, ge=0, le=1000, description="Generations to advance"),
) -> dict[str, object]:
    try:
        snapshots = session.advance(generations)
    except SessionBusy as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    except ConfigurationError as error:
        raise HTTPException(status_code=422, detail=str(error)) from error

    return {
        "generations_run": len(snapshots),
        "history": [
            {
                "generation": item.generation - 1,
                "best_fitness": item.best_fitness,
                "average_fitness": item.average_fitness,
            }
            for item in snapshots
        ],
        "snapshot": session.snapshot().to_dict(),
    }


@app.post("/stop")
def stop() -> dict[str, bool]:
    session.request_stop()
    return {"stop_requested": True, "busy": session.busy}


@app.post("/reset")
def reset(seed: int | None = Query(default=None, ge=0, description="Optional new seed")) -> dict[str, object]:
    try:
        return session.reset(seed=seed).to_dict()
    except SessionBusy as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
