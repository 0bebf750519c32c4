from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from intentmatch.db import get_db
from intentmatch.jobs.runner import SWEEPS, sweep_runner
from intentmatch.schemas import ConfigCreate, ConfigOut, ConfigUpdate
from intentmatch.services.config_store import ConfigService

router = APIRouter(tags=["admin"])


# ============ Config Endpoints ============


@router.get("/configs", response_model=list[ConfigOut])
def list_configs(db: Session = Depends(get_db)):
    return ConfigService(db).list_active()


@router.post("/configs/seed")
def seed_configs(db: Session = Depends(get_db)):
    """Create the default config records that are missing."""
    return ConfigService(db).seed_defaults()


@router.get("/configs/{key}", response_model=ConfigOut)
def get_config(key: str, db: Session = Depends(get_db)):
    return ConfigService(db).get(key)


@router.post("/configs/{key}", response_model=ConfigOut)
def create_config(key: str, payload: ConfigCreate, db: Session = Depends(get_db)):
    return ConfigService(db).create(key, payload.value, payload.version)


@router.put("/configs/{key}", response_model=ConfigOut)
def update_config(key: str, payload: ConfigUpdate, db: Session = Depends(get_db)):
    """Replace the value and bump the version."""
    return ConfigService(db).update(key, payload.value)


@router.delete("/configs/{key}", response_model=ConfigOut)
def deactivate_config(key: str, db: Session = Depends(get_db)):
    return ConfigService(db).deactivate(key)


# ============ Sweep Endpoints ============


@router.get("/sweeps/status")
def get_sweeps_status() -> dict[str, Any]:
    """Last run and result of each background sweep."""
    return sweep_runner.get_status()


@router.post("/sweeps/{name}")
def trigger_sweep(name: str, db: Session = Depends(get_db)):
    if name not in SWEEPS:
        raise HTTPException(status_code=404, detail=f"Unknown sweep '{name}'. Must be one of: {list(SWEEPS)}")
    return {"sweep": name, "result": sweep_runner.run_sweep(name, db)}
