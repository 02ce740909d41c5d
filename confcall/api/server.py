"""
FastAPI status surface for a running conference session.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from fastapi import FastAPI

from ..session import ConferenceSession
from . import schemas

LOG = logging.getLogger(__name__)


def create_app(session: ConferenceSession, lifespan: Optional[Callable[[FastAPI], Any]] = None) -> FastAPI:
    app = FastAPI(title="confcall", version="0.1.0", lifespan=lifespan)

    @app.get("/healthz", response_model=schemas.HealthModel)
    async def healthz() -> schemas.HealthModel:
        snapshot = session.describe()
        return schemas.HealthModel(
            me=session.me,
            announcerRunning=session.announcer.is_running,
            mediaStarted=bool(snapshot["mediaStarted"]),
        )

    @app.get("/roster", response_model=schemas.RosterModel, response_model_by_alias=True)
    async def roster() -> schemas.RosterModel:
        snapshot = session.describe()
        return schemas.RosterModel(
            me=session.me,
            participants=[schemas.RosterEntryModel(**entry) for entry in snapshot["roster"]],
        )

    @app.get("/participants", response_model=schemas.ParticipantsModel)
    async def participants() -> schemas.ParticipantsModel:
        records = [schemas.ParameterRecordModel(**record.to_dict()) for record in session.coordinator.records()]
        return schemas.ParticipantsModel(records=records)

    @app.get("/ssrcs", response_model=schemas.SsrcStatusModel)
    async def ssrcs() -> schemas.SsrcStatusModel:
        snapshot = session.coordinator.describe()
        return schemas.SsrcStatusModel(
            active=snapshot["active"],
            orphans=snapshot["orphans"],
            deactivated=snapshot["deactivated"],
        )

    @app.get("/latency", response_model=schemas.LatencyModel)
    async def latency() -> schemas.LatencyModel:
        tracer = session.tracer
        if tracer is None:
            return schemas.LatencyModel(enabled=False)
        return schemas.LatencyModel(
            enabled=True,
            pairs={name: schemas.LatencyStatsModel(**stats) for name, stats in tracer.describe().items()},
        )

    return app


__all__ = ["create_app"]
