# lasermark/main.py

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from lasermark.core.config import settings
from lasermark.core.logging import setup_logging
from lasermark.plc import registers
from lasermark.runtime import CellRuntime
from lasermark.mqtt.publisher import MqttEventPublisher
from lasermark.ws.bus import event_bus

from lasermark.api.v1 import control as control_router
from lasermark.api.v1 import records as records_router
from lasermark.api import ws as ws_router

logger = logging.getLogger(__name__)


def create_app(runtime: Optional[CellRuntime] = None, *, start_runtime: bool = True) -> FastAPI:
    app = FastAPI(title=settings.APP_NAME)
    app.state.runtime = runtime

    origins = [
        origin.strip()
        for origin in settings.BACKEND_CORS_ORIGINS.split(",")
        if origin.strip()
    ]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # REST API
    app.include_router(records_router.router, prefix="/api/v1")
    app.include_router(control_router.router, prefix="/api/v1")

    # HMI event stream
    app.include_router(ws_router.router)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.on_event("startup")
    async def on_startup():
        setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)

        # event bus is bound to the server loop
        event_bus.set_loop(asyncio.get_running_loop())
        if settings.MQTT_ENABLED:
            event_bus.publisher = MqttEventPublisher(
                settings.MQTT_BROKER_HOST,
                settings.MQTT_BROKER_PORT,
                client_id=settings.MQTT_CLIENT_ID,
                topic_prefix=settings.MQTT_TOPIC_PREFIX,
                event_types={b.event_name for rule in registers.ALARM_RULES for b in rule.bits.values()},
            )
        app.state.bus_task = asyncio.create_task(event_bus.run())

        if app.state.runtime is None:
            app.state.runtime = CellRuntime(settings, event_bus)
        if start_runtime:
            await app.state.runtime.start()

    @app.on_event("shutdown")
    async def on_shutdown():
        runtime = app.state.runtime
        if runtime is not None and runtime.started:
            await runtime.shutdown()
        bus_task = getattr(app.state, "bus_task", None)
        if bus_task is not None:
            bus_task.cancel()

    return app


app = create_app()


def run() -> None:
    """Console entry point. uvicorn turns SIGINT/SIGTERM into the shutdown hook."""
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
