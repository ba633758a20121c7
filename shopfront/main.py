from contextlib import asynccontextmanager
from fastapi import FastAPI
from shopfront.api import cur_version, version_prefix
from shopfront.api.routers import admin_routers, public_routers
from shopfront.background_workers.jobs import build_workers, shutdown_workers
from shopfront.common.custom_exceptions import register_all_exceptions
from shopfront.common.logging_setup import setup_logging, stop_logging
from shopfront.config.admin_config import admin_config
from shopfront.config.settings import config_settings
from shopfront.db.connection import async_engine, async_session
from shopfront.middlewares.auth_middleware import AuthenticationMiddleware
from shopfront.middlewares.request_id_middleware import RequestIdMiddleware


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    log = setup_logging()

    workers = []
    if config_settings.RESERVATION_SWEEP_ENABLED:
        workers = build_workers(async_session)
        for w in workers:
            w.start()
    app.state.workers = workers

    log.info("app.startup", extra={"version": cur_version, "workers": len(workers)})
    try:
        yield
    finally:
        # new requests are no longer accepted at this point
        await shutdown_workers(workers)
        # safe to dispose DB engine after workers exit
        await async_engine.dispose()
        stop_logging()


def create_app():
    app = FastAPI(
        title="Shopfront",
        version=cur_version,
        lifespan=app_lifespan)

    app.include_router(public_routers)

    if admin_config.ENABLE_ADMIN:
        app.include_router(admin_routers)      # mounts /api/v1/admin

    app.add_middleware(AuthenticationMiddleware, paths=[f"{version_prefix}/auth/signup",
                                                        f"{version_prefix}/auth/login",
                                                        f"{version_prefix}/health",
                                                        f"{version_prefix}/products"],     # public product reads
                                                 maybe_auth_paths=[f"{version_prefix}/addresses",
                                                                   f"{version_prefix}/checkout",
                                                                   f"{version_prefix}/guests",
                                                                   f"{version_prefix}/user-behaviors"])
    app.add_middleware(RequestIdMiddleware)
    register_all_exceptions(app)

    return app

app = create_app()
