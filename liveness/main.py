from fastapi import FastAPI
from liveness.api.routes import router as api_router
from liveness.db import init_db
from liveness.utils import configure_file_sink_from_env, logger

# create FastAPI instance
app = FastAPI(title="listing-liveness")
app.include_router(api_router)


@app.on_event("startup")
def on_startup_create_tables():
    configure_file_sink_from_env()
    # Ensure database tables are created on startup
    try:
        init_db()
    except Exception as e:
        # Do not crash the app if migrations are preferred; keep running
        logger.warning("Could not create tables on startup: %s", e)
