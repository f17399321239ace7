import argparse
import asyncio
import sys

from liveness.config import load_settings, load_source_settings
from liveness.controller import SessionController
from liveness.db import configure_engine, init_db
from liveness.errors import ConfigError
from liveness.source import HttpSourceAdapter
from liveness.store import SqlStore
from liveness.utils import configure_file_sink_from_env, logger


async def run_once(mode=None):
    settings = load_settings(mode=mode)
    engine = configure_engine()
    init_db(engine)
    async with HttpSourceAdapter(load_source_settings()) as source:
        return await SessionController(SqlStore(engine), source, settings).run()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Run one listing liveness reconcile pass.")
    parser.add_argument("--mode", choices=("crawl", "check"), default=None,
                        help="crawl owner pages (default) or check every listing individually")
    args = parser.parse_args(argv)
    configure_file_sink_from_env()

    try:
        result = asyncio.run(run_once(args.mode))
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 2

    summary = result.summary
    print(f"Session {result.session.id if result.session else '-'}: {result.state.value}")
    print(f"  success={summary.success} deactivated={summary.deactivated} swept={summary.swept} "
          f"error={summary.error} rejected={summary.rejected} skipped={summary.skipped}")
    if result.error:
        print(f"  error: {result.error}")
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
