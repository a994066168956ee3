# lasermark/db/init_db.py

import logging

from lasermark.db.session import Base, engine
from lasermark.db import models  # noqa: F401  # registers the tables on Base.metadata

logger = logging.getLogger(__name__)


def init() -> None:
    logger.info("creating tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("done.")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init()
