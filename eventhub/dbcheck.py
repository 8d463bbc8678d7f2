import logging
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.exc import SQLAlchemyError

from eventhub.config import settings
from eventhub.logging_config import configure_logging

logger = logging.getLogger(__name__)


def check_connection(database_url: Optional[str] = None) -> bool:
    database_url = database_url or settings.database_url
    engine = create_engine(database_url, pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        logger.error("DB connection FAILED: %s", exc)
        return False
    finally:
        engine.dispose()
    logger.info("DB connection OK")
    return True


def main() -> None:
    configure_logging()
    raise SystemExit(0 if check_connection() else 1)


if __name__ == "__main__":
    main()
