from __future__ import annotations

from alembic import command
from alembic.config import Config

from erpcore.infra.logging import configure_logging, get_logger

logger = get_logger(__name__)


def run_upgrade_head() -> None:
    config = Config("alembic.ini")
    logger.info("migration_upgrade_started", target="head")
    command.upgrade(config, "head")
    logger.info("migration_upgrade_finished", target="head")


if __name__ == "__main__":
    configure_logging()
    run_upgrade_head()
