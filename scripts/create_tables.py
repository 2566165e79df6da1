"""Create the governance tables for local development (use Alembic elsewhere).

``--drop`` wipes users, flags, flag history and audit rows first.
"""
import argparse
import logging

from gallery_admin.db.session import engine
from gallery_admin.models import Base
from gallery_admin.services.flag_queries import select_flag_query_backend

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("gallery_admin.scripts.create_tables")


def create_tables(drop: bool = False) -> None:
    if drop:
        logger.warning("Dropping tables: %s", ", ".join(sorted(Base.metadata.tables)))
        Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    logger.info("Created tables on %s", engine.dialect.name)
    # create_all does not install get_all_feature_flags(); the migration does
    select_flag_query_backend(engine)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--drop", action="store_true", help="drop existing tables first")
    create_tables(drop=parser.parse_args().drop)
