"""
Create the schema and, optionally, a garage with a development token.

Run with: python -m garage_backend.scripts.init_db [--garage "Name"]
"""
import argparse
import asyncio
import logging

from garage_backend.core.database import Base, engine, get_db_session
from garage_backend.core.security import create_access_token
from garage_backend.models import Garage

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)
logger = logging.getLogger(__name__)


async def init_db(garage_name: str = None) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema created")

    if not garage_name:
        return

    async with get_db_session() as db:
        garage = Garage(name=garage_name, is_active=True)
        db.add(garage)
        await db.flush()
        token = create_access_token({"sub": "dev", "garage_id": garage.id})
        logger.info(f"Garage {garage.id} created: {garage_name}")
        print(f"Development token for garage {garage.id}:\n{token}")


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--garage", help="Create a garage with this name")
    args = parser.parse_args()
    asyncio.run(init_db(args.garage))


if __name__ == "__main__":
    main()
