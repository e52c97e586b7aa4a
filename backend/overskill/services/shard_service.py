"""Shard assignment for new apps."""

import logging
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..exceptions import DatabaseError
from ..models import App, DatabaseShard

logger = logging.getLogger(__name__)

MAX_ASSIGNMENT_ATTEMPTS = 5


class ShardService:
    """
    Picks a shard for an app exactly once, at creation.

    Capacity is claimed with a conditional UPDATE on the shard row, so
    concurrent creations never push a shard past its capacity. The chosen
    shard id is stored on the app and never recomputed.
    """

    def __init__(self, db: Session):
        self.db = db

    def assign_shard(self, app: App) -> DatabaseShard:
        """Attach the least-loaded available shard to ``app``.

        Creates the next ``shard-NNN`` when every shard is full. Does not
        commit; the caller commits together with the app.
        """
        if app.database_shard_id is not None:
            return self.db.get(DatabaseShard, app.database_shard_id)

        for _ in range(MAX_ASSIGNMENT_ATTEMPTS):
            shard = self._least_loaded() or self._create_shard()
            if shard is None:
                continue

            claimed = (
                self.db.query(DatabaseShard)
                .filter(
                    DatabaseShard.id == shard.id,
                    DatabaseShard.status == "available",
                    DatabaseShard.app_count < DatabaseShard.capacity,
                )
                .update(
                    {DatabaseShard.app_count: DatabaseShard.app_count + 1},
                    synchronize_session=False,
                )
            )
            if not claimed:
                continue

            self.db.refresh(shard)
            if shard.app_count >= shard.capacity:
                shard.status = "at_capacity"
                logger.info(f"Shard {shard.name} reached capacity ({shard.capacity} apps)")

            app.database_shard_id = shard.id
            logger.info(f"Assigned shard {shard.name}", extra={"shard": shard.name})
            return shard

        raise DatabaseError("Could not assign a database shard")

    def _least_loaded(self) -> Optional[DatabaseShard]:
        return (
            self.db.query(DatabaseShard)
            .filter(
                DatabaseShard.status == "available",
                DatabaseShard.app_count < DatabaseShard.capacity,
            )
            .order_by(DatabaseShard.app_count.asc(), DatabaseShard.shard_number.asc())
            .first()
        )

    def _create_shard(self) -> Optional[DatabaseShard]:
        """Create the next numbered shard, or None if another request just did."""
        next_number = (self.db.query(func.max(DatabaseShard.shard_number)).scalar() or 0) + 1
        savepoint = self.db.begin_nested()
        try:
            shard = DatabaseShard(
                name=f"shard-{next_number:03d}",
                shard_number=next_number,
                status="available",
                app_count=0,
                capacity=settings.apps_per_shard,
            )
            self.db.add(shard)
            self.db.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            logger.info(f"Shard {next_number} created concurrently, retrying assignment")
            return None
        logger.info(f"Created shard {shard.name}")
        return shard

    def list_shards(self) -> List[DatabaseShard]:
        return self.db.query(DatabaseShard).order_by(DatabaseShard.shard_number.asc()).all()
