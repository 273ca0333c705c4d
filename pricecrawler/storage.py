"""SQLite storage for outlets, products and price history."""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import structlog

from .errors import DuplicateSnapshotError, StorageError
from .models import CheckpointResult, Outlet, PriceSnapshot, ProductRecord

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS outlets (
    outlet_id    TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    address      TEXT,
    region       TEXT,
    lat          REAL,
    lon          REAL,
    last_synced  TEXT
);

CREATE TABLE IF NOT EXISTS products (
    product_id   TEXT PRIMARY KEY,
    name         TEXT NOT NULL,
    brand        TEXT,
    category     TEXT,
    subcategory  TEXT,
    category_l2  TEXT,
    origin       TEXT,
    sale_type    TEXT,
    first_seen   TEXT NOT NULL,
    last_seen    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS price_snapshots (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    product_id            TEXT NOT NULL REFERENCES products(product_id),
    outlet_id             TEXT NOT NULL REFERENCES outlets(outlet_id),
    scraped_at            TEXT NOT NULL,
    price                 REAL NOT NULL,
    price_per_unit        REAL,
    unit                  TEXT,
    display_name          TEXT,
    in_store              INTEGER NOT NULL DEFAULT 0,
    online                INTEGER NOT NULL DEFAULT 0,
    promo_price           REAL,
    promo_price_per_unit  REAL,
    promo_type            TEXT,
    promo_desc            TEXT,
    promo_card_required   INTEGER,
    promo_limit           INTEGER,
    UNIQUE(product_id, outlet_id, scraped_at)
);

CREATE INDEX IF NOT EXISTS idx_snapshots_product ON price_snapshots(product_id);
CREATE INDEX IF NOT EXISTS idx_snapshots_date ON price_snapshots(scraped_at);

CREATE TABLE IF NOT EXISTS runs (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    started_at    TEXT NOT NULL,
    completed_at  TEXT,
    status        TEXT NOT NULL DEFAULT 'in_progress'
);

CREATE TABLE IF NOT EXISTS work_items (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    run_id         INTEGER NOT NULL REFERENCES runs(id),
    outlet_id      TEXT NOT NULL REFERENCES outlets(outlet_id),
    category_slug  TEXT NOT NULL,
    status         TEXT NOT NULL DEFAULT 'pending',
    last_page      INTEGER,
    product_count  INTEGER,
    error          TEXT,
    UNIQUE(run_id, outlet_id, category_slug)
);

CREATE INDEX IF NOT EXISTS idx_work_items_run ON work_items(run_id);
"""

SNAPSHOT_COLUMNS = (
    "product_id",
    "outlet_id",
    "scraped_at",
    "price",
    "price_per_unit",
    "unit",
    "display_name",
    "in_store",
    "online",
    "promo_price",
    "promo_price_per_unit",
    "promo_type",
    "promo_desc",
    "promo_card_required",
    "promo_limit",
)


def _bool_to_int(value: Optional[bool]) -> Optional[int]:
    if value is None:
        return None
    return 1 if value else 0


class PriceHistoryStore:
    """
    Price history database handle.

    Holds one live connection for its path, opened lazily and reused by
    every caller that is handed this store. The connection runs in
    autocommit mode; multi-statement writes go through ``transaction()``.
    """

    def __init__(self, db_path: str = "data/prices.db"):
        """
        Initialize storage with database path.

        Args:
            db_path: Path to SQLite database file (created if missing)
        """
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._transaction_depth = 0
        logger.info("storage_initialized", db_path=str(self.db_path))

    def _get_connection(self) -> sqlite3.Connection:
        """Open the connection on first use and create the schema."""
        if self._conn is not None:
            return self._conn

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self.db_path),
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.executescript(SCHEMA)
        except (sqlite3.Error, OSError) as e:
            logger.exception("storage_open_failed", db_path=str(self.db_path), error=str(e))
            raise StorageError(f"Cannot open database {self.db_path}: {e}") from e

        self._conn = conn
        logger.debug("storage_connected", db_path=str(self.db_path))
        return conn

    @property
    def connection(self) -> sqlite3.Connection:
        return self._get_connection()

    def initialize(self) -> None:
        """Open the database and create tables if needed (idempotent)."""
        self._get_connection()

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("storage_closed", db_path=str(self.db_path))

    def __enter__(self) -> "PriceHistoryStore":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block of statements atomically.

        Nested use joins the outer transaction; only the outermost block
        commits or rolls back.
        """
        conn = self._get_connection()

        if self._transaction_depth:
            self._transaction_depth += 1
            try:
                yield conn
            finally:
                self._transaction_depth -= 1
            return

        conn.execute("BEGIN")
        self._transaction_depth = 1
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")
        finally:
            self._transaction_depth = 0

    # Writes

    def upsert_outlet(self, outlet: Outlet) -> None:
        """Insert or update an outlet by id."""
        conn = self._get_connection()
        conn.execute(
            """
            INSERT INTO outlets (outlet_id, name, address, region, lat, lon, last_synced)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(outlet_id) DO UPDATE SET
                name = excluded.name,
                address = excluded.address,
                region = excluded.region,
                lat = excluded.lat,
                lon = excluded.lon,
                last_synced = excluded.last_synced
            """,
            (
                outlet.outlet_id,
                outlet.name,
                outlet.address,
                outlet.region,
                outlet.lat,
                outlet.lon,
                outlet.last_synced,
            ),
        )

    def upsert_outlets(self, outlets: Sequence[Outlet]) -> int:
        """
        Upsert many outlets in one transaction.

        Returns:
            Number of outlets written
        """
        if not outlets:
            return 0

        try:
            with self.transaction():
                for outlet in outlets:
                    self.upsert_outlet(outlet)
        except sqlite3.Error as e:
            logger.exception("outlets_upsert_failed", count=len(outlets), error=str(e))
            raise

        logger.info("outlets_upserted", count=len(outlets))
        return len(outlets)

    def upsert_product(self, product: ProductRecord) -> None:
        """
        Insert or update a product.

        ``first_seen`` is kept from the existing row. Descriptive fields are
        overwritten and ``last_seen`` only moves forward.
        """
        conn = self._get_connection()
        conn.execute(
            """
            INSERT INTO products (
                product_id, name, brand, category, subcategory, category_l2,
                origin, sale_type, first_seen, last_seen
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(product_id) DO UPDATE SET
                name = excluded.name,
                brand = excluded.brand,
                category = excluded.category,
                subcategory = excluded.subcategory,
                category_l2 = excluded.category_l2,
                origin = excluded.origin,
                sale_type = excluded.sale_type,
                last_seen = MAX(products.last_seen, excluded.last_seen)
            """,
            (
                product.product_id,
                product.name,
                product.brand,
                product.category,
                product.subcategory,
                product.category_l2,
                product.origin,
                product.sale_type,
                product.first_seen,
                product.last_seen,
            ),
        )

    def insert_snapshot(self, snapshot: PriceSnapshot) -> int:
        """
        Append a price snapshot.

        Returns:
            Row id of the new snapshot

        Raises:
            DuplicateSnapshotError: If (product, outlet, scraped_at) exists
        """
        conn = self._get_connection()
        placeholders = ", ".join("?" for _ in SNAPSHOT_COLUMNS)
        values = (
            snapshot.product_id,
            snapshot.outlet_id,
            snapshot.scraped_at,
            snapshot.price,
            snapshot.price_per_unit,
            snapshot.unit,
            snapshot.display_name,
            _bool_to_int(snapshot.in_store),
            _bool_to_int(snapshot.online),
            snapshot.promo_price,
            snapshot.promo_price_per_unit,
            snapshot.promo_type,
            snapshot.promo_desc,
            _bool_to_int(snapshot.promo_card_required),
            snapshot.promo_limit,
        )

        try:
            cursor = conn.execute(
                f"INSERT INTO price_snapshots ({', '.join(SNAPSHOT_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e):
                logger.warning(
                    "duplicate_snapshot",
                    product_id=snapshot.product_id,
                    outlet_id=snapshot.outlet_id,
                    scraped_at=snapshot.scraped_at,
                )
                raise DuplicateSnapshotError(
                    snapshot.product_id, snapshot.outlet_id, snapshot.scraped_at
                ) from e
            raise

        return cursor.lastrowid

    def save_batch(
        self,
        products: Sequence[ProductRecord],
        snapshots: Sequence[PriceSnapshot],
    ) -> None:
        """
        Save one crawl result atomically.

        Every product upsert and snapshot insert commits together, or none
        does.

        Args:
            products: Product master rows
            snapshots: Price snapshots for those products
        """
        try:
            with self.transaction():
                for product in products:
                    self.upsert_product(product)
                for snapshot in snapshots:
                    self.insert_snapshot(snapshot)
        except Exception as e:
            logger.exception(
                "batch_save_failed",
                products=len(products),
                snapshots=len(snapshots),
                error=str(e),
            )
            raise

        logger.info("batch_saved", products=len(products), snapshots=len(snapshots))

    def checkpoint(self) -> CheckpointResult:
        """Run a passive WAL checkpoint and report pages processed/moved."""
        conn = self._get_connection()
        row = conn.execute("PRAGMA wal_checkpoint(PASSIVE)").fetchone()
        result = CheckpointResult(wal_pages=row[1], moved_pages=row[2])
        logger.info(
            "wal_checkpoint",
            busy=row[0],
            wal_pages=result.wal_pages,
            moved_pages=result.moved_pages,
        )
        return result

    # Reads

    def get_outlet(self, outlet_id: str) -> Optional[Outlet]:
        row = self._get_connection().execute(
            "SELECT * FROM outlets WHERE outlet_id = ?", (outlet_id,)
        ).fetchone()
        return Outlet(**dict(row)) if row else None

    def list_outlets(self) -> List[Outlet]:
        rows = self._get_connection().execute(
            "SELECT * FROM outlets ORDER BY name ASC"
        ).fetchall()
        return [Outlet(**dict(row)) for row in rows]

    def get_product(self, product_id: str) -> Optional[ProductRecord]:
        row = self._get_connection().execute(
            "SELECT * FROM products WHERE product_id = ?", (product_id,)
        ).fetchone()
        return ProductRecord(**dict(row)) if row else None

    def get_product_history(
        self,
        product_id: str,
        outlet_id: Optional[str] = None,
    ) -> List[PriceSnapshot]:
        """
        Get all snapshots for a product, oldest first.

        Args:
            product_id: Product to look up
            outlet_id: Restrict to one outlet

        Returns:
            Snapshots in ascending ``scraped_at`` order
        """
        sql = "SELECT * FROM price_snapshots WHERE product_id = ?"
        params: list = [product_id]
        if outlet_id is not None:
            sql += " AND outlet_id = ?"
            params.append(outlet_id)
        sql += " ORDER BY scraped_at ASC, id ASC"

        rows = self._get_connection().execute(sql, params).fetchall()
        return [PriceSnapshot(**dict(row)) for row in rows]

    def get_latest_prices(self, outlet_id: Optional[str] = None) -> List[PriceSnapshot]:
        """Most recent snapshot per product at each outlet."""
        sql = """
            SELECT ps.* FROM price_snapshots ps
            INNER JOIN (
                SELECT product_id, outlet_id, MAX(scraped_at) AS max_scraped_at
                FROM price_snapshots
                GROUP BY product_id, outlet_id
            ) latest
              ON ps.product_id = latest.product_id
             AND ps.outlet_id = latest.outlet_id
             AND ps.scraped_at = latest.max_scraped_at
        """
        params: list = []
        if outlet_id is not None:
            sql += " WHERE ps.outlet_id = ?"
            params.append(outlet_id)
        sql += " ORDER BY ps.product_id ASC, ps.outlet_id ASC"

        rows = self._get_connection().execute(sql, params).fetchall()
        return [PriceSnapshot(**dict(row)) for row in rows]
