"""
Database operations for MeteoVip.
Uses SQLite with async support via aiosqlite.
"""

import aiosqlite
import logging
from pathlib import Path
from typing import Optional, List, Dict, Any

from ..errors import InvalidInput, NotFound
from ..weather.plans import get_template, parse_config
from .models import User, UserLocation, Plan, AlertEvent

logger = logging.getLogger(__name__)

USER_PATCH_FIELDS = (
    "hazards_enabled",
    "summary_enabled",
    "presence_mode",
    "work_start",
    "work_end",
    "language_code",
)

PLAN_PATCH_FIELDS = ("name", "enabled", "min_window_minutes", "config")


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: str):
        """
        Initialize database manager.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Connect to the database and create tables if needed."""
        # Ensure directory exists
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._create_tables()
        logger.info(f"Connected to database: {self.db_path}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        async with self._connection.cursor() as cursor:
            # Users table
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    telegram_id INTEGER NOT NULL UNIQUE,
                    username TEXT,
                    first_name TEXT,
                    language_code TEXT,
                    hazards_enabled INTEGER DEFAULT 1,
                    summary_enabled INTEGER DEFAULT 0,
                    presence_mode TEXT DEFAULT 'manual',
                    work_start TEXT,
                    work_end TEXT,
                    active_location_id INTEGER,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # User locations table
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS user_locations (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    latitude REAL NOT NULL,
                    longitude REAL NOT NULL,
                    timezone TEXT DEFAULT 'UTC',
                    type TEXT DEFAULT 'point',
                    is_pending INTEGER DEFAULT 0,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (user_id) REFERENCES users(id)
                )
            """)

            # Plans table
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS plans (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    enabled INTEGER DEFAULT 1,
                    min_window_minutes INTEGER DEFAULT 60,
                    config_json TEXT DEFAULT '{"modules": []}',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (user_id) REFERENCES users(id)
                )
            """)

            # Alert events table; dedupe_key uniqueness guards against repeat notifications
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS alert_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL,
                    location_id INTEGER NOT NULL,
                    kind TEXT NOT NULL DEFAULT 'hazard',
                    subtype TEXT NOT NULL,
                    severity TEXT NOT NULL,
                    dedupe_key TEXT NOT NULL UNIQUE,
                    payload_json TEXT DEFAULT '{}',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    FOREIGN KEY (user_id) REFERENCES users(id),
                    FOREIGN KEY (location_id) REFERENCES user_locations(id)
                )
            """)

            # Bot config table (single TOML document)
            await cursor.execute("""
                CREATE TABLE IF NOT EXISTS bot_config (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    config_toml TEXT,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            # Create indexes for faster queries
            await cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_user_locations_user_id
                ON user_locations(user_id)
            """)
            await cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_plans_user_id
                ON plans(user_id)
            """)
            await cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_alert_events_user_time
                ON alert_events(user_id, created_at)
            """)

            await self._connection.commit()

    # =========================================================================
    # User operations
    # =========================================================================

    async def get_or_create_user(
        self,
        telegram_id: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        language_code: Optional[str] = None
    ) -> User:
        """Get a user by Telegram ID or register a new one."""
        async with self._connection.cursor() as cursor:
            await cursor.execute("""
                INSERT OR IGNORE INTO users (telegram_id, username, first_name, language_code)
                VALUES (?, ?, ?, ?)
            """, (telegram_id, username, first_name, language_code))
            created = cursor.rowcount == 1
            if not created:
                await cursor.execute("""
                    UPDATE users SET
                        username = COALESCE(?, username),
                        first_name = COALESCE(?, first_name)
                    WHERE telegram_id = ?
                """, (username, first_name, telegram_id))
            await self._connection.commit()

        if created:
            logger.info(f"Registered user telegram_id={telegram_id}")
        return await self.find_user(telegram_id)

    async def find_user(self, telegram_id: int) -> Optional[User]:
        """Get a user by Telegram ID."""
        async with self._connection.cursor() as cursor:
            await cursor.execute(
                "SELECT * FROM users WHERE telegram_id = ?",
                (telegram_id,)
            )
            row = await cursor.fetchone()
            if row:
                return self._row_to_user(row)
            return None

    async def list_users(self) -> List[User]:
        """Get all users."""
        async with self._connection.cursor() as cursor:
            await cursor.execute("SELECT * FROM users ORDER BY id")
            rows = await cursor.fetchall()
            return [self._row_to_user(row) for row in rows]

    async def list_eligible_users_with_active_location(self) -> List[User]:
        """Get users with hazard alerts enabled and an active location set."""
        async with self._connection.cursor() as cursor:
            await cursor.execute("""
                SELECT * FROM users
                WHERE hazards_enabled = 1 AND active_location_id IS NOT NULL
                ORDER BY id
            """)
            rows = await cursor.fetchall()
            return [self._row_to_user(row) for row in rows]

    async def update_user(self, telegram_id: int, patch: Dict[str, Any]) -> User:
        """
        Apply a partial update to user settings.

        Args:
            telegram_id: Telegram user ID
            patch: Subset of USER_PATCH_FIELDS

        Raises:
            InvalidInput: if the patch contains unknown fields
            NotFound: if the user does not exist
        """
        unknown = set(patch) - set(USER_PATCH_FIELDS)
        if unknown:
            raise InvalidInput(f"Unknown user fields: {', '.join(sorted(unknown))}")

        user = await self.find_user(telegram_id)
        if user is None:
            raise NotFound("User not found")
        if not patch:
            return user

        values = []
        for key in USER_PATCH_FIELDS:
            if key not in patch:
                continue
            value = patch[key]
            if key in ("hazards_enabled", "summary_enabled"):
                if not isinstance(value, bool):
                    raise InvalidInput(f"{key} must be a boolean")
                value = 1 if value else 0
            values.append((key, value))

        assignments = ", ".join(f"{key} = ?" for key, _ in values)
        async with self._connection.cursor() as cursor:
            await cursor.execute(
                f"UPDATE users SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE telegram_id = ?",
                tuple(v for _, v in values) + (telegram_id,)
            )
            await self._connection.commit()
        logger.info(f"Updated user telegram_id={telegram_id}: {', '.join(k for k, _ in values)}")
        return await self.find_user(telegram_id)

    def _row_to_user(self, row: aiosqlite.Row) -> User:
        """Convert a database row to a User object."""
        return User(
            id=row["id"],
            telegram_id=row["telegram_id"],
            username=row["username"],
            first_name=row["first_name"],
            language_code=row["language_code"],
            hazards_enabled=bool(row["hazards_enabled"]),
            summary_enabled=bool(row["summary_enabled"]),
            presence_mode=row["presence_mode"],
            work_start=row["work_start"],
            work_end=row["work_end"],
            active_location_id=row["active_location_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"]
        )

    # =========================================================================
    # Location operations
    # =========================================================================

    async def create_location(self, location: UserLocation) -> UserLocation:
        """Create a new location."""
        async with self._connection.cursor() as cursor:
            await cursor.execute("""
                INSERT INTO user_locations (
                    user_id, name, latitude, longitude, timezone, type, is_pending
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                location.user_id, location.name, location.latitude, location.longitude,
                location.timezone, location.type,
                1 if location.is_pending else 0
            ))
            await self._connection.commit()
            location.id = cursor.lastrowid
            logger.info(f"Created location: {location.name} (id={location.id})")
            return location

    async def get_location(self, user_id: int, location_id: int) -> Optional[UserLocation]:
        """Get a location owned by a user."""
        async with self._connection.cursor() as cursor:
            await cursor.execute(
                "SELECT * FROM user_locations WHERE id = ? AND user_id = ?",
                (location_id, user_id)
            )
            row = await cursor.fetchone()
            if row:
                return self._row_to_location(row)
            return None

    async def list_locations(self, user_id: int) -> List[UserLocation]:
        """Get confirmed locations of a user, most recently updated first."""
        async with self._connection.cursor() as cursor:
            await cursor.execute("""
                SELECT * FROM user_locations
                WHERE user_id = ? AND is_pending = 0
                ORDER BY updated_at DESC, id DESC
            """, (user_id,))
            rows = await cursor.fetchall()
            return [self._row_to_location(row) for row in rows]

    async def get_active_location(self, user_id: int) -> Optional[UserLocation]:
        """
        Get the user's active location.

        Returns None if no active location is set or the record is gone.
        The returned location may still be pending; callers decide.
        """
        async with self._connection.cursor() as cursor:
            await cursor.execute("""
                SELECT l.* FROM users u
                JOIN user_locations l ON l.id = u.active_location_id AND l.user_id = u.id
                WHERE u.id = ?
            """, (user_id,))
            row = await cursor.fetchone()
            if row:
                return self._row_to_location(row)
            return None

    async def set_active_location(self, user_id: int, location_id: int) -> UserLocation:
        """
        Make a confirmed location the user's active one.

        Raises:
            NotFound: if the location is missing, pending or not owned by the user
        """
        location = await self.get_location(user_id, location_id)
        if location is None or location.is_pending:
            raise NotFound("Location not found")

        async with self._connection.cursor() as cursor:
            await cursor.execute(
                "UPDATE users SET active_location_id = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (location_id, user_id)
            )
            await cursor.execute(
                "UPDATE user_locations SET updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (location_id,)
            )
            await self._connection.commit()
        logger.info(f"User {user_id} set active location {location_id}")
        return location

    async def create_pending_current_location(
        self,
        user_id: int,
        latitude: float,
        longitude: float,
        name: str,
        timezone: str = "UTC"
    ) -> UserLocation:
        """Store a shared device location awaiting confirmation, replacing any earlier one."""
        async with self._connection.cursor() as cursor:
            await cursor.execute(
                "DELETE FROM user_locations WHERE user_id = ? AND is_pending = 1 AND type = 'current'",
                (user_id,)
            )
            await self._connection.commit()

        return await self.create_location(UserLocation(
            user_id=user_id,
            name=name,
            latitude=latitude,
            longitude=longitude,
            timezone=timezone,
            type="current",
            is_pending=True
        ))

    async def confirm_pending_location(self, user_id: int) -> UserLocation:
        """
        Confirm the latest pending current location and make it active.

        Raises:
            NotFound: if there is no pending current location
        """
        async with self._connection.cursor() as cursor:
            await cursor.execute("""
                SELECT * FROM user_locations
                WHERE user_id = ? AND is_pending = 1 AND type = 'current'
                ORDER BY created_at DESC, id DESC
                LIMIT 1
            """, (user_id,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFound("No pending current location")

            location = self._row_to_location(row)
            await cursor.execute(
                "UPDATE user_locations SET is_pending = 0, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (location.id,)
            )
            await self._connection.commit()

        location.is_pending = False
        return await self.set_active_location(user_id, location.id)

    def _row_to_location(self, row: aiosqlite.Row) -> UserLocation:
        """Convert a database row to a UserLocation object."""
        return UserLocation(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            timezone=row["timezone"] or "UTC",
            type=row["type"],
            is_pending=bool(row["is_pending"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"]
        )

    # =========================================================================
    # Plan operations
    # =========================================================================

    async def list_plans(self, user_id: int) -> List[Plan]:
        """Get all plans of a user, most recently updated first."""
        async with self._connection.cursor() as cursor:
            await cursor.execute(
                "SELECT * FROM plans WHERE user_id = ? ORDER BY updated_at DESC, id DESC",
                (user_id,)
            )
            rows = await cursor.fetchall()
            return [self._row_to_plan(row) for row in rows]

    async def list_enabled_plans(self, user_id: int) -> List[Plan]:
        """Get enabled plans of a user."""
        async with self._connection.cursor() as cursor:
            await cursor.execute(
                "SELECT * FROM plans WHERE user_id = ? AND enabled = 1 ORDER BY id",
                (user_id,)
            )
            rows = await cursor.fetchall()
            return [self._row_to_plan(row) for row in rows]

    async def get_plan(self, user_id: int, plan_id: int) -> Optional[Plan]:
        """Get a plan owned by a user."""
        async with self._connection.cursor() as cursor:
            await cursor.execute(
                "SELECT * FROM plans WHERE id = ? AND user_id = ?",
                (plan_id, user_id)
            )
            row = await cursor.fetchone()
            if row:
                return self._row_to_plan(row)
            return None

    async def create_plan(
        self,
        user_id: int,
        name: str,
        config: Dict[str, Any],
        min_window_minutes: int = 60,
        enabled: bool = True
    ) -> Plan:
        """
        Create a plan after validating its config.

        Raises:
            InvalidInput: if the name, window or config is malformed
        """
        plan = Plan(user_id=user_id, name=name, enabled=enabled, min_window_minutes=min_window_minutes)
        self._apply_plan_patch(plan, {"name": name, "min_window_minutes": min_window_minutes, "config": config})

        async with self._connection.cursor() as cursor:
            await cursor.execute("""
                INSERT INTO plans (user_id, name, enabled, min_window_minutes, config_json)
                VALUES (?, ?, ?, ?, ?)
            """, (
                plan.user_id, plan.name,
                1 if plan.enabled else 0,
                plan.min_window_minutes, plan.config_json
            ))
            await self._connection.commit()
            plan.id = cursor.lastrowid
            logger.info(f"Created plan: {plan.name} (id={plan.id}) for user {user_id}")
            return plan

    async def create_plan_from_template(
        self,
        user_id: int,
        template_id: str,
        name: Optional[str] = None
    ) -> Plan:
        """
        Create a plan from a built-in template.

        Raises:
            InvalidInput: if the template is unknown
        """
        template = get_template(template_id)
        if template is None:
            raise InvalidInput(f"Unknown templateId: {template_id}")
        return await self.create_plan(
            user_id,
            name or template.name,
            template.to_dict()["defaultConfigJson"],
            min_window_minutes=template.min_window_minutes
        )

    async def patch_plan(self, user_id: int, plan_id: int, patch: Dict[str, Any]) -> Plan:
        """
        Apply a partial update to a plan. Nothing is written unless the whole patch is valid.

        Raises:
            NotFound: if the plan does not exist or is not owned by the user
            InvalidInput: if any patched field is malformed
        """
        plan = await self.get_plan(user_id, plan_id)
        if plan is None:
            raise NotFound("Plan not found")

        self._apply_plan_patch(plan, patch)

        async with self._connection.cursor() as cursor:
            await cursor.execute("""
                UPDATE plans SET
                    name = ?, enabled = ?, min_window_minutes = ?, config_json = ?,
                    updated_at = CURRENT_TIMESTAMP
                WHERE id = ? AND user_id = ?
            """, (
                plan.name, 1 if plan.enabled else 0,
                plan.min_window_minutes, plan.config_json,
                plan_id, user_id
            ))
            await self._connection.commit()
        logger.info(f"Updated plan id={plan_id}: {', '.join(sorted(patch))}")
        return plan

    async def delete_plan(self, user_id: int, plan_id: int) -> None:
        """
        Delete a plan.

        Raises:
            NotFound: if the plan does not exist or is not owned by the user
        """
        async with self._connection.cursor() as cursor:
            await cursor.execute(
                "DELETE FROM plans WHERE id = ? AND user_id = ?",
                (plan_id, user_id)
            )
            deleted = cursor.rowcount
            await self._connection.commit()
        if not deleted:
            raise NotFound("Plan not found")
        logger.info(f"Deleted plan id={plan_id}")

    @staticmethod
    def _apply_plan_patch(plan: Plan, patch: Dict[str, Any]) -> None:
        """Validate a patch completely, then apply it to the in-memory plan."""
        unknown = set(patch) - set(PLAN_PATCH_FIELDS)
        if unknown:
            raise InvalidInput(f"Unknown plan fields: {', '.join(sorted(unknown))}")

        if "name" in patch and (not isinstance(patch["name"], str) or not patch["name"].strip()):
            raise InvalidInput("Plan name must be a non-empty string")
        if "enabled" in patch and not isinstance(patch["enabled"], bool):
            raise InvalidInput("enabled must be a boolean")
        if "min_window_minutes" in patch:
            value = patch["min_window_minutes"]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidInput("min_window_minutes must be a non-negative integer")
        if "config" in patch:
            parse_config(patch["config"])

        if "name" in patch:
            plan.name = patch["name"].strip()
        if "enabled" in patch:
            plan.enabled = patch["enabled"]
        if "min_window_minutes" in patch:
            plan.min_window_minutes = patch["min_window_minutes"]
        if "config" in patch:
            plan.config = patch["config"]

    def _row_to_plan(self, row: aiosqlite.Row) -> Plan:
        """Convert a database row to a Plan object."""
        return Plan(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            enabled=bool(row["enabled"]),
            min_window_minutes=row["min_window_minutes"],
            config_json=row["config_json"] or '{"modules": []}',
            created_at=row["created_at"],
            updated_at=row["updated_at"]
        )

    # =========================================================================
    # Alert event operations
    # =========================================================================

    async def upsert_alert_event(self, event: AlertEvent) -> bool:
        """
        Record an alert event unless its dedupe key already exists.

        Returns:
            True if the event was created, False if the key was already recorded
        """
        async with self._connection.cursor() as cursor:
            await cursor.execute("""
                INSERT OR IGNORE INTO alert_events (
                    user_id, location_id, kind, subtype, severity, dedupe_key, payload_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                event.user_id, event.location_id, event.kind,
                event.subtype, event.severity, event.dedupe_key, event.payload_json
            ))
            created = cursor.rowcount == 1
            await self._connection.commit()
            if created:
                event.id = cursor.lastrowid
            return created

    async def get_alert_events(self, user_id: int, limit: int = 50) -> List[AlertEvent]:
        """Get recent alert events of a user."""
        async with self._connection.cursor() as cursor:
            await cursor.execute(
                """SELECT * FROM alert_events
                   WHERE user_id = ?
                   ORDER BY created_at DESC, id DESC
                   LIMIT ?""",
                (user_id, limit)
            )
            rows = await cursor.fetchall()
            return [self._row_to_alert_event(row) for row in rows]

    async def count_alert_events(self) -> int:
        """Count all recorded alert events."""
        async with self._connection.cursor() as cursor:
            await cursor.execute("SELECT COUNT(*) FROM alert_events")
            row = await cursor.fetchone()
            return row[0]

    def _row_to_alert_event(self, row: aiosqlite.Row) -> AlertEvent:
        """Convert a database row to an AlertEvent object."""
        return AlertEvent(
            id=row["id"],
            user_id=row["user_id"],
            location_id=row["location_id"],
            kind=row["kind"],
            subtype=row["subtype"],
            severity=row["severity"],
            dedupe_key=row["dedupe_key"],
            payload_json=row["payload_json"] or "{}",
            created_at=row["created_at"]
        )

    # =========================================================================
    # Bot config operations
    # =========================================================================

    async def get_bot_config(self) -> Optional[str]:
        """Get the stored TOML config document."""
        async with self._connection.cursor() as cursor:
            await cursor.execute("SELECT config_toml FROM bot_config WHERE id = 1")
            row = await cursor.fetchone()
            return row["config_toml"] if row else None

    async def set_bot_config(self, config_toml: str) -> None:
        """Store the TOML config document."""
        async with self._connection.cursor() as cursor:
            await cursor.execute("""
                INSERT INTO bot_config (id, config_toml) VALUES (1, ?)
                ON CONFLICT(id) DO UPDATE SET
                    config_toml = excluded.config_toml,
                    updated_at = CURRENT_TIMESTAMP
            """, (config_toml,))
            await self._connection.commit()
            logger.info("Bot config saved")

    # =========================================================================
    # Utility operations
    # =========================================================================

    async def cleanup_old_alert_events(self, days_to_keep: int = 30) -> int:
        """Delete alert events older than specified days."""
        async with self._connection.cursor() as cursor:
            await cursor.execute(
                """DELETE FROM alert_events
                   WHERE created_at < datetime('now', ?)""",
                (f'-{days_to_keep} days',)
            )
            deleted = cursor.rowcount
            await self._connection.commit()
            if deleted > 0:
                logger.info(f"Cleaned up {deleted} alert events")
            return deleted
