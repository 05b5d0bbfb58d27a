from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite
import structlog

from ..models import (
    Comod,
    Cooldown,
    Delegate,
    LogPage,
    ModeratedChannel,
    ModerationAction,
    ModerationLog,
    ModerationStats,
    Role,
)
from ..rules.config import cast_rule_sets_to_list, parse_cast_rule_sets, parse_rule_group, rule_group_to_dict
from .base import StorageGateway

logger = structlog.get_logger(__name__)

MAX_PAGE_SIZE = 100

CREATE_CHANNELS = """
CREATE TABLE IF NOT EXISTS moderated_channels (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    disable_banned_list INTEGER NOT NULL DEFAULT 0,
    member_rule_set_json TEXT,
    cast_rule_sets_json TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
)
"""

CREATE_COMODS = """
CREATE TABLE IF NOT EXISTS comods (
    channel_id TEXT NOT NULL REFERENCES moderated_channels(id) ON DELETE CASCADE,
    fid TEXT NOT NULL,
    username TEXT NOT NULL,
    avatar_url TEXT,
    PRIMARY KEY (channel_id, fid)
)
"""

CREATE_ROLES = """
CREATE TABLE IF NOT EXISTS roles (
    id TEXT PRIMARY KEY,
    channel_id TEXT NOT NULL REFERENCES moderated_channels(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    permissions_json TEXT NOT NULL DEFAULT '[]',
    is_cohost_role INTEGER NOT NULL DEFAULT 0
)
"""

CREATE_DELEGATES = """
CREATE TABLE IF NOT EXISTS delegates (
    channel_id TEXT NOT NULL REFERENCES moderated_channels(id) ON DELETE CASCADE,
    role_id TEXT NOT NULL REFERENCES roles(id) ON DELETE CASCADE,
    fid TEXT NOT NULL,
    username TEXT NOT NULL,
    avatar_url TEXT,
    PRIMARY KEY (channel_id, role_id, fid)
)
"""

CREATE_COOLDOWNS = """
CREATE TABLE IF NOT EXISTS cooldowns (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    affected_user_id TEXT NOT NULL,
    channel_id TEXT NOT NULL REFERENCES moderated_channels(id) ON DELETE CASCADE,
    active INTEGER NOT NULL DEFAULT 1,
    expires_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (affected_user_id, channel_id)
)
"""

CREATE_LOGS = """
CREATE TABLE IF NOT EXISTS moderation_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    channel_id TEXT NOT NULL REFERENCES moderated_channels(id) ON DELETE CASCADE,
    action TEXT NOT NULL,
    actor TEXT NOT NULL,
    reason TEXT NOT NULL,
    affected_user_fid TEXT NOT NULL,
    affected_username TEXT NOT NULL,
    affected_user_avatar_url TEXT,
    cast_hash TEXT,
    created_at TEXT NOT NULL
)
"""

CREATE_LOGS_INDEX = """
CREATE INDEX IF NOT EXISTS moderation_logs_channel_created
ON moderation_logs (channel_id, created_at DESC, id DESC)
"""

CREATE_BANNED = """
CREATE TABLE IF NOT EXISTS banned_users (
    fid TEXT PRIMARY KEY,
    reason TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
)
"""


def _dump_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _load_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _cooldown(row: aiosqlite.Row) -> Cooldown:
    return Cooldown(
        affected_user_id=row["affected_user_id"],
        channel_id=row["channel_id"],
        active=bool(row["active"]),
        expires_at=_load_time(row["expires_at"]),
        created_at=_load_time(row["created_at"]),
        updated_at=_load_time(row["updated_at"]),
    )


def _log(row: aiosqlite.Row) -> ModerationLog:
    return ModerationLog(
        id=row["id"],
        channel_id=row["channel_id"],
        action=ModerationAction(row["action"]),
        actor=row["actor"],
        reason=row["reason"],
        affected_user_fid=row["affected_user_fid"],
        affected_username=row["affected_username"],
        affected_user_avatar_url=row["affected_user_avatar_url"],
        cast_hash=row["cast_hash"],
        created_at=_load_time(row["created_at"]),
    )


class SQLiteStorage(StorageGateway):
    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        self._conn = await aiosqlite.connect(self._path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        for statement in (
            CREATE_CHANNELS,
            CREATE_COMODS,
            CREATE_ROLES,
            CREATE_DELEGATES,
            CREATE_COOLDOWNS,
            CREATE_LOGS,
            CREATE_LOGS_INDEX,
            CREATE_BANNED,
        ):
            await self._conn.execute(statement)
        await self._conn.commit()
        logger.info("sqlite_connected", path=str(self._path))

    async def disconnect(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialize writers on the shared connection; commit all statements or none."""
        assert self._conn
        async with self._write_lock:
            try:
                yield self._conn
            except BaseException:
                await self._conn.rollback()
                raise
            await self._conn.commit()

    # channels

    async def save_channel(self, channel: ModeratedChannel) -> None:
        now = _dump_time(_now())
        member_rule_set = (
            json.dumps(rule_group_to_dict(channel.member_rule_set)) if channel.member_rule_set else None
        )
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO moderated_channels (
                    id, user_id, disable_banned_list, member_rule_set_json,
                    cast_rule_sets_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    user_id=excluded.user_id,
                    disable_banned_list=excluded.disable_banned_list,
                    member_rule_set_json=excluded.member_rule_set_json,
                    cast_rule_sets_json=excluded.cast_rule_sets_json,
                    updated_at=excluded.updated_at
                """,
                (
                    channel.id,
                    channel.user_id,
                    int(channel.disable_banned_list),
                    member_rule_set,
                    json.dumps(cast_rule_sets_to_list(channel.cast_rule_sets)),
                    now,
                    now,
                ),
            )
            await conn.execute("DELETE FROM comods WHERE channel_id = ?", (channel.id,))
            await conn.execute("DELETE FROM roles WHERE channel_id = ?", (channel.id,))
            await conn.executemany(
                "INSERT INTO comods (channel_id, fid, username, avatar_url) VALUES (?, ?, ?, ?)",
                [(channel.id, comod.fid, comod.username, comod.avatar_url) for comod in channel.comods],
            )
            for role in channel.roles:
                await conn.execute(
                    """
                    INSERT INTO roles (id, channel_id, name, permissions_json, is_cohost_role)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (role.id, channel.id, role.name, json.dumps(list(role.permissions)), int(role.is_cohost_role)),
                )
                await conn.executemany(
                    """
                    INSERT INTO delegates (channel_id, role_id, fid, username, avatar_url)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (channel.id, role.id, delegate.fid, delegate.username, delegate.avatar_url)
                        for delegate in role.delegates
                    ],
                )
        logger.info(
            "sqlite_save_channel",
            channel_id=channel.id,
            comods=len(channel.comods),
            roles=len(channel.roles),
            cast_rule_sets=len(channel.cast_rule_sets),
        )

    async def get_channel(self, channel_id: str) -> Optional[ModeratedChannel]:
        assert self._conn
        cursor = await self._conn.execute("SELECT * FROM moderated_channels WHERE id = ?", (channel_id,))
        row = await cursor.fetchone()
        await cursor.close()
        if row is None:
            return None

        cursor = await self._conn.execute(
            "SELECT * FROM comods WHERE channel_id = ? ORDER BY fid", (channel_id,)
        )
        comods = [
            Comod(fid=item["fid"], username=item["username"], avatar_url=item["avatar_url"])
            for item in await cursor.fetchall()
        ]
        await cursor.close()

        cursor = await self._conn.execute(
            "SELECT * FROM delegates WHERE channel_id = ? ORDER BY fid", (channel_id,)
        )
        delegates: dict[str, list[Delegate]] = {}
        for item in await cursor.fetchall():
            delegates.setdefault(item["role_id"], []).append(
                Delegate(
                    fid=item["fid"],
                    username=item["username"],
                    role_id=item["role_id"],
                    avatar_url=item["avatar_url"],
                )
            )
        await cursor.close()

        cursor = await self._conn.execute(
            "SELECT * FROM roles WHERE channel_id = ? ORDER BY rowid", (channel_id,)
        )
        roles = [
            Role(
                id=item["id"],
                name=item["name"],
                permissions=json.loads(item["permissions_json"]),
                is_cohost_role=bool(item["is_cohost_role"]),
                delegates=delegates.get(item["id"], []),
            )
            for item in await cursor.fetchall()
        ]
        await cursor.close()

        member_rule_set = row["member_rule_set_json"]
        return ModeratedChannel(
            id=row["id"],
            user_id=row["user_id"],
            disable_banned_list=bool(row["disable_banned_list"]),
            member_rule_set=parse_rule_group(json.loads(member_rule_set)) if member_rule_set else None,
            cast_rule_sets=parse_cast_rule_sets(json.loads(row["cast_rule_sets_json"])),
            comods=comods,
            roles=roles,
        )

    async def delete_channel(self, channel_id: str) -> bool:
        async with self._transaction() as conn:
            cursor = await conn.execute("DELETE FROM moderated_channels WHERE id = ?", (channel_id,))
            deleted = cursor.rowcount > 0
            await cursor.close()
        logger.info("sqlite_delete_channel", channel_id=channel_id, deleted=deleted)
        return deleted

    async def ban_user(self, fid: str, reason: str = "") -> None:
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO banned_users (fid, reason, created_at) VALUES (?, ?, ?)
                ON CONFLICT(fid) DO UPDATE SET reason=excluded.reason
                """,
                (fid, reason, _dump_time(_now())),
            )
        logger.info("sqlite_ban_user", fid=fid)

    async def is_banned(self, fid: str) -> bool:
        assert self._conn
        cursor = await self._conn.execute("SELECT 1 FROM banned_users WHERE fid = ?", (fid,))
        row = await cursor.fetchone()
        await cursor.close()
        return row is not None

    # cooldowns

    async def upsert_cooldown(
        self,
        affected_user_id: str,
        channel_id: str,
        expires_at: Optional[datetime],
        now: datetime,
    ) -> Cooldown:
        stamp = _dump_time(now)
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO cooldowns (
                    affected_user_id, channel_id, active, expires_at, created_at, updated_at
                ) VALUES (?, ?, 1, ?, ?, ?)
                ON CONFLICT(affected_user_id, channel_id) DO UPDATE SET
                    active=1,
                    expires_at=excluded.expires_at,
                    updated_at=excluded.updated_at
                """,
                (affected_user_id, channel_id, _dump_time(expires_at), stamp, stamp),
            )
        cooldown = await self.get_cooldown(affected_user_id, channel_id)
        assert cooldown is not None
        return cooldown

    async def deactivate_cooldown(
        self,
        affected_user_id: str,
        channel_id: str,
        now: datetime,
        *,
        mute: Optional[bool] = None,
    ) -> bool:
        query = (
            "UPDATE cooldowns SET active = 0, updated_at = ? "
            "WHERE affected_user_id = ? AND channel_id = ? AND active = 1"
        )
        if mute is True:
            query += " AND expires_at IS NULL"
        elif mute is False:
            query += " AND expires_at IS NOT NULL"
        async with self._transaction() as conn:
            cursor = await conn.execute(query, (_dump_time(now), affected_user_id, channel_id))
            changed = cursor.rowcount > 0
            await cursor.close()
        return changed

    async def get_cooldown(self, affected_user_id: str, channel_id: str) -> Optional[Cooldown]:
        assert self._conn
        cursor = await self._conn.execute(
            "SELECT * FROM cooldowns WHERE affected_user_id = ? AND channel_id = ?",
            (affected_user_id, channel_id),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return _cooldown(row) if row else None

    async def list_expired_cooldowns(self, now: datetime) -> list[Cooldown]:
        assert self._conn
        cursor = await self._conn.execute(
            """
            SELECT * FROM cooldowns
            WHERE active = 1 AND expires_at IS NOT NULL AND expires_at <= ?
            ORDER BY expires_at
            """,
            (_dump_time(now),),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [_cooldown(row) for row in rows]

    # audit log

    async def append_log(self, entry: ModerationLog) -> ModerationLog:
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                INSERT INTO moderation_logs (
                    channel_id, action, actor, reason, affected_user_fid,
                    affected_username, affected_user_avatar_url, cast_hash, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.channel_id,
                    entry.action.value,
                    entry.actor,
                    entry.reason,
                    entry.affected_user_fid,
                    entry.affected_username,
                    entry.affected_user_avatar_url,
                    entry.cast_hash,
                    _dump_time(entry.created_at),
                ),
            )
            entry.id = cursor.lastrowid
            await cursor.close()
        logger.info(
            "sqlite_append_log",
            log_id=entry.id,
            channel_id=entry.channel_id,
            action=entry.action.value,
            actor=entry.actor,
        )
        return entry

    async def list_logs(self, channel_id: str, page: int = 1, page_size: int = 50) -> LogPage:
        assert self._conn
        page = max(1, int(page))
        page_size = min(max(0, int(page_size)), MAX_PAGE_SIZE)

        cursor = await self._conn.execute(
            "SELECT COUNT(*) FROM moderation_logs WHERE channel_id = ?", (channel_id,)
        )
        (total,) = await cursor.fetchone()
        await cursor.close()

        entries: list[ModerationLog] = []
        if page_size:
            cursor = await self._conn.execute(
                """
                SELECT * FROM moderation_logs WHERE channel_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (channel_id, page_size, (page - 1) * page_size),
            )
            entries = [_log(row) for row in await cursor.fetchall()]
            await cursor.close()

        has_more = page_size > 0 and page * page_size < total
        return LogPage(
            entries=entries,
            page=page,
            page_size=page_size,
            total=total,
            next_page=page + 1 if has_more else None,
        )

    async def moderation_stats(self, channel_id: str, since: datetime) -> ModerationStats:
        assert self._conn
        cursor = await self._conn.execute(
            """
            SELECT
                COUNT(*) AS total_actions,
                COUNT(DISTINCT affected_user_fid) AS unique_users,
                COUNT(DISTINCT CASE WHEN action = ? THEN affected_user_fid END) AS unique_invited
            FROM moderation_logs
            WHERE channel_id = ? AND created_at >= ?
            """,
            (ModerationAction.INVITE.value, channel_id, _dump_time(since)),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return ModerationStats(
            since=since,
            total_actions=row["total_actions"],
            unique_users=row["unique_users"],
            unique_invited=row["unique_invited"],
        )
