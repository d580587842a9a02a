from __future__ import annotations

import json
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

from statusdeck.models import (
    CONDITION_THRESHOLD,
    OPERATORS,
    Card,
    Integration,
    MetricDefinition,
    NotificationHistoryEntry,
    NotificationRule,
    NotificationTemplate,
    WebhookConfig,
)
from statusdeck.store.base import SETTING_FLOOD_STATE, SETTING_STATUS_SOURCE


SCHEMA_VERSION = 2


def _utc_ts() -> float:
    return float(time.time())


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True)


def _json_loads(s: Any) -> Any:
    if s is None:
        return None
    if isinstance(s, (dict, list)):
        return s
    try:
        return json.loads(str(s))
    except ValueError:
        return None


def _connect(path: str) -> sqlite3.Connection:
    p = str(path or "").strip()
    if not p:
        raise ValueError("Missing db_path")
    Path(p).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(p, timeout=30, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    conn.execute("PRAGMA busy_timeout = 5000;")
    return conn


def _ensure_schema_conn(conn: sqlite3.Connection) -> None:
    conn.execute(
        "CREATE TABLE IF NOT EXISTS schema_meta (k TEXT PRIMARY KEY, v TEXT NOT NULL);"
    )
    row = conn.execute("SELECT v FROM schema_meta WHERE k='version'").fetchone()
    cur = int(row["v"]) if row and row["v"] else 0
    if cur >= SCHEMA_VERSION:
        return

    if cur == 0:
        _apply_v1(conn)
        _apply_v2(conn)
        conn.execute("INSERT OR REPLACE INTO schema_meta (k, v) VALUES ('version', ?)", (str(SCHEMA_VERSION),))
        return

    if cur == 1:
        _apply_v2(conn)
        conn.execute("UPDATE schema_meta SET v=? WHERE k='version'", (str(SCHEMA_VERSION),))
        return

    raise RuntimeError(f"Unsupported schema version upgrade path cur={cur} target={SCHEMA_VERSION}")


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    return any(str(r["name"]) == column for r in rows)


def _apply_v1(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS integrations (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          service_name TEXT NOT NULL,
          service_type TEXT NOT NULL,
          credentials TEXT,
          poll_interval REAL NOT NULL DEFAULT 30,
          is_active INTEGER NOT NULL DEFAULT 1,
          last_poll_at REAL,
          last_status TEXT,
          created_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS cards (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          show_status INTEGER NOT NULL DEFAULT 1,
          status_source_id INTEGER REFERENCES integrations(id) ON DELETE SET NULL,
          status_monitor_name TEXT
        );
        """
    )
    conn.execute(
        "CREATE TABLE IF NOT EXISTS settings (key TEXT PRIMARY KEY, value TEXT);"
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS metric_definitions (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          metric_key TEXT NOT NULL UNIQUE,
          display_name TEXT NOT NULL,
          integration_type TEXT,
          driver_capability TEXT,
          category TEXT NOT NULL,
          condition_type TEXT NOT NULL,
          operators_json TEXT,
          unit TEXT,
          description TEXT,
          is_active INTEGER NOT NULL DEFAULT 1,
          updated_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS webhook_configs (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          provider_type TEXT NOT NULL CHECK(provider_type IN ('discord', 'telegram', 'pushover')),
          webhook_url TEXT NOT NULL,
          is_active INTEGER NOT NULL DEFAULT 1
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS notification_rules (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          webhook_id INTEGER NOT NULL REFERENCES webhook_configs(id) ON DELETE CASCADE,
          name TEXT NOT NULL,
          condition_type TEXT NOT NULL CHECK(condition_type IN ('threshold', 'status_change', 'presence')),
          metric_type TEXT,
          metric_definition_id INTEGER REFERENCES metric_definitions(id),
          threshold_operator TEXT,
          threshold_value REAL,
          from_status TEXT,
          to_status TEXT,
          target_type TEXT NOT NULL DEFAULT 'all',
          target_id INTEGER,
          severity TEXT NOT NULL DEFAULT 'warning',
          cooldown_minutes INTEGER NOT NULL DEFAULT 30,
          is_active INTEGER NOT NULL DEFAULT 1
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_rules_active ON notification_rules(is_active, condition_type);")
    conn.execute(f"INSERT OR IGNORE INTO settings (key, value) VALUES ('{SETTING_FLOOD_STATE}', '{{}}');")


def _apply_v2(conn: sqlite3.Connection) -> None:
    # Templates, aggregation windows, delivery history and push events.
    if not _column_exists(conn, "notification_rules", "template_id"):
        conn.execute("ALTER TABLE notification_rules ADD COLUMN template_id INTEGER;")
    if not _column_exists(conn, "notification_rules", "aggregation_window"):
        conn.execute("ALTER TABLE notification_rules ADD COLUMN aggregation_window REAL;")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS notification_templates (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          name TEXT NOT NULL,
          title_template TEXT NOT NULL,
          message_template TEXT NOT NULL,
          is_default INTEGER NOT NULL DEFAULT 0,
          is_active INTEGER NOT NULL DEFAULT 1
        );
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS notification_history (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          rule_id INTEGER NOT NULL,
          webhook_id INTEGER NOT NULL,
          alert_type TEXT,
          title TEXT NOT NULL,
          message TEXT NOT NULL,
          severity TEXT NOT NULL,
          provider_type TEXT NOT NULL,
          status TEXT NOT NULL CHECK(status IN ('sent', 'failed', 'retrying')),
          attempts INTEGER NOT NULL DEFAULT 1,
          error_message TEXT,
          metadata_json TEXT,
          sent_at_ts REAL NOT NULL
        );
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_history_rule ON notification_history(rule_id, sent_at_ts);")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS unraid_events (
          id INTEGER PRIMARY KEY AUTOINCREMENT,
          event_type TEXT NOT NULL,
          subject TEXT NOT NULL,
          description TEXT NOT NULL,
          importance TEXT,
          metadata_json TEXT,
          processed INTEGER NOT NULL DEFAULT 0,
          received_at_ts REAL NOT NULL
        );
        """
    )


def _integration(row: sqlite3.Row) -> Integration:
    return Integration(
        id=int(row["id"]),
        service_name=str(row["service_name"]),
        service_type=str(row["service_type"]),
        credentials=row["credentials"],
        poll_interval=float(row["poll_interval"]),
        is_active=bool(row["is_active"]),
        last_poll_at=float(row["last_poll_at"]) if row["last_poll_at"] is not None else None,
        last_status=row["last_status"],
    )


def _card(row: sqlite3.Row) -> Card:
    return Card(
        id=int(row["id"]),
        name=str(row["name"]),
        show_status=bool(row["show_status"]),
        status_source_id=int(row["status_source_id"]) if row["status_source_id"] is not None else None,
        status_monitor_name=row["status_monitor_name"],
    )


def _definition(row: sqlite3.Row) -> MetricDefinition:
    operators = _json_loads(row["operators_json"])
    return MetricDefinition(
        id=int(row["id"]),
        metric_key=str(row["metric_key"]),
        display_name=str(row["display_name"]),
        category=str(row["category"]),
        condition_type=str(row["condition_type"]),
        integration_type=row["integration_type"],
        driver_capability=row["driver_capability"],
        operators=list(operators) if isinstance(operators, list) else list(OPERATORS),
        unit=row["unit"],
        description=row["description"] or "",
        is_active=bool(row["is_active"]),
    )


def _webhook(row: sqlite3.Row, prefix: str = "") -> WebhookConfig:
    return WebhookConfig(
        id=int(row[f"{prefix}id"]),
        name=str(row[f"{prefix}name"]),
        provider_type=str(row[f"{prefix}provider_type"]),
        webhook_url=str(row[f"{prefix}webhook_url"]),
        is_active=bool(row[f"{prefix}is_active"]),
    )


def _rule(row: sqlite3.Row) -> NotificationRule:
    def _opt_int(v: Any) -> int | None:
        return int(v) if v is not None else None

    return NotificationRule(
        id=int(row["id"]),
        webhook_id=int(row["webhook_id"]),
        name=str(row["name"]),
        condition_type=str(row["condition_type"]),
        metric_type=row["metric_type"],
        metric_definition_id=_opt_int(row["metric_definition_id"]),
        threshold_operator=row["threshold_operator"],
        threshold_value=float(row["threshold_value"]) if row["threshold_value"] is not None else None,
        from_status=row["from_status"],
        to_status=row["to_status"],
        target_type=str(row["target_type"]),
        target_id=_opt_int(row["target_id"]),
        severity=str(row["severity"]),
        cooldown_minutes=int(row["cooldown_minutes"]),
        template_id=_opt_int(row["template_id"]),
        is_active=bool(row["is_active"]),
        aggregation_window=float(row["aggregation_window"]) if row["aggregation_window"] is not None else None,
    )


def _template(row: sqlite3.Row) -> NotificationTemplate:
    return NotificationTemplate(
        id=int(row["id"]),
        name=str(row["name"]),
        title_template=str(row["title_template"]),
        message_template=str(row["message_template"]),
        is_default=bool(row["is_default"]),
        is_active=bool(row["is_active"]),
    )


_RULE_COLUMNS = (
    "r.id, r.webhook_id, r.name, r.condition_type, r.metric_type, r.metric_definition_id, "
    "r.threshold_operator, r.threshold_value, r.from_status, r.to_status, r.target_type, r.target_id, "
    "r.severity, r.cooldown_minutes, r.template_id, r.is_active, r.aggregation_window"
)


class SQLiteStore:
    """SQLite-backed implementation of :class:`statusdeck.store.base.Store`.

    Every call opens its own short-lived connection; batch writes run in a
    single ``BEGIN IMMEDIATE`` transaction.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        with self._conn() as conn:
            _ensure_schema_conn(conn)

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        conn = _connect(self.db_path)
        try:
            yield conn
        finally:
            conn.close()

    # -- integrations ------------------------------------------------------

    def add_integration(
        self,
        service_name: str,
        service_type: str,
        credentials: str | None = None,
        poll_interval: float = 30.0,
        is_active: bool = True,
    ) -> Integration:
        with self._conn() as conn:
            cur = conn.execute(
                """
                INSERT INTO integrations (service_name, service_type, credentials, poll_interval, is_active, created_at_ts)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (service_name.strip(), service_type, credentials, float(poll_interval), 1 if is_active else 0, _utc_ts()),
            )
            integration_id = int(cur.lastrowid)
        return Integration(
            id=integration_id,
            service_name=service_name.strip(),
            service_type=service_type,
            credentials=credentials,
            poll_interval=float(poll_interval),
            is_active=is_active,
        )

    def get_integration(self, integration_id: int) -> Integration | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM integrations WHERE id=?", (int(integration_id),)).fetchone()
        return _integration(row) if row else None

    def list_integrations(
        self, *, active_only: bool = True, types: Iterable[str] | None = None
    ) -> list[Integration]:
        sql = "SELECT * FROM integrations"
        clauses: list[str] = []
        params: list[Any] = []
        if active_only:
            clauses.append("is_active=1")
        if types is not None:
            wanted = list(types)
            if not wanted:
                return []
            clauses.append(f"service_type IN ({', '.join('?' for _ in wanted)})")
            params.extend(wanted)
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY id ASC"
        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_integration(r) for r in rows]

    def record_poll(self, integration_id: int, status: str, polled_at: float | None = None) -> None:
        with self._conn() as conn:
            conn.execute(
                "UPDATE integrations SET last_poll_at=?, last_status=? WHERE id=?",
                (float(polled_at if polled_at is not None else _utc_ts()), status, int(integration_id)),
            )

    def delete_integration(self, integration_id: int) -> bool:
        with self._conn() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                cur = conn.execute("DELETE FROM integrations WHERE id=?", (int(integration_id),))
                deleted = cur.rowcount > 0
                if deleted:
                    conn.execute(
                        "DELETE FROM settings WHERE key=? AND value=?",
                        (SETTING_STATUS_SOURCE, str(int(integration_id))),
                    )
                conn.execute("COMMIT;")
            except Exception:
                conn.execute("ROLLBACK;")
                raise
        return deleted

    # -- cards ---------------------------------------------------------------

    def add_card(
        self,
        name: str,
        show_status: bool = True,
        status_source_id: int | None = None,
        status_monitor_name: str | None = None,
    ) -> Card:
        with self._conn() as conn:
            cur = conn.execute(
                "INSERT INTO cards (name, show_status, status_source_id, status_monitor_name) VALUES (?, ?, ?, ?)",
                (name, 1 if show_status else 0, status_source_id, status_monitor_name),
            )
            card_id = int(cur.lastrowid)
        return Card(
            id=card_id,
            name=name,
            show_status=show_status,
            status_source_id=status_source_id,
            status_monitor_name=status_monitor_name,
        )

    def get_card(self, card_id: int) -> Card | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM cards WHERE id=?", (int(card_id),)).fetchone()
        return _card(row) if row else None

    def list_status_cards(self) -> list[Card]:
        with self._conn() as conn:
            rows = conn.execute("SELECT * FROM cards WHERE show_status=1 ORDER BY id ASC").fetchall()
        return [_card(r) for r in rows]

    def get_card_name(self, card_id: int) -> str | None:
        with self._conn() as conn:
            row = conn.execute("SELECT name FROM cards WHERE id=?", (int(card_id),)).fetchone()
        return str(row["name"]) if row else None

    def save_status_mappings(self, mappings: Iterable[tuple[int, int | None, str | None]]) -> int:
        """Save many (card_id, source_id, monitor_name) bindings atomically."""
        items = list(mappings)
        with self._conn() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                for card_id, source_id, monitor_name in items:
                    conn.execute(
                        "UPDATE cards SET status_source_id=?, status_monitor_name=? WHERE id=?",
                        (source_id, (monitor_name or "").strip() or None, int(card_id)),
                    )
                conn.execute("COMMIT;")
            except Exception:
                conn.execute("ROLLBACK;")
                raise
        return len(items)

    # -- settings ------------------------------------------------------------

    def get_setting(self, key: str, default: str | None = None) -> str | None:
        with self._conn() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
        if row is None or row["value"] is None:
            return default
        return str(row["value"])

    def set_setting(self, key: str, value: str) -> None:
        with self._conn() as conn:
            conn.execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value))

    # -- metric definitions --------------------------------------------------

    def upsert_metric_definition(self, definition: MetricDefinition) -> int:
        with self._conn() as conn:
            conn.execute(
                """
                INSERT INTO metric_definitions (
                  metric_key, display_name, integration_type, driver_capability, category,
                  condition_type, operators_json, unit, description, is_active, updated_at_ts
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(metric_key) DO UPDATE SET
                  display_name=excluded.display_name,
                  integration_type=excluded.integration_type,
                  driver_capability=excluded.driver_capability,
                  category=excluded.category,
                  condition_type=excluded.condition_type,
                  operators_json=excluded.operators_json,
                  unit=excluded.unit,
                  description=excluded.description,
                  updated_at_ts=excluded.updated_at_ts
                """,
                (
                    definition.metric_key,
                    definition.display_name,
                    definition.integration_type,
                    definition.driver_capability,
                    definition.category,
                    definition.condition_type,
                    _json_dumps(list(definition.operators)),
                    definition.unit,
                    definition.description,
                    1 if definition.is_active else 0,
                    _utc_ts(),
                ),
            )
            row = conn.execute(
                "SELECT id FROM metric_definitions WHERE metric_key=?", (definition.metric_key,)
            ).fetchone()
        return int(row["id"])

    def get_metric_definition(self, definition_id: int) -> MetricDefinition | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM metric_definitions WHERE id=?", (int(definition_id),)).fetchone()
        return _definition(row) if row else None

    def get_metric_definition_by_key(self, metric_key: str) -> MetricDefinition | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM metric_definitions WHERE metric_key=?", (metric_key,)).fetchone()
        return _definition(row) if row else None

    def list_metric_definitions(self, integration_type: str | None = None) -> list[MetricDefinition]:
        with self._conn() as conn:
            if integration_type is None:
                rows = conn.execute(
                    "SELECT * FROM metric_definitions WHERE is_active=1 ORDER BY category, display_name"
                ).fetchall()
            else:
                rows = conn.execute(
                    """
                    SELECT * FROM metric_definitions
                    WHERE is_active=1 AND (integration_type=? OR integration_type IS NULL)
                    ORDER BY category, display_name
                    """,
                    (integration_type,),
                ).fetchall()
        return [_definition(r) for r in rows]

    # -- webhooks ------------------------------------------------------------

    def add_webhook(
        self, name: str, provider_type: str, webhook_url: str, is_active: bool = True
    ) -> WebhookConfig:
        with self._conn() as conn:
            cur = conn.execute(
                "INSERT INTO webhook_configs (name, provider_type, webhook_url, is_active) VALUES (?, ?, ?, ?)",
                (name, provider_type, webhook_url, 1 if is_active else 0),
            )
            webhook_id = int(cur.lastrowid)
        return WebhookConfig(
            id=webhook_id, name=name, provider_type=provider_type, webhook_url=webhook_url, is_active=is_active
        )

    def get_webhook(self, webhook_id: int) -> WebhookConfig | None:
        with self._conn() as conn:
            row = conn.execute("SELECT * FROM webhook_configs WHERE id=?", (int(webhook_id),)).fetchone()
        return _webhook(row) if row else None

    # -- rules ---------------------------------------------------------------

    def add_rule(self, rule: NotificationRule) -> NotificationRule:
        rule.validate()
        if rule.condition_type == CONDITION_THRESHOLD and rule.metric_definition_id is not None:
            if self.get_metric_definition(rule.metric_definition_id) is None:
                raise ValueError(f"Unknown metric definition: {rule.metric_definition_id}")
        with self._conn() as conn:
            cur = conn.execute(
                """
                INSERT INTO notification_rules (
                  webhook_id, name, condition_type, metric_type, metric_definition_id,
                  threshold_operator, threshold_value, from_status, to_status, target_type, target_id,
                  severity, cooldown_minutes, template_id, is_active, aggregation_window
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(rule.webhook_id),
                    rule.name,
                    rule.condition_type,
                    rule.metric_type,
                    rule.metric_definition_id,
                    rule.threshold_operator,
                    rule.threshold_value,
                    rule.from_status,
                    rule.to_status,
                    rule.target_type,
                    rule.target_id,
                    rule.severity,
                    int(rule.cooldown_minutes),
                    rule.template_id,
                    1 if rule.is_active else 0,
                    rule.aggregation_window,
                ),
            )
            rule.id = int(cur.lastrowid)
        return rule

    def get_rule(self, rule_id: int) -> NotificationRule | None:
        with self._conn() as conn:
            row = conn.execute(
                f"SELECT {_RULE_COLUMNS} FROM notification_rules r WHERE r.id=?", (int(rule_id),)
            ).fetchone()
        return _rule(row) if row else None

    def list_active_rules(self, condition_type: str | None = None) -> list[NotificationRule]:
        """Active rules whose webhook is also active."""
        sql = (
            f"SELECT {_RULE_COLUMNS} FROM notification_rules r "
            "JOIN webhook_configs w ON w.id = r.webhook_id "
            "WHERE r.is_active=1 AND w.is_active=1"
        )
        params: tuple[Any, ...] = ()
        if condition_type is not None:
            sql += " AND r.condition_type=?"
            params = (condition_type,)
        sql += " ORDER BY r.id ASC"
        with self._conn() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_rule(r) for r in rows]

    def get_active_rule_with_webhook(self, rule_id: int) -> tuple[NotificationRule, WebhookConfig] | None:
        with self._conn() as conn:
            row = conn.execute(
                f"""
                SELECT {_RULE_COLUMNS},
                  w.id AS w_id, w.name AS w_name, w.provider_type AS w_provider_type,
                  w.webhook_url AS w_webhook_url, w.is_active AS w_is_active
                FROM notification_rules r
                JOIN webhook_configs w ON w.id = r.webhook_id
                WHERE r.id=? AND r.is_active=1 AND w.is_active=1
                """,
                (int(rule_id),),
            ).fetchone()
        if row is None:
            return None
        return _rule(row), _webhook(row, prefix="w_")

    # -- templates -----------------------------------------------------------

    def add_template(self, template: NotificationTemplate) -> NotificationTemplate:
        with self._conn() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                if template.is_default:
                    conn.execute("UPDATE notification_templates SET is_default=0 WHERE is_default=1")
                cur = conn.execute(
                    """
                    INSERT INTO notification_templates (name, title_template, message_template, is_default, is_active)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        template.name,
                        template.title_template,
                        template.message_template,
                        1 if template.is_default else 0,
                        1 if template.is_active else 0,
                    ),
                )
                conn.execute("COMMIT;")
            except Exception:
                conn.execute("ROLLBACK;")
                raise
        template.id = int(cur.lastrowid)
        return template

    def get_template(self, template_id: int) -> NotificationTemplate | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM notification_templates WHERE id=? AND is_active=1", (int(template_id),)
            ).fetchone()
        return _template(row) if row else None

    def get_default_template(self) -> NotificationTemplate | None:
        with self._conn() as conn:
            row = conn.execute(
                "SELECT * FROM notification_templates WHERE is_default=1 AND is_active=1 ORDER BY id DESC LIMIT 1"
            ).fetchone()
        return _template(row) if row else None

    # -- history -------------------------------------------------------------

    def add_history(self, entry: NotificationHistoryEntry) -> int:
        sent_at = entry.sent_at if entry.sent_at is not None else _utc_ts()
        with self._conn() as conn:
            cur = conn.execute(
                """
                INSERT INTO notification_history (
                  rule_id, webhook_id, alert_type, title, message, severity, provider_type,
                  status, attempts, error_message, metadata_json, sent_at_ts
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    int(entry.rule_id),
                    int(entry.webhook_id),
                    entry.alert_type,
                    entry.title,
                    entry.message,
                    entry.severity,
                    entry.provider_type,
                    entry.status,
                    int(entry.attempts),
                    entry.error_message,
                    _json_dumps(entry.metadata or {}),
                    float(sent_at),
                ),
            )
            entry.id = int(cur.lastrowid)
            entry.sent_at = float(sent_at)
        return entry.id

    def list_history(self, rule_id: int | None = None, limit: int = 100) -> list[NotificationHistoryEntry]:
        lim = max(1, min(1000, int(limit)))
        with self._conn() as conn:
            if rule_id is None:
                rows = conn.execute(
                    "SELECT * FROM notification_history ORDER BY sent_at_ts DESC, id DESC LIMIT ?", (lim,)
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM notification_history WHERE rule_id=? ORDER BY sent_at_ts DESC, id DESC LIMIT ?",
                    (int(rule_id), lim),
                ).fetchall()
        out: list[NotificationHistoryEntry] = []
        for r in rows:
            metadata = _json_loads(r["metadata_json"])
            out.append(
                NotificationHistoryEntry(
                    id=int(r["id"]),
                    rule_id=int(r["rule_id"]),
                    webhook_id=int(r["webhook_id"]),
                    alert_type=r["alert_type"],
                    title=str(r["title"]),
                    message=str(r["message"]),
                    severity=str(r["severity"]),
                    provider_type=str(r["provider_type"]),
                    status=str(r["status"]),
                    attempts=int(r["attempts"]),
                    error_message=r["error_message"],
                    metadata=metadata if isinstance(metadata, dict) else {},
                    sent_at=float(r["sent_at_ts"]),
                )
            )
        return out

    # -- unraid push events --------------------------------------------------

    def add_unraid_event(
        self,
        event_type: str,
        subject: str,
        description: str,
        importance: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        with self._conn() as conn:
            cur = conn.execute(
                """
                INSERT INTO unraid_events (event_type, subject, description, importance, metadata_json, received_at_ts)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (event_type, subject, description, importance, _json_dumps(metadata or {}), _utc_ts()),
            )
            return int(cur.lastrowid)

    def mark_unraid_event_processed(self, event_id: int) -> None:
        with self._conn() as conn:
            conn.execute("UPDATE unraid_events SET processed=1 WHERE id=?", (int(event_id),))

    def list_unraid_events(self, limit: int = 50) -> list[dict[str, Any]]:
        lim = max(1, min(500, int(limit)))
        with self._conn() as conn:
            rows = conn.execute(
                "SELECT * FROM unraid_events ORDER BY received_at_ts DESC, id DESC LIMIT ?", (lim,)
            ).fetchall()
        return [
            {
                "id": int(r["id"]),
                "event_type": str(r["event_type"]),
                "subject": str(r["subject"]),
                "description": str(r["description"]),
                "importance": r["importance"],
                "metadata": _json_loads(r["metadata_json"]) or {},
                "processed": bool(r["processed"]),
                "received_at_ts": float(r["received_at_ts"]),
            }
            for r in rows
        ]
