from __future__ import annotations

import argparse
import json
from typing import Any, Dict, List, Type

from .models.account import Account
from .models.base import DBSerializableModel
from .models.ledger import LedgerEntry
from .models.notification import Notification
from .models.offer import ServiceOffer
from .models.payment import PaymentSubmission
from .models.project import UploadedProject
from .models.transaction import LedgerTransaction


MODEL_REGISTRY: List[Type[DBSerializableModel]] = [
    Account,
    LedgerTransaction,
    ServiceOffer,
    UploadedProject,
    PaymentSubmission,
    Notification,
    LedgerEntry,
]

# Balance floor and foreign keys a relational deployment should enforce
_SQL_CONSTRAINTS: Dict[str, List[str]] = {
    "accounts": ['CHECK ("balance" >= 0)'],
    "ledger_transactions": [
        'FOREIGN KEY ("account_id") REFERENCES "accounts" ("id")',
        'CHECK ("amount" <> 0)',
    ],
    "projects": ['FOREIGN KEY ("owner_id") REFERENCES "accounts" ("id")'],
    "payment_submissions": [
        'FOREIGN KEY ("account_id") REFERENCES "accounts" ("id")',
        "CHECK (\"verification_status\" IN ('unverified', 'verified', 'rejected'))",
    ],
    "notifications": ['UNIQUE ("dedupe_key")'],
}


def generate_logical_schema() -> Dict[str, Any]:
    """
    Generate a backend-agnostic logical schema for all registered models.
    This is the single source of truth; SQL/NoSQL specific renderers convert it.
    """
    return {model.collection_name: model.db_schema() for model in MODEL_REGISTRY}


def render_sql_ddl(schema: Dict[str, Any], dialect: str = "postgres") -> str:
    """
    Small SQL DDL renderer. For production you would typically
    plug this into Alembic or another migration tool.
    """
    lines: List[str] = []
    for table_name, spec in schema.items():
        props = spec["properties"]
        pk = spec.get("primary_key") or "id"
        columns: List[str] = []
        for field_name, meta in props.items():
            sql_type = _map_logical_to_sql(meta["type"], dialect=dialect)
            nullable = "NOT NULL" if field_name in spec.get("required", []) or not meta["nullable"] else "NULL"
            if field_name == pk:
                nullable = "NOT NULL"
            columns.append(f'    "{field_name}" {sql_type} {nullable}')
        columns.append(f'    PRIMARY KEY ("{pk}")')
        columns.extend(f"    {c}" for c in _SQL_CONSTRAINTS.get(table_name, []))
        ddl = f'CREATE TABLE IF NOT EXISTS "{table_name}" (\n' + ",\n".join(columns) + "\n);\n"
        lines.append(ddl)
    return "\n".join(lines)


def render_nosql_schema(schema: Dict[str, Any]) -> str:
    """
    Render a JSON representation that can be used to configure validators
    for document databases like MongoDB.
    """
    return json.dumps(schema, indent=2, default=str)


def _map_logical_to_sql(logical_type: str, dialect: str) -> str:
    logical_type = logical_type.lower()
    if logical_type == "integer":
        return "BIGINT" if dialect == "postgres" else "INTEGER"
    if logical_type == "number":
        return "DOUBLE PRECISION"
    if logical_type == "boolean":
        return "BOOLEAN"
    if logical_type == "string":
        return "TEXT"
    if logical_type in {"datetime", "date"}:
        return "TIMESTAMP"
    if logical_type == "object":
        return "JSONB" if dialect == "postgres" else "TEXT"
    return "TEXT"


def main(argv: List[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="Generate DB schemas for the Spark Points ledger."
    )
    parser.add_argument(
        "--backend",
        choices=["sql", "nosql"],
        required=True,
        help="Type of schema to generate.",
    )
    parser.add_argument(
        "--dialect",
        default="postgres",
        help="SQL dialect hint (e.g. postgres, mysql).",
    )
    args = parser.parse_args(argv)

    schema = generate_logical_schema()

    if args.backend == "sql":
        print(render_sql_ddl(schema, dialect=args.dialect))
    else:
        print(render_nosql_schema(schema))


if __name__ == "__main__":
    main()
