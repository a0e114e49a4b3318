"""ClickHouse schema for classified flows.

One detail row per classified flow, plus daily, hourly and minutely
rollups maintained by AggregatingMergeTree materialized views. Query the
rollups with sumMerge(bytes).
"""

from collections.abc import Mapping
from typing import Any

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table

from acctflow.classification.constants import DIRECTION_CODES, TRAFFIC_CLASS_CODES


def enum8(codes: Mapping[Any, int]) -> str:
    """Render a ClickHouse Enum8 type from label codes."""
    members = ", ".join(f"'{label.value}' = {code}" for label, code in codes.items())
    return f"Enum8({members})"


DIRECTION_ENUM = enum8(DIRECTION_CODES)
CLASS_ENUM = enum8(TRAFFIC_CLASS_CODES)

DETAILS_TABLE = "details"

ROLLUPS: dict[str, tuple[str, str]] = {
    # view name -> (bucket column type, bucket expression)
    "daily": ("Date", "toDate(collected)"),
    "hourly": ("DateTime", "toStartOfHour(collected)"),
    "minutely": ("DateTime", "toStartOfMinute(collected)"),
}

DETAILS_DDL = f"""
CREATE TABLE IF NOT EXISTS {DETAILS_TABLE}
(
    collected DateTime,
    user_id String,
    dir {DIRECTION_ENUM},
    class {CLASS_ENUM},
    src_ip UInt32,
    src_port UInt16,
    dst_ip UInt32,
    dst_port UInt16,
    packets UInt64,
    bytes UInt64,
    proto UInt8
)
ENGINE = MergeTree
PARTITION BY toYYYYMMDD(collected)
ORDER BY (collected, user_id, dir, class, src_ip, dst_ip, proto)
SETTINGS index_granularity = 8192
"""


def rollup_ddl(name: str, bucket_type: str, bucket_expr: str) -> str:
    """Build the DDL of one rollup materialized view."""
    return f"""
CREATE MATERIALIZED VIEW IF NOT EXISTS {name}
(
    date {bucket_type},
    user_id String,
    class {CLASS_ENUM},
    dir {DIRECTION_ENUM},
    bytes AggregateFunction(sum, UInt64)
)
ENGINE = AggregatingMergeTree()
PARTITION BY toYYYYMM(date)
ORDER BY (date, user_id, class, dir)
SETTINGS index_granularity = 8192 AS
SELECT
    {bucket_expr} AS date,
    user_id,
    class,
    dir,
    sumState(bytes) AS bytes
FROM {DETAILS_TABLE}
GROUP BY
    {bucket_expr},
    user_id,
    class,
    dir
"""


# The detail table must exist before the views that select from it
SCHEMA_DDL: list[str] = [DETAILS_DDL] + [
    rollup_ddl(name, bucket_type, bucket_expr)
    for name, (bucket_type, bucket_expr) in ROLLUPS.items()
]

metadata = MetaData()

# Column layout used for inserts; the DDL above is authoritative for types
details = Table(
    DETAILS_TABLE,
    metadata,
    Column("collected", DateTime),
    Column("user_id", String),
    Column("dir", String),
    Column("class", String),
    Column("src_ip", Integer),
    Column("src_port", Integer),
    Column("dst_ip", Integer),
    Column("dst_port", Integer),
    Column("packets", Integer),
    Column("bytes", Integer),
    Column("proto", Integer),
)
