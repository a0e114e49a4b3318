"""ClickHouse storage."""
