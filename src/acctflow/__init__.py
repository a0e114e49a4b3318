"""acctflow - IP accounting to ClickHouse loader.

Reads traffic accounting records produced by the ipcad daemon, classifies
each flow by direction, network class and owning user, and bulk loads the
result into ClickHouse for daily/hourly/minutely rollups.
"""

__version__ = "0.1.0"
