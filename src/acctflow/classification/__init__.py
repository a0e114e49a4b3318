"""Traffic classification by network membership."""
