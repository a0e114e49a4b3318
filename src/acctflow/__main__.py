"""Allow running as `python -m acctflow`."""

from acctflow.ingestion.main import run

if __name__ == "__main__":
    run()
