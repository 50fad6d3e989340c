"""
Dump alerts to CSV for offline review.

Run:
    python -m guardiao.export_alerts --status all --severity high --output alerts.csv
"""

import argparse
import logging
import sys
from typing import List, Optional

from guardiao.alerts import export_alerts_csv
from guardiao.config import Settings
from guardiao.db import Store

logger = logging.getLogger("export_alerts")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Export Guardião alerts as CSV")
    parser.add_argument("--database-url", help="SQLAlchemy URL (default: from environment)")
    parser.add_argument("--status", default="all", choices=["new", "ack", "all"])
    parser.add_argument("--severity", choices=["low", "medium", "high"])
    parser.add_argument("-q", "--query", help="substring to match in description or URL")
    parser.add_argument("-o", "--output", help="output file (default: stdout)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    database_url = args.database_url or Settings.from_env().database_url
    store = Store(database_url)
    store.init_db()

    data = export_alerts_csv(store, status=args.status, severity=args.severity, q=args.query)
    if args.output:
        with open(args.output, "w", encoding="utf-8", newline="") as fh:
            fh.write(data)
        logger.info("Wrote alerts to %s", args.output)
    else:
        sys.stdout.write(data)
    return 0


if __name__ == "__main__":
    sys.exit(main())
