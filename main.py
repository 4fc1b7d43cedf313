"""maintenance-log-aggregator: turn module logs and audit snapshots into processed JSON."""

import json
import logging
import sys

from log_aggregator.config import load_config
from log_aggregator.pipeline import run_pipeline


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [AGGREGATOR] %(levelname)s %(message)s",
        stream=sys.stderr,
    )


def main(argv=None) -> int:
    config = load_config(argv)
    setup_logging(config.log_level)

    result = run_pipeline(config)
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
