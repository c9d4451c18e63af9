from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from market_pipeline.config.settings import get_settings
from market_pipeline.errors import PipelineError
from market_pipeline.services.collection import build_collection_loop


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run one market-data enrichment cycle.")
    parser.add_argument("mode", choices=["on-demand", "nightly"])
    parser.add_argument("--duration-sec", type=float, default=None, help="nightly duty cycle length")
    args = parser.parse_args(argv)

    loop = build_collection_loop(get_settings())
    try:
        if args.mode == "nightly":
            report = loop.run_nightly(duration_sec=args.duration_sec)
        else:
            report = loop.run_on_demand()
    except PipelineError as exc:
        print(json.dumps({"error": str(exc)}, ensure_ascii=False), flush=True)
        return 1

    print(json.dumps(report.model_dump(), ensure_ascii=False, indent=2), flush=True)
    return 0 if report.status == "ok" else 1


if __name__ == "__main__":
    sys.exit(main())
