"""Main entry point for the accessibility audit system."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .config.loader import load_config
from .agent.orchestrator import MultiPageOrchestrator
from .models.criteria import CriteriaSetName
from .models.page_record import DiscoveryStrategy
from .tools.classify_tool import classify_session, compliance_report


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Multi-page accessibility compliance audit"
    )
    parser.add_argument(
        "-c",
        "--config",
        default="config/config.yaml",
        help="Path to config file (YAML or JSON)",
    )
    parser.add_argument("url", nargs="?", help="Base URL to audit (overrides config base_url)")
    parser.add_argument(
        "-s",
        "--strategy",
        choices=[s.value for s in DiscoveryStrategy],
        help="Page discovery strategy",
    )
    parser.add_argument(
        "--criteria",
        choices=[c.value for c in CriteriaSetName],
        help="Criteria set used for the compliance verdict",
    )
    parser.add_argument("--max-pages", type=int, help="Maximum number of pages to audit")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args()

    # Resolve paths relative to project root
    project_root = Path(__file__).resolve().parent.parent.parent
    config_path = Path(args.config)
    if not config_path.is_absolute():
        config_path = project_root / config_path

    if not config_path.exists():
        print(f"Config not found: {config_path}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config = load_config(config_path)
    if args.url:
        config.base_url = args.url
    if args.strategy:
        config.audit.strategy = DiscoveryStrategy(args.strategy)
    if args.criteria:
        config.audit.criteria_set = CriteriaSetName(args.criteria)
    if args.max_pages:
        config.audit.crawl.max_pages = args.max_pages
    if not config.base_url:
        print("No base URL: pass one on the command line or set base_url in the config", file=sys.stderr)
        return 1

    output_path = config.output_config.output_path
    if output_path and not Path(output_path).is_absolute():
        output_path = str(project_root / output_path)

    orchestrator = MultiPageOrchestrator(config)
    session = asyncio.run(orchestrator.run())
    verdict = classify_session(session)

    print(compliance_report(session, verdict))

    if output_path:
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "session": session.model_dump(mode="json"),
            "verdict": verdict.model_dump(mode="json"),
        }
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=config.output_config.indent, ensure_ascii=False)
        print(f"Audited {session.summary.scanned_pages}/{session.summary.total_pages} pages. Results saved to {output_path}")

    return 2 if session.error else 0


if __name__ == "__main__":
    sys.exit(main())
