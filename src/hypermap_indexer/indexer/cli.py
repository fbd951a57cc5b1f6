"""HyperMap indexer CLI (one scheduling pass per invocation)."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import signal
import threading

from hypermap_indexer.config import IndexerProfile
from hypermap_indexer.logging_utils import configure_logging

from .service import IndexerService

logger = logging.getLogger("hypermap_indexer.indexer")


def _block_arg(value: str) -> int | str:
    if value.strip().lower() == "latest":
        return "latest"
    try:
        block = int(value, 0)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid block: {value}") from exc
    if block < 0:
        raise argparse.ArgumentTypeError(f"invalid block: {value}")
    return block


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="HyperMap indexer")
    parser.add_argument("--profile", required=True, help="Path to indexer profile YAML")
    parser.add_argument("--from-block", type=_block_arg, help="Start block (defaults to saved cursor)")
    parser.add_argument("--to-block", type=_block_arg, default="latest", help="End block or 'latest'")
    parser.add_argument("--max-chunks", type=int, help="Stop after this many chunks")
    parser.add_argument("--resolve-only", action="store_true", help="Only run the full-name resolver")
    args = parser.parse_args(argv)

    profile = IndexerProfile.load(Path(args.profile))
    configure_logging(profile.wiring.log_level, list(profile.wiring.log_paths))
    cancel_event = threading.Event()
    _install_signal_handlers(cancel_event)
    service = IndexerService.build(profile, cancel_event=cancel_event)
    logger.info(
        "Indexer start profile=%s contract=%s policy_digest=%s",
        profile.wiring.profile_id,
        profile.policy.contract_address,
        profile.policy.digest()[:12],
    )

    if args.resolve_only:
        report = service.resolve_names()
        print(json.dumps(report.as_dict(), ensure_ascii=True))
        return 0

    state = service.load_state()
    from_block = args.from_block
    if from_block == "latest":
        raise SystemExit("--from-block must be a block number")
    if from_block is None:
        from_block = state.next_start_block if state is not None else profile.policy.start_block
    result = service.run_pass(from_block, args.to_block, state=state, max_chunks=args.max_chunks)
    service.save_state(result.state)
    print(json.dumps(result.as_dict(), ensure_ascii=True))
    return 1 if result.status == "error" else 0


def _install_signal_handlers(cancel_event: threading.Event) -> None:
    def _handle(signum: int, _frame: object) -> None:
        logger.info("Indexer stop requested signal=%s", signum)
        cancel_event.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


if __name__ == "__main__":
    raise SystemExit(main())
