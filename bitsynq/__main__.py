"""
bitsynq.__main__ — Entry point for ``python -m bitsynq``
=========================================================

Commands::

    python -m bitsynq parse transcript.txt          # parsed JSON to stdout
    python -m bitsynq preview <project_id> --tokens 1000 --actor <user_id>
    python -m bitsynq distribute <project_id> --tokens 1000 --actor <user_id> [--on-chain]
    python -m bitsynq wallet                        # sender gas + token balance

``parse`` is pure and needs no database.  The other commands load ``.env``
for ``DATABASE_URL`` and the ``ETH_*`` settlement settings; chain settings
come from ``--config`` (``config.yaml``) when that file exists.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from bitsynq.config import BitsynqConfig, default_config, load_config
from bitsynq.database.engine import create_db_engine
from bitsynq.engine.transcript import parse_meeting_transcript
from bitsynq.services.distribution_service import distribute_tokens, preview_distribution
from bitsynq.services.errors import BitsynqError
from bitsynq.services.settlement import settlement_from_env

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("bitsynq")


def _cmd_parse(args: argparse.Namespace) -> int:
    text = Path(args.file).read_text(encoding="utf-8")
    parsed = parse_meeting_transcript(text)
    print(json.dumps(parsed.to_dict(), ensure_ascii=False, indent=2))
    return 0


def _cmd_preview(args: argparse.Namespace) -> int:
    engine = create_db_engine()
    preview = preview_distribution(
        engine,
        project_id=args.project,
        actor_id=args.actor,
        request={"total_tokens": args.tokens, "milestone_name": args.milestone},
    )
    print(json.dumps(preview, ensure_ascii=False, indent=2))
    return 0


def _load_cli_config(path: str) -> BitsynqConfig:
    if Path(path).exists():
        return load_config(path)
    logger.info("No %s found, using local-chain defaults", path)
    return default_config()


def _cmd_distribute(args: argparse.Namespace) -> int:
    cfg = _load_cli_config(args.config)
    settlement = settlement_from_env(cfg) if args.on_chain else None
    try:
        result = distribute_tokens(
            create_db_engine(),
            project_id=args.project,
            actor_id=args.actor,
            request={
                "total_tokens": args.tokens,
                "milestone_name": args.milestone,
                "on_chain": args.on_chain,
            },
            settlement=settlement,
            config=cfg,
        )
    finally:
        if settlement is not None:
            settlement.close()
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return 0


def _cmd_wallet(args: argparse.Namespace) -> int:
    settlement = settlement_from_env(_load_cli_config(args.config))
    if settlement is None:
        logger.error("Ethereum settlement is not configured (see .env.example)")
        return 1
    with settlement:
        wallet = settlement.get_sender_wallet()
    print(json.dumps(wallet, ensure_ascii=False, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bitsynq", description="Bitsynq contribution tools")
    sub = parser.add_subparsers(dest="command", required=True)

    p_parse = sub.add_parser("parse", help="Parse a meeting summary transcript")
    p_parse.add_argument("file", help="Path to the transcript text file")
    p_parse.set_defaults(func=_cmd_parse)

    p_preview = sub.add_parser("preview", help="Preview a token distribution")
    p_preview.add_argument("project", help="Project id")
    p_preview.add_argument("--tokens", type=int, required=True, help="Total tokens to allocate")
    p_preview.add_argument("--actor", required=True, help="Admin user id running the preview")
    p_preview.add_argument("--milestone", default=None, help="Optional milestone name")
    p_preview.set_defaults(func=_cmd_preview)

    p_dist = sub.add_parser("distribute", help="Distribute tokens and credit balances")
    p_dist.add_argument("project", help="Project id")
    p_dist.add_argument("--tokens", type=int, required=True, help="Total tokens to allocate")
    p_dist.add_argument("--actor", required=True, help="Admin user id running the distribution")
    p_dist.add_argument("--milestone", default=None, help="Optional milestone name")
    p_dist.add_argument("--on-chain", action="store_true", help="Settle as ERC-20 transfers")
    p_dist.add_argument("--config", default="config.yaml", help="Chain settings file")
    p_dist.set_defaults(func=_cmd_distribute)

    p_wallet = sub.add_parser("wallet", help="Show the sending wallet's balances")
    p_wallet.add_argument("--config", default="config.yaml", help="Chain settings file")
    p_wallet.set_defaults(func=_cmd_wallet)
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except BitsynqError as exc:
        logger.error("%s", exc.message)
        return 1


if __name__ == "__main__":
    sys.exit(main())
