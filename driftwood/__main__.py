"""
Command line:
    python -m driftwood extract 550
    python -m driftwood extract 1399 --type tv --season 1 --episode 1 --provider embedchain
    python -m driftwood serve --port 8000
"""
from __future__ import annotations
import argparse
import asyncio
import json
import logging
import sys

from .config import get_settings
from .providers.base import ContentReference, ExtractionRequest


async def _extract(args) -> int:
    from .providers.runner import ProviderEngine

    engine = ProviderEngine(get_settings())
    try:
        ref = ContentReference(id=args.id, media_type=args.type, season=args.season,
                               episode=args.episode, id_system=args.id_system)
        result = await engine.extract(ExtractionRequest(ref=ref, provider_hint=args.provider))
    finally:
        await engine.close()
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def _serve(args) -> int:
    import uvicorn

    from .api.main import app

    uvicorn.run(app, host=args.host, port=args.port)
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="driftwood", description="Resolve stream manifests")
    sub = parser.add_subparsers(dest="command", required=True)

    ex = sub.add_parser("extract", help="Resolve one title and print the JSON result")
    ex.add_argument("id", help="Catalog id (TMDB by default)")
    ex.add_argument("--type", default="movie", choices=["movie", "tv"])
    ex.add_argument("--season", type=int)
    ex.add_argument("--episode", type=int)
    ex.add_argument("--provider", help="Only try this provider")
    ex.add_argument("--id-system", default="tmdb")

    sv = sub.add_parser("serve", help="Run the HTTP API")
    sv.add_argument("--host", default="0.0.0.0")
    sv.add_argument("--port", type=int, default=8000)

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "extract":
        return asyncio.run(_extract(args))
    return _serve(args)


if __name__ == "__main__":
    sys.exit(main())
