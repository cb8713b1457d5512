from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import replace

from dotenv import load_dotenv

from models.session import PipelinePhase
from services.backend_client import BackendClient
from services.pipeline import build_pipeline
from services.providers import remote_providers
from services.settings import Settings

# Load .env from backend dir (where interview.py runs)
load_dotenv(os.path.join(os.path.dirname(__file__), ".env"))
logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mock interview recorder and analysis backend.")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=int(os.getenv("PORT") or 8000))

    record = sub.add_parser("record", help="Record one interview, upload it and print the analysis report.")
    record.add_argument("--seconds", type=float, required=True, help="Recording length in seconds.")
    record.add_argument("--candidate", default=None)
    record.add_argument("--device", default=None, help="Capture device; defaults to CAPTURE_DEVICE.")
    return parser.parse_args(argv)


async def record_interview(settings: Settings, *, seconds: float, candidate: str | None) -> int:
    """Run the full pipeline against the backend at API_BASE_URL. Returns the process exit code."""
    client = BackendClient(settings.api_base_url, timeout=settings.http_timeout_seconds)
    try:
        pipeline = build_pipeline(
            settings,
            client=client,
            providers=remote_providers(client),
            candidate=candidate,
        )
        if await pipeline.start() is PipelinePhase.RECORDING:
            logger.info("[interview] Recording for %.0fs...", seconds)
            await asyncio.sleep(seconds)
            await pipeline.stop()
        phase = await pipeline.wait()
        print(json.dumps(pipeline.snapshot(), indent=2, ensure_ascii=False))
        return 0 if phase is PipelinePhase.DONE else 1
    finally:
        await client.aclose()


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if args.command == "serve":
        import uvicorn

        from app.main import app

        uvicorn.run(app, host=args.host, port=args.port)
        return 0

    settings = Settings.from_env()
    if args.device:
        settings = replace(settings, capture_device=args.device)
    return asyncio.run(record_interview(settings, seconds=args.seconds, candidate=args.candidate))


if __name__ == "__main__":
    sys.exit(main())
