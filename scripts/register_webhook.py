"""
Manage KiotViet webhook subscriptions.

Usage:
    python -m scripts.register_webhook list
    python -m scripts.register_webhook register https://shop.example.com/webhook/order-status
    python -m scripts.register_webhook delete 12345

On register, a secret is generated unless --secret is given (or KIOTVIET_WEBHOOK_SECRET
is set). Store the printed secret as KIOTVIET_WEBHOOK_SECRET for the API service.
"""

import argparse
import asyncio
import base64
import json
import secrets
import sys

import structlog

from app.config import settings
from app.integrations.kiotviet.api_client import KiotVietAPIClient
from app.integrations.kiotviet.token_cache import KiotVietTokenCache
from app.utils.logger import configure_logging

configure_logging()
logger = structlog.get_logger()


def generate_secret() -> str:
    """Random secret in the base64 form KiotViet expects."""
    return base64.b64encode(secrets.token_hex(32).encode("utf-8")).decode("ascii")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage KiotViet webhooks")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List registered webhooks")

    register = subparsers.add_parser("register", help="Register an order.update webhook")
    register.add_argument("url", help="Public URL of the order-status endpoint")
    register.add_argument("--secret", default=None, help="Webhook secret (base64)")
    register.add_argument("--type", dest="webhook_type", default="order.update")
    register.add_argument("--description", default="Website order status sync")

    delete = subparsers.add_parser("delete", help="Delete a webhook by id")
    delete.add_argument("webhook_id")

    return parser


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    client = KiotVietAPIClient(KiotVietTokenCache())

    try:
        if args.command == "list":
            webhooks = await client.list_webhooks()
            print(json.dumps(webhooks, indent=2, ensure_ascii=False))

        elif args.command == "register":
            secret = args.secret or settings.kiotviet_webhook_secret or generate_secret()
            response = await client.register_webhook(
                args.url,
                secret,
                webhook_type=args.webhook_type,
                description=args.description,
            )
            print(json.dumps(response, indent=2, ensure_ascii=False))
            if secret != settings.kiotviet_webhook_secret:
                print(f"\nSet KIOTVIET_WEBHOOK_SECRET={secret}")

        elif args.command == "delete":
            await client.delete_webhook(args.webhook_id)
            print(f"Deleted webhook {args.webhook_id}")

        return 0

    except Exception as e:
        logger.error("Webhook command failed", command=args.command, error=str(e))
        return 1

    finally:
        await client.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
