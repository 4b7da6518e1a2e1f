import argparse
import asyncio
import json
import re
from pathlib import Path
from typing import Any

from sqlalchemy import select

from discount_issuer.db.session import SessionLocal, engine
from discount_issuer.models import Base, Campaign, CampaignStatus
from discount_issuer.services.discount_config import normalize_discount_config

SAFE_JSON_FILENAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*\.json$")


def _resolve_json_path(raw_path: str) -> Path:
    raw = (raw_path or "").strip()
    if not raw:
        raise SystemExit("Path is required")
    if Path(raw).name != raw:
        raise SystemExit("Only JSON file names are allowed (no directories)")
    if not SAFE_JSON_FILENAME_RE.fullmatch(raw):
        raise SystemExit("Invalid JSON file name")
    resolved = (Path.cwd().resolve() / raw).resolve(strict=False)
    if not resolved.is_file():
        raise SystemExit(f"Input file not found: {resolved}")
    return resolved


def _load_config(raw_path: str | None) -> Any:
    if not raw_path:
        return None
    path = _resolve_json_path(raw_path)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise SystemExit(f"Invalid JSON in {path.name}: {exc}")


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Tables created")


async def seed_campaign(
    campaign_id: str,
    *,
    store_id: str,
    shop_domain: str,
    name: str,
    status: CampaignStatus,
    config_path: str | None,
) -> None:
    discount_config = _load_config(config_path)
    async with SessionLocal() as session:
        campaign = await session.get(Campaign, campaign_id)
        if campaign is None:
            campaign = Campaign(id=campaign_id)
            session.add(campaign)
        campaign.store_id = store_id
        campaign.shop_domain = shop_domain
        campaign.name = name
        campaign.status = status
        if discount_config is not None:
            campaign.discount_config = discount_config
        await session.commit()
    print(f"Campaign {campaign_id} saved ({status.value})")


async def show_campaign(campaign_id: str) -> None:
    async with SessionLocal() as session:
        result = await session.execute(select(Campaign).where(Campaign.id == campaign_id))
        campaign = result.scalar_one_or_none()
    if campaign is None:
        raise SystemExit(f"Campaign not found: {campaign_id}")
    config = normalize_discount_config(campaign.discount_config)
    print(
        json.dumps(
            {
                "id": campaign.id,
                "storeId": campaign.store_id,
                "shopDomain": campaign.shop_domain,
                "status": campaign.status.value,
                "discountConfig": config.to_payload(),
            },
            indent=2,
        )
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Discount issuer operator utilities")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("init-db", help="Create database tables")

    seed = subparsers.add_parser("seed-campaign", help="Create or update a campaign")
    seed.add_argument("campaign_id")
    seed.add_argument("--store-id", required=True)
    seed.add_argument("--shop", required=True, help="Shop domain the campaign belongs to")
    seed.add_argument("--name", default="Campaign")
    seed.add_argument(
        "--status",
        choices=[status.value for status in CampaignStatus],
        default=CampaignStatus.active.value,
    )
    seed.add_argument("--config", help="JSON file with the raw discount config")

    show = subparsers.add_parser("show-campaign", help="Print a campaign with its normalized discount config")
    show.add_argument("campaign_id")
    return parser


def _run_cli_command(args: argparse.Namespace) -> bool:
    if args.command == "init-db":
        asyncio.run(init_db())
        return True
    if args.command == "seed-campaign":
        asyncio.run(
            seed_campaign(
                args.campaign_id,
                store_id=args.store_id,
                shop_domain=args.shop,
                name=args.name,
                status=CampaignStatus(args.status),
                config_path=args.config,
            )
        )
        return True
    if args.command == "show-campaign":
        asyncio.run(show_campaign(args.campaign_id))
        return True
    return False


def main():
    parser = _build_parser()
    args = parser.parse_args()
    if not _run_cli_command(args):
        parser.print_help()


if __name__ == "__main__":
    main()
