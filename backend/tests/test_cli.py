from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from discount_issuer import cli
from discount_issuer.models import Campaign, CampaignStatus


@pytest.fixture
def cli_db(monkeypatch: pytest.MonkeyPatch):
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)
    monkeypatch.setattr(cli, "engine", engine)
    monkeypatch.setattr(cli, "SessionLocal", SessionLocal)
    asyncio.run(cli.init_db())
    return SessionLocal


def test_resolve_json_path_validation_errors(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)

    with pytest.raises(SystemExit, match="Path is required"):
        cli._resolve_json_path("")
    with pytest.raises(SystemExit, match="Only JSON file names are allowed"):
        cli._resolve_json_path("nested/config.json")
    with pytest.raises(SystemExit, match="Invalid JSON file name"):
        cli._resolve_json_path("config.txt")
    with pytest.raises(SystemExit, match="Input file not found"):
        cli._resolve_json_path("missing.json")


def test_load_config_rejects_invalid_json(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "broken.json").write_text("{nope", encoding="utf-8")

    assert cli._load_config(None) is None
    with pytest.raises(SystemExit, match="Invalid JSON in broken.json"):
        cli._load_config("broken.json")


def test_seed_and_show_campaign(cli_db, tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys) -> None:
    monkeypatch.chdir(tmp_path)
    (tmp_path / "welcome.json").write_text(
        json.dumps({"enabled": True, "valueType": "PERCENTAGE", "value": 15, "prefix": "WELCOME"}), encoding="utf-8"
    )

    asyncio.run(
        cli.seed_campaign(
            "cwelcome01",
            store_id="store-1",
            shop_domain="demo.myshopify.com",
            name="Welcome",
            status=CampaignStatus.active,
            config_path="welcome.json",
        )
    )

    async def load() -> Campaign | None:
        async with cli_db() as session:
            return await session.get(Campaign, "cwelcome01")

    campaign = asyncio.run(load())
    assert campaign is not None
    assert campaign.status == CampaignStatus.active
    assert campaign.discount_config["prefix"] == "WELCOME"

    capsys.readouterr()
    asyncio.run(cli.show_campaign("cwelcome01"))
    shown = json.loads(capsys.readouterr().out)
    assert shown["status"] == "ACTIVE"
    assert shown["discountConfig"]["value"] == 15
    assert shown["discountConfig"]["strategy"] == "basic"


def test_show_missing_campaign_exits(cli_db) -> None:
    with pytest.raises(SystemExit, match="Campaign not found"):
        asyncio.run(cli.show_campaign("cmissing01"))


def test_unknown_command_is_not_handled() -> None:
    assert cli._run_cli_command(argparse.Namespace(command=None)) is False
