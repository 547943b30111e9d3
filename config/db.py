"""Tortoise ORM lifecycle for the relational build store."""
from typing import Optional

from fastapi import FastAPI
from tortoise import Tortoise
from tortoise.contrib.fastapi import RegisterTortoise

from config.settings import DATABASE_URL

MODELS_MODULES = ["apps.builds.models"]


def tortoise_config(db_url: Optional[str] = None) -> dict:
    return {
        "connections": {"default": db_url or DATABASE_URL},
        "apps": {
            "models": {
                "models": MODELS_MODULES,
                "default_connection": "default",
            }
        },
        "use_tz": True,
        "timezone": "UTC",
    }


def register_db(app: FastAPI, db_url: Optional[str] = None) -> RegisterTortoise:
    """ORM registration for the app's lifespan: ``async with register_db(app): ...``"""
    return RegisterTortoise(app, config=tortoise_config(db_url), generate_schemas=True)


async def init_db(db_url: Optional[str] = None) -> None:
    await Tortoise.init(config=tortoise_config(db_url))
    await Tortoise.generate_schemas(safe=True)


async def close_db() -> None:
    await Tortoise.close_connections()
