"""
services.py -- Object graph assembly for BookSwap.

The one place that knows how repositories and services plug together.
Whatever hosts the services (an ASGI lifespan, a worker, a test) calls
build_services() once at startup and shuts down with Services.close().

Startup order matters:
  1. Settings first -- validates SECRET_KEY and FIELD_ENCRYPTION_KEY, so a
     misconfigured key aborts startup before anything touches the database.
  2. Field cipher second -- built once from the validated key and shared
     read-only by every request.
  3. Engine last -- table modules are imported above, so create_all()
     inside create_db_engine() sees every table.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine

import auth.store  # noqa: F401  (table registration)
import market.store  # noqa: F401  (table registration)
from auth.accounts import AccountService
from auth.crypto import get_field_cipher
from auth.sessions import SessionService
from auth.store import PrincipalStore, RefreshTokenStore
from core.config import get_settings
from core.database import create_db_engine
from market.lifecycle import MarketService
from market.store import MarketStore

logger = logging.getLogger("bookswap")


def configure_logging(level: int = logging.INFO) -> None:
    """Install the process-wide log format. A no-op if handlers already exist."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@dataclass
class Services:
    engine: Engine
    principals: PrincipalStore
    tokens: RefreshTokenStore
    market_store: MarketStore
    accounts: AccountService
    sessions: SessionService
    market: MarketService

    def close(self) -> None:
        self.engine.dispose()
        logger.info("BookSwap services shut down")


def build_services(db_url: str | None = None) -> Services:
    """Wire stores and services against one database.

    Args:
        db_url: SQLAlchemy URL. Defaults to Settings.database_url.
    """
    settings = get_settings()
    configure_logging(logging.DEBUG if settings.debug else logging.INFO)
    get_field_cipher()
    engine = create_db_engine(db_url or settings.database_url)

    principals = PrincipalStore(engine)
    tokens = RefreshTokenStore(engine)
    market_store = MarketStore(engine)
    accounts = AccountService(principals, tokens)
    services = Services(
        engine=engine,
        principals=principals,
        tokens=tokens,
        market_store=market_store,
        accounts=accounts,
        sessions=SessionService(accounts, tokens),
        market=MarketService(market_store),
    )
    logger.info("BookSwap services initialized (debug=%s)", settings.debug)
    return services
