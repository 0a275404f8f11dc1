from dataclasses import dataclass
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from storefront_orders.core_settings import Settings
from storefront_orders.application.notifications import OrderNotifier
from storefront_orders.infrastructure.clients import CatalogClient, UserDirectoryClient
from storefront_orders.infrastructure.db import build_engine, build_session_factory
from storefront_orders.infrastructure.mailer import NullMailer, SMTPMailer

@dataclass
class OrdersContext:
    """Process-wide collaborators, built once at startup and passed to every request"""
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    catalog: CatalogClient
    users: UserDirectoryClient
    notifier: OrderNotifier

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrdersContext":
        engine = build_engine(settings.database_url)
        if settings.SMTP_ENABLED:
            mailer = SMTPMailer(
                host=settings.SMTP_HOST,
                port=settings.SMTP_PORT,
                username=settings.SMTP_USER,
                password=settings.SMTP_PASSWORD,
                sender=settings.SMTP_FROM,
                timeout=settings.SMTP_TIMEOUT,
            )
        else:
            mailer = NullMailer()
        return cls(
            settings=settings,
            engine=engine,
            session_factory=build_session_factory(engine),
            catalog=CatalogClient(settings.CATALOG_SERVICE_URL, timeout=settings.CATALOG_TIMEOUT),
            users=UserDirectoryClient(settings.USERS_SERVICE_URL, timeout=settings.CATALOG_TIMEOUT),
            notifier=OrderNotifier(mailer, frontend_url=settings.FRONTEND_URL),
        )

    def close(self) -> None:
        self.catalog.close()
        self.users.close()
        self.engine.dispose()
