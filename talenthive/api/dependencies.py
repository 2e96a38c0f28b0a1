"""
Service wiring and request dependencies.

`build_services` is the ONE place where real vs in-memory storage and real vs
mock payment clients are selected:
- Postgres (SQLAlchemy) when DATABASE_URL is set and USE_POSTGRES is true,
  otherwise the in-memory PostgresDB stub
- Redis when REDIS_URL is set, otherwise the in-memory RedisCache
- Stripe when INTEGRATIONS_MODE=real or a STRIPE_SECRET_KEY is configured,
  otherwise MockPaymentGateway
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, Request

from talenthive.controllers.analytics_controller import AnalyticsController
from talenthive.controllers.contract_controller import ContractController
from talenthive.controllers.dispute_controller import DisputeController
from talenthive.controllers.messaging_controller import MessagingController
from talenthive.controllers.notification_controller import NotificationController
from talenthive.controllers.payment_controller import PaymentController
from talenthive.controllers.project_controller import ProjectController, ProposalController
from talenthive.controllers.review_controller import ReviewController
from talenthive.controllers.support_controller import SupportTicketController
from talenthive.controllers.user_controller import UserController
from talenthive.domain.states import UserRole
from talenthive.error_handler import ForbiddenError, UnauthorizedError
from talenthive.integrations.contracts.interfaces import PaymentGateway
from talenthive.jobs.escrow_release import EscrowReleaseJob
from talenthive.realtime.connection_manager import ConnectionManager
from talenthive.realtime.notifications import NotificationService
from talenthive.utils.config_loader import Settings
from talenthive.utils.tokens import verify_token

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    db: Any
    cache: Any
    gateway: PaymentGateway
    manager: ConnectionManager
    notifications: NotificationService
    users: UserController
    projects: ProjectController
    proposals: ProposalController
    contracts: ContractController
    payments: PaymentController
    disputes: DisputeController
    support: SupportTicketController
    reviews: ReviewController
    messaging: MessagingController
    notification_center: NotificationController
    analytics: AnalyticsController
    escrow_job: EscrowReleaseJob


def _select_db(settings: Settings):
    if settings.database_url and settings.use_postgres:
        from talenthive.database.postgres_real import PostgresDB

        return PostgresDB(connection_string=settings.database_url)
    from talenthive.database.postgres import PostgresDB

    return PostgresDB()


def _select_cache(settings: Settings):
    if settings.redis_url:
        from talenthive.database.redis_real import RedisCache

        return RedisCache(url=settings.redis_url, default_ttl=settings.cache_ttl_seconds)
    from talenthive.database.redis import RedisCache

    return RedisCache(default_ttl=settings.cache_ttl_seconds)


def _select_gateway(settings: Settings) -> PaymentGateway:
    if settings.use_real_payments:
        from talenthive.integrations.clients.real_http.payments import StripePaymentGateway

        return StripePaymentGateway(api_key=settings.stripe_secret_key, webhook_secret=settings.stripe_webhook_secret)
    from talenthive.integrations.clients.mocks.payments import MockPaymentGateway

    return MockPaymentGateway(webhook_secret=settings.stripe_webhook_secret or None)


def build_services(
    settings: Settings,
    *,
    db: Any = None,
    cache: Any = None,
    gateway: Optional[PaymentGateway] = None,
) -> Services:
    db = db if db is not None else _select_db(settings)
    cache = cache if cache is not None else _select_cache(settings)
    gateway = gateway if gateway is not None else _select_gateway(settings)
    logger.info(
        "Services: db=%s cache=%s gateway=%s",
        type(db).__module__, type(cache).__module__, type(gateway).__name__,
    )

    messaging = MessagingController(db)
    manager = ConnectionManager(authorize_join=messaging.is_participant, on_read=messaging.mark_read_by_user_id)
    messaging.manager = manager
    notifications = NotificationService(db, manager)

    contracts = ContractController(db, notifications)
    payments = PaymentController(
        db, gateway, contracts, settings.platform, hold_days=settings.escrow_hold_days, notifications=notifications
    )
    contracts.payments = payments
    return Services(
        settings=settings,
        db=db,
        cache=cache,
        gateway=gateway,
        manager=manager,
        notifications=notifications,
        users=UserController(db, cache, settings.auth_token_secret, cache_ttl=settings.cache_ttl_seconds),
        projects=ProjectController(db, cache, cache_ttl=settings.cache_ttl_seconds),
        proposals=ProposalController(db, cache, contracts, notifications, currency=settings.platform.currency),
        contracts=contracts,
        payments=payments,
        disputes=DisputeController(db, notifications, payments=payments),
        support=SupportTicketController(db, notifications),
        reviews=ReviewController(db, cache, notifications),
        messaging=messaging,
        notification_center=NotificationController(db),
        analytics=AnalyticsController(db, cache),
        escrow_job=EscrowReleaseJob(db, payments, hold_days=settings.escrow_hold_days),
    )


# ============================================================================
# REQUEST DEPENDENCIES
# ============================================================================

def get_services(request: Request) -> Services:
    return request.app.state.services


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    raw = (authorization or "").strip()
    if raw.lower().startswith("bearer "):
        return raw[7:].strip() or None
    return None


def resolve_user(services: Services, token: Optional[str]):
    """Return the active user for a bearer token, or None."""
    user_id = verify_token(token, services.settings.auth_token_secret)
    if not user_id:
        return None
    user = services.db.get_user(user_id)
    if not user or not user.is_active:
        return None
    return user


def get_current_user(request: Request, services: Services = Depends(get_services)):
    user = resolve_user(services, bearer_token(request.headers.get("authorization")))
    if user is None:
        raise UnauthorizedError("Invalid or missing bearer token")
    return user


def require_admin(user=Depends(get_current_user)):
    if user.role != UserRole.ADMIN.value:
        raise ForbiddenError("Admin access required")
    return user


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def ok(data: Any) -> Dict[str, Any]:
    """Success envelope shared by every REST endpoint."""
    return {"status": "success", "data": data}
