"""Customer portal: API key management and billing pages."""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from typing import AsyncIterator, List

from fastapi import Depends, FastAPI, Form, HTTPException, Query, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.middleware.sessions import SessionMiddleware

from libs.observability.logging import RequestContextMiddleware, configure_logging
from libs.schemas.billing import BillingInfo

from .aggregator import BillingOverviewAggregator, RefreshTrigger, to_subscription_view
from .api_keys import (
    EXPIRATION_OPTIONS,
    SCOPE_CATALOG,
    ApiKeyForm,
    ApiKeyManager,
    ApiKeyValidationError,
    to_api_key_view,
)
from .apikeys_client import ApiKeysClient
from .billing_client import BillingClient
from .config import Settings, get_settings
from .confirmation import PresetConfirmation
from .enrollment import EnrollmentFailure, PaymentMethodEnrollment
from .notifications import NotificationQueue, NotificationRegistry
from .payment_methods import PaymentMethodsPanel, to_payment_method_view
from .plan_selection import PlanSelection, SubscriptionCancellation, can_cancel
from .plans import UnknownPlanError
from .remote import RemoteError
from .schemas import (
    ApiKeyCreateRequest,
    ApiKeyVerifyPayload,
    ApiKeyView,
    BillingOverview,
    EnrollmentRequest,
    EnrollmentResponse,
    PaymentMethodView,
    PlanChangeRequest,
    PlanSelectionView,
    SubscriptionView,
)
from .session import PortalSession
from .tokenization import PaymentTokenizer, StripeSettings, StripeTokenizer

logger = logging.getLogger(__name__)

SERVICE_NAME = "customer-portal"
SESSION_KEY = "portal"
NOTIFICATION_KEY = "portal_sid"
REFRESH_KEY = "refresh_trigger"

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

_settings = get_settings()
configure_logging(SERVICE_NAME, _settings.log_level)

app = FastAPI(title="Customer Portal", version="0.1.0")
app.add_middleware(
    SessionMiddleware,
    secret_key=_settings.session_secret,
    session_cookie="portal_session",
    https_only=False,
    same_site="lax",
)
app.add_middleware(RequestContextMiddleware, service_name=SERVICE_NAME)
app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

templates = Jinja2Templates(directory=TEMPLATES_DIR)

NOTIFICATIONS = NotificationRegistry(_settings.notification_ttl_seconds)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def current_session(request: Request) -> PortalSession | None:
    return PortalSession.from_cookie(request.session.get(SESSION_KEY))


def require_session(session: PortalSession | None = Depends(current_session)) -> PortalSession:
    if session is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Authentication required.")
    return session


def get_notifications(
    request: Request,
    session: PortalSession | None = Depends(current_session),
    settings: Settings = Depends(get_settings),
) -> NotificationQueue:
    if session is None:
        # Anonymous requests get a throwaway queue that is never stored.
        return NotificationQueue(ttl=settings.notification_ttl_seconds)
    sid = request.session.get(NOTIFICATION_KEY)
    if not isinstance(sid, str) or not sid:
        sid = uuid.uuid4().hex
        request.session[NOTIFICATION_KEY] = sid
    return NOTIFICATIONS.queue_for(sid)


async def get_billing_client(
    session: PortalSession | None = Depends(current_session),
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[BillingClient]:
    client = BillingClient(
        base_url=settings.api_base_url,
        access_token=session.access_token if session else None,
        timeout=settings.api_timeout,
    )
    try:
        yield client
    finally:
        await client.aclose()


async def get_apikeys_client(
    session: PortalSession | None = Depends(current_session),
    settings: Settings = Depends(get_settings),
) -> AsyncIterator[ApiKeysClient]:
    client = ApiKeysClient(
        base_url=settings.api_base_url,
        access_token=session.access_token if session else None,
        timeout=settings.api_timeout,
    )
    try:
        yield client
    finally:
        await client.aclose()


def get_tokenizer(settings: Settings = Depends(get_settings)) -> PaymentTokenizer:
    return StripeTokenizer(settings=StripeSettings(api_key=settings.stripe_secret_key))


def _refresh_trigger(request: Request) -> RefreshTrigger:
    value = request.session.get(REFRESH_KEY, 0)
    return RefreshTrigger(value if isinstance(value, int) else 0)


def _bump_refresh(request: Request) -> int:
    trigger = _refresh_trigger(request)
    request.session[REFRESH_KEY] = trigger.bump()
    return trigger.value


def _refresh_callback(request: Request):
    def bump() -> None:
        _bump_refresh(request)

    return bump


def _bad_gateway(error: RemoteError) -> HTTPException:
    return HTTPException(status.HTTP_502_BAD_GATEWAY, detail=error.message)


def _confirmation_required(confirmation: PresetConfirmation) -> HTTPException:
    prompt = confirmation.prompts[-1] if confirmation.prompts else None
    return HTTPException(
        status.HTTP_409_CONFLICT,
        detail={"message": "Confirmation required.", "prompt": prompt},
    )


def _render(
    request: Request,
    template: str,
    context: dict[str, object] | None = None,
    *,
    status_code: int = status.HTTP_200_OK,
) -> HTMLResponse:
    session = current_session(request)
    payload: dict[str, object] = {
        "session": session,
        "page": template.removesuffix(".html"),
    }
    if context:
        payload.update(context)
    return templates.TemplateResponse(request, template, payload, status_code=status_code)


def _login_redirect() -> RedirectResponse:
    return RedirectResponse("/login", status_code=status.HTTP_303_SEE_OTHER)


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------


@app.get("/health")
def healthcheck() -> dict[str, str]:
    """Simple health endpoint."""

    return {"status": "ok"}


@app.get("/", include_in_schema=False)
def index() -> RedirectResponse:
    return RedirectResponse("/dashboard", status_code=status.HTTP_307_TEMPORARY_REDIRECT)


@app.get("/login", response_class=HTMLResponse, include_in_schema=False)
def login_page(request: Request) -> HTMLResponse:
    return _render(request, "login.html", {"error": None, "email": ""})


@app.post("/login", include_in_schema=False)
def login(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    settings: Settings = Depends(get_settings),
):
    email = email.strip()
    if email.lower() != settings.demo_email.lower() or password != settings.demo_password:
        logger.info("Rejected login attempt for %s", email or "<blank>")
        return _render(
            request,
            "login.html",
            {"error": "Invalid email or password", "email": email},
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    session = PortalSession(
        org_id=settings.demo_org_id,
        access_token=settings.demo_access_token,
        user_email=email,
    )
    request.session[SESSION_KEY] = session.to_cookie()
    logger.info("User %s signed in for org %s", email, session.org_id)
    return RedirectResponse("/dashboard", status_code=status.HTTP_303_SEE_OTHER)


@app.post("/logout", include_in_schema=False)
def logout(request: Request) -> RedirectResponse:
    sid = request.session.get(NOTIFICATION_KEY)
    if isinstance(sid, str):
        NOTIFICATIONS.discard(sid)
    request.session.clear()
    return _login_redirect()


@app.get("/dashboard", response_class=HTMLResponse, include_in_schema=False)
async def dashboard_page(
    request: Request,
    client: ApiKeysClient = Depends(get_apikeys_client),
    notifications: NotificationQueue = Depends(get_notifications),
):
    session = current_session(request)
    if session is None:
        return _login_redirect()
    manager = ApiKeyManager(session, client, notifications, PresetConfirmation(False))
    keys: List[ApiKeyView] = []
    error = None
    try:
        keys = [to_api_key_view(key) for key in await manager.list_keys()]
    except RemoteError as exc:
        error = "Unable to load API keys."
        logger.warning("Unable to load API keys for org %s: %s", session.org_id, exc)
    return _render(
        request,
        "dashboard.html",
        {
            "keys": keys,
            "error": error,
            "scopes": SCOPE_CATALOG,
            "expiration_options": EXPIRATION_OPTIONS,
            "form": ApiKeyForm(),
            "notifications": [item.to_payload() for item in notifications.active()],
        },
    )


@app.get("/account", response_class=HTMLResponse, include_in_schema=False)
async def account_page(
    request: Request,
    client: BillingClient = Depends(get_billing_client),
):
    session = current_session(request)
    if session is None:
        return _login_redirect()
    billing_info: BillingInfo | None = None
    error = None
    try:
        billing_info = await client.get_billing_info(session.org_id)
    except RemoteError as exc:
        error = "Unable to load billing details."
        logger.warning("Unable to load billing info for org %s: %s", session.org_id, exc)
    return _render(request, "account.html", {"billing_info": billing_info, "error": error})


@app.get("/billing", response_class=HTMLResponse, include_in_schema=False)
async def billing_page(
    request: Request,
    client: BillingClient = Depends(get_billing_client),
    settings: Settings = Depends(get_settings),
    notifications: NotificationQueue = Depends(get_notifications),
):
    session = current_session(request)
    if session is None:
        return _login_redirect()
    aggregator = BillingOverviewAggregator(
        session,
        client,
        demo_fallback=settings.demo_fallback,
        refresh_trigger=_refresh_trigger(request),
    )
    overview = await aggregator.load()
    current_plan_id = overview.subscription.plan_id if overview.subscription else None
    plans = PlanSelection(session, client, notifications, current_plan_id=current_plan_id)
    return _render(
        request,
        "billing.html",
        {
            "overview": overview,
            "plans": plans.to_view(),
            "stripe_publishable_key": settings.stripe_publishable_key,
            "notifications": [item.to_payload() for item in notifications.active()],
        },
    )


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


@app.get("/api/keys", response_model=List[ApiKeyView])
async def list_api_keys(
    session: PortalSession = Depends(require_session),
    client: ApiKeysClient = Depends(get_apikeys_client),
    notifications: NotificationQueue = Depends(get_notifications),
) -> List[ApiKeyView]:
    manager = ApiKeyManager(session, client, notifications, PresetConfirmation(False))
    try:
        keys = await manager.list_keys()
    except RemoteError as exc:
        raise _bad_gateway(exc) from exc
    return [to_api_key_view(key) for key in keys]


@app.post("/api/keys", response_model=ApiKeyView, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    payload: ApiKeyCreateRequest,
    session: PortalSession = Depends(require_session),
    client: ApiKeysClient = Depends(get_apikeys_client),
    notifications: NotificationQueue = Depends(get_notifications),
) -> ApiKeyView:
    manager = ApiKeyManager(session, client, notifications, PresetConfirmation(False))
    form = ApiKeyForm(
        name=payload.name,
        description=payload.description,
        scopes=list(payload.scopes),
        expires_in_days=payload.expires_in_days,
    )
    try:
        key = await manager.create(form)
    except ApiKeyValidationError as exc:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST,
            detail={"message": exc.message, "field": exc.field_name},
        ) from exc
    if key is None:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail=manager.error)
    return to_api_key_view(key)


@app.post("/api/keys/verify")
async def verify_api_key(
    payload: ApiKeyVerifyPayload,
    session: PortalSession = Depends(require_session),
    client: ApiKeysClient = Depends(get_apikeys_client),
    notifications: NotificationQueue = Depends(get_notifications),
) -> dict[str, object]:
    manager = ApiKeyManager(session, client, notifications, PresetConfirmation(False))
    try:
        verification = await manager.verify(payload.api_key)
    except RemoteError as exc:
        raise _bad_gateway(exc) from exc
    return verification.model_dump(mode="json")


@app.delete("/api/keys/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_api_key(
    key_id: str,
    confirm: bool = Query(False),
    session: PortalSession = Depends(require_session),
    client: ApiKeysClient = Depends(get_apikeys_client),
    notifications: NotificationQueue = Depends(get_notifications),
) -> Response:
    confirmation = PresetConfirmation(confirm)
    manager = ApiKeyManager(session, client, notifications, confirmation)
    if not await manager.revoke(key_id):
        if not confirm:
            raise _confirmation_required(confirmation)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail="Failed to revoke API key")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Billing
# ---------------------------------------------------------------------------


@app.get("/api/billing/overview", response_model=BillingOverview)
async def billing_overview(
    request: Request,
    refresh: int | None = Query(None, ge=0),
    session: PortalSession = Depends(require_session),
    client: BillingClient = Depends(get_billing_client),
    settings: Settings = Depends(get_settings),
) -> BillingOverview:
    trigger = _refresh_trigger(request)
    if refresh is not None and refresh > trigger.value:
        trigger.value = refresh
        request.session[REFRESH_KEY] = refresh
    aggregator = BillingOverviewAggregator(
        session, client, demo_fallback=settings.demo_fallback, refresh_trigger=trigger
    )
    return await aggregator.load()


@app.get("/api/billing/plans", response_model=PlanSelectionView)
def list_plans(
    current_plan_id: str | None = Query(None),
    session: PortalSession = Depends(require_session),
    client: BillingClient = Depends(get_billing_client),
    notifications: NotificationQueue = Depends(get_notifications),
) -> PlanSelectionView:
    selection = PlanSelection(session, client, notifications, current_plan_id=current_plan_id)
    return selection.to_view()


@app.post("/api/billing/plans/preview", response_model=PlanSelectionView)
def preview_plan_change(
    payload: PlanChangeRequest,
    session: PortalSession = Depends(require_session),
    client: BillingClient = Depends(get_billing_client),
    notifications: NotificationQueue = Depends(get_notifications),
) -> PlanSelectionView:
    selection = PlanSelection(
        session, client, notifications, current_plan_id=payload.current_plan_id
    )
    try:
        selection.select(payload.plan_id)
    except UnknownPlanError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return selection.to_view()


@app.put("/api/billing/subscription", response_model=SubscriptionView)
async def change_plan(
    request: Request,
    payload: PlanChangeRequest,
    session: PortalSession = Depends(require_session),
    client: BillingClient = Depends(get_billing_client),
    notifications: NotificationQueue = Depends(get_notifications),
) -> SubscriptionView:
    try:
        subscription = await client.get_subscription(session.org_id)
    except RemoteError as exc:
        raise _bad_gateway(exc) from exc
    selection = PlanSelection(
        session,
        client,
        notifications,
        current_plan_id=subscription.plan.id if subscription else None,
        on_updated=_refresh_callback(request),
    )
    try:
        selection.select(payload.plan_id)
    except UnknownPlanError as exc:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if not selection.can_submit:
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST, detail="The selected plan is already active."
        )
    updated = await selection.submit()
    if updated is None:
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail=selection.error)
    return to_subscription_view(updated)


@app.post("/api/billing/subscription/cancel", response_model=SubscriptionView)
async def cancel_subscription(
    request: Request,
    confirm: bool = Query(False),
    session: PortalSession = Depends(require_session),
    client: BillingClient = Depends(get_billing_client),
    notifications: NotificationQueue = Depends(get_notifications),
) -> SubscriptionView:
    try:
        subscription = await client.get_subscription(session.org_id)
    except RemoteError as exc:
        raise _bad_gateway(exc) from exc
    if subscription is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="No subscription found.")
    if not can_cancel(subscription):
        raise HTTPException(
            status.HTTP_400_BAD_REQUEST, detail="This subscription cannot be canceled."
        )
    confirmation = PresetConfirmation(confirm)
    cancellation = SubscriptionCancellation(
        session,
        client,
        notifications,
        confirmation,
        on_canceled=_refresh_callback(request),
    )
    updated = await cancellation.cancel(subscription)
    if updated is None:
        if not confirm:
            raise _confirmation_required(confirmation)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail="Failed to cancel subscription")
    return to_subscription_view(updated)


@app.post(
    "/api/billing/payment-methods",
    response_model=EnrollmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def enroll_payment_method(
    request: Request,
    payload: EnrollmentRequest,
    session: PortalSession = Depends(require_session),
    client: BillingClient = Depends(get_billing_client),
    tokenizer: PaymentTokenizer = Depends(get_tokenizer),
    notifications: NotificationQueue = Depends(get_notifications),
) -> EnrollmentResponse:
    enrollment = PaymentMethodEnrollment(
        session,
        client,
        tokenizer,
        notifications,
        on_completed=_refresh_callback(request),
    )
    enrollment.update_contact(**payload.model_dump(exclude={"card_token"}))
    enrollment.attach_card(payload.card_token)
    method = await enrollment.submit()
    if method is None:
        status_code = {
            EnrollmentFailure.VALIDATION: status.HTTP_400_BAD_REQUEST,
            EnrollmentFailure.TOKENIZATION: status.HTTP_402_PAYMENT_REQUIRED,
        }.get(enrollment.failure, status.HTTP_502_BAD_GATEWAY)
        raise HTTPException(
            status_code,
            detail=jsonable_encoder(
                EnrollmentResponse(state=enrollment.state.value, error=enrollment.error)
            ),
        )
    return EnrollmentResponse(
        state=enrollment.state.value,
        payment_method=to_payment_method_view(method),
    )


async def _load_panel(
    session: PortalSession,
    client: BillingClient,
    notifications: NotificationQueue,
    confirmation: PresetConfirmation,
) -> PaymentMethodsPanel:
    panel = PaymentMethodsPanel(session, client, notifications, confirmation)
    try:
        await panel.load()
    except RemoteError as exc:
        raise _bad_gateway(exc) from exc
    return panel


@app.delete("/api/billing/payment-methods/{payment_method_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_payment_method(
    request: Request,
    payment_method_id: str,
    confirm: bool = Query(False),
    session: PortalSession = Depends(require_session),
    client: BillingClient = Depends(get_billing_client),
    notifications: NotificationQueue = Depends(get_notifications),
) -> Response:
    confirmation = PresetConfirmation(confirm)
    panel = await _load_panel(session, client, notifications, confirmation)
    try:
        removed = await panel.remove(payment_method_id)
    except KeyError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Payment method not found.") from exc
    if not removed:
        if not confirm:
            raise _confirmation_required(confirmation)
        raise HTTPException(status.HTTP_502_BAD_GATEWAY, detail="Failed to remove payment method")
    _bump_refresh(request)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.put(
    "/api/billing/payment-methods/{payment_method_id}/default",
    response_model=List[PaymentMethodView],
)
async def set_default_payment_method(
    request: Request,
    payment_method_id: str,
    session: PortalSession = Depends(require_session),
    client: BillingClient = Depends(get_billing_client),
    notifications: NotificationQueue = Depends(get_notifications),
) -> List[PaymentMethodView]:
    panel = await _load_panel(session, client, notifications, PresetConfirmation(False))
    try:
        updated = await panel.set_default(payment_method_id)
    except KeyError as exc:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Payment method not found.") from exc
    if not updated:
        raise HTTPException(
            status.HTTP_502_BAD_GATEWAY, detail="Failed to update default payment method"
        )
    _bump_refresh(request)
    return panel.to_views()


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@app.get("/api/notifications")
def list_notifications(
    notifications: NotificationQueue = Depends(get_notifications),
) -> List[dict[str, object]]:
    return [item.to_payload() for item in notifications.active()]


@app.delete("/api/notifications/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def dismiss_notification(
    notification_id: str,
    notifications: NotificationQueue = Depends(get_notifications),
) -> Response:
    if not notifications.remove(notification_id):
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Notification not found.")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["app"]
