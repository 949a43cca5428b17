import asyncio
import logging
import stripe
from sqlalchemy.ext.asyncio import AsyncSession
from faceoff.core.config import settings
from faceoff.core.exceptions import CheckoutError, InvalidAmountError, MisconfigurationError
from faceoff.crud.team import team_crud_service
from faceoff.schemas.checkout import CheckoutRequest, CheckoutResponse
from faceoff.services.settlement_service import is_positive_whole

logger = logging.getLogger(__name__)


def _configure_stripe():
    if not settings.STRIPE_SECRET_KEY:
        logger.error("STRIPE_SECRET_KEY is not configured; checkout is unavailable")
        raise MisconfigurationError("Payment provider is not configured")
    stripe.api_key = settings.STRIPE_SECRET_KEY
    stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES


class CheckoutService:
    async def create_session(self, data: CheckoutRequest, db_session: AsyncSession) -> CheckoutResponse:
        """
        Open a hosted Stripe Checkout page for a one-off donation.
        The amount credited later comes from the settled session, not from here.
        """
        if not is_positive_whole(data.amount):
            raise InvalidAmountError()
        await team_crud_service.get_team(data.team_id, db_session)
        _configure_stripe()
        base_url = settings.PUBLIC_BASE_URL.rstrip("/")
        try:
            session = await asyncio.wait_for(
                stripe.checkout.Session.create_async(
                    mode="payment",
                    payment_method_types=["card"],
                    line_items=[{
                        "price_data": {
                            "currency": settings.CURRENCY,
                            "product_data": {"name": f"Donation to {data.charity_name}"},
                            "unit_amount": data.amount * 100,
                        },
                        "quantity": 1,
                    }],
                    success_url=(f"{base_url}/?donation=success&team={data.team_id}"
                                 "&session_id={CHECKOUT_SESSION_ID}"),
                    cancel_url=f"{base_url}/",
                    metadata={
                        "teamId": data.team_id,
                        "charityName": data.charity_name,
                        "selectedAmount": str(data.amount),
                    },
                ),
                timeout=settings.PROVIDER_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error("Stripe checkout session creation timed out for team %s", data.team_id)
            raise CheckoutError("Payment provider timed out")
        except stripe.StripeError as e:
            logger.error("Stripe refused checkout session for team %s: %s", data.team_id, e)
            raise CheckoutError()
        except ImportError as e:
            # stripe needs an async http client (httpx) for create_async
            logger.error("Stripe async client unavailable: %s", e)
            raise MisconfigurationError("Payment provider client is not installed")
        logger.info("Created checkout session %s for team %s (%s %s)",
                    session.id, data.team_id, data.amount, settings.CURRENCY)
        return CheckoutResponse(id=session.id, url=session.url)


checkout_service = CheckoutService()
