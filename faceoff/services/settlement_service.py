import logging
from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from faceoff.core.exceptions import InvalidAmountError, TeamNotFoundError, TransientStoreError
from faceoff.models.donation_record import DonationRecord, DonationSource
from faceoff.models.mixins import utcnow
from faceoff.models.processed_notification import ProcessedNotification
from faceoff.models.team import Team
from faceoff.schemas.settlement import AdjustMode, SettlementResult, SettlementStatus
from faceoff.schemas.team import TotalsUpdate
from faceoff.services.totals_feed import TotalsFeed, totals_feed

logger = logging.getLogger(__name__)

ADMIN_KEY_PREFIX = "admin:"


def is_positive_whole(amount) -> bool:
    return isinstance(amount, int) and not isinstance(amount, bool) and amount > 0


class SettlementApplier:
    """
    The only writer of team totals.

    Each call is one transaction: check the processed marker, lock the team,
    then write the new total, a donation record and the marker together.
    """

    def __init__(self, feed: TotalsFeed = totals_feed):
        self.feed = feed

    async def _get_marker(self, key: str, db_session: AsyncSession) -> Optional[ProcessedNotification]:
        result = await db_session.execute(select(ProcessedNotification).where(ProcessedNotification.key == key))
        return result.scalar_one_or_none()

    async def _lock_team(self, team_id: str, db_session: AsyncSession) -> Team:
        # FOR UPDATE queues concurrent credits to the same team; other teams are untouched
        result = await db_session.execute(select(Team).where(Team.id == team_id).with_for_update())
        team = result.scalar_one_or_none()
        if team is None:
            raise TeamNotFoundError(team_id)
        return team

    def _credit(self, db_session: AsyncSession, team: Team, key: str, amount: int,
                source: DonationSource, payer_email: Optional[str] = None) -> SettlementResult:
        previous_total = team.donation_total
        now = utcnow()
        team.donation_total = previous_total + amount
        team.last_updated = now
        db_session.add(DonationRecord(team_id=team.id,
                                      amount=amount,
                                      notification_key=key,
                                      payer_email=payer_email,
                                      source=source))
        db_session.add(ProcessedNotification(key=key,
                                             team_id=team.id,
                                             amount=amount,
                                             processed_at=now))
        return SettlementResult(status=SettlementStatus.APPLIED,
                                notification_key=key,
                                team_id=team.id,
                                amount=amount,
                                previous_total=previous_total,
                                new_total=team.donation_total,
                                last_updated=now)

    def _already_processed(self, key: str, team_id: str, marker: Optional[ProcessedNotification] = None):
        logger.info("Notification %s already processed, skipping", key)
        return SettlementResult(status=SettlementStatus.ALREADY_PROCESSED,
                                notification_key=key,
                                team_id=marker.team_id if marker is not None else team_id,
                                amount=marker.amount if marker is not None else 0)

    async def _publish(self, result: SettlementResult):
        try:
            await self.feed.publish(TotalsUpdate(team_id=result.team_id,
                                                 donation_total=result.new_total,
                                                 last_updated=result.last_updated))
        except Exception as e:
            # readers re-fetch on reconnect; the settlement itself is already durable
            logger.warning("Failed to publish new total for %s: %s", result.team_id, e)

    async def apply(self, notification_key: str, team_id: Optional[str], amount: int,
                    db_session: AsyncSession, payer_email: Optional[str] = None) -> SettlementResult:
        """
        Credit `amount` to `team_id` exactly once for `notification_key`.

        Returns APPLIED with the previous and new totals, or ALREADY_PROCESSED.
        Raises TeamNotFoundError or InvalidAmountError without writing anything.
        Store failures raise TransientStoreError after the transaction is rolled back,
        so nothing is half applied.
        """
        try:
            async with db_session.begin():
                # Step 1: marker read inside the transaction
                marker = await self._get_marker(notification_key, db_session)
                if marker is not None:
                    return self._already_processed(notification_key, team_id, marker)
                # Step 2: lock the team row
                if not team_id:
                    raise TeamNotFoundError()
                team = await self._lock_team(team_id, db_session)
                # Step 3: validate
                if not is_positive_whole(amount):
                    raise InvalidAmountError(f"Amount must be a positive whole number, got {amount!r}")
                # Step 4: total, record and marker in one unit
                result = self._credit(db_session, team, notification_key, amount,
                                      source=DonationSource.PROVIDER, payer_email=payer_email)
        except IntegrityError:
            # a concurrent transaction committed the same marker first
            return self._already_processed(notification_key, team_id)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Ledger store failed while applying %s: %s", notification_key, e)
            raise TransientStoreError() from e
        logger.info("Applied %s: team %s %s -> %s", notification_key, team_id,
                    result.previous_total, result.new_total)
        await self._publish(result)
        return result

    async def adjust(self, team_id: str, mode: AdjustMode, amount: int, request_key: str,
                     db_session: AsyncSession) -> SettlementResult:
        """
        Operator override. Same transaction shape as apply, keyed by the
        caller's idempotency key so a replayed request changes nothing.
        mode=set moves the total up to `amount`; totals never go down.
        """
        key = f"{ADMIN_KEY_PREFIX}{request_key}"
        try:
            async with db_session.begin():
                marker = await self._get_marker(key, db_session)
                if marker is not None:
                    return self._already_processed(key, team_id, marker)
                team = await self._lock_team(team_id, db_session)
                if mode is AdjustMode.SET:
                    if not isinstance(amount, int) or amount < team.donation_total:
                        raise InvalidAmountError(
                            f"Target total {amount} is below the current total {team.donation_total}")
                    delta = amount - team.donation_total
                    if delta == 0:
                        return SettlementResult(status=SettlementStatus.UNCHANGED,
                                                notification_key=key,
                                                team_id=team.id,
                                                previous_total=team.donation_total,
                                                new_total=team.donation_total,
                                                last_updated=team.last_updated)
                else:
                    if not is_positive_whole(amount):
                        raise InvalidAmountError("Increment must be a positive whole number")
                    delta = amount
                result = self._credit(db_session, team, key, delta, source=DonationSource.ADMIN)
        except IntegrityError:
            return self._already_processed(key, team_id)
        except (SQLAlchemyError, OSError) as e:
            logger.error("Ledger store failed during override %s: %s", key, e)
            raise TransientStoreError() from e
        logger.info("Admin override %s (%s) on team %s: %s -> %s", key, mode.value, team_id,
                    result.previous_total, result.new_total)
        await self._publish(result)
        return result


settlement_applier = SettlementApplier()
