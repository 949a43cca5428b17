import asyncio
import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from faceoff.core.config import settings
from faceoff.db.core import get_session_factory
from faceoff.models import WebhookEvent
from faceoff.services.reconciliation_service import reconciliation_service

WEBHOOK_URL = "/api/v1/webhooks/stripe"


async def _post(client, sign, event, **sign_kwargs):
    payload, header = sign(event, **sign_kwargs)
    return await client.post(WEBHOOK_URL, content=payload,
                             headers={"Stripe-Signature": header, "Content-Type": "application/json"})


async def _outcome_log(db_session_factory):
    async with db_session_factory() as session:
        result = await session.execute(select(WebhookEvent).order_by(WebhookEvent.created_at))
        return list(result.scalars().all())


async def test_paid_session_is_applied(client, sign, make_event, seeded_teams, ledger):
    response = await _post(client, sign, make_event(session_id="cs_evt_1", team_id="teamX", amount=25))

    assert response.status_code == 200
    body = response.json()
    assert body["outcome"] == "APPLIED"
    assert body["notification_key"] == "cs_evt_1"
    assert await ledger.total("teamX") == 25775
    records = await ledger.records("cs_evt_1")
    assert len(records) == 1
    assert records[0].payer_email == "fan@example.com"

    totals = await client.get("/api/v1/totals/teamX")
    assert totals.json()["donation_total"] == 25775


async def test_redelivery_is_acknowledged_without_crediting(client, sign, make_event, seeded_teams,
                                                          ledger, db_session_factory):
    event = make_event(session_id="cs_evt_1", team_id="teamX", amount=25)
    first = await _post(client, sign, event)
    second = await _post(client, sign, event)

    assert first.json()["outcome"] == "APPLIED"
    assert second.status_code == 200
    assert second.json()["outcome"] == "ALREADY_PROCESSED"
    assert await ledger.total("teamX") == 25775
    assert len(await ledger.records("cs_evt_1")) == 1
    outcomes = [row.outcome.value for row in await _outcome_log(db_session_factory)]
    assert outcomes == ["APPLIED", "ALREADY_PROCESSED"]


async def test_async_payment_for_credited_session_is_not_double_counted(client, sign, make_event,
                                                                        seeded_teams, ledger):
    completed = make_event(session_id="cs_both", team_id="teamB", amount=50)
    succeeded = make_event(session_id="cs_both", team_id="teamB", amount=50,
                           event_type="checkout.session.async_payment_succeeded")

    assert (await _post(client, sign, completed)).json()["outcome"] == "APPLIED"
    assert (await _post(client, sign, succeeded)).json()["outcome"] == "ALREADY_PROCESSED"
    assert await ledger.total("teamB") == 5050


async def test_unpaid_session_is_ignored_until_payment_succeeds(client, sign, make_event,
                                                               seeded_teams, ledger):
    pending = make_event(session_id="cs_async", team_id="teamB", amount=30, payment_status="unpaid")
    response = await _post(client, sign, pending)
    assert response.status_code == 200
    assert response.json()["outcome"] == "IGNORED"
    assert await ledger.total("teamB") == 5000

    succeeded = make_event(session_id="cs_async", team_id="teamB", amount=30, payment_status="paid",
                           event_type="checkout.session.async_payment_succeeded")
    response = await _post(client, sign, succeeded)
    assert response.json()["outcome"] == "APPLIED"
    assert await ledger.total("teamB") == 5030


async def test_unknown_team_is_acknowledged_and_flagged(client, sign, make_event, seeded_teams,
                                                      ledger, admin_headers):
    response = await _post(client, sign, make_event(session_id="cs_zz", team_id="teamZZZ", amount=25))

    assert response.status_code == 200
    assert response.json()["outcome"] == "FAILED"
    assert await ledger.records() == []
    for team_id, total in seeded_teams.items():
        assert await ledger.total(team_id) == total

    failures = await client.get("/api/v1/admin/reconciliation/failures", headers=admin_headers)
    assert failures.status_code == 200
    rows = failures.json()
    assert len(rows) == 1
    assert rows[0]["notification_key"] == "cs_zz"
    assert rows[0]["error_code"] == "TEAM_NOT_FOUND"
    assert rows[0]["needs_review"] is True


async def test_bad_signature_is_rejected_before_touching_the_ledger(app, client, sign, make_event,
                                                                   seeded_teams, ledger):
    class LedgerTripwire:
        calls = 0

        def __call__(self, *args, **kwargs):
            self.calls += 1
            raise AssertionError("ledger accessed for an unverified notification")

    tripwire = LedgerTripwire()
    app.dependency_overrides[get_session_factory] = lambda: tripwire

    response = await _post(client, sign, make_event(team_id="teamX", amount=25), secret="whsec_wrong")

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VERIFICATION_FAILED"
    assert tripwire.calls == 0
    assert await ledger.total("teamX") == 25750
    assert await ledger.records() == []


async def test_tampered_body_is_rejected(client, sign, make_event, seeded_teams, ledger):
    payload, header = sign(make_event(team_id="teamX", amount=25))
    tampered = payload.replace('"teamX"', '"teamB"')
    response = await client.post(WEBHOOK_URL, content=tampered, headers={"Stripe-Signature": header})

    assert response.status_code == 400
    assert await ledger.total("teamB") == 5000
    assert await ledger.total("teamX") == 25750


async def test_missing_signature_header_is_rejected(client, make_event, seeded_teams, ledger):
    response = await client.post(WEBHOOK_URL, json=make_event())
    assert response.status_code == 400
    assert await ledger.marker_count() == 0


async def test_missing_secret_is_a_server_error(client, sign, make_event, seeded_teams, ledger, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "")
    response = await _post(client, sign, make_event())

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "MISCONFIGURED"
    assert await ledger.marker_count() == 0


async def test_get_is_not_allowed(client):
    response = await client.get(WEBHOOK_URL)
    assert response.status_code == 405


async def test_other_event_types_are_ignored(client, sign, make_event, seeded_teams, ledger, db_session_factory):
    event = make_event(event_type="payment_intent.created")
    response = await _post(client, sign, event)

    assert response.status_code == 200
    assert response.json()["outcome"] == "IGNORED"
    assert await ledger.marker_count() == 0
    log = await _outcome_log(db_session_factory)
    assert [row.outcome.value for row in log] == ["IGNORED"]
    assert log[0].needs_review is False


@pytest.mark.parametrize("kwargs,code", [
    ({"amount_total": 2550}, "INVALID_AMOUNT"),
    ({"amount_total": 0}, "INVALID_AMOUNT"),
    ({"currency": "eur"}, "INVALID_AMOUNT"),
    ({"team_id": None}, "TEAM_NOT_FOUND"),
    ({"team_id": None, "amount_total": 2550}, "TEAM_NOT_FOUND"),
])
async def test_unusable_settlements_fail_without_crediting(client, sign, make_event, seeded_teams,
                                                         ledger, db_session_factory, kwargs, code):
    response = await _post(client, sign, make_event(session_id="cs_bad", **kwargs))

    assert response.status_code == 200
    assert response.json()["outcome"] == "FAILED"
    assert await ledger.total("teamX") == 25750
    log = await _outcome_log(db_session_factory)
    assert log[0].error_code == code
    assert log[0].needs_review is True


async def test_selected_amount_metadata_is_not_credited(client, sign, make_event, seeded_teams, ledger):
    event = make_event(session_id="cs_meta", team_id="teamY", amount=25)
    event["data"]["object"]["metadata"]["selectedAmount"] = "1000"
    response = await _post(client, sign, event)

    assert response.json()["outcome"] == "APPLIED"
    assert await ledger.total("teamY") == 125


async def test_slow_ledger_is_failed_not_retried(client, sign, make_event, seeded_teams, ledger,
                                               db_session_factory, monkeypatch):
    async def slow_apply(*args, **kwargs):
        await asyncio.sleep(5)

    monkeypatch.setattr(settings, "LEDGER_TIMEOUT_SECONDS", 0.05)
    monkeypatch.setattr(reconciliation_service.applier, "apply", slow_apply)

    response = await _post(client, sign, make_event(session_id="cs_slow"))

    assert response.status_code == 200
    assert response.json()["outcome"] == "FAILED"
    log = await _outcome_log(db_session_factory)
    assert log[0].error_code == "STORE_UNAVAILABLE"
    assert "did not finish" in log[0].error_message
    assert await ledger.total("teamX") == 25750


async def test_store_error_during_apply_is_failed(client, sign, make_event, seeded_teams, ledger,
                                                db_session_factory, monkeypatch):
    async def broken_apply(*args, **kwargs):
        raise OperationalError("UPDATE teams", {}, Exception("disk I/O error"))

    monkeypatch.setattr(reconciliation_service.applier, "apply", broken_apply)

    response = await _post(client, sign, make_event(session_id="cs_io"))

    assert response.status_code == 200
    assert response.json()["outcome"] == "FAILED"
    log = await _outcome_log(db_session_factory)
    assert log[0].error_code == "STORE_UNAVAILABLE"
    assert log[0].needs_review is True


async def test_failed_precheck_still_applies(client, sign, make_event, seeded_teams, ledger, monkeypatch):
    async def unreachable(notification_key, session_factory):
        raise OperationalError("SELECT", {}, Exception("timeout"))

    monkeypatch.setattr(reconciliation_service.guard, "_lookup", unreachable)

    response = await _post(client, sign, make_event(session_id="cs_pre", team_id="teamY", amount=10))

    assert response.json()["outcome"] == "APPLIED"
    assert await ledger.total("teamY") == 110


async def test_concurrent_deliveries_over_http(client, sign, make_event, seeded_teams, ledger):
    payload, header = sign(make_event(session_id="cs_race", team_id="teamY", amount=10))
    headers = {"Stripe-Signature": header, "Content-Type": "application/json"}

    responses = await asyncio.gather(*[client.post(WEBHOOK_URL, content=payload, headers=headers)
                                       for _ in range(5)])

    assert all(r.status_code == 200 for r in responses)
    outcomes = sorted(r.json()["outcome"] for r in responses)
    assert outcomes.count("APPLIED") == 1, outcomes
    assert outcomes.count("ALREADY_PROCESSED") == 4, outcomes
    assert await ledger.total("teamY") == 110
