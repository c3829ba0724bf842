from datetime import date, datetime, time, timedelta, timezone
from typing import Any, AsyncIterator, cast

import pytest
from app.config import get_settings
from app.deps import get_session
from app.domain.errors import NotFoundError, PersistenceError
from app.domain.services import AvailabilityResult
from app.main import app
from app.routers import availability as router
from fastapi import HTTPException
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

MONDAY = date(2030, 1, 7)


class DummySession:
    """Minimal async session stub that supports `async with session.begin()`."""

    async def __aenter__(self) -> "DummySession":
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        return False

    def begin(self) -> "DummySession":
        return self


def _fake_calculator(result: AvailabilityResult | None = None, error: Exception | None = None):
    calls: list[dict[str, Any]] = []

    class FakeCalculator:
        def __init__(self, repo: object, *, tz: object) -> None:
            self.repo = repo

        async def compute(self, **kwargs: Any) -> AvailabilityResult:
            calls.append(kwargs)
            if error is not None:
                raise error
            return result or AvailabilityResult()

    return FakeCalculator, calls


async def _call(**overrides: Any) -> Any:
    params: dict[str, Any] = dict(
        condo_id=1,
        amenity_id=1,
        start=MONDAY,
        days=2,
        from_=None,
        to=None,
        user_id=None,
        session=cast(AsyncSession, DummySession()),
    )
    params.update(overrides)
    return await router.get_availability(**params)


def test_resolve_range_from_start_and_days(tz) -> None:
    now = datetime(2030, 1, 1, 12, 0, tzinfo=tz)
    assert router._resolve_range(start=MONDAY, days=3, from_=None, to=None, tz=tz, now=now) == (
        MONDAY,
        MONDAY + timedelta(days=3),
    )


def test_resolve_range_defaults_to_condo_today(tz) -> None:
    # 01:00 UTC on the 8th is still the 7th in the condo.
    now = datetime(2030, 1, 8, 1, 0, tzinfo=timezone.utc)
    assert router._resolve_range(start=None, days=1, from_=None, to=None, tz=tz, now=now) == (
        MONDAY,
        MONDAY + timedelta(days=1),
    )


def test_resolve_range_from_instants(tz) -> None:
    from_ = datetime(2030, 1, 7, 10, 0, tzinfo=tz)
    to = datetime(2030, 1, 9, 9, 0, tzinfo=tz)
    now = datetime(2030, 1, 1, tzinfo=tz)
    assert router._resolve_range(start=None, days=30, from_=from_, to=to, tz=tz, now=now) == (
        MONDAY,
        MONDAY + timedelta(days=2),
    )


def test_resolve_range_converts_utc_instants_to_condo_days(tz) -> None:
    from_ = datetime(2030, 1, 7, 2, 0, tzinfo=timezone.utc)  # 23:00 on the 6th locally
    to = from_ + timedelta(hours=12)
    now = datetime(2030, 1, 1, tzinfo=tz)
    assert router._resolve_range(start=None, days=30, from_=from_, to=to, tz=tz, now=now) == (
        date(2030, 1, 6),
        MONDAY,
    )


@pytest.mark.parametrize(
    ("from_", "to"),
    [
        (datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc), None),
        (datetime(2030, 1, 7, 10, 0), datetime(2030, 1, 8, 10, 0)),
        (datetime(2030, 1, 8, tzinfo=timezone.utc), datetime(2030, 1, 7, tzinfo=timezone.utc)),
    ],
)
def test_resolve_range_rejects_bad_instants(tz, from_, to) -> None:
    with pytest.raises(ValueError):
        router._resolve_range(start=None, days=30, from_=from_, to=to, tz=tz, now=datetime.now(tz))


@pytest.mark.asyncio
async def test_get_availability_serializes_dates_and_flags(monkeypatch: pytest.MonkeyPatch) -> None:
    result = AvailabilityResult(
        availability={MONDAY: [time(10, 0), time(11, 0)]},
        user_limit_by_date={MONDAY: True},
    )
    fake, calls = _fake_calculator(result)
    monkeypatch.setattr(router, "SqlAlchemyReservationRepository", lambda s: s)
    monkeypatch.setattr(router, "AvailabilityCalculator", fake)

    read = await _call(user_id=42)

    assert read.model_dump(by_alias=True) == {
        "availability": {"2030-01-07": ["10:00", "11:00"]},
        "userLimitByDate": {"2030-01-07": True},
    }
    assert calls[0]["start_date"] == MONDAY
    assert calls[0]["end_date"] == MONDAY + timedelta(days=2)
    assert calls[0]["user_id"] == 42


@pytest.mark.asyncio
async def test_get_availability_maps_not_found_to_404(monkeypatch: pytest.MonkeyPatch) -> None:
    fake, _ = _fake_calculator(error=NotFoundError("amenity not found"))
    monkeypatch.setattr(router, "SqlAlchemyReservationRepository", lambda s: s)
    monkeypatch.setattr(router, "AvailabilityCalculator", fake)
    with pytest.raises(HTTPException) as excinfo:
        await _call()
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_get_availability_maps_persistence_error_to_500(monkeypatch: pytest.MonkeyPatch) -> None:
    fake, _ = _fake_calculator(error=PersistenceError("down"))
    monkeypatch.setattr(router, "SqlAlchemyReservationRepository", lambda s: s)
    monkeypatch.setattr(router, "AvailabilityCalculator", fake)
    with pytest.raises(HTTPException) as excinfo:
        await _call()
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_get_availability_rejects_naive_instants() -> None:
    with pytest.raises(HTTPException) as excinfo:
        await _call(start=None, from_=datetime(2030, 1, 7, 10, 0), to=datetime(2030, 1, 8, 10, 0))
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_availability_endpoint_over_http(
    monkeypatch: pytest.MonkeyPatch, make_amenity, make_rule, make_repo
) -> None:
    repo = make_repo(
        amenities=[make_amenity(max_capacity=2)],
        rules=[make_rule(day_of_week=d, max_lead_time_days=None, reservations_per_user_day=1) for d in range(7)],
    )
    monkeypatch.setattr(router, "SqlAlchemyReservationRepository", lambda s: repo)

    async def override_get_session() -> AsyncIterator[DummySession]:
        yield DummySession()

    app.dependency_overrides[get_session] = override_get_session
    target = datetime.now(get_settings().condo_tz).date() + timedelta(days=2)
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get(
                "/condos/1/amenities/1/availability",
                params={"start": target.isoformat(), "days": 1, "user_id": 42},
            )
            missing = await client.get("/condos/1/amenities/2/availability")
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 200
    assert resp.json() == {
        "availability": {target.isoformat(): ["09:00", "10:00", "11:00"]},
        "userLimitByDate": {},
    }
    assert resp.headers.get("X-Request-ID")
    assert missing.status_code == 404
