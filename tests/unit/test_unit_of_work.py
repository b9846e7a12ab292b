"""Transaction boundary and transient-failure retry tests."""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from loyalty.checkins.schemas import Coordinates
from loyalty.db.models import User
from loyalty.db.unit_of_work import is_transient
from loyalty.errors import TransientStorageError

AT_ORIGIN = Coordinates(latitude=40.7580, longitude=-73.9855)


class TestIsTransient:
    def test_operational_error(self):
        assert is_transient(OperationalError("UPDATE users", {}, Exception("database is locked")))

    def test_invalidated_connection(self):
        exc = DBAPIError("SELECT 1", {}, Exception("connection reset"), connection_invalidated=True)
        assert is_transient(exc)

    def test_integrity_error_is_not_transient(self):
        assert not is_transient(IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed")))


class TestTransaction:
    @pytest.mark.asyncio
    async def test_commits_on_success(self, uow, session_factory):
        async with uow.transaction() as db:
            db.add(User(display_name="committed"))

        async with session_factory() as db:
            names = (await db.execute(select(User.display_name))).scalars().all()
        assert names == ["committed"]

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, uow, session_factory):
        with pytest.raises(RuntimeError):
            async with uow.transaction() as db:
                db.add(User(display_name="discarded"))
                await db.flush()
                raise RuntimeError("boom")

        async with session_factory() as db:
            assert (await db.execute(select(User))).first() is None

    @pytest.mark.asyncio
    async def test_operational_error_becomes_transient(self, uow):
        with pytest.raises(TransientStorageError):
            async with uow.transaction():
                raise OperationalError("UPDATE users", {}, Exception("database is locked"))

    @pytest.mark.asyncio
    async def test_other_driver_errors_pass_through(self, uow):
        with pytest.raises(IntegrityError):
            async with uow.transaction():
                raise IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed"))


class TestEngineRetry:
    @pytest.mark.asyncio
    async def test_checkin_retried_after_transient_failure(self, engine, factory, monkeypatch):
        import loyalty.engine as engine_module

        user_id = await factory.user()
        dest_id = await factory.destination(points_reward=50)
        real_record = engine_module.record_checkin
        calls = 0

        async def flaky_record(*args, **kwargs):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise OperationalError("INSERT INTO checkins", {}, Exception("database is locked"))
            return await real_record(*args, **kwargs)

        monkeypatch.setattr(engine_module, "record_checkin", flaky_record)

        result = await engine.validate_and_record_checkin(user_id, dest_id, AT_ORIGIN, "gps")

        assert calls == 2
        assert result.ledger_entry.balance_after == 50
        assert await factory.ledger_count(user_id) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_configured_attempts(self, engine, factory, monkeypatch):
        import loyalty.engine as engine_module

        user_id = await factory.user()
        dest_id = await factory.destination()
        calls = 0

        async def always_locked(*args, **kwargs):
            nonlocal calls
            calls += 1
            raise OperationalError("INSERT INTO checkins", {}, Exception("database is locked"))

        monkeypatch.setattr(engine_module, "record_checkin", always_locked)

        with pytest.raises(TransientStorageError):
            await engine.validate_and_record_checkin(user_id, dest_id, AT_ORIGIN, "gps")
        assert calls == engine.settings.transient_retry_attempts
        assert await engine.current_balance(user_id) == 0
