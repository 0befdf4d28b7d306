"""
Tests for the Court Context and Settings
========================================
"""

import pytest

from bear_court.config import Settings
from bear_court.context import ContextState, CourtContext
from bear_court.errors import StoreUnavailable
from bear_court.schemas import OracleMode, Role, StoreBackend
from bear_court.store import MemoryCaseStore, RedisCaseStore, create_store

from fakes import FakeOracle


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestSettings:
    """Tests for Settings helpers"""

    def test_defaults(self):
        settings = make_settings()
        assert settings.oracle_mode == OracleMode.NONE
        assert settings.store_backend == StoreBackend.MEMORY
        assert settings.oracle_temperature == 1.3
        assert settings.case_code_length == 6

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("ORACLE_MODE", "deepseek")
        monkeypatch.setenv("RATE_LIMIT_COOLDOWN_SECONDS", "30")
        settings = make_settings()
        assert settings.oracle_mode == OracleMode.DEEPSEEK
        assert settings.rate_limit_cooldown_seconds == 30

    def test_oracle_warnings(self):
        assert any("DEEPSEEK_API_KEY" in w for w in make_settings(oracle_mode="deepseek").validate_oracle_config())
        assert any("JUDGE_PROXY_URL" in w for w in make_settings(oracle_mode="proxy").validate_oracle_config())
        configured = make_settings(oracle_mode="deepseek", deepseek_api_key="k", jwt_secret_key="s")
        assert configured.validate_oracle_config() == []

    def test_cors_origins(self):
        settings = make_settings(cors_allow_origins=' "https://a.example/" , https://b.example,, ')
        assert settings.cors_origins() == ["https://a.example", "https://b.example"]

    def test_store_factory(self):
        assert isinstance(create_store(make_settings()), MemoryCaseStore)
        store = create_store(make_settings(store_backend="redis", app_id="x"))
        assert isinstance(store, RedisCaseStore)
        assert store.app_id == "x"


class TestCourtContext:
    """Tests for the CourtContext lifecycle"""

    @pytest.mark.asyncio
    async def test_lifecycle(self):
        oracle = FakeOracle()
        court = CourtContext(settings=make_settings(), store=MemoryCaseStore(), oracle=oracle)
        assert court.state == ContextState.CREATED
        with pytest.raises(StoreUnavailable):
            court.machine

        await court.init()
        assert court.ready
        code = await court.machine.create_case(Role.A, "alice")
        assert (await court.feedback.get_stats()).total == 0

        await court.dispose()
        assert court.state == ContextState.DISPOSED
        assert oracle.closed is True
        assert court.store.connected is False
        with pytest.raises(StoreUnavailable):
            await court.machine.join_case(code, "alice")

    @pytest.mark.asyncio
    async def test_disposed_context_cannot_restart(self):
        court = CourtContext(settings=make_settings(), store=MemoryCaseStore(), oracle=FakeOracle())
        await court.init()
        await court.dispose()
        with pytest.raises(StoreUnavailable):
            await court.init()

    @pytest.mark.asyncio
    async def test_async_context_manager(self):
        async with CourtContext(settings=make_settings(), store=MemoryCaseStore(), oracle=FakeOracle()) as court:
            assert court.ready
        assert court.state == ContextState.DISPOSED

    @pytest.mark.asyncio
    async def test_guard_built_from_settings(self):
        court = CourtContext(
            settings=make_settings(adjudication_debounce_seconds=2, rate_limit_cooldown_seconds=10),
            store=MemoryCaseStore(),
            oracle=FakeOracle(),
        )
        assert court.guard.debounce_seconds == 2
        assert court.guard.cooldown_seconds == 10
