"""AuthEngine: central engine client owning the auth stores and services."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from neosynth.errors.neosynth_errors import MisconfiguredError
from neosynth.utils.crypto import TotpCipher, random_hex

if TYPE_CHECKING:
    from neosynth.config.settings import AppConfig
    from neosynth.datastore.client import Datastore
    from neosynth.engine.ratelimit import RateLimiter
    from neosynth.engine.services.api_key_service import ApiKeyService
    from neosynth.engine.services.device_service import DeviceService
    from neosynth.engine.services.login_service import LoginService
    from neosynth.engine.services.second_factor_service import SecondFactorService
    from neosynth.engine.services.session_service import SessionService
    from neosynth.engine.services.user_service import UserService
    from neosynth.engine.step_tokens import StepTokenStore
    from neosynth.metrics.collector import AuthMetrics
    from neosynth.taskmanager.manager import TaskManager

logger = logging.getLogger(__name__)

# Error messages
_ERR_NOT_INITIALIZED = "Engine not initialized. Call initialize() first."


def check_secrets(config: AppConfig) -> TotpCipher:
    """Validate the server-held secrets, failing closed.

    Returns:
        The TOTP seed cipher built from the configured key.

    Raises:
        MisconfiguredError: If the TOTP key is absent or malformed, or no
            cookie secret is configured in production.
    """
    cipher = TotpCipher.from_hex(config.auth.totp_encryption_key)
    if config.auth.production and not config.auth.cookie_secret:
        msg = "Cookie secret must be configured in production"
        raise MisconfiguredError(msg)
    return cipher


class AuthEngine:
    """Central engine that owns all auth services and infrastructure.

    The step-token store and the rate limiter are process-local objects
    owned here; both can be injected (tests, or a shared backend).
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        rate_limiter: RateLimiter | None = None,
        step_tokens: StepTokenStore | None = None,
        metrics: AuthMetrics | None = None,
    ) -> None:
        """Initialize engine with configuration.

        Args:
            config: Application configuration.
            rate_limiter: Limiter backend; defaults to the in-memory sliding window.
            step_tokens: Step-token store; defaults to an in-memory store.
            metrics: Metrics sink; defaults to a fresh registry.
        """
        self._config = config
        self._initialized = False

        # Infrastructure components
        self._datastore: Datastore | None = None
        self._totp_cipher: TotpCipher | None = None
        self._cookie_secret: str = config.auth.cookie_secret
        self._rate_limiter = rate_limiter
        self._step_tokens = step_tokens

        # Services
        self._session_service: SessionService | None = None
        self._api_key_service: ApiKeyService | None = None
        self._device_service: DeviceService | None = None
        self._second_factor_service: SecondFactorService | None = None
        self._login_service: LoginService | None = None
        self._user_service: UserService | None = None
        self._task_manager: TaskManager | None = None
        self._metrics: AuthMetrics | None = metrics

    async def initialize(self) -> None:
        """Validate secrets, open the datastore and start services.

        Raises:
            RuntimeError: If already initialized.
            MisconfiguredError: If a required secret is missing or malformed.
        """
        if self._initialized:
            msg = "Engine already initialized"
            raise RuntimeError(msg)

        self._totp_cipher = check_secrets(self._config)
        if not self._cookie_secret:
            self._cookie_secret = random_hex(32)
            logger.warning(
                "No cookie secret configured; using an ephemeral one. "
                "Signed session cookies will not survive a restart."
            )

        # Import here to avoid circular deps
        from neosynth.datastore.client import Datastore
        from neosynth.engine.ratelimit import SlidingWindowRateLimiter
        from neosynth.engine.step_tokens import StepTokenStore

        self._datastore = Datastore(self._config.db)
        await self._datastore.open()

        if self._rate_limiter is None:
            self._rate_limiter = SlidingWindowRateLimiter()
        if self._step_tokens is None:
            self._step_tokens = StepTokenStore(ttl_seconds=self._config.auth.step_token_ttl_seconds)

        if self._metrics is None:
            from neosynth.metrics.collector import AuthMetrics

            self._metrics = AuthMetrics()

        # Initialize services
        from neosynth.engine.services.api_key_service import ApiKeyService
        from neosynth.engine.services.device_service import DeviceService
        from neosynth.engine.services.login_service import LoginService
        from neosynth.engine.services.second_factor_service import SecondFactorService
        from neosynth.engine.services.session_service import SessionService
        from neosynth.engine.services.user_service import UserService

        self._session_service = SessionService(self)
        self._api_key_service = ApiKeyService(self)
        self._device_service = DeviceService(self)
        self._second_factor_service = SecondFactorService(self)
        self._login_service = LoginService(self)
        self._user_service = UserService(self)

        # Initialize task manager and register sweeps
        from functools import partial

        from neosynth.taskmanager.manager import CronJob, TaskManager
        from neosynth.taskmanager.tasks import (
            task_sweep_api_keys,
            task_sweep_sessions,
            task_sweep_step_tokens,
            task_sweep_temp_codes,
        )

        task_cfg = self._config.task
        if task_cfg.enabled:
            self._task_manager = TaskManager(metrics=self._metrics)
            # The datastore sweeps also run at startup to clear rows that
            # expired while the service was down.
            sweeps = (
                ("session_sweep", task_sweep_sessions, task_cfg.session_sweep_period, True),
                ("step_token_sweep", task_sweep_step_tokens, task_cfg.step_token_sweep_period, False),
                ("temp_code_sweep", task_sweep_temp_codes, task_cfg.temp_code_sweep_period, True),
                ("api_key_sweep", task_sweep_api_keys, task_cfg.api_key_sweep_period, True),
            )
            for name, task, period, on_start in sweeps:
                self._task_manager.register(
                    name, CronJob(handler=partial(task, self), period=period, run_on_start=on_start)
                )
            await self._task_manager.start()

        self._initialized = True
        logger.info("Auth engine initialized")

    async def close(self) -> None:
        """Gracefully shut down all services and connections.

        Can be called multiple times (idempotent).
        """
        if not self._initialized:
            return

        # Stop task manager first (depends on services)
        if self._task_manager is not None:
            await self._task_manager.stop()
            self._task_manager = None

        if self._api_key_service is not None:
            await self._api_key_service.drain_usage_tasks()

        self._session_service = None
        self._api_key_service = None
        self._device_service = None
        self._second_factor_service = None
        self._login_service = None
        self._user_service = None
        self._metrics = None

        if self._step_tokens is not None:
            self._step_tokens.clear()
        if self._rate_limiter is not None:
            self._rate_limiter.clear()

        if self._datastore is not None:
            await self._datastore.close()
            self._datastore = None

        self._initialized = False

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def datastore(self) -> Datastore:
        """Get the datastore instance.

        Raises:
            RuntimeError: If engine not initialized.
        """
        if self._datastore is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._datastore

    @property
    def totp_cipher(self) -> TotpCipher:
        if self._totp_cipher is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._totp_cipher

    @property
    def cookie_secret(self) -> str:
        return self._cookie_secret

    @property
    def rate_limiter(self) -> RateLimiter:
        if self._rate_limiter is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._rate_limiter

    @property
    def step_tokens(self) -> StepTokenStore:
        if self._step_tokens is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._step_tokens

    @property
    def sessions(self) -> SessionService:
        if self._session_service is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._session_service

    @property
    def api_keys(self) -> ApiKeyService:
        if self._api_key_service is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._api_key_service

    @property
    def devices(self) -> DeviceService:
        if self._device_service is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._device_service

    @property
    def second_factor(self) -> SecondFactorService:
        if self._second_factor_service is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._second_factor_service

    @property
    def logins(self) -> LoginService:
        if self._login_service is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._login_service

    @property
    def users(self) -> UserService:
        if self._user_service is None:
            raise RuntimeError(_ERR_NOT_INITIALIZED)
        return self._user_service

    @property
    def metrics(self) -> AuthMetrics | None:
        """Get the auth metrics (None if not initialized)."""
        return self._metrics

    @property
    def task_manager(self) -> TaskManager | None:
        """Get the task manager (None if not enabled)."""
        return self._task_manager

    async def health_check(self) -> dict[str, str]:
        """Report component status ('ok', 'degraded', 'error', 'not_initialized')."""
        status = {
            "engine": "ok" if self._initialized else "not_initialized",
            "datastore": "unknown",
            "tasks": "disabled",
        }
        if self._initialized:
            status["datastore"] = "ok" if self._datastore and await self._datastore.ping() else "error"
            if self._task_manager is not None:
                tm = self._task_manager
                if not tm.is_running:
                    status["tasks"] = "error"
                else:
                    status["tasks"] = "ok" if tm.healthy else "degraded"
        return status
