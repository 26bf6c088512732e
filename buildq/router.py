"""Provider Router: abstract role → configured provider + credential."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

import httpx

from .config import Config
from .errors import MissingCredentialError, ProviderFailure
from .models import ALL_ROLES, Role
from .providers import HttpTextGen, TextGen

logger = logging.getLogger(__name__)


@dataclass
class RoleProvider:
    """A role resolved to a concrete provider for one invocation."""

    role: Role
    provider: str
    model: str
    text_gen: TextGen

    @property
    def name(self) -> str:
        return f"{self.provider}/{self.model}"


def _http_factory(provider: str, model: str, api_key: str, config: Config) -> TextGen:
    return HttpTextGen(
        provider, model, api_key,
        max_retries=max(config.budgets.provider_max_attempts - 1, 0),
    )


class ProviderRouter:
    """Resolve roles against the current configuration.

    ``load`` is called on every resolution, so a credential added mid-session
    becomes usable on the next call and a missing one is never cached.
    """

    def __init__(
        self,
        load: Callable[[], Config],
        factory: Callable[[str, str, str, Config], TextGen] = _http_factory,
    ):
        self._load = load
        self._factory = factory

    @classmethod
    def for_config(cls, config: Config, **kwargs) -> "ProviderRouter":
        return cls(lambda: config, **kwargs)

    def is_ready(self, role: Role) -> bool:
        config = self._load()
        return bool(config.api_key(config.role(role).provider))

    def missing_roles(self, roles: Iterable[Role] = ALL_ROLES) -> list[Role]:
        """Unready roles among ``roles``, in canonical order."""
        wanted = set(roles)
        return [r for r in ALL_ROLES if r in wanted and not self.is_ready(r)]

    def readiness(self) -> list[tuple[Role, str, bool]]:
        config = self._load()
        rows = []
        for role in ALL_ROLES:
            rc = config.role(role)
            rows.append((role, f"{rc.provider}/{rc.model}", bool(config.api_key(rc.provider))))
        return rows

    def resolve(self, role: Role) -> RoleProvider:
        config = self._load()
        rc = config.role(role)
        api_key = config.api_key(rc.provider)
        if not api_key:
            raise MissingCredentialError([role])
        return RoleProvider(
            role=role,
            provider=rc.provider,
            model=rc.model,
            text_gen=self._factory(rc.provider, rc.model, api_key, config),
        )

    async def invoke(self, role: Role, system: str, user: str) -> str:
        """Ask ``role`` for a completion. Transport errors become ProviderFailure."""
        provider = self.resolve(role)
        logger.debug("invoking %s via %s", role.value, provider.name)
        try:
            return await provider.text_gen.chat(system, user)
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderFailure(
                f"{role.label} ({provider.name}) call failed: {exc}"
            ) from exc
