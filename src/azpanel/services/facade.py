"""Facade over the Azure CLI: cached reads, invalidating writes, live logs."""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any

from azpanel.config import PanelConfig
from azpanel.models import (
    AccountStatus,
    AppIdentityInfo,
    AppRuntimeInfo,
    AppRuntimeState,
    AzureAccount,
    AzureResource,
    AzureResourceGroup,
    AzureSubscription,
)
from azpanel.redaction import redact
from azpanel.runner.base import (
    EXIT_CANCELLED,
    AzCancelledError,
    AzCliError,
    AzCommand,
    AzParseError,
    AzResult,
    CliRunner,
    describe_failure,
    error_from_result,
)
from azpanel.util.cache import TTLCache
from azpanel.util.cancellation import CancelToken, OperationCancelledError
from azpanel.util.retry import with_backoff

from .output import OutputSink
from .parsing import get_str, parse_json_list, parse_json_object, tenant_from_issuer

logger = logging.getLogger(__name__)

# Resource types shown by the panel
MANAGED_RESOURCE_TYPES = frozenset(
    t.casefold()
    for t in ("Microsoft.Web/sites", "Microsoft.Web/staticSites", "Microsoft.App/containerApps")
)

# Levels accepted by `az webapp log config --level`
WEBAPP_LOG_LEVELS = ("error", "warning", "information", "verbose")

PORTAL_URL = "https://portal.azure.com/"

SOURCE_EASY_AUTH = "EasyAuth/Entra ID"
SOURCE_MANAGED_IDENTITY = "Managed Identity (System-assigned)"
SOURCE_NONE = "N/A (no AAD app configured)"

# Cache key families invalidated by mutations
WEBAPP_PREFIX = "webapp:"
CONTAINERAPP_PREFIX = "containerapp:"


def _app_args(resource_group: str, name: str) -> tuple[str, ...]:
    return ("-g", resource_group, "-n", name)


class AzureCliFacade:
    """High-level Azure operations built on a CliRunner.

    Reads go through the TTL cache and are retried with backoff; every
    attempt is published to the output sink. Mutations run exactly once and
    invalidate the cache family they affect. Identity changes (login, logout,
    switching subscription) clear the whole cache.

    At most ``config.max_concurrency`` batch processes run at once.

    Raises (from operations):
        AzCommandError: A command failed (AzSpawnError, AzCancelledError)
        AzParseError: A command's output was not the expected JSON
    """

    def __init__(
        self,
        runner: CliRunner,
        config: PanelConfig | None = None,
        cache: TTLCache[AzResult] | None = None,
        output: OutputSink | None = None,
    ) -> None:
        """Initialize the facade.

        Args:
            runner: Executes the commands
            config: Cache, retry and concurrency settings (defaults if None)
            cache: Result cache (a fresh one if None)
            output: Sink receiving every result (a fresh one if None)
        """
        self._runner = runner
        self._config = config or PanelConfig()
        self._cache: TTLCache[AzResult] = (
            cache if cache is not None else TTLCache(should_cache=lambda r: r.success)
        )
        self._output = output or OutputSink()
        self._slots = asyncio.Semaphore(self._config.max_concurrency)

    @property
    def az_path(self) -> str | None:
        return self._runner.az_path

    @property
    def output(self) -> OutputSink:
        return self._output

    @property
    def cache(self) -> TTLCache[AzResult]:
        return self._cache

    # --- Account and identity ---

    async def get_account(self, cancel_token: CancelToken | None = None) -> AccountStatus:
        """Report the signed-in account without raising for "not signed in".

        Never cached or retried: the answer must reflect the current login.
        """
        result = await self._run(AzCommand("account show"), cancel_token)
        self._output.publish(result)
        if not result.success:
            return AccountStatus(signed_in=False, error=describe_failure(result))

        try:
            data = parse_json_object(result)
        except AzParseError:
            return AccountStatus(signed_in=False, error="Failed to parse az account show output.")

        user = data.get("user") if isinstance(data.get("user"), dict) else {}
        account = AzureAccount(
            subscription_id=get_str(data, "id") or "",
            subscription_name=get_str(data, "name") or "",
            tenant_id=get_str(data, "tenantId") or "",
            user_name=get_str(user, "name"),
            user_type=get_str(user, "type"),
            environment_name=get_str(data, "environmentName"),
        )
        return AccountStatus(signed_in=True, account=account)

    async def login(self, cancel_token: CancelToken | None = None) -> None:
        """Interactive ``az login``; clears every cached read."""
        await self._mutate(AzCommand("login", expect_json=False), cancel_token, clear=True)

    async def logout(self, cancel_token: CancelToken | None = None) -> None:
        await self._mutate(AzCommand("logout", expect_json=False), cancel_token, clear=True)

    async def switch_subscription(
        self, subscription_id: str, cancel_token: CancelToken | None = None
    ) -> None:
        """Make a subscription active; clears every cached read."""
        command = AzCommand("account set", ("--subscription", subscription_id), expect_json=False)
        await self._mutate(command, cancel_token, clear=True)

    async def list_subscriptions(
        self, cancel_token: CancelToken | None = None
    ) -> list[AzureSubscription]:
        result = await self._query(AzCommand("account list"), "account:list", cancel_token)
        return [
            AzureSubscription(
                id=get_str(item, "id") or "",
                name=get_str(item, "name") or "",
                tenant_id=get_str(item, "tenantId") or "",
                state=get_str(item, "state") or "",
                is_default=item.get("isDefault") is True,
            )
            for item in parse_json_list(result)
        ]

    # --- Resource groups and resources ---

    async def list_resource_groups(
        self, cancel_token: CancelToken | None = None
    ) -> list[AzureResourceGroup]:
        """All resource groups in the active subscription, sorted by name."""
        result = await self._query(AzCommand("group list"), "group:list", cancel_token)
        groups = [
            AzureResourceGroup(
                name=get_str(item, "name") or "",
                location=get_str(item, "location") or "",
            )
            for item in parse_json_list(result)
        ]
        return sorted(groups, key=lambda g: g.name.casefold())

    async def list_resources_in_group(
        self, resource_group: str, cancel_token: CancelToken | None = None
    ) -> list[AzureResource]:
        """Web apps, static sites and container apps in a group, sorted by name."""
        command = AzCommand("resource list", ("-g", resource_group))
        result = await self._query(command, f"resource:list:{resource_group}", cancel_token)

        resources = []
        for item in parse_json_list(result):
            resource_type = get_str(item, "type") or ""
            if resource_type.casefold() not in MANAGED_RESOURCE_TYPES:
                continue
            resources.append(
                AzureResource(
                    id=get_str(item, "id") or "",
                    name=get_str(item, "name") or "",
                    type=resource_type,
                    resource_group=resource_group,
                    location=get_str(item, "location") or "",
                    kind=get_str(item, "kind"),
                )
            )
        return sorted(resources, key=lambda r: r.name.casefold())

    async def list_all_resources(
        self,
        resource_groups: list[str] | None = None,
        cancel_token: CancelToken | None = None,
    ) -> dict[str, list[AzureResource]]:
        """List resources across many groups concurrently.

        The per-command concurrency bound keeps the fan-out to at most
        ``max_concurrency`` live child processes.

        Args:
            resource_groups: Groups to list (all groups if None)
            cancel_token: Optional cancellation token

        Returns:
            Resources keyed by group name, in the order the groups were given

        Raises:
            AzCliError: The first failing group's error; the remaining
                listings are cancelled and their processes killed
        """
        if resource_groups is None:
            resource_groups = [g.name for g in await self.list_resource_groups(cancel_token)]

        try:
            async with asyncio.TaskGroup() as group:
                tasks = [
                    group.create_task(self.list_resources_in_group(rg, cancel_token))
                    for rg in resource_groups
                ]
        except ExceptionGroup as e:
            raise e.exceptions[0] from None
        return {rg: task.result() for rg, task in zip(resource_groups, tasks, strict=True)}

    # --- Web apps ---

    async def get_webapp_runtime(
        self, resource_group: str, name: str, cancel_token: CancelToken | None = None
    ) -> AppRuntimeInfo:
        result = await self._query(
            AzCommand("webapp show", _app_args(resource_group, name)),
            f"webapp:show:{resource_group}:{name}",
            cancel_token,
        )
        data = parse_json_object(result)

        state = (get_str(data, "state") or "").casefold()
        if state == "running":
            runtime_state = AppRuntimeState.RUNNING
        elif state == "stopped":
            runtime_state = AppRuntimeState.STOPPED
        else:
            runtime_state = AppRuntimeState.UNKNOWN

        host_names = data.get("hostNames")
        if not isinstance(host_names, list):
            host_names = []
        hosts = tuple(h for h in host_names if isinstance(h, str) and h.strip())
        return AppRuntimeInfo(runtime_state, hosts)

    async def get_webapp_identity(
        self, resource_group: str, name: str, cancel_token: CancelToken | None = None
    ) -> AppIdentityInfo:
        """Work out how a web app authenticates.

        Combines the app's managed identity, its EasyAuth (Entra ID)
        registration and the active account. Failures of the individual
        lookups are tolerated; whatever was found is reported.

        The tenant comes from the auth issuer, then the managed identity,
        then the signed-in account.
        """
        raw: dict[str, str] = {}
        principal_id: str | None = None
        identity_tenant: str | None = None
        auth_tenant: str | None = None
        client_id: str | None = None

        show = await self._run_cached(
            AzCommand("webapp show", _app_args(resource_group, name)),
            f"webapp:show:{resource_group}:{name}",
            cancel_token,
        )
        identity = (_try_parse_object(show) or {}).get("identity")
        if isinstance(identity, dict):
            principal_id = get_str(identity, "principalId")
            identity_tenant = get_str(identity, "tenantId")
            if principal_id:
                raw["managedIdentity.principalId"] = principal_id
            if identity_tenant:
                raw["managedIdentity.tenantId"] = identity_tenant

        auth_result = await self._run_cached(
            AzCommand("webapp auth show", _app_args(resource_group, name)),
            f"webapp:auth:{resource_group}:{name}",
            cancel_token,
        )
        auth = _try_parse_object(auth_result)
        if auth is not None:
            client_id = get_str(auth, "clientId")
            issuer = get_str(auth, "issuer")
            if issuer and issuer.strip():
                raw["auth.issuer"] = issuer
                auth_tenant = tenant_from_issuer(issuer)

            registration = ("identityProviders", "azureActiveDirectory", "registration")
            client_id = client_id or get_str(auth, *registration, "clientId")
            open_id_issuer = get_str(auth, *registration, "openIdIssuer")
            if open_id_issuer and open_id_issuer.strip():
                raw["auth.openIdIssuer"] = open_id_issuer
                auth_tenant = auth_tenant or tenant_from_issuer(open_id_issuer)

            if client_id:
                raw["auth.clientId"] = client_id
            if auth_tenant:
                raw["auth.tenantId"] = auth_tenant

        status = await self.get_account(cancel_token)
        account_tenant = status.account.tenant_id if status.account else ""
        tenant_id = auth_tenant or identity_tenant or account_tenant

        if client_id and client_id.strip():
            return AppIdentityInfo(tenant_id, client_id, principal_id, SOURCE_EASY_AUTH, raw)
        if principal_id and principal_id.strip():
            return AppIdentityInfo(tenant_id, None, principal_id, SOURCE_MANAGED_IDENTITY, raw)
        return AppIdentityInfo(tenant_id, None, None, SOURCE_NONE, raw)

    async def webapp_start(
        self, resource_group: str, name: str, cancel_token: CancelToken | None = None
    ) -> None:
        command = AzCommand("webapp start", _app_args(resource_group, name), expect_json=False)
        await self._mutate(command, cancel_token, invalidate=WEBAPP_PREFIX)

    async def webapp_stop(
        self, resource_group: str, name: str, cancel_token: CancelToken | None = None
    ) -> None:
        command = AzCommand("webapp stop", _app_args(resource_group, name), expect_json=False)
        await self._mutate(command, cancel_token, invalidate=WEBAPP_PREFIX)

    async def webapp_restart(
        self, resource_group: str, name: str, cancel_token: CancelToken | None = None
    ) -> None:
        command = AzCommand("webapp restart", _app_args(resource_group, name), expect_json=False)
        await self._mutate(command, cancel_token, invalidate=WEBAPP_PREFIX)

    async def webapp_log_config(
        self,
        resource_group: str,
        name: str,
        level: str = "information",
        cancel_token: CancelToken | None = None,
    ) -> str:
        """Turn on filesystem application and web server logging.

        Returns:
            The updated logging configuration as reported by the CLI

        Raises:
            ValueError: If level is not one of WEBAPP_LOG_LEVELS
        """
        if level not in WEBAPP_LOG_LEVELS:
            raise ValueError(f"Unknown log level {level!r}, expected one of {WEBAPP_LOG_LEVELS}")
        command = AzCommand(
            "webapp log config",
            (
                *_app_args(resource_group, name),
                "--application-logging", "filesystem",
                "--level", level,
                "--web-server-logging", "filesystem",
                "--detailed-error-messages", "true",
                "--failed-request-tracing", "true",
            ),
        )
        result = await self._mutate(command, cancel_token, invalidate=WEBAPP_PREFIX)
        return result.redacted().stdout

    def webapp_log_tail(
        self, resource_group: str, name: str, cancel_token: CancelToken | None = None
    ) -> AsyncIterator[str]:
        """Live application log lines of a web app (redacted)."""
        command = AzCommand("webapp log tail", _app_args(resource_group, name), expect_json=False)
        return self._stream(command, cancel_token)

    # --- Container apps ---

    async def get_containerapp_runtime(
        self, resource_group: str, name: str, cancel_token: CancelToken | None = None
    ) -> AppRuntimeInfo:
        """A container app counts as running once it has a latest revision."""
        result = await self._query(
            AzCommand("containerapp show", _app_args(resource_group, name)),
            f"containerapp:show:{resource_group}:{name}",
            cancel_token,
        )
        data = parse_json_object(result)
        latest = get_str(data, "properties", "latestRevisionName")
        if latest and latest.strip():
            return AppRuntimeInfo(AppRuntimeState.RUNNING)
        return AppRuntimeInfo(AppRuntimeState.UNKNOWN)

    async def containerapp_restart(
        self, resource_group: str, name: str, cancel_token: CancelToken | None = None
    ) -> str:
        """Restart the newest revision of a container app.

        Returns:
            Name of the restarted revision

        Raises:
            AzCliError: If the app has no revisions
        """
        list_command = AzCommand("containerapp revision list", _app_args(resource_group, name))
        listing = await self._run(list_command, cancel_token)
        self._output.publish(listing)
        if not listing.success:
            raise error_from_result(listing)

        revisions = [
            (get_str(item, "name"), _parse_timestamp(get_str(item, "properties", "createdTime")))
            for item in parse_json_list(listing)
        ]
        named = [(rev, created) for rev, created in revisions if rev and rev.strip()]
        if not named:
            raise AzCliError("No container app revisions found.", command=str(list_command))
        latest, _ = max(named, key=lambda pair: pair[1])

        restart = AzCommand(
            "containerapp revision restart",
            ("-g", resource_group, "--name", name, "--revision", latest),
            expect_json=False,
        )
        await self._mutate(restart, cancel_token, invalidate=CONTAINERAPP_PREFIX)
        return latest

    def containerapp_logs(
        self, resource_group: str, name: str, cancel_token: CancelToken | None = None
    ) -> AsyncIterator[str]:
        """Follow a container app's console log stream (redacted)."""
        command = AzCommand(
            "containerapp logs show",
            (*_app_args(resource_group, name), "--follow"),
            expect_json=False,
        )
        return self._stream(command, cancel_token)

    # --- Links ---

    async def build_portal_link(
        self, resource_id: str, cancel_token: CancelToken | None = None
    ) -> str:
        """Azure portal URL for a resource, scoped to the active tenant if known."""
        status = await self.get_account(cancel_token)
        tenant = status.account.tenant_id if status.account else ""
        if not tenant.strip():
            return f"{PORTAL_URL}#resource{resource_id}"
        return f"{PORTAL_URL}#@{tenant}/resource{resource_id}"

    # --- Plumbing ---

    async def _run(self, command: AzCommand, cancel_token: CancelToken | None) -> AzResult:
        """Run one batch command under the concurrency bound."""
        async with self._slots:
            return await self._runner.run(command, cancel_token)

    async def _run_cached(
        self, command: AzCommand, cache_key: str, cancel_token: CancelToken | None
    ) -> AzResult:
        """Cached, retried read. Returns the final result whether or not it succeeded."""
        cached = self._cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit for %s", cache_key)
            self._output.publish(cached)
            return cached

        async def _attempt(token: CancelToken | None) -> AzResult:
            result = await self._run(command, token)
            self._output.publish(result)
            return result

        retry = self._config.retry
        try:
            result = await with_backoff(
                _attempt,
                max_attempts=retry.max_attempts,
                is_success=lambda r: r.success,
                initial_delay=retry.initial_delay,
                cancel_token=cancel_token,
                max_delay=retry.max_delay,
            )
        except OperationCancelledError as e:
            raise AzCancelledError(
                f"{command}\nExitCode={EXIT_CANCELLED}\nCancelled.",
                command=str(command),
                exit_code=EXIT_CANCELLED,
            ) from e

        if result.success:
            self._cache.set(cache_key, result, self._config.cache_ttl_seconds)
        return result

    async def _query(
        self, command: AzCommand, cache_key: str, cancel_token: CancelToken | None
    ) -> AzResult:
        """Cached, retried read that raises if the final attempt failed."""
        result = await self._run_cached(command, cache_key, cancel_token)
        if not result.success:
            raise error_from_result(result)
        return result

    async def _mutate(
        self,
        command: AzCommand,
        cancel_token: CancelToken | None,
        invalidate: str | None = None,
        clear: bool = False,
    ) -> AzResult:
        """Run a side-effecting command exactly once, then bust the cache."""
        result = await self._run(command, cancel_token)
        self._output.publish(result)
        if not result.success:
            raise error_from_result(result)

        if clear:
            self._cache.clear()
        elif invalidate:
            self._cache.invalidate_by_prefix(invalidate)
        return result

    async def _stream(
        self, command: AzCommand, cancel_token: CancelToken | None
    ) -> AsyncIterator[str]:
        # aclosing stops the child process when our consumer stops early
        async with aclosing(self._runner.stream(command, cancel_token)) as lines:
            async for line in lines:
                yield redact(line)


def _try_parse_object(result: AzResult) -> dict[str, Any] | None:
    if not result.success:
        return None
    try:
        return parse_json_object(result)
    except AzParseError as e:
        logger.debug("Ignoring unparseable output: %s", e)
        return None


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _parse_timestamp(value: str | None) -> datetime:
    """Parse an ISO timestamp; missing or invalid values sort first."""
    if not value:
        return _EPOCH
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
