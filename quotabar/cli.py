from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from collections.abc import Sequence

from quotabar import __version__
from quotabar.core.clients.http import close_http_client
from quotabar.core.config.settings import get_settings
from quotabar.core.fetch.context import FetchContext, Interaction, Runtime, SourceMode
from quotabar.core.fetch.pipeline import FetchFailure, FetchOutcome
from quotabar.core.fetch.registry import ProviderDescriptor, ProviderRegistry
from quotabar.core.types import JsonObject
from quotabar.core.usage.types import RateWindow
from quotabar.modules.providers import get_provider_registry

logger = logging.getLogger(__name__)

_WINDOW_NAMES = {300: "Session", 10080: "Weekly"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="quotabar", description="Show usage quotas of AI coding assistants.")
    parser.add_argument("--provider", default="all", help="codex, claude or all (default: all)")
    parser.add_argument(
        "--source",
        choices=[mode.value for mode in SourceMode],
        default=SourceMode.AUTO.value,
        help="force a single data source instead of automatic fallback",
    )
    parser.add_argument("--format", choices=["text", "json"], default="text")
    parser.add_argument("--timeout", type=float, default=None, help="per-provider timeout in seconds")
    parser.add_argument("--no-credits", action="store_true", help="skip credit balances")
    parser.add_argument("--verbose", "-v", action="store_true", help="debug logging and fetch attempt trace")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s %(message)s", stream=sys.stderr)


def _select_providers(registry: ProviderRegistry, name: str, mode: SourceMode) -> list[ProviderDescriptor]:
    name = name.strip().lower()
    if name == "all":
        providers = [provider for provider in registry.all() if provider.supports(mode)]
        if not providers:
            raise ValueError(f"no provider supports source '{mode}'")
        return providers
    provider = registry.get(name)
    if not provider.supports(mode):
        raise ValueError(f"{provider.id} does not support source '{mode}'")
    return [provider]


async def _fetch(
    providers: list[ProviderDescriptor],
    context: FetchContext,
) -> list[tuple[ProviderDescriptor, FetchOutcome]]:
    try:
        outcomes = await asyncio.gather(*(provider.fetch_outcome(context) for provider in providers))
    finally:
        await close_http_client()
    return list(zip(providers, outcomes))


def run(argv: Sequence[str] | None = None, *, registry: ProviderRegistry | None = None) -> int:
    args = _parse_args(argv)
    _configure_logging(args.verbose)
    registry = registry or get_provider_registry()
    try:
        providers = _select_providers(registry, args.provider, SourceMode(args.source))
    except (KeyError, ValueError) as exc:
        print(f"quotabar: error: {exc.args[0]}", file=sys.stderr)
        return 2

    context = FetchContext(
        env=dict(os.environ),
        timeout_seconds=args.timeout or get_settings().fetch_timeout_seconds,
        runtime=Runtime.CLI,
        source_mode=SourceMode(args.source),
        interaction=Interaction.USER_INITIATED,
        include_credits=not args.no_credits,
        verbose=args.verbose,
    )
    results = asyncio.run(_fetch(providers, context))

    if args.format == "json":
        payload = [outcome_to_dict(provider, outcome, verbose=args.verbose) for provider, outcome in results]
        print(json.dumps(payload, indent=2))
    else:
        print("\n\n".join(render_text(provider, outcome, verbose=args.verbose) for provider, outcome in results))

    return 0 if all(outcome.ok for _, outcome in results) else 1


def main() -> None:
    raise SystemExit(run())


def outcome_to_dict(provider: ProviderDescriptor, outcome: FetchOutcome, *, verbose: bool = False) -> JsonObject:
    data: JsonObject = {"provider": provider.id, "ok": outcome.ok}
    if isinstance(outcome.result, FetchFailure):
        error = outcome.result.error
        data["error"] = {"code": error.code, "message": error.message}
    else:
        result = outcome.result.value
        data["source"] = result.source_label
        data["strategy"] = result.strategy_id
        data["usage"] = result.usage.to_dict()
        data["credits"] = result.credits.to_dict() if result.credits else None
    if verbose or not outcome.ok:
        data["attempts"] = [attempt.to_dict() for attempt in outcome.attempts]
    return data


def render_text(provider: ProviderDescriptor, outcome: FetchOutcome, *, verbose: bool = False) -> str:
    if isinstance(outcome.result, FetchFailure):
        lines = [f"{provider.display_name}: error: {outcome.result.error.message}"]
        lines.extend(f"  - {line}" for line in outcome.describe())
        return "\n".join(lines)

    result = outcome.result.value
    usage = result.usage
    lines = [f"{provider.display_name} ({result.source_label})"]
    for fallback_name, window in (("Primary", usage.primary), ("Secondary", usage.secondary), ("Model", usage.tertiary)):
        if window is not None:
            lines.append(f"  {_window_line(window, fallback_name)}")
    if result.credits is not None:
        lines.append(f"  Credits: {result.credits.remaining:,.2f}")
    if usage.account_email or usage.login_method:
        account = usage.account_email or "unknown account"
        lines.append(f"  Account: {account} ({usage.login_method})" if usage.login_method else f"  Account: {account}")
    if usage.account_organization:
        lines.append(f"  Organization: {usage.account_organization}")
    if verbose:
        lines.extend(f"  - {line}" for line in outcome.describe())
    return "\n".join(lines)


def _window_line(window: RateWindow, fallback_name: str) -> str:
    name = _WINDOW_NAMES.get(window.window_minutes or 0, fallback_name)
    if fallback_name == "Model" and window.window_minutes == 10080:
        name = "Weekly (model)"
    line = f"{name}: {window.clamped_used_percent:.0f}% used ({window.remaining_percent:.0f}% left)"
    if window.reset_description:
        line += f", resets {window.reset_description}"
    return line


if __name__ == "__main__":
    main()
