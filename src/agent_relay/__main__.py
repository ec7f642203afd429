"""CLI entry point for agent-relay."""

from __future__ import annotations

import argparse
import asyncio
import sys

from agent_relay.config import AppConfig, load_config
from agent_relay.log import get_logger, setup_logging


def _add_config_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="agent-relay",
        description="Multi-channel conversational relay for configured chat agents",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP relay")
    _add_config_args(serve_parser)
    serve_parser.add_argument("--host", default=None, help="Override server.host")
    serve_parser.add_argument("--port", type=int, default=None, help="Override server.port")

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_config_args(check_parser)

    provider_parser = subparsers.add_parser("provider-info", help="Show the LLM provider chain")
    _add_config_args(provider_parser)

    gateway_parser = subparsers.add_parser(
        "discord-gateway", help="Run Discord gateway bots that forward to the relay"
    )
    _add_config_args(gateway_parser)

    args = parser.parse_args()

    if args.command is None:
        # Default to serve
        args.command = "serve"
        args.config = "config.yaml"
        args.env = ".env"
        args.host = None
        args.port = None

    if args.command == "config-check":
        _check_config(args.config, args.env)
    elif args.command == "provider-info":
        _provider_info(args.config, args.env)
    elif args.command == "discord-gateway":
        _run_gateway(args.config, args.env)
    elif args.command == "serve":
        _serve(args.config, args.env, args.host, args.port)


def _load_or_exit(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load_or_exit(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Storage: {config.storage.db_path}")
    print(f"  Server: {config.server.host}:{config.server.port}")
    print(f"  Public base URL: {config.public_base_url or '(from request)'}")
    print(f"  Knowledge limit: {config.knowledge.limit}")
    print(f"  Agents configured: {len(config.agents)}")
    for agent in config.agents:
        channels = [
            name
            for name, present in (
                ("telegram", agent.telegram),
                ("discord", agent.discord),
                (agent.meta.platform if agent.meta else "meta", agent.meta),
            )
            if present
        ]
        print(f"    - {agent.id} ({agent.name}) [{', '.join(channels) or 'widget only'}]")


def _provider_info(config_path: str, env_path: str) -> None:
    """Show the provider fallback order without revealing keys."""
    config = _load_or_exit(config_path, env_path)
    print("LLM Provider Chain")
    print("=" * 50)
    print(f"  Timeout : {config.llm.timeout}s")
    if not config.llm.providers:
        print("  (no providers; replies use the neutral fallback)")
    for index, provider in enumerate(config.llm.providers, start=1):
        status = "configured" if provider.configured else "missing api key"
        print(f"\n  {index}. {provider.name} ({provider.kind})")
        print(f"    Model   : {provider.model or config.llm.default_model}")
        print(f"    Base URL: {provider.base_url or '(default)'}")
        print(f"    Status  : {status}")
    print()


def _serve(config_path: str, env_path: str, host: str | None, port: int | None) -> None:
    """Load config and run the relay under uvicorn."""
    import uvicorn

    from agent_relay.app import RelayApp, create_app

    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)

    app = create_app(RelayApp(config))
    uvicorn.run(
        app,
        host=host or config.server.host,
        port=port or config.server.port,
        log_level=config.log_level.lower(),
    )


def _run_gateway(config_path: str, env_path: str) -> None:
    """Run one discord.py bot per configured gateway agent."""
    from agent_relay.messenger.discord_gateway import GatewayBot, RelayClient, run_gateway

    config = _load_or_exit(config_path, env_path)
    setup_logging(config.log_level, config.log_format)
    logger = get_logger("agent_relay.gateway")

    if not config.discord.backend_key:
        print("Error: discord.backend_key must be set for the gateway", file=sys.stderr)
        sys.exit(1)

    seeds = {a.id: a for a in config.agents}
    agent_ids = config.discord.gateway_agents or [
        a.id for a in config.agents if a.discord and a.discord.bot_token
    ]
    relay_url = config.discord.relay_url or (
        f"http://127.0.0.1:{config.server.port}/discord/respond"
    )
    relay = RelayClient(relay_url, config.discord.backend_key)

    bots: list[GatewayBot] = []
    for agent_id in agent_ids:
        seed = seeds.get(agent_id)
        if seed is None or seed.discord is None or not seed.discord.bot_token:
            logger.warning("discord_gateway_agent_skipped", agent_id=agent_id, reason="no_bot_token")
            continue
        bots.append(GatewayBot(agent_id, seed.discord.bot_token, relay))

    if not bots:
        print("Error: no agents with a Discord bot token to run", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(run_gateway(bots, relay))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
