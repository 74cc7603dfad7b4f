"""
Gateway runner - entry point for the relay.

This module provides:
- build_components(): wire the store, HTTP client and core clients from config
- GatewayRunner: manages adapter lifecycle and routes messages to the core
- main(): console entry point

Usage:
    # Run against stdin/stdout
    python -m gateway.run

    # Or, once installed
    relay-gateway
"""

import asyncio
import logging
import signal
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from typing import List, Optional

import httpx

from agent.config_validator import ConfigValidationError, validate_gateway_config
from agent.credential_cache import CredentialCache
from agent.fanout import FanoutOrchestrator
from agent.inference_client import InferenceClient
from agent.prompt_assembler import PromptAssembler
from agent.resource_client import ResourceClient
from gateway.commands import CommandRouter
from gateway.config import (
    GatewayConfig,
    get_relay_home,
    load_environment,
    load_gateway_config,
    log_feature_status,
)
from gateway.platforms.base import BasePlatformAdapter, MessageEvent
from gateway.store import ConversationStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", log_dir=None) -> None:
    """Log to stderr and to a rotating file under RELAY_HOME/logs."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter = logging.Formatter(LOG_FORMAT)
    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(formatter)
    root.addHandler(stream)

    log_dir = log_dir or (get_relay_home() / "logs")
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / "gateway.log", maxBytes=5 * 1024 * 1024, backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    except OSError as e:
        logger.warning("File logging disabled: %s", e)

    # Keep HTTP client internals out of the relay log
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


@dataclass
class RelayComponents:
    """The wired core, owned by one runner."""

    store: ConversationStore
    http_client: httpx.AsyncClient
    credentials: CredentialCache
    inference: InferenceClient
    resources: ResourceClient
    orchestrator: FanoutOrchestrator
    router: CommandRouter

    async def aclose(self) -> None:
        await self.http_client.aclose()
        self.store.close()


def build_components(
    config: GatewayConfig,
    *,
    store: Optional[ConversationStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> RelayComponents:
    """Construct every core component from ``config``.

    A single store and a single HTTP client are shared by all components.
    """
    if store is None:
        db_path = config.resolved_database_path()
        logger.info("Opening database at %s", db_path)
        store = ConversationStore(db_path, default_response_cap=config.default_response_cap)
    http_client = http_client or httpx.AsyncClient(timeout=config.http_timeout)

    credentials = CredentialCache(
        config.battlenet_client_id,
        config.battlenet_client_secret,
        http_client=http_client,
        token_url=config.token_url,
    )
    inference = InferenceClient(
        config.llm_api_url,
        store,
        http_client=http_client,
        assembler=PromptAssembler(store),
    )
    resources = ResourceClient(
        credentials,
        http_client=http_client,
        profile_url_template=config.profile_url_template,
    )
    orchestrator = FanoutOrchestrator(
        resources, inference, store, title=config.realm_title,
    )
    router = CommandRouter(store, inference, resources, orchestrator)
    return RelayComponents(
        store=store,
        http_client=http_client,
        credentials=credentials,
        inference=inference,
        resources=resources,
        orchestrator=orchestrator,
        router=router,
    )


class GatewayRunner:
    """
    Main gateway controller.

    Manages the lifecycle of all platform adapters and routes
    messages to the command router.
    """

    def __init__(self, components: RelayComponents, adapters: List[BasePlatformAdapter]):
        self.components = components
        self.adapters = list(adapters)
        self._running = False
        self._shutdown_event = asyncio.Event()

    async def _on_message(self, event: MessageEvent) -> Optional[str]:
        try:
            return await self.components.router.dispatch(event)
        except Exception as e:
            logger.exception("Unhandled error while handling message: %s", e)
            return None

    async def start(self) -> bool:
        """
        Start all adapters.

        Returns True if at least one adapter connected successfully.
        """
        logger.info("Starting relay gateway...")
        connected = 0
        for adapter in self.adapters:
            adapter.set_message_handler(self._on_message)
            try:
                if await adapter.connect():
                    connected += 1
                    logger.info("[%s] connected", adapter.name)
                else:
                    logger.warning("[%s] failed to connect", adapter.name)
            except Exception as e:
                logger.error("[%s] connect error: %s", adapter.name, e)
        self._running = connected > 0
        return self._running

    async def stop(self) -> None:
        """Disconnect adapters and release the shared store and HTTP client."""
        self._running = False
        for adapter in self.adapters:
            try:
                await adapter.disconnect()
            except Exception as e:
                logger.warning("[%s] disconnect error: %s", adapter.name, e)
        await self.components.aclose()
        self._shutdown_event.set()
        logger.info("Relay gateway stopped")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def wait_for_shutdown(self) -> None:
        await self._shutdown_event.wait()


async def start_gateway(config: Optional[GatewayConfig] = None) -> bool:
    """Build the relay, run it on the console adapter until stdin closes or a signal arrives."""
    from gateway.platforms.console import ConsoleAdapter

    config = config or load_gateway_config()
    log_feature_status(config)
    try:
        validate_gateway_config(config)
    except ConfigValidationError as e:
        logger.error("Invalid configuration: %s", e)
        return False

    components = build_components(config)
    console = ConsoleAdapter()
    runner = GatewayRunner(components, [console])

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, runner.request_shutdown)
        except (NotImplementedError, RuntimeError):
            pass

    if not await runner.start():
        await runner.stop()
        return False

    closed = asyncio.create_task(console.closed.wait())
    shutdown = asyncio.create_task(runner.wait_for_shutdown())
    await asyncio.wait({closed, shutdown}, return_when=asyncio.FIRST_COMPLETED)
    for task in (closed, shutdown):
        task.cancel()
    await runner.stop()
    return True


def main() -> None:
    load_environment()
    config = load_gateway_config(load_env_files=False)
    setup_logging(config.log_level)
    ok = asyncio.run(start_gateway(config))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
