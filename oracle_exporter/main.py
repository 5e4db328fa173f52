import sys
import asyncio
import logging
import signal
import argparse
from aiohttp import web
from pythonjsonlogger.json import JsonFormatter
from .config import Config
from .denom import resolve
from .errors import ExporterError
from .node import NodeClient
from .scrape import Scraper
from .web import create_web_app

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def setup_logging(level: str = 'info', json_logs: bool = False):
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    handler = logging.StreamHandler(sys.stdout)
    if json_logs:
        handler.setFormatter(JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s'))
    else:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='umee-oracle-exporter',
        description='Scrape validator, wallet and oracle data from an Umee node for Prometheus.'
    )
    parser.add_argument('--config', help='Path to YAML config file (default: $CONFIG_PATH)')
    parser.add_argument('--listen-address', help='The address this exporter would listen on (default :9300)')
    parser.add_argument('--node', help='Node REST endpoint (default http://127.0.0.1:1317)')
    parser.add_argument('--denom', help='Denomination symbol to display amounts in')
    parser.add_argument('--denom-coefficient', help='Divide raw amounts by this coefficient')
    parser.add_argument('--denom-exponent', help='Divide raw amounts by 10^exponent')
    parser.add_argument('--bech-prefix', help='Base bech32 prefix (default umee)')
    parser.add_argument('--bech-account-prefix')
    parser.add_argument('--bech-account-pubkey-prefix')
    parser.add_argument('--bech-validator-prefix')
    parser.add_argument('--bech-validator-pubkey-prefix')
    parser.add_argument('--bech-consensus-node-prefix')
    parser.add_argument('--bech-consensus-node-pubkey-prefix')
    parser.add_argument('--limit', type=int, help='Pagination limit for node list queries')
    parser.add_argument('--query-timeout', type=float, help='Seconds to wait for a single node query')
    parser.add_argument('--log-level', help='Logging level')
    parser.add_argument('--json', action='store_true', help='Output logs as JSON')
    return parser


def load_config(argv=None) -> Config:
    args = build_parser().parse_args(argv)
    return Config.load(args.config).apply_args(args)


def log_parameters(config: Config):
    prefixes = config.prefixes
    logger.info(
        "Started with following parameters: "
        f"--bech-account-prefix={prefixes.account} "
        f"--bech-account-pubkey-prefix={prefixes.account_pubkey} "
        f"--bech-validator-prefix={prefixes.validator} "
        f"--bech-validator-pubkey-prefix={prefixes.validator_pubkey} "
        f"--bech-consensus-node-prefix={prefixes.consensus_node} "
        f"--bech-consensus-node-pubkey-prefix={prefixes.consensus_node_pubkey} "
        f"--denom={config.denom.symbol} "
        f"--denom-coefficient={config.denom.coefficient} "
        f"--denom-exponent={config.denom.exponent} "
        f"--listen-address={config.settings.listen_address}:{config.settings.port} "
        f"--node={config.settings.node_url} "
        f"--log-level={config.settings.log_level}"
    )


async def main_async(config: Config):
    node_client = None
    runner = None
    stopped = asyncio.Event()
    failed = False

    async def shutdown():
        if stopped.is_set():
            return
        logger.info("Received shutdown signal")
        if runner:
            try:
                logger.info("Cleaning up runner...")
                await runner.cleanup()
            except Exception as e:
                logger.error(f"Error during runner cleanup: {e}")
        if node_client:
            try:
                await node_client.close()
            except Exception as e:
                logger.error(f"Error closing node client: {e}")
        logger.info("Finishing event loop...")
        stopped.set()

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, lambda: asyncio.create_task(shutdown()))

    try:
        settings = config.settings
        node_client = NodeClient(settings.node_url, timeout=settings.query_timeout, limit=settings.limit)

        # Resolved once; every scrape reads the same immutable value
        denom = await resolve(config.denom, node_client)
        logger.info(f"Using denom {denom.symbol} with coefficient {denom.coefficient} ({denom.source.value})")

        scraper = Scraper(node_client, denom, config.prefixes, query_timeout=settings.query_timeout)
        app = await create_web_app(scraper)
        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, settings.listen_address, settings.port)
        await site.start()

        logger.info(f"Listening on {settings.listen_address}:{settings.port}")
        await stopped.wait()

    except (ExporterError, OSError) as e:
        logger.error(f"Could not start exporter: {e}")
        failed = True
    finally:
        # also reached when asyncio.run cancels us on Ctrl-C
        await shutdown()
        loop.remove_signal_handler(signal.SIGTERM)

    if failed:
        sys.exit(1)


def main(argv=None):
    try:
        config = load_config(argv)
    except ExporterError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    setup_logging(config.settings.log_level, config.settings.json_logs)
    log_parameters(config)

    try:
        asyncio.run(main_async(config))
    except KeyboardInterrupt:
        logger.info("Received shutdown signal")
    finally:
        logger.info("Program terminated")


if __name__ == "__main__":
    main()
