"""Main application entry point for the Genie voice bridge."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import structlog
import uvicorn

from app.config import ConfigurationError, SystemSettings, load_config
from app.core.agent_config import AgentConfig
from app.server import create_app

VERSION = "0.1.0"


def setup_logging(system: SystemSettings) -> Optional[Path]:
    """Configure structured logging with console and optional file output.

    Returns:
        Path of the log file, if file logging is enabled
    """
    log_level = getattr(logging, system.log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    log_file: Optional[Path] = None
    if system.log_file_dir:
        log_dir = Path(system.log_file_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_file = log_dir / f"genie-bridge_{timestamp}.log"
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=handlers,
        force=True,
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if system.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    return log_file


def _resolve_prompt_file(path: Optional[str]) -> Optional[Path]:
    """Resolve the agent prompt file relative to the project root."""
    if not path:
        return None
    yaml_path = Path(path)
    if not yaml_path.is_absolute():
        yaml_path = Path(__file__).parent.parent / yaml_path
    return yaml_path


def cli(argv: Optional[list[str]] = None) -> None:
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Genie voice bridge: telephony media streams <-> realtime voice AI"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    parser.add_argument("--host", help="Listen address (overrides HOST)")
    parser.add_argument("--port", type=int, help="Listen port (overrides PORT)")
    parser.add_argument("--env-file", default=".env", help="dotenv file to read")
    args = parser.parse_args(argv)

    # Fail fast before binding the port
    try:
        config = load_config(env_file=args.env_file)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    log_file = setup_logging(config.system)
    logger = structlog.get_logger(__name__)
    if log_file:
        logger.info(f"Logging to file: {log_file}")

    try:
        agent = AgentConfig.from_yaml_or_default(_resolve_prompt_file(config.ai.agent_prompt_file))
    except (FileNotFoundError, ValueError) as e:
        logger.error("Invalid agent config", error=str(e))
        sys.exit(1)

    host = args.host or config.server.host
    port = args.port or config.server.port

    logger.info(
        "Genie voice bridge starting",
        version=VERSION,
        host=host,
        port=port,
        model=config.ai.openai_model,
        media_stream_path=config.server.media_stream_path,
        agent=agent.to_dict(),
    )

    app = create_app(config, agent=agent)

    try:
        uvicorn.run(app, host=host, port=port, log_config=None)
    except KeyboardInterrupt:
        logger.info("Shutdown complete")
    except Exception as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    cli()
