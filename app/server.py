"""HTTP and WebSocket surface.

- /voice: TwiML telling the telephony gateway to open the media stream
- /health: liveness probe
- /logs: snapshot of the diagnostic log
- media stream WebSocket: one CallSessionBridge per connection
"""

from functools import partial
from typing import Optional
from xml.sax.saxutils import escape, quoteattr

import structlog
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import PlainTextResponse, Response

from app.ai.openai_realtime import ChannelConnector, OpenAIRealtimeLeg
from app.bridge.call_session import CallSessionBridge
from app.config import Config
from app.core.agent_config import AgentConfig
from app.core.channel import StarletteChannel, open_websockets_channel
from app.core.diagnostics import DiagnosticLog, LogCategory
from app.telephony.media_stream import MediaStreamLeg

logger = structlog.get_logger(__name__)


def render_twiml(host: str, path: str, message: Optional[str]) -> str:
    """Call-routing document connecting the call to the media stream."""
    say = f"\n  <Say>{escape(message)}</Say>" if message else ""
    stream_url = quoteattr(f"wss://{host}{path}")
    return (
        '<?xml version="1.0" encoding="UTF-8"?>\n'
        f"<Response>{say}\n"
        "  <Connect>\n"
        f"    <Stream url={stream_url} />\n"
        "  </Connect>\n"
        "</Response>"
    )


def create_app(
    config: Config,
    agent: Optional[AgentConfig] = None,
    diagnostics: Optional[DiagnosticLog] = None,
    connect: Optional[ChannelConnector] = None,
) -> FastAPI:
    """Build the application.

    Args:
        config: Loaded configuration
        agent: Agent profile (defaults when omitted)
        diagnostics: Shared diagnostic log (one per application when omitted)
        connect: Backend channel connector (realtime WebSocket when omitted)
    """
    agent = agent or AgentConfig()
    if diagnostics is None:
        diagnostics = DiagnosticLog(config.system.diagnostic_log_capacity)
    connect = connect or partial(
        open_websockets_channel,
        config.ai.realtime_url,
        config.ai.headers(),
        config.ai.ai_connect_timeout,
    )
    session_config = agent.session_config(config.ai.voice, config.ai.temperature)

    app = FastAPI(
        title="Genie Voice Bridge",
        description="Bridges telephony media streams to a realtime voice AI backend",
        version="0.1.0",
    )
    app.state.config = config
    app.state.diagnostics = diagnostics

    @app.api_route("/voice", methods=["GET", "POST"])
    async def voice(request: Request) -> Response:
        """Call-routing instructions for the telephony gateway."""
        host = config.server.public_host or request.headers.get("host", "localhost")
        twiml = render_twiml(host, config.server.media_stream_path, config.server.connect_message)
        return Response(content=twiml, media_type="text/xml")

    @app.get("/health")
    async def health() -> PlainTextResponse:
        return PlainTextResponse("OK")

    @app.get("/logs")
    async def logs() -> dict:
        """Diagnostic log snapshot, newest first."""
        return {"entries": diagnostics.to_list()}

    @app.websocket(config.server.media_stream_path)
    async def media_stream(websocket: WebSocket) -> None:
        await websocket.accept()
        client = websocket.client.host if websocket.client else "unknown"
        logger.info("Telephony media stream connected", client=client)

        telephony = MediaStreamLeg(StarletteChannel(websocket), diagnostics)
        ai = OpenAIRealtimeLeg(
            connect=connect,
            session=session_config,
            diagnostics=diagnostics,
            greeting=agent.greeting,
            ack_timeout_ms=config.ai.handshake_ack_timeout_ms,
        )
        bridge = CallSessionBridge(telephony, ai, diagnostics)

        try:
            session = await bridge.run()
            logger.info(
                "Telephony media stream finished",
                stream_sid=session.id,
                state=session.state.value,
            )
        except Exception as e:
            # Never let one call's failure escape into the server
            logger.error("Call session crashed", error=str(e), exc_info=True)
            diagnostics.append(LogCategory.ERROR, "Call session crashed", {"error": repr(e)})
            await bridge.close()

    return app
