"""FastAPI application entry point for the webhook relay.

Receives GitHub webhooks at ``POST /webhook`` and publishes them to the
configured message provider. Collaborators are built once in the lifespan
handler and kept on ``app.state.context``.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, Response

from .config import RelaySettings, get_settings
from .context import AppContext
from .metrics import generate_metrics_output

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def _log_configuration(settings: RelaySettings) -> None:
    """Log configuration values on startup. No setting holds a secret."""
    logger.info("Relay configuration:")
    logger.info(f"  Namespace: {settings.namespace}")
    logger.info(f"  Kube Master URL: {settings.kube_master_url or '<in-cluster>'}")
    logger.info(f"  Kubeconfig: {settings.kubeconfig or '<default>'}")
    logger.info(f"  Credential Cache TTL Seconds: {settings.credential_cache_ttl_seconds}")
    logger.info(f"  Provider Config: {settings.provider_config}")
    logger.info(f"  Webhook Destination: {settings.webhook_destination}")
    logger.info(f"  Start Listeners: {settings.start_listeners}")
    logger.info(f"  Disable TLS: {settings.disable_tls}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.listen_port}")


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the application context."""
    return request.app.state.context


def create_app(
    settings: Optional[RelaySettings] = None,
    context: Optional[AppContext] = None,
) -> FastAPI:
    """Create the relay application.

    Args:
        settings: Settings to use; read from the environment when omitted.
        context: A prebuilt context (tests). When omitted the lifespan
            builds one from the settings and closes it on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Webhook relay starting up...")

        if context is not None:
            app.state.context = context
            yield
            return

        cfg = settings or get_settings()
        logging.getLogger().setLevel(cfg.log_level)
        _log_configuration(cfg)

        ctx = await AppContext.create(cfg)
        app.state.context = ctx
        if cfg.start_listeners:
            started = ctx.start_listeners()
            logger.info("Started %d event source listeners", started)

        logger.info("Webhook relay started successfully")

        yield

        logger.info("Webhook relay shutting down...")
        await ctx.close()
        logger.info("Webhook relay shutdown complete")

    app = FastAPI(
        title="Webhook Relay",
        description="Relays source-control webhooks to a message transport",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health")
    async def health():
        """Liveness endpoint."""
        return {"status": "healthy"}

    @app.get("/ready")
    async def ready(ctx: AppContext = Depends(get_context)):
        """Readiness endpoint.

        Ready when every message provider is connected.
        """
        providers = {
            name: "connected" if ctx.providers.get(name).is_connected else "disconnected"
            for name in ctx.providers.names()
        }
        is_ready = all(state == "connected" for state in providers.values())
        return JSONResponse(
            status_code=200 if is_ready else 503,
            content={
                "status": "ready" if is_ready else "not_ready",
                "providers": providers,
                "listeners": ctx.listeners.running,
            },
        )

    @app.get("/metrics")
    async def metrics(ctx: AppContext = Depends(get_context)):
        """Prometheus metrics endpoint."""
        return Response(
            content=generate_metrics_output(ctx.metrics.registry),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    @app.post("/webhook")
    async def webhook(request: Request, ctx: AppContext = Depends(get_context)):
        """GitHub webhook receiver endpoint.

        Responds 202 Accepted for any JSON object body, whether or not the
        envelope could be published. Bodies that are not a JSON object get
        400 Bad Request.
        """
        raw = await request.body()
        try:
            body = json.loads(raw)
        except ValueError as e:
            logger.error("Unable to unmarshal json body: %s", str(e))
            ctx.metrics.record_webhook("rejected")
            return JSONResponse(
                status_code=400,
                content={"status": "error", "message": "Request body is not valid JSON"},
            )
        if not isinstance(body, dict):
            logger.error("Webhook body is a JSON %s, not an object", type(body).__name__)
            ctx.metrics.record_webhook("rejected")
            return JSONResponse(
                status_code=400,
                content={"status": "error", "message": "Request body must be a JSON object"},
            )

        ctx.metrics.record_webhook("accepted")
        await ctx.gateway.publish(request.headers.items(), body)
        return JSONResponse(status_code=202, content={"status": "accepted"})

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    run_settings = get_settings()
    ssl_options = {}
    if not run_settings.disable_tls:
        ssl_options = {
            "ssl_certfile": run_settings.tls_cert_path,
            "ssl_keyfile": run_settings.tls_key_path,
        }
    uvicorn.run(
        "src.relay.main:app",
        host=run_settings.host,
        port=run_settings.listen_port,
        **ssl_options,
    )
