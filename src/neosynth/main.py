"""Application entry point for the NeoSynth auth server."""

from __future__ import annotations

import os

import uvicorn

from neosynth.config.settings import AppConfig


def main() -> None:
    """Start the NeoSynth auth server."""
    config = AppConfig(config_path=os.getenv("NEOSYNTH_CONFIG_PATH", ""))
    reload = os.getenv("NEOSYNTH_RELOAD", "false").lower() in ("1", "true", "yes")
    uvicorn.run(
        "neosynth.api.app:create_app",
        factory=True,
        host=config.server.host,
        port=config.server.port,
        reload=reload,
        proxy_headers=True,
        forwarded_allow_ips=config.server.trusted_proxies,
        log_level=config.log_level.lower(),
    )


if __name__ == "__main__":
    main()
