import os
from pathlib import Path

import sentry_sdk

from _version import __version__
from diagnostics import APP_DIR, init_diagnostics
from security import strip_pii
from zmq_server import ZMQServer

# Consent-gated Sentry init
_consent_path = os.path.join(APP_DIR, "telemetry_consent")
_dsn = ""
if os.path.exists(_consent_path) and Path(_consent_path).read_text().strip() == "yes":
    _dsn = os.environ.get("SENTRY_DSN", "")

sentry_sdk.init(
    dsn=_dsn,
    release=f"chromadetect@{__version__}",
    environment=os.environ.get("SENTRY_ENV", "development"),
    traces_sample_rate=0.1,
    before_send=strip_pii,
    max_breadcrumbs=50,
)


def main():
    init_diagnostics()
    server = ZMQServer()
    print(f"ZMQ_PORT={server.port}", flush=True)
    print(f"ZMQ_PING_PORT={server.ping_port}", flush=True)
    print(f"ZMQ_TOKEN={server.token}", flush=True)
    server.run()


if __name__ == "__main__":
    main()
