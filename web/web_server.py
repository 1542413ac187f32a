#!/usr/bin/python3

# Standard library imports
import logging
import os
import sys
from datetime import datetime, timezone

_CURRENT_DIR = os.path.dirname(__file__)
_PROJECT_ROOT = os.path.abspath(os.path.join(_CURRENT_DIR, '..'))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

# Third-party imports
from flask import Flask

# Local imports
from my_config import Config, get_config
from services.document_store import DocumentStore
from services.object_storage import LocalObjectStorage
from src.components.impostor_monitoring.config import build_store, evidence_dir
from src.utils.logging_utils import setup_logging
from web.routes import monitoring_bp

logger = logging.getLogger(__name__)


def create_app(config: Config = None, store: DocumentStore = None) -> Flask:
    """Build the Flask app serving the health probe and screenshot evidence."""
    config = config or get_config()
    app = Flask(__name__)
    app.config['SERVER_START_TIME'] = datetime.now(timezone.utc)
    app.config['DOCUMENT_STORE'] = store if store is not None else build_store(config)
    app.config['EVIDENCE_STORAGE'] = LocalObjectStorage(evidence_dir(config), config.evidence_base_url)
    app.register_blueprint(monitoring_bp)
    return app


def main():
    """Entry point for launching the web server."""
    config = get_config()
    setup_logging(process_name='web_server', log_dir=config.log_dir, info_modules=['__main__', 'web'])

    logger.warning("=" * 100)
    logger.warning(f"WEB SERVER STARTED - {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.warning("=" * 100)

    app = create_app(config)
    host = '0.0.0.0'
    port = config.web_server_port
    print(f"Attempting to start web server on http://{host}:{port}")

    if config.web_server_debug_mode_on:
        print("Using Flask dev server with auto-reload (debug mode)")
        app.run(debug=True, host=host, port=port, threaded=True, use_reloader=True)
    else:
        from waitress import serve
        print("Using Waitress WSGI server for production deployment")
        serve(app, host=host, port=port, threads=8, channel_timeout=120)


if __name__ == "__main__":
    main()
