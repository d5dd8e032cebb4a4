"""CLI for launching the grading API server."""

import argparse
import logging
import sys

from gradeflow.libs.config_loader import load_default_configs
from gradeflow.libs.llm import available_providers
from .app import create_app, run_server

LOG = logging.getLogger(__name__)


def main():
    """Main CLI entry point for the grading API."""
    parser = argparse.ArgumentParser(
        description='Serve the grading, rewrite and exemplar API',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Example:
  # Launch the API on the default port
  gradeflow-serve

  # Listen on all interfaces with verbose logging
  gradeflow-serve --host 0.0.0.0 --port 8080 -v
        """
    )

    parser.add_argument(
        '--host',
        default='127.0.0.1',
        help='Host to bind to (default: 127.0.0.1)'
    )

    parser.add_argument(
        '--port',
        type=int,
        default=5000,
        help='Port to bind to (default: 5000)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Run in debug mode'
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    args = parser.parse_args()

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    try:
        configs = load_default_configs()
    except Exception as e:
        LOG.error(f"Failed to load configuration: {e}")
        sys.exit(1)

    services = available_providers(configs)
    configured = [name for name, ok in services.items() if ok]
    if not configured:
        LOG.warning("No provider has an API key configured; every request will fail")
    else:
        LOG.info(f"Configured providers: {', '.join(configured)}")

    create_app(configs)

    url = f"http://{args.host}:{args.port}"
    LOG.info(f"Starting server on {args.host}:{args.port}")
    print("\n" + "="*70)
    print("  GRADEFLOW API")
    print("="*70)
    print(f"\n  URL: {url}")
    print("\n  Endpoints:")
    print("    POST /api/grade")
    print("    POST /api/rewrite")
    print("    POST /api/exemplar")
    print("    GET  /api/check-services")
    print("\n  Press Ctrl+C to stop the server")
    print("="*70 + "\n")

    try:
        run_server(host=args.host, port=args.port, debug=args.debug)
    except KeyboardInterrupt:
        print("\n\nShutting down server...")
        LOG.info("Server stopped")


if __name__ == '__main__':
    main()
