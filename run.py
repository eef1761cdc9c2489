#!/usr/bin/env python3
"""
Entry point for the Clip Arena service.

Usage:
    python run.py                    # Run the API server

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 5000)
    DATABASE_URL: SQLAlchemy database URL
    REDIS_URL: Redis URL for outbound events (empty disables them)
    LOG_LEVEL: Logging level (default: INFO)
"""
import logging
import os


def run_server():
    """Run the clip arena API."""
    from arena.app import create_app

    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )

    app = create_app()
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    logging.getLogger(__name__).info(f"Starting Clip Arena on port {port}...")
    app.run(host='0.0.0.0', port=port, debug=debug)


if __name__ == '__main__':
    run_server()
