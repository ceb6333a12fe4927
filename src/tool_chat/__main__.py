"""
Main entry point for the Tool Chat server.

Can be called with: python -m tool_chat
"""

import argparse
import logging

import uvicorn


def main():
    """Main entry point for the Tool Chat application."""
    parser = argparse.ArgumentParser(
        description="Tool Chat - streaming LLM agent with tool calling"
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Interface to bind (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to run the server on (default: 8000)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO)",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger(__name__).info(
        f"Connect a websocket client to ws://{args.host}:{args.port}/ws"
    )

    from .app import app

    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
