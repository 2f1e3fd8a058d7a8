"""Logfire setup for the application."""

import logfire

from fastapi import FastAPI


def configure_logging(token: str | None, environment: str) -> None:
    """Configure logfire. Without a write token nothing is sent to the logfire backend."""
    logfire.configure(
        token=token,
        send_to_logfire="if-token-present",
        environment=environment,
        service_name="urlshortener-auth",
    )


def instrument_libraries(app: FastAPI) -> None:
    """Instrument the web framework and database driver for better observability."""
    logfire.instrument_fastapi(app)
    logfire.instrument_pymongo()
