"""
Utils Module - Infrastructure Utilities and Support Functions
==============================================================

Modules:
    logger: Console and JSON Lines logging with rotation
    metrics: Prometheus counters and histograms for requests, turns, tools and the database
    db_utils: asyncpg pool factory, retry decorator and health checks
    client_factory: Shared httpx and AsyncOpenAI client construction
    json_utils: Compact JSON helpers and an incremental JSON array parser

Example:
    Logging a tool call::

        from utils.logger import logger

        logger.info("Tool finished", tool="getWeather", duration_ms=42)
"""
