# ruff: noqa: PLW0603
"""Cassandra session for the comment store.

The cluster connects synchronously at startup; every query afterwards goes
through ``session.aexecute()`` from cassandra-asyncio-driver.
"""

import structlog
from cassandra.auth import PlainTextAuthProvider
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra_asyncio.cluster import Cluster

from threadcast.comments.models import COMMENTS_TABLES_CQL
from threadcast.config.settings import Settings, get_settings
from threadcast.directory.models import DIRECTORY_TABLES_CQL


logger = structlog.get_logger(__name__)

_cluster: Cluster | None = None
_session = None


def _build_cluster(settings: Settings) -> Cluster:
    auth_provider = None
    if settings.cassandra_username and settings.cassandra_password:
        auth_provider = PlainTextAuthProvider(
            username=settings.cassandra_username,
            password=settings.cassandra_password,
        )
    return Cluster(
        contact_points=settings.cassandra_hosts,
        port=settings.cassandra_port,
        auth_provider=auth_provider,
        protocol_version=settings.cassandra_protocol_version,
        load_balancing_policy=TokenAwarePolicy(DCAwareRoundRobinPolicy()),
        connect_timeout=settings.cassandra_connect_timeout,
    )


def _replication(settings: Settings) -> str:
    if settings.is_production:
        return "{'class': 'NetworkTopologyStrategy', 'datacenter1': 3}"
    return "{'class': 'SimpleStrategy', 'replication_factor': 1}"


def connect_cassandra():
    """Open (or reuse) the shared session.

    Raises:
        ConnectionError: If no contact point answers.
    """
    global _cluster, _session

    if _session is not None:
        return _session

    settings = get_settings()
    _cluster = _build_cluster(settings)
    try:
        _session = _cluster.connect()
    except Exception as e:
        logger.error("cassandra_connection_failed", error=str(e))
        _cluster.shutdown()
        _cluster = None
        raise ConnectionError(f"Failed to connect to Cassandra: {e}") from e

    logger.info(
        "cassandra_connected",
        hosts=settings.cassandra_hosts,
        port=settings.cassandra_port,
    )
    return _session


async def create_schema(session, keyspace: str) -> None:
    """Keyspace plus the comment and directory tables, idempotently."""
    settings = get_settings()
    await session.aexecute(
        f"CREATE KEYSPACE IF NOT EXISTS {keyspace} "
        f"WITH replication = {_replication(settings)} AND durable_writes = true"
    )
    session.set_keyspace(keyspace)
    for cql_template in (*COMMENTS_TABLES_CQL, *DIRECTORY_TABLES_CQL):
        await session.aexecute(cql_template.format(keyspace=keyspace))
    logger.info("cassandra_schema_ready", keyspace=keyspace)


async def init_async_cassandra():
    """Connect and make sure the schema exists; returns the session."""
    settings = get_settings()
    session = connect_cassandra()
    await create_schema(session, settings.cassandra_keyspace)
    return session


async def shutdown_async_cassandra() -> None:
    global _cluster, _session

    if _session is not None:
        _session.shutdown()
        _session = None
    if _cluster is not None:
        _cluster.shutdown()
        _cluster = None
    logger.info("cassandra_disconnected")
