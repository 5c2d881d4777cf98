"""Relational schema management for the marketplace domain.

Only providers backed by SQLAlchemy (sqlite, postgresql) need tables; the
default in-memory provider is skipped.
"""

from protean.domain import Domain
from sqlalchemy import create_engine

_RELATIONAL_PROVIDERS = ("sqlite", "postgresql")


def _relational_providers(domain: Domain):
    for _, provider in domain.providers.items():
        if provider.conn_info["provider"] in _RELATIONAL_PROVIDERS:
            yield provider


def _register_models(domain: Domain, provider) -> None:
    # Touching _dao forces the SQLAlchemy model for each element to be built
    # and attached to the provider metadata.
    registries = (
        domain.registry.aggregates,
        domain.registry.entities,
        domain.registry.projections,
    )
    for registry in registries:
        for _, record in registry.items():
            if record.cls.meta_.provider == provider.name:
                domain.repository_for(record.cls)._dao  # noqa: B018


def setup_db(domain: Domain) -> None:
    """Create tables for payments, orders and their child entities."""
    with domain.domain_context():
        for provider in _relational_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            _register_models(domain, provider)
            provider._metadata.create_all(engine)


def drop_db(domain: Domain) -> None:
    """Drop every table created by setup_db()."""
    with domain.domain_context():
        for provider in _relational_providers(domain):
            engine = create_engine(provider.conn_info["database_uri"])
            provider._metadata.drop_all(engine)
