"""
Shared fixtures: an in-memory database and services wired to it.
"""
import os

import pytest

# Settings read at import time by crm.database / crm.deps
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")

from crm.deps import UserContext
from crm.services.catalog_service import CatalogService
from crm.services.deal_service import DealService
from crm.services.stage_registry import StageRegistryService
from crm.services.timeline import InteractionLog, TimelineBroadcaster
from crm.services.token_ledger import TokenLedger

from fakes import FakeSupabase, ORG_ID


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def admin():
    return UserContext(user_id="admin-1", organization_id=ORG_ID, role="admin", name="Ana Admin")


@pytest.fixture
def seller():
    return UserContext(user_id="seller-1", organization_id=ORG_ID, role="user", name="Sergio Vendas")


@pytest.fixture
def broadcaster():
    return TimelineBroadcaster()


@pytest.fixture
def interaction_log(db, broadcaster):
    return InteractionLog(client=db, broadcaster=broadcaster)


@pytest.fixture
def stage_registry(db, interaction_log):
    return StageRegistryService(client=db, interaction_log=interaction_log)


@pytest.fixture
def catalog(db):
    return CatalogService(client=db)


@pytest.fixture
def deal_service(db, stage_registry, catalog, interaction_log):
    return DealService(
        client=db,
        stage_registry=stage_registry,
        catalog=catalog,
        interaction_log=interaction_log,
    )


@pytest.fixture
def ledger(db):
    return TokenLedger(client=db)
