# tests/conftest.py
import uuid
import pytest
from db.db_manager import DBManager
from kernel.accounting_kernel import AccountingKernel
from services.posting_service import InventoryPostingService
from tests.helpers import ORG, seed_org


@pytest.fixture(autouse=True, scope="function")
def setup_isolated_db():
    """
    Fresh shared in-memory DB per test function.
    Prevents cross-test contamination while keeping worker threads on one DB.
    """
    uri = f"file:memdb_{uuid.uuid4().hex}?mode=memory&cache=shared"
    DBManager.configure(path=uri)
    DBManager.initialize()   # schema + migrations
    yield
    DBManager.close()


@pytest.fixture
def org():
    seed_org(ORG)
    return ORG


@pytest.fixture
def kernel():
    return AccountingKernel()


@pytest.fixture
def service(org, kernel):
    return InventoryPostingService(kernel)
