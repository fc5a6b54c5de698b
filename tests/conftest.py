import pytest

from dualinvest.database import create_db_and_tables, create_db_engine
from dualinvest.services.journal import Journal


@pytest.fixture
def journal() -> Journal:
    engine = create_db_engine("sqlite://")
    create_db_and_tables(engine)
    return Journal(engine)
