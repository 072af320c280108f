import os
import tempfile

_data_dir = tempfile.mkdtemp(prefix="habits-test-")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_data_dir, 'habits.db')}"

import pytest  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import main  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    SQLModel.metadata.drop_all(main.engine)
    SQLModel.metadata.create_all(main.engine)
    yield
