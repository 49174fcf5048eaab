import logging

import pytest

from ldapbridge.lib.pool import CONNECTION_POOL

from .doubles import DirectoryDouble


@pytest.fixture(autouse=True)
def reset_state():
    DirectoryDouble.reset()
    CONNECTION_POOL.clear()
    # The CLI front end turns propagation off; caplog needs it on
    logging.getLogger("ldapbridge").propagate = True
    yield
    CONNECTION_POOL.clear()


@pytest.fixture
def directory():
    DirectoryDouble.reset({"cn=admin,dc=example,dc=org": "secret", "alice": "wonderland"})
    return DirectoryDouble


@pytest.fixture
def debug_log(caplog):
    caplog.set_level(logging.DEBUG, logger="ldapbridge")
    return caplog
