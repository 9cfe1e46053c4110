from __future__ import annotations

import logging

import pytest


@pytest.fixture(autouse=True)
def _reset_plmdca_logger():
    yield
    logger = logging.getLogger("plmdca")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
