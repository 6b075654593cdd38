"""Tests for the stepjax logging modes."""

import io
import logging
import re
import tracemalloc

import pytest
from conftest import RampModel

from stepjax import enable_performance_logging, logger, set_log_level
from stepjax._logging import reset_logging
from stepjax.analysis import ControlInterval, Schedule, simulate


@pytest.fixture
def stream():
    buf = io.StringIO()
    yield buf
    reset_logging()
    if tracemalloc.is_tracing():
        tracemalloc.stop()


class TestLoggingModes:
    def test_quiet_by_default(self, stream):
        reset_logging(stream)
        logger.info("hidden")
        logger.warning("shown")
        assert stream.getvalue() == "shown\n"

    def test_perf_counter_prefix(self, stream):
        enable_performance_logging(with_memory=False, with_perf_counter=True, stream=stream)
        logger.debug("traced")
        assert re.fullmatch(r"\[\d+\.\d{6}\] traced\n", stream.getvalue())

    def test_memory_prefix(self, stream):
        enable_performance_logging(with_memory=True, stream=stream)
        logger.info("with memory")
        assert re.fullmatch(r"\[CPU:\d+MB.*\] with memory\n", stream.getvalue())

    def test_set_log_level(self, stream):
        reset_logging(stream)
        set_log_level(logging.INFO)
        logger.info("now visible")
        assert "now visible" in stream.getvalue()

    def test_run_is_traced(self, stream):
        """Tracing shows the run summary, step cuts and Newton iterations."""
        enable_performance_logging(with_memory=False, stream=stream)
        model = RampModel(x0=0.0, max_stable_dt=5.0)
        simulate(model, Schedule((ControlInterval(control=1.0, step_lengths=(10.0,)),)))

        text = stream.getvalue()
        assert "Starting simulation" in text
        assert "retrying with dt=5.000e+00" in text
        assert "NR iter 1" in text
        assert "completed after 2 steps" in text
