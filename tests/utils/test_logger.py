"""
Tests for logging setup.
"""

import json

import pytest
from loguru import logger

from loopflow.utils.logger import get_logger, operation_context, setup_logging


@pytest.fixture
def restore_logging():
    yield
    setup_logging()


@pytest.mark.unit
class TestLogging:
    """Tests for setup_logging and get_logger."""

    def test_file_sink_serializes_extra(self, tmp_path, restore_logging):
        """Test the file sink writes JSON lines carrying bound module and extra fields."""
        setup_logging(level="DEBUG", log_to_file=True, log_dir=str(tmp_path), compression="zip")

        get_logger("loopflow.tests").info("Scan finished", extra={"operation": "scan"})
        logger.remove()

        files = list(tmp_path.glob("loopflow_*.log"))
        assert len(files) == 1
        record = json.loads(files[0].read_text().splitlines()[-1])["record"]
        assert record["message"] == "Scan finished"
        assert record["extra"]["module"] == "loopflow.tests"
        assert record["extra"]["extra"] == {"operation": "scan"}

    def test_level_filters(self, tmp_path, restore_logging):
        """Test messages below the configured level are not written."""
        setup_logging(level="WARNING", log_to_file=True, log_dir=str(tmp_path))

        get_logger("loopflow.tests").info("quiet")
        get_logger("loopflow.tests").warning("loud")
        logger.remove()

        text = next(tmp_path.glob("loopflow_*.log")).read_text()
        assert "loud" in text
        assert "quiet" not in text

    def test_default_context_on_every_record(self, tmp_path, restore_logging):
        """Test configured context is attached and operation defaults to None."""
        setup_logging(log_to_file=True, log_dir=str(tmp_path), context={"repo": "aaaa1111"})

        get_logger("loopflow.tests").info("plain")
        logger.remove()

        record = json.loads(next(tmp_path.glob("loopflow_*.log")).read_text())["record"]
        assert record["extra"]["repo"] == "aaaa1111"
        assert record["extra"]["operation"] is None

    def test_operation_context(self, tmp_path, restore_logging):
        """Test records inside the block carry the operation, records after it do not."""
        setup_logging(log_to_file=True, log_dir=str(tmp_path))
        log = get_logger("loopflow.tests")

        with operation_context("import", repo="bbbb2222"):
            log.info("inside")
        log.info("outside")
        logger.remove()

        lines = next(tmp_path.glob("loopflow_*.log")).read_text().splitlines()
        inside, outside = (json.loads(line)["record"]["extra"] for line in lines)
        assert inside["operation"] == "import"
        assert inside["repo"] == "bbbb2222"
        assert outside["operation"] is None

    def test_braces_in_positional_values(self, tmp_path, restore_logging):
        """Test values containing format braces are logged verbatim alongside extra."""
        setup_logging(log_to_file=True, log_dir=str(tmp_path))

        get_logger("loopflow.tests").info("Skipping {}", "ID{0}{name}", extra={"kind": "insight"})
        logger.remove()

        record = json.loads(next(tmp_path.glob("loopflow_*.log")).read_text())["record"]
        assert record["message"] == "Skipping ID{0}{name}"
