import json
import logging

from factoring_review.core.logging_utils import sanitize_case_id, sanitize_name
from factoring_review.pipeline.core.logging_config import StructuredFormatter


class TestSanitize:
    def test_sanitize_name(self):
        assert sanitize_name(None) == "***"
        assert sanitize_name("山田") == "***"
        assert sanitize_name("株式会社サンプル") == "株式***プル"

    def test_sanitize_case_id(self):
        assert sanitize_case_id(1001) == "1001"
        assert sanitize_case_id(None) == "N/A"


class TestStructuredFormatter:
    def test_context_keys_are_included(self):
        record = logging.LogRecord(
            "factoring_review.pipeline.runner", logging.INFO, __file__, 10, "Stage completed", None, None
        )
        record.case_id = "1001"
        record.stage_id = "score"
        record.subject = "株式***プル"
        record.unrelated = "dropped"

        line = json.loads(StructuredFormatter().format(record))

        assert line["message"] == "Stage completed"
        assert line["level"] == "INFO"
        assert line["case_id"] == "1001"
        assert line["stage_id"] == "score"
        assert line["subject"] == "株式***プル"
        assert "unrelated" not in line
        assert line["timestamp"].endswith("Z")
