"""Tests for the JSON log formatter and setup_logging()."""

import json
import logging

from fm_asset_matcher.logging_config import JSONFormatter, setup_logging


def make_record(**extra):
    record = logging.LogRecord('fm_asset_matcher.service', logging.WARNING, __file__, 10, "Skipped %d rows", (2,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_fields(self):
        entry = json.loads(JSONFormatter().format(make_record()))
        assert entry['level'] == 'WARNING'
        assert entry['logger'] == 'fm_asset_matcher.service'
        assert entry['message'] == 'Skipped 2 rows'
        assert 'organization_id' not in entry

    def test_extras(self):
        entry = json.loads(JSONFormatter().format(make_record(organization_id='org-1', duration_ms=12.5)))
        assert entry['organization_id'] == 'org-1'
        assert entry['duration_ms'] == 12.5


def test_setup_logging_installs_single_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging(level="debug", json_output=True)
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        root.handlers = saved_handlers
        root.setLevel(saved_level)
