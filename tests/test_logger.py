import json
import logging
import unittest

from stepscaler.common.logger import JsonFormatter


class TestJsonFormatter(unittest.TestCase):
    """Tests for JSON log formatting."""

    def make_record(self):
        return logging.LogRecord('stepscaler.controller', logging.INFO, __file__, 10,
                                 'scaled %s', ('up',), None)

    def test_scaling_event_is_top_level_field(self):
        record = self.make_record()
        record.scaling_event = {'from_state': 'STEADY', 'to_state': 'COOLDOWN_UP',
                                'old_capacity': 1, 'new_capacity': 2}

        log_record = json.loads(JsonFormatter().format(record))

        self.assertEqual(log_record['message'], 'scaled up')
        self.assertEqual(log_record['level'], 'INFO')
        self.assertEqual(log_record['scaling_event']['new_capacity'], 2)
        self.assertNotIn('msg', log_record)

    def test_unrelated_extras_are_not_emitted(self):
        record = self.make_record()
        record.request_id = 'abc-123'

        log_record = json.loads(JsonFormatter().format(record))

        self.assertNotIn('request_id', log_record)
        self.assertNotIn('scaling_event', log_record)


if __name__ == '__main__':
    unittest.main()
