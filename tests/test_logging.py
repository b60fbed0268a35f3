import logging

from hwprovision.logging import (Logger, ShortcutFilteringFilter, console_formatter, get_logger,
                                 _shorten_name_of_logrecord)

from . import HwProvisionTestCase


def make_record(name="hwprovision.provisioning.ProvisioningSession", level=logging.INFO, shortcut=None):
    record = logging.LogRecord(name, level, __file__, 1, "hello", None, None)
    if shortcut is not None:
        record.custom_shortcut = shortcut
    return record


class TestLogging(HwProvisionTestCase):

    def test_logger_mixin_name(self):
        class Thing(Logger):
            LOGGING_SHORTCUT = 'T'
            def diagnostic_name(self):
                return 'dev1'
        thing = Thing()
        self.assertTrue(thing.logger.name.startswith("hwprovision."))
        self.assertTrue(thing.logger.name.endswith("Thing.[dev1]"))
        self.assertEqual(get_logger("hwprovision.foo"), get_logger("foo"))

    def test_shorten_name(self):
        record = make_record("hwprovision.provisioning.ProvisioningSession.[fake]")
        self.assertEqual("provisioning.[fake]", _shorten_name_of_logrecord(record).name)
        # the original record is left alone
        self.assertEqual("hwprovision.provisioning.ProvisioningSession.[fake]", record.name)

    def test_console_format_shows_shortcut(self):
        self.assertEqual("I/P | provisioning | hello", console_formatter.format(make_record(shortcut='P')))
        self.assertEqual("I | provisioning | hello", console_formatter.format(make_record()))

    def test_shortcut_whitelist(self):
        filt = ShortcutFilteringFilter("PW")
        self.assertTrue(filt.filter(make_record(shortcut='P')))
        self.assertFalse(filt.filter(make_record(shortcut='D')))
        self.assertFalse(filt.filter(make_record()))
        self.assertTrue(filt.filter(make_record(shortcut='D', level=logging.ERROR)))

    def test_shortcut_blacklist(self):
        filt = ShortcutFilteringFilter("^D")
        self.assertTrue(filt.filter(make_record(shortcut='P')))
        self.assertFalse(filt.filter(make_record(shortcut='D')))
        self.assertTrue(filt.filter(make_record()))
