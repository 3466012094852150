import unittest

from sessionscope.date_utils import file_mtime_ms, iso_to_epoch_ms


class DateUtilsTests(unittest.TestCase):
    def test_iso_and_numeric_inputs(self) -> None:
        self.assertEqual(iso_to_epoch_ms("1970-01-01T00:00:01Z"), 1000)
        self.assertEqual(iso_to_epoch_ms("1970-01-01 00:00:02"), 2000)
        self.assertEqual(iso_to_epoch_ms(3), 3000)
        self.assertEqual(iso_to_epoch_ms(1_700_000_000_000), 1_700_000_000_000)

    def test_unparseable_values_are_zero(self) -> None:
        self.assertEqual(iso_to_epoch_ms(None), 0)
        self.assertEqual(iso_to_epoch_ms("yesterday"), 0)
        self.assertEqual(iso_to_epoch_ms({"ts": 1}), 0)
        self.assertEqual(file_mtime_ms("/definitely/not/here"), 0)


if __name__ == "__main__":
    unittest.main()
