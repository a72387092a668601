import unittest
from datetime import date, datetime
from unittest import mock

import pandas as pd

from ncm_dashboard import codec
from ncm_dashboard.codec import (
    coerce_datetime,
    coerce_field_input,
    date_input_to_serial,
    date_to_serial,
    format_cell,
    format_decimal,
    format_ncm,
    percent_input_to_ratio,
    percent_text_to_ratio,
    ratio_to_input_text,
    ratio_to_percent_text,
    serial_from_parts,
    serial_to_date,
    serial_to_datetime,
)


class SerialDateTests(unittest.TestCase):
    def test_round_trip_for_ordinary_dates(self):
        for day in (date(2024, 1, 15), date(2000, 2, 29), date(1999, 12, 31), date(1970, 1, 1)):
            with self.subTest(day=day):
                self.assertEqual(serial_to_date(date_to_serial(day)), day)

    def test_round_trip_around_leap_year_threshold(self):
        for day in (date(1900, 2, 26), date(1900, 2, 27), date(1900, 2, 28), date(1900, 3, 1), date(1900, 3, 2)):
            with self.subTest(day=day):
                self.assertEqual(serial_to_date(date_to_serial(day)), day)

    def test_decode_at_threshold_values(self):
        self.assertEqual(serial_to_date(59), date(1900, 2, 27))
        # 60 is never produced by encoding; it decodes to the same day as 59.
        self.assertEqual(serial_to_date(60), date(1900, 2, 27))
        self.assertEqual(serial_to_date(61), date(1900, 2, 28))

    def test_encode_applies_shift_from_threshold(self):
        self.assertEqual(date_to_serial(date(1900, 2, 27)), 59)
        self.assertEqual(date_to_serial(date(1900, 2, 28)), 61)
        self.assertEqual(date_to_serial(date(1970, 1, 1)), 25570)

    def test_month_is_zero_based_in_parts(self):
        self.assertEqual(serial_from_parts(2024, 0, 15), date_to_serial(date(2024, 1, 15)))

    def test_decoded_value_is_pinned_to_noon(self):
        moment = serial_to_datetime(45306)
        self.assertEqual((moment.hour, moment.minute), (12, 0))

    def test_fractional_serial_keeps_calendar_day(self):
        self.assertEqual(serial_to_date(45306.75), serial_to_date(45306))

    def test_materialized_dates_pass_through(self):
        moment = datetime(2024, 3, 1, 8, 30)
        self.assertIs(coerce_datetime(moment), moment)
        self.assertEqual(coerce_datetime(pd.Timestamp("2024-03-01 08:30")), moment)
        self.assertEqual(coerce_datetime(date(2024, 3, 1)), datetime(2024, 3, 1, 12))

    def test_store_timestamp_objects_pass_through(self):
        stamp = mock.Mock(spec=["to_datetime"])
        stamp.to_datetime.return_value = datetime(2024, 5, 2, 10, 0)
        self.assertEqual(coerce_datetime(stamp), datetime(2024, 5, 2, 10, 0))

    def test_blank_is_none(self):
        self.assertIsNone(coerce_datetime(""))
        self.assertIsNone(coerce_datetime(None))

    def test_date_inputs(self):
        expected = date_to_serial(date(2024, 1, 15))
        self.assertEqual(date_input_to_serial("2024-01-15"), expected)
        self.assertEqual(date_input_to_serial("15/01/2024"), expected)
        self.assertEqual(date_input_to_serial(datetime(2024, 1, 15, 9)), expected)
        self.assertEqual(date_input_to_serial(float(expected)), expected)
        self.assertEqual(date_input_to_serial(""), "")
        self.assertEqual(date_input_to_serial("em breve"), "em breve")

    def test_today_serial_uses_current_date(self):
        with mock.patch.object(codec, "date") as fake_date:
            fake_date.today.return_value = date(2024, 1, 15)
            serial = codec.today_serial()
        self.assertEqual(serial, date_to_serial(date(2024, 1, 15)))


class PercentTests(unittest.TestCase):
    def test_display_text_inverse_round_trips(self):
        for ratio in (0, 0.0001, 0.18, 1.0):
            with self.subTest(ratio=ratio):
                text = ratio_to_percent_text(ratio)
                self.assertAlmostEqual(percent_input_to_ratio(percent_text_to_ratio(text)), ratio, places=12)

    def test_whole_percent_and_ratio_inputs_agree(self):
        self.assertEqual(percent_input_to_ratio(93), 0.93)
        self.assertEqual(percent_input_to_ratio(0.93), 0.93)
        self.assertEqual(percent_input_to_ratio("93"), 0.93)
        self.assertAlmostEqual(percent_input_to_ratio("9,65"), 0.0965)

    def test_known_edge_case_one_is_read_as_a_ratio(self):
        # 1 could mean 1% or 100%; the heuristic keeps it as a ratio (100%).
        self.assertEqual(percent_input_to_ratio(1), 1.0)
        self.assertEqual(percent_input_to_ratio(1.5), 0.015)

    def test_blank_and_text_inputs(self):
        self.assertEqual(percent_input_to_ratio(""), "")
        self.assertEqual(percent_input_to_ratio(None), "")
        self.assertEqual(percent_input_to_ratio("isento"), "isento")

    def test_percent_text(self):
        self.assertEqual(ratio_to_percent_text(0.93), "93,00%")
        self.assertEqual(ratio_to_percent_text(0.0965), "9,65%")
        self.assertEqual(ratio_to_percent_text(""), "-")
        self.assertEqual(ratio_to_percent_text(None), "-")
        self.assertEqual(ratio_to_percent_text(float("nan")), "-")
        self.assertEqual(ratio_to_percent_text("isento"), "isento")

    def test_ratio_input_text_stays_in_ratio_units(self):
        self.assertEqual(ratio_to_input_text(0.0065), "0.0065")
        self.assertEqual(ratio_to_input_text(0.93), "0.93")
        self.assertEqual(ratio_to_input_text(0), "0")
        self.assertEqual(ratio_to_input_text(""), "")
        self.assertEqual(ratio_to_input_text("isento"), "isento")
        for ratio in (0.0065, 0.0001, 0.18, 1.0):
            with self.subTest(ratio=ratio):
                self.assertEqual(percent_input_to_ratio(ratio_to_input_text(ratio)), ratio)


class FieldCoercionTests(unittest.TestCase):
    def test_each_field_kind(self):
        self.assertEqual(coerce_field_input("IVA", 93), 0.93)
        self.assertEqual(coerce_field_input("Santos", "1.234,5"), 1234.5)
        self.assertEqual(coerce_field_input("NCM", 39191010.0), "39191010")
        self.assertEqual(coerce_field_input("NCM", 39191010), "39191010")
        self.assertEqual(coerce_field_input("CEST", None), "")
        self.assertEqual(
            coerce_field_input("ultima atualização", "2024-01-15"),
            date_to_serial(date(2024, 1, 15)),
        )


class DisplayTests(unittest.TestCase):
    def test_format_ncm(self):
        self.assertEqual(format_ncm("39191010"), "3919.10.10")
        self.assertEqual(format_ncm("3919.10.10"), "3919.10.10")
        self.assertEqual(format_ncm(1234), "1234")

    def test_format_decimal_uses_brazilian_separators(self):
        self.assertEqual(format_decimal(4.25), "4,25")
        self.assertEqual(format_decimal(1234.5), "1.234,50")
        self.assertEqual(format_decimal(0.12345), "0,1235")

    def test_format_cell(self):
        serial = date_to_serial(date(2024, 1, 15))
        self.assertEqual(format_cell("ultima atualização", serial), "15/01/2024")
        self.assertEqual(format_cell("ultima atualização", ""), "-")
        self.assertEqual(format_cell("IVA", 0.93), "93,00%")
        self.assertEqual(format_cell("Santos", 0), "-")
        self.assertEqual(format_cell("Santos", 0.85), "0,85")
        self.assertEqual(format_cell("NCM", "39191010"), "3919.10.10")
        self.assertEqual(format_cell("CEST", ""), "-")
        self.assertEqual(format_cell("uploaded_at", datetime(2024, 1, 15, 9, 5, 1)), "15/01/2024 09:05:01")


if __name__ == "__main__":
    unittest.main()
