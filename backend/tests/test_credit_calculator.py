import unittest

from creditgate.services.credit_calculator import (
    calculate_image_credits,
    calculate_text_credits_from_usage,
    calculate_threed_credits,
    compute_credits_with_units,
    estimate_text_credits,
    estimate_tokens_from_messages,
    resolve_unit_divisor,
    resolve_unit_rate,
)


IMAGE_PRICING = {"units": [{"name": "imageGeneration", "strategy": "fixed", "rate": 2, "unit": "image"}]}
TEXT_PRICING = {
    "units": [
        {"name": "textInput", "strategy": "fixed", "rate": 2.5, "unit": "millionTokens"},
        {"name": "textInput_cacheRead", "strategy": "fixed", "rate": 1.25, "unit": "millionTokens"},
        {"name": "textOutput", "strategy": "fixed", "rate": 10, "unit": "millionTokens"},
    ]
}


class TestUnits(unittest.TestCase):
    def test_divisors(self):
        self.assertEqual(resolve_unit_divisor("millionTokens"), 1_000_000)
        self.assertEqual(resolve_unit_divisor("thousandTokens"), 1_000)
        self.assertEqual(resolve_unit_divisor("image"), 1)
        self.assertEqual(resolve_unit_divisor(None), 1)

    def test_tiered_reads_first_tier(self):
        unit = {"strategy": "tiered", "tiers": [{"rate": 3, "upTo": 10}, {"rate": 1, "upTo": "infinity"}]}
        self.assertEqual(resolve_unit_rate(unit), 3)

    def test_unknown_strategy_contributes_nothing(self):
        pricing = {"units": [{"name": "request", "strategy": "lookup", "rate": 7}]}
        self.assertEqual(compute_credits_with_units(pricing, {"request": 2}), 0)

    def test_missing_quantity_contributes_nothing(self):
        self.assertEqual(compute_credits_with_units(IMAGE_PRICING, {"request": 4}), 0)

    def test_rounds_up_without_float_noise(self):
        pricing = {"units": [{"name": "request", "strategy": "fixed", "rate": 0.1}]}
        self.assertEqual(compute_credits_with_units(pricing, {"request": 3}), 1)
        self.assertEqual(compute_credits_with_units(pricing, {"request": 60}), 6)


class TestImageAndThreeD(unittest.TestCase):
    def test_image_with_pricing(self):
        self.assertEqual(calculate_image_credits(3, IMAGE_PRICING), 6)

    def test_image_fallback(self):
        self.assertEqual(calculate_image_credits(3, None), 15)
        self.assertEqual(calculate_image_credits(0, None), 5)

    def test_threed(self):
        pricing = {"units": [{"name": "threeDGeneration", "strategy": "fixed", "rate": 12}]}
        self.assertEqual(calculate_threed_credits(1, pricing), 12)
        self.assertEqual(calculate_threed_credits(2, None), 20)


class TestText(unittest.TestCase):
    def test_token_estimate(self):
        messages = [
            {"role": "system", "content": "abcd"},
            {"role": "user", "content": [{"type": "text", "text": "abcdefgh"}, {"type": "image_url"}]},
        ]
        # ceil(12 / 4) + 4 * 2
        self.assertEqual(estimate_tokens_from_messages(messages), 11)

    def test_estimate_uses_max_tokens(self):
        payload = {"messages": [{"role": "user", "content": "x" * 400_000}], "max_tokens": 100_000}
        # 100004 input tokens * 2.5 / 1M + 100000 * 10 / 1M = 0.25 + 1.0
        self.assertEqual(estimate_text_credits(payload, TEXT_PRICING), 2)

    def test_estimate_fallback(self):
        self.assertEqual(estimate_text_credits({"messages": []}, None), 1)

    def test_actual_with_cache(self):
        usage = {"total_input_tokens": 1_000_000, "input_cached_tokens": 400_000, "total_output_tokens": 200_000}
        # 600k * 2.5 + 400k * 1.25 + 200k * 10, per million
        self.assertEqual(calculate_text_credits_from_usage(usage, TEXT_PRICING), 4)

    def test_actual_output_from_total(self):
        usage = {"total_input_tokens": 0, "total_tokens": 300_000}
        self.assertEqual(calculate_text_credits_from_usage(usage, TEXT_PRICING), 3)

    def test_actual_fallback(self):
        self.assertEqual(calculate_text_credits_from_usage(None, TEXT_PRICING), 1)
        self.assertEqual(calculate_text_credits_from_usage({"total_input_tokens": 10}, None), 1)


if __name__ == "__main__":
    unittest.main()
