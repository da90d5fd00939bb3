"""
Tests for canonical patch decoding.
"""

import os
import sys
import unittest

import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))
sys.path.append(os.path.dirname(__file__))

from decoder import PatternDecoder, data_bit_positions  # type: ignore
from synthetic import render_patch  # type: ignore


class TestPatternDecoder(unittest.TestCase):
    """Decode synthetic canonical patches."""

    def setUp(self):
        self.decoder = PatternDecoder()

    def test_round_trip_ids(self):
        """Known ids decode back with full confidence."""
        for marker_id in (0, 1, 42, 1000, 2730, 4095):
            result = self.decoder.decode(render_patch(marker_id))
            self.assertIsNotNone(result, marker_id)
            self.assertEqual(result.marker_id, marker_id)
            self.assertGreaterEqual(result.confidence, 0.7)
            self.assertEqual(result.rotation, 0)

    def test_data_bit_layout(self):
        """Twelve data cells in row-major order, framing corners skipped."""
        positions = data_bit_positions()
        self.assertEqual(len(positions), 12)
        self.assertEqual(positions[0], (0, 1))
        self.assertEqual(positions[2], (1, 0))
        self.assertEqual(positions[-1], (3, 2))
        self.assertNotIn((0, 0), positions)
        self.assertNotIn((3, 3), positions)

    def test_polarity_invariance(self):
        """An inverted patch decodes to the same id and confidence."""
        for marker_id in (5, 42, 3071):
            patch = render_patch(marker_id)
            normal = self.decoder.decode(patch)
            inverted = self.decoder.decode(255 - patch)
            self.assertIsNotNone(inverted)
            self.assertEqual(inverted.marker_id, normal.marker_id)
            self.assertEqual(inverted.confidence, normal.confidence)

    def test_rotation_invariance(self):
        """Rotated patches resolve orientation from the beacon."""
        patch = render_patch(1234)
        for turns in range(4):
            result = self.decoder.decode(np.ascontiguousarray(np.rot90(patch, turns)))
            self.assertIsNotNone(result, turns)
            self.assertEqual(result.marker_id, 1234)

    def test_clockwise_rotation_reported(self):
        """A beacon found at the top-right means a 90 degree clockwise turn."""
        rotated = np.ascontiguousarray(np.rot90(render_patch(77), -1))
        result = self.decoder.decode(rotated)
        self.assertEqual(result.rotation, 90)

    def test_missing_beacon_rejected(self):
        """No white data-grid corner is ambiguous."""
        patch = render_patch(42, beacon=False)
        self.assertIsNone(self.decoder.decode(patch))

    def test_two_beacons_rejected(self):
        """Two white data-grid corners are ambiguous."""
        patch = render_patch(42)
        patch[80:100, 20:40] = 255  # bottom-left data corner
        self.assertIsNone(self.decoder.decode(patch))

    def test_two_white_corners_keep_polarity(self):
        """Two white data-grid corners are not inverted and fail orientation."""
        patch = render_patch(42)
        patch[80:100, 80:100] = 255  # bottom-right data corner
        binary = np.where(patch > 70, 255, 0).astype(np.uint8)

        np.testing.assert_array_equal(PatternDecoder.normalize_polarity(binary), binary)
        self.assertIsNone(self.decoder.decode(patch))

    def test_inconsistent_border_rejected(self):
        """Border corners disagreeing with the rest of the ring are not a marker."""
        patch = render_patch(42)
        for y, x in ((0, 0), (0, 100), (100, 0), (100, 100)):
            patch[y:y + 20, x:x + 20] = 255
        self.assertIsNone(self.decoder.decode(patch))

    def test_lighting_gradient_tolerated(self):
        """Gray 'white' cells above the cutoff still decode."""
        patch = render_patch(42).astype(np.float32)
        gradient = np.linspace(0.35, 1.0, patch.shape[1], dtype=np.float32)
        dimmed = (patch * gradient[None, :]).astype(np.uint8)
        result = self.decoder.decode(dimmed)
        self.assertIsNotNone(result)
        self.assertEqual(result.marker_id, 42)

    def test_empty_and_small_patches_rejected(self):
        self.assertIsNone(self.decoder.decode(None))
        self.assertIsNone(self.decoder.decode(np.zeros((0, 0), dtype=np.uint8)))
        self.assertIsNone(self.decoder.decode(np.zeros((4, 4), dtype=np.uint8)))

    def test_resized_region_decodes(self):
        """Regions at another scale are resampled to the canonical size."""
        patch = render_patch(321, cell_size=10)
        result = self.decoder.decode(patch)
        self.assertIsNotNone(result)
        self.assertEqual(result.marker_id, 321)

    def test_confidence_is_structural(self):
        self.assertEqual(PatternDecoder.confidence(42), 1.0)
        self.assertAlmostEqual(PatternDecoder.confidence(5000), 0.7)


if __name__ == "__main__":
    unittest.main()
