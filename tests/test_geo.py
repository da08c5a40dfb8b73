import unittest

from venue_presence.services.geo import effective_radius, haversine_m


class TestHaversine(unittest.TestCase):
    def test_same_point_is_zero(self):
        self.assertEqual(haversine_m(0, 0, 0, 0), 0)

    def test_one_degree_of_longitude_on_equator(self):
        self.assertAlmostEqual(haversine_m(0, 0, 0, 1), 111195, delta=50)

    def test_symmetric(self):
        a = haversine_m(40.7128, -74.0060, 51.5074, -0.1278)
        b = haversine_m(51.5074, -0.1278, 40.7128, -74.0060)
        self.assertAlmostEqual(a, b, places=6)

    def test_antipodal_points_are_half_circumference(self):
        # half of 2 * pi * R
        self.assertAlmostEqual(haversine_m(0, 0, 0, 180), 20015086.8, delta=1)
        self.assertAlmostEqual(haversine_m(90, 0, -90, 0), 20015086.8, delta=1)

    def test_tiny_distances_are_stable(self):
        d = haversine_m(40.0, -74.0, 40.0 + 1e-9, -74.0)
        self.assertGreater(d, 0)
        self.assertLess(d, 0.001)


class TestEffectiveRadius(unittest.TestCase):
    def test_radius_times_k_factor(self):
        self.assertAlmostEqual(effective_radius(50, 1.2), 60.0)

    def test_mock_detection_tightens_radius(self):
        self.assertAlmostEqual(effective_radius(50, 1.2, mock_detected=True), 42.0)


if __name__ == '__main__':
    unittest.main()
