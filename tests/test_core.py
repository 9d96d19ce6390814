import math
import unittest

import numpy as np

from core import FlowAxis, InvalidModelError, Point3D, Pore, PoreNetworkModel, Throat
from core.network import size_distribution
from processors.pnm_throat import create_throat


def _pore(pid, z, radius=2.0, x=0.0):
    volume = 4.0 / 3.0 * math.pi * radius ** 3
    return Pore(id=pid, volume=volume, area=4.0 * math.pi * radius ** 2,
                radius=radius, center=Point3D(x, 0.0, z))


class TestPoint3D(unittest.TestCase):
    def test_distance_and_axis_coordinate(self):
        a = Point3D(0.0, 0.0, 0.0)
        b = Point3D(3.0, 4.0, 12.0)
        self.assertAlmostEqual(a.distance_to(b), 13.0)
        self.assertEqual(b.coord(FlowAxis.X), 3.0)
        self.assertEqual(b.coord(FlowAxis.Z), 12.0)

    def test_flow_axis_parse(self):
        self.assertIs(FlowAxis.parse("z"), FlowAxis.Z)
        self.assertIs(FlowAxis.parse(FlowAxis.Y), FlowAxis.Y)
        self.assertEqual(FlowAxis.Y.index, 1)
        with self.assertRaises(ValueError):
            FlowAxis.parse("diagonal")


class TestThroat(unittest.TestCase):
    def test_rejects_unordered_or_self_pairs(self):
        with self.assertRaises(ValueError):
            Throat(id=1, pore_id1=3, pore_id2=2, radius=1.0, length=1.0, volume=1.0)
        with self.assertRaises(ValueError):
            Throat(id=1, pore_id1=2, pore_id2=2, radius=1.0, length=1.0, volume=1.0)

    def test_create_throat_normalises_order_and_geometry(self):
        big, small = _pore(7, 0.0, radius=20.0), _pore(3, 25.0, radius=10.0)
        throat = create_throat(1, big, small, 25.0)
        self.assertEqual(throat.key, (3, 7))
        self.assertAlmostEqual(throat.radius, 4.0)
        self.assertAlmostEqual(throat.length, 0.1)
        self.assertAlmostEqual(throat.volume, math.pi * 16.0 * 0.1)
        self.assertFalse(throat.synthetic)


class TestPoreNetworkModel(unittest.TestCase):
    def setUp(self):
        self.model = PoreNetworkModel(pores=[_pore(1, 0.0), _pore(2, 10.0), _pore(5, 20.0)])
        p = self.model.pores
        self.model.add_throat(create_throat(1, p[0], p[1], 10.0))
        self.model.add_throat(create_throat(2, p[1], p[2], 10.0))

    def test_lookup_by_id(self):
        self.assertEqual(self.model.pore_index, {1: 0, 2: 1, 5: 2})
        self.assertEqual(self.model.get_pore(5).center.z, 20.0)
        with self.assertRaises(KeyError):
            self.model.get_pore(4)
        np.testing.assert_array_equal(self.model.throat_index_pairs(), [[0, 1], [1, 2]])

    def test_add_throat_updates_connection_counts(self):
        counts = [p.connection_count for p in self.model.pores]
        self.assertEqual(counts, [1, 2, 1])
        self.assertEqual(sum(counts), 2 * self.model.num_throats)
        self.model.validate()

    def test_frozen_model_rejects_new_throats(self):
        self.model.freeze()
        self.assertTrue(self.model.is_frozen)
        self.assertIsInstance(self.model.throats, tuple)
        p = self.model.pores
        with self.assertRaises(InvalidModelError):
            self.model.add_throat(create_throat(3, p[0], p[2], 20.0))

    def test_validate_detects_broken_invariants(self):
        self.model.pores[0].connection_count = 5
        with self.assertRaises(InvalidModelError):
            self.model.validate()

        self.model.pores[0].connection_count = 1
        self.model.throats.append(Throat(id=9, pore_id1=1, pore_id2=2, radius=1.0, length=1.0, volume=1.0))
        with self.assertRaises(InvalidModelError):
            self.model.validate()

    def test_validate_detects_missing_pore_and_bad_ranges(self):
        dangling = PoreNetworkModel(pores=[_pore(1, 0.0)])
        dangling.throats.append(Throat(id=1, pore_id1=1, pore_id2=8, radius=1.0, length=1.0, volume=1.0))
        with self.assertRaises(InvalidModelError):
            dangling.validate()

        self.model.porosity = float("nan")
        with self.assertRaises(InvalidModelError):
            self.model.validate()
        self.model.porosity = 0.5
        self.model.tortuosity = 0.9
        with self.assertRaises(InvalidModelError):
            self.model.validate()
        self.model.tortuosity = math.inf
        self.model.validate()

    def test_validate_requires_ascending_ids(self):
        model = PoreNetworkModel(pores=[_pore(2, 0.0), _pore(1, 5.0)])
        with self.assertRaises(InvalidModelError):
            model.validate()

    def test_summary(self):
        stats = self.model.summary()
        self.assertEqual(stats["PoreCount"], 3)
        self.assertEqual(stats["ThroatCount"], 2)
        self.assertEqual(stats["SyntheticThroatCount"], 0)
        self.assertAlmostEqual(stats["CoordinationNumber"], 4.0 / 3.0)
        self.assertEqual(stats["ConnectedPoreFraction"], 1.0)
        self.assertEqual(sum(stats["PoreSizeDistribution"]["counts"]), 3)

    def test_size_distribution_empty(self):
        self.assertEqual(size_distribution([]), {"bins": [], "counts": []})


if __name__ == '__main__':
    unittest.main()
