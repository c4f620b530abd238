import unittest
from collections import OrderedDict

import numpy as np

import tensorbridge as tb
from tensorbridge import nn


class TestSequential(unittest.TestCase):
    def setUp(self):
        tb.manual_seed(0)
        self.model = nn.Sequential(nn.Linear(4, 8), nn.ReLU(), nn.Linear(8, 2))

    def test_forward_chains_children(self):
        x = tb.randn(3, 4)
        expected = self.model[2](self.model[1](self.model[0](x)))
        np.testing.assert_allclose(self.model(x).to_numpy(), expected.to_numpy(), rtol=1e-6)

    def test_parameter_names_are_positional(self):
        names = [n for n, _ in self.model.named_parameters()]
        self.assertEqual(names, ["0.weight", "0.bias", "2.weight", "2.bias"])
        self.assertEqual(len(self.model), 3)

    def test_named_children_from_ordered_dict(self):
        model = nn.Sequential(OrderedDict([("fc", nn.Linear(2, 2)), ("act", nn.Tanh())]))
        self.assertIn("fc.weight", model.state_dict())
        self.assertIsInstance(model[-1], nn.Tanh)

    def test_slicing_and_indexing(self):
        head = self.model[:2]
        self.assertIsInstance(head, nn.Sequential)
        self.assertEqual(len(head), 2)
        self.assertIs(head[0], self.model[0])
        with self.assertRaises(IndexError):
            self.model[3]

    def test_delete_renumbers(self):
        del self.model[1]
        self.assertEqual(len(self.model), 2)
        self.assertEqual([n for n, _ in self.model.named_parameters()][:2], ["0.weight", "0.bias"])
        self.assertIn("1.weight", self.model.state_dict())

    def test_append_and_mode_propagation(self):
        self.model.append(nn.Dropout(0.5))
        self.assertEqual(len(self.model), 4)
        self.model.eval()
        self.assertFalse(self.model[3].training)
        self.assertEqual(self.model.summary().splitlines()[-1], ") total params: 58")


class TestModuleList(unittest.TestCase):
    def test_registration_and_iteration(self):
        layers = nn.ModuleList([nn.Linear(2, 2) for _ in range(3)])
        self.assertEqual(len(list(layers.parameters())), 6)
        self.assertEqual(len(list(iter(layers))), 3)
        layers.insert(0, nn.Identity())
        self.assertIsInstance(layers[0], nn.Identity)
        self.assertIn("3.weight", layers.state_dict())
        del layers[0]
        self.assertIn("0.weight", layers.state_dict())

    def test_forward_not_supported(self):
        with self.assertRaises(NotImplementedError):
            nn.ModuleList([nn.ReLU()])(tb.ones(1))


class TestModuleDict(unittest.TestCase):
    def test_mapping_interface(self):
        d = nn.ModuleDict({"enc": nn.Linear(2, 3), "dec": nn.Linear(3, 2)})
        self.assertEqual(list(d.keys()), ["enc", "dec"])
        self.assertIn("enc", d)
        self.assertIn("dec.bias", d.state_dict())
        d["act"] = nn.ReLU()
        self.assertEqual(len(d), 3)
        popped = d.pop("enc")
        self.assertIsInstance(popped, nn.Linear)
        self.assertNotIn("enc.weight", d.state_dict())


if __name__ == "__main__":
    unittest.main()
