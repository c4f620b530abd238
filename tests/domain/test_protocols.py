import unittest

import tensorbridge as tb
from tensorbridge import nn
from tensorbridge.domain._module import DualInputModule, IModule, SingleInputModule
from tensorbridge.domain._optimizers import ILRScheduler, IOptimizer
from tensorbridge.domain._parameter import IParameter
from tensorbridge.domain._tensor import ITensor
from tensorbridge.domain.device import DeviceLike
from tensorbridge.optim.lr_scheduler import StepLR


class TestProtocolConformance(unittest.TestCase):
    def test_tensor_and_parameter(self):
        t = tb.zeros(2, 3)
        p = nn.Parameter(tb.ones(3))
        self.assertIsInstance(t, ITensor)
        self.assertIsInstance(p, ITensor)
        self.assertIsInstance(p, IParameter)
        self.assertNotIsInstance(t, IParameter)

    def test_device(self):
        self.assertIsInstance(tb.Device("cpu"), DeviceLike)
        self.assertIsInstance(tb.zeros(1).device, DeviceLike)

    def test_modules(self):
        lin = nn.Linear(3, 2)
        rnn = nn.RNN(3, 4)
        self.assertIsInstance(lin, IModule)
        self.assertIsInstance(lin, SingleInputModule)
        self.assertIsInstance(rnn, DualInputModule)

    def test_optimizers_and_schedulers(self):
        p = nn.Parameter(tb.ones(1))
        for opt in (tb.optim.SGD([p], lr=1e-3), tb.optim.Adam([p], lr=1e-3)):
            self.assertIsInstance(opt, IOptimizer)
        sched = StepLR(tb.optim.SGD([p], lr=0.1), step_size=1)
        self.assertIsInstance(sched, ILRScheduler)
        self.assertNotIsInstance(p, IOptimizer)


if __name__ == "__main__":
    unittest.main()
