import contextlib
import sys
import tempfile
import types
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest import mock

import numpy as np

from fastest_kit.errors import InferenceError
from fastest_kit.runtime import load_pipeline

from helpers import cell, tiny_config


class _FakeExtractor:
    def __init__(self, net):
        self.net = net
        self.inputs = {}

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def input(self, name, mat):
        self.inputs[name] = mat
        self.net.seen_inputs.append((name, mat))
        return 0

    def extract(self, name):
        if name in self.net.fail_outputs:
            return -100, None
        return 0, self.net.blobs[name]


def _fake_ncnn(blobs=None, fail_outputs=(), load_status=0):
    module = types.ModuleType("ncnn")

    class Net:
        def __init__(self):
            self.opt = SimpleNamespace(num_threads=1, use_vulkan_compute=False)
            self.blobs = blobs or {}
            self.fail_outputs = set(fail_outputs)
            self.seen_inputs = []
            module.last_net = self

        def load_param(self, path):
            return load_status

        def load_model(self, path):
            return 0

        def create_extractor(self):
            return _FakeExtractor(self)

    module.Net = Net
    module.Mat = lambda array: array
    return module


def _fake_onnxruntime(outputs=None, graph_outputs=("a", "b"), run_error=None):
    module = types.ModuleType("onnxruntime")

    class SessionOptions:
        def __init__(self):
            self.intra_op_num_threads = 0

    class InferenceSession:
        def __init__(self, path, sess_options=None, providers=None):
            self.path = path
            self.sess_options = sess_options
            self.providers = providers or ["CPUExecutionProvider"]
            self.feeds = []
            module.last_session = self

        def get_inputs(self):
            return [SimpleNamespace(name="images")]

        def get_outputs(self):
            return [SimpleNamespace(name=name) for name in graph_outputs]

        def get_providers(self):
            return list(self.providers)

        def run(self, output_names, feeds):
            if run_error is not None:
                raise run_error
            self.feeds.append(feeds)
            return [outputs[name] for name in output_names]

    module.SessionOptions = SessionOptions
    module.InferenceSession = InferenceSession
    return module


class _FakeTensor:
    def __init__(self, array):
        self.array = np.asarray(array)

    def float(self):
        return _FakeTensor(self.array.astype(np.float32))

    def contiguous(self):
        return _FakeTensor(np.ascontiguousarray(self.array))

    def detach(self):
        return self

    def to(self, device):
        return self

    def numpy(self):
        return self.array


def _fake_torch(returns):
    module = types.ModuleType("torch")
    module.jit = SimpleNamespace()
    module.no_grad = contextlib.nullcontext
    module.threads = []

    class ScriptModule:
        def __init__(self):
            self.training = True
            self.inputs = []

        def eval(self):
            self.training = False
            return self

        def __call__(self, x):
            self.inputs.append(x)
            if isinstance(returns, (tuple, list)):
                return tuple(_FakeTensor(r) for r in returns)
            return _FakeTensor(returns)

    def load(path, map_location=None):
        module.last_model = ScriptModule()
        module.map_location = map_location
        return module.last_model

    module.jit.load = load
    module.device = lambda name: SimpleNamespace(type=name.split(":")[0])
    module.set_num_threads = module.threads.append
    module.as_tensor = lambda data, device=None: _FakeTensor(data)
    return module


class TestNcnnBackend(unittest.TestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.param = Path(tmpdir.name) / "tiny.param"
        self.param.write_text("7767517\n", encoding="utf-8")
        self.param.with_suffix(".bin").write_bytes(b"\x00")
        self.heads = {
            "a": cell(0.5, 0.5, 0.5, 0.5, 0.8, 0.5),
            "b": cell(0.5, 0.5, 0.5, 0.5, 0.5, 0.5),
        }

    def test_pipeline_through_ncnn(self) -> None:
        fake = _fake_ncnn(blobs=self.heads)
        with mock.patch.dict(sys.modules, {"ncnn": fake}):
            pipe = load_pipeline(self.param, cfg=tiny_config(num_threads=2))
            boxes = pipe(np.zeros((16, 64, 3), dtype=np.uint8))

        self.assertEqual(pipe.backend_name, "ncnn")
        self.assertEqual(fake.last_net.opt.num_threads, 2)
        name, mat = fake.last_net.seen_inputs[0]
        self.assertEqual(name, "input.1")
        self.assertEqual(mat.shape, (3, 32, 32))
        self.assertEqual([b.as_xyxy() for b in boxes], [(22.0, 3.0, 42.0, 13.0)])

    def test_extract_error(self) -> None:
        fake = _fake_ncnn(blobs=self.heads, fail_outputs=("b",))
        with mock.patch.dict(sys.modules, {"ncnn": fake}):
            pipe = load_pipeline(self.param, cfg=tiny_config())
            with self.assertRaises(InferenceError):
                pipe(np.zeros((32, 32, 3), dtype=np.uint8))

    def test_load_failure(self) -> None:
        with mock.patch.dict(sys.modules, {"ncnn": _fake_ncnn(load_status=-1)}):
            with self.assertRaises(InferenceError):
                load_pipeline(self.param, cfg=tiny_config())

    def test_missing_weights(self) -> None:
        self.param.with_suffix(".bin").unlink()
        with mock.patch.dict(sys.modules, {"ncnn": _fake_ncnn()}):
            with self.assertRaises(FileNotFoundError):
                load_pipeline(self.param, cfg=tiny_config())


class _ModelFileCase(unittest.TestCase):
    suffix = ""

    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.model = Path(tmpdir.name) / f"tiny{self.suffix}"
        self.model.write_bytes(b"\x00")
        self.heads = {
            "a": cell(0.5, 0.5, 0.5, 0.5, 0.8, 0.5),
            "b": cell(0.5, 0.5, 0.5, 0.5, 0.5, 0.5),
        }


class TestOnnxRuntimeBackend(_ModelFileCase):
    suffix = ".onnx"

    def test_pipeline_through_onnxruntime(self) -> None:
        fake = _fake_onnxruntime(outputs=self.heads)
        with mock.patch.dict(sys.modules, {"onnxruntime": fake}):
            pipe = load_pipeline(self.model, cfg=tiny_config(num_threads=3))
            boxes = pipe(np.zeros((16, 64, 3), dtype=np.uint8))

        session = fake.last_session
        self.assertEqual(pipe.backend_name, "onnxruntime")
        self.assertEqual(session.sess_options.intra_op_num_threads, 3)
        self.assertEqual(pipe.backend.providers_in_use, ("CPUExecutionProvider",))
        feed = session.feeds[0]
        self.assertEqual(list(feed), ["images"])
        self.assertEqual(feed["images"].shape, (1, 3, 32, 32))
        self.assertEqual([b.as_xyxy() for b in boxes], [(22.0, 3.0, 42.0, 13.0)])

    def test_missing_graph_output(self) -> None:
        fake = _fake_onnxruntime(outputs=self.heads, graph_outputs=("a",))
        with mock.patch.dict(sys.modules, {"onnxruntime": fake}):
            with self.assertRaises(InferenceError):
                load_pipeline(self.model, cfg=tiny_config())

    def test_run_failure_is_inference_error(self) -> None:
        fake = _fake_onnxruntime(outputs=self.heads, run_error=RuntimeError("bad input shape"))
        with mock.patch.dict(sys.modules, {"onnxruntime": fake}):
            pipe = load_pipeline(self.model, cfg=tiny_config())
            with self.assertRaises(InferenceError):
                pipe(np.zeros((32, 32, 3), dtype=np.uint8))

    def test_missing_model_file(self) -> None:
        self.model.unlink()
        with mock.patch.dict(sys.modules, {"onnxruntime": _fake_onnxruntime()}):
            with self.assertRaises(FileNotFoundError):
                load_pipeline(self.model, cfg=tiny_config())


class TestTorchScriptBackend(_ModelFileCase):
    suffix = ".pt"

    def test_outputs_matched_by_position(self) -> None:
        fake = _fake_torch((self.heads["a"], self.heads["b"]))
        with mock.patch.dict(sys.modules, {"torch": fake}):
            pipe = load_pipeline(self.model, cfg=tiny_config(num_threads=2))
            boxes = pipe(np.zeros((16, 64, 3), dtype=np.uint8))

        model = fake.last_model
        self.assertEqual(pipe.backend_name, "torchscript")
        self.assertFalse(model.training)
        self.assertEqual(fake.map_location.type, "cpu")
        self.assertEqual(fake.threads, [2])
        self.assertEqual(model.inputs[0].array.shape, (1, 3, 32, 32))
        self.assertEqual(model.inputs[0].array.dtype, np.float32)
        self.assertEqual([b.as_xyxy() for b in boxes], [(22.0, 3.0, 42.0, 13.0)])

    def test_swapped_outputs_change_the_result(self) -> None:
        # "b" carries the lower score, so feeding it as the fine head drops the box at 0.3
        fake = _fake_torch((self.heads["b"], self.heads["b"]))
        with mock.patch.dict(sys.modules, {"torch": fake}):
            pipe = load_pipeline(self.model, cfg=tiny_config())
            self.assertEqual(pipe(np.zeros((16, 64, 3), dtype=np.uint8)), [])

    def test_output_count_mismatch(self) -> None:
        fake = _fake_torch((self.heads["a"],) * 3)
        with mock.patch.dict(sys.modules, {"torch": fake}):
            pipe = load_pipeline(self.model, cfg=tiny_config())
            with self.assertRaises(InferenceError):
                pipe(np.zeros((32, 32, 3), dtype=np.uint8))

    def test_single_tensor_for_two_heads(self) -> None:
        fake = _fake_torch(self.heads["a"])
        with mock.patch.dict(sys.modules, {"torch": fake}):
            pipe = load_pipeline(self.model, cfg=tiny_config())
            with self.assertRaises(InferenceError):
                pipe(np.zeros((32, 32, 3), dtype=np.uint8))

    def test_cuda_device_skips_thread_setting(self) -> None:
        fake = _fake_torch((self.heads["a"], self.heads["b"]))
        with mock.patch.dict(sys.modules, {"torch": fake}):
            load_pipeline(self.model, cfg=tiny_config(), torch_device="cuda:0")
        self.assertEqual(fake.threads, [])
        self.assertEqual(fake.map_location.type, "cuda")


class TestLoadPipeline(unittest.TestCase):
    def test_unknown_extension(self) -> None:
        with self.assertRaises(ValueError):
            load_pipeline("/tmp/model.tflite")

    def test_unknown_backend(self) -> None:
        with self.assertRaises(ValueError):
            load_pipeline("/tmp/model.param", backend="openvino")


if __name__ == "__main__":
    unittest.main()
