"""
Tests for letterboxing, the tensor pool and the Preprocessor.
"""

import numpy as np
import pytest

from models.detection import BoundingBox
from models.errors import BufferPoolExhausted, InvalidFrame
from models.frame import Frame, PixelFormat
from preprocess.buffer_pool import TensorPool
from preprocess.letterbox import PAD_VALUE, compute_letterbox, letterbox_image
from preprocess.preprocessor import Preprocessor


def _frame(h=480, w=640, channels=3, pixel_format=PixelFormat.BGR, value=200, seq=1):
    shape = (h, w) if channels == 1 else (h, w, channels)
    image = np.full(shape, value, dtype=np.uint8)
    return Frame.from_numpy(image, timestamp=0.0, seq=seq, pixel_format=pixel_format)


class TestLetterbox:
    def test_wide_frame_is_padded_vertically(self):
        mapping = compute_letterbox(640, 480, 640, 640)
        assert mapping.scale == pytest.approx(1.0)
        assert mapping.pad_x == 0
        assert mapping.pad_y == 80
        assert mapping.resized_size == (640, 480)

    def test_downscale(self):
        mapping = compute_letterbox(1280, 720, 640, 640)
        assert mapping.scale == pytest.approx(0.5)
        assert mapping.resized_size == (640, 360)
        assert mapping.pad_y == 140

    def test_sliver_frame_keeps_one_pixel(self):
        mapping = compute_letterbox(1, 2000, 640, 640)
        assert mapping.resized_size == (1, 640)
        assert mapping.pad_x == 319
        assert mapping.pad_y == 0

    def test_box_round_trip(self):
        mapping = compute_letterbox(1920, 1080, 640, 640)
        box = BoundingBox(x=0.4, y=0.4, w=0.1, h=0.1)

        model_xyxy = mapping.box_to_model(box)
        recovered = mapping.box_from_model(model_xyxy)

        assert recovered.as_tuple() == pytest.approx(box.as_tuple(), abs=1e-9)

    def test_letterbox_image_pads(self):
        mapping = compute_letterbox(640, 480, 640, 640)
        image = np.full((480, 640, 3), 10, dtype=np.uint8)

        canvas = letterbox_image(image, mapping)

        assert canvas.shape == (640, 640, 3)
        assert (canvas[:80] == PAD_VALUE).all()
        assert (canvas[80:560] == 10).all()
        assert (canvas[560:] == PAD_VALUE).all()


class TestTensorPool:
    def test_acquire_and_release(self):
        pool = TensorPool((3, 4, 4), size=2)
        a = pool.acquire()
        b = pool.acquire()
        assert pool.available == 0
        assert a.array is not b.array

        a.release()
        assert pool.available == 1
        b.release()
        assert pool.in_use == 0

    def test_exhausted(self):
        pool = TensorPool((3, 4, 4), size=1)
        pool.acquire()
        with pytest.raises(BufferPoolExhausted):
            pool.acquire()

    def test_release_is_idempotent_per_lease(self):
        pool = TensorPool((3, 4, 4), size=1)
        lease = pool.acquire()
        lease.release()
        lease.release()
        assert pool.available == 1

    def test_buffers_are_reused(self):
        pool = TensorPool((3, 4, 4), size=1)
        first = pool.acquire()
        array = first.array
        first.release()
        assert pool.acquire().array is array


class TestPreprocessor:
    def test_prepare_shape_and_range(self):
        pre = Preprocessor(input_size=(320, 320))
        prepared = pre.prepare(_frame(value=255))

        assert prepared.shape == (3, 320, 320)
        assert prepared.tensor.dtype == np.float32
        assert prepared.frame_seq == 1
        assert prepared.tensor.max() == pytest.approx(1.0)
        # Letterbox padding is 114/255
        assert prepared.tensor[0, 0, 0] == pytest.approx(PAD_VALUE / 255.0)
        prepared.release()

    def test_bgr_is_converted_to_rgb(self):
        image = np.zeros((32, 32, 3), dtype=np.uint8)
        image[..., 0] = 255  # blue in BGR
        frame = Frame.from_numpy(image, timestamp=0.0, seq=1)
        pre = Preprocessor(input_size=(32, 32))

        prepared = pre.prepare(frame)

        assert prepared.tensor[2].min() == pytest.approx(1.0)
        assert prepared.tensor[0].max() == pytest.approx(0.0)
        prepared.release()

    def test_sliver_frame_is_prepared(self):
        pre = Preprocessor(input_size=(640, 640))
        prepared = pre.prepare(_frame(h=2000, w=1, value=255))

        assert prepared.shape == (3, 640, 640)
        assert prepared.tensor[:, :, 319].min() == pytest.approx(1.0)
        assert prepared.tensor[:, :, 0].max() == pytest.approx(PAD_VALUE / 255.0)
        prepared.release()

    def test_grayscale_supported(self):
        pre = Preprocessor(input_size=(64, 64))
        prepared = pre.prepare(_frame(48, 64, channels=1, pixel_format=PixelFormat.GRAY))
        assert prepared.shape == (3, 64, 64)
        prepared.release()

    def test_mean_std(self):
        pre = Preprocessor(input_size=(16, 16), mean=(0.5, 0.5, 0.5), std=(0.5, 0.5, 0.5))
        prepared = pre.prepare(_frame(16, 16, value=255))
        assert prepared.tensor.max() == pytest.approx(1.0)
        prepared.release()

    def test_lease_returned_on_release(self):
        pool = TensorPool((3, 64, 64), size=1)
        pre = Preprocessor(input_size=(64, 64), pool=pool)

        prepared = pre.prepare(_frame())
        assert pool.available == 0
        prepared.release()
        assert pool.available == 1

    def test_channel_mismatch_is_invalid(self):
        pre = Preprocessor(input_size=(64, 64))
        with pytest.raises(InvalidFrame):
            pre.prepare(_frame(channels=4, pixel_format=PixelFormat.BGR))

    def test_zero_area_is_invalid(self):
        frame = Frame(image=np.zeros((0, 0, 3), dtype=np.uint8), width=0, height=0, timestamp=0.0, seq=1)
        with pytest.raises(InvalidFrame):
            Preprocessor(input_size=(64, 64)).prepare(frame)

    def test_wrong_dtype_is_invalid(self):
        image = np.zeros((10, 10, 3), dtype=np.float32)
        frame = Frame.from_numpy(image, timestamp=0.0, seq=1)
        with pytest.raises(InvalidFrame):
            Preprocessor(input_size=(64, 64)).prepare(frame)

    def test_invalid_frame_does_not_leak_lease(self):
        pool = TensorPool((3, 64, 64), size=1)
        pre = Preprocessor(input_size=(64, 64), pool=pool)
        with pytest.raises(InvalidFrame):
            pre.prepare(_frame(channels=4, pixel_format=PixelFormat.BGR))
        assert pool.available == 1

    def test_pool_shape_mismatch(self):
        with pytest.raises(ValueError):
            Preprocessor(input_size=(64, 64), pool=TensorPool((3, 32, 32), size=1))
