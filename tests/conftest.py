"""Shared fixtures: synthetic master and seed images written with Pillow."""

import threading

import numpy as np
import pytest
from PIL import Image

RED = (255, 0, 0)
GREEN = (0, 255, 0)
BLUE = (0, 0, 255)


def solid(width, height, color):
    image = np.zeros((height, width, 3), dtype=np.uint8)
    image[...] = color
    return image


def write_image(path, pixels):
    Image.fromarray(pixels).save(path)
    return str(path)


@pytest.fixture
def image_factory(tmp_path):
    """Write a solid-color PNG into tmp_path and return its path."""
    def make(name, width, height, color):
        return write_image(tmp_path / name, solid(width, height, color))
    return make


@pytest.fixture
def seed_dir(tmp_path):
    """Directory with a red, a green and a blue seed, in that name order."""
    directory = tmp_path / "seeds"
    directory.mkdir()
    write_image(directory / "a_red.png", solid(20, 20, RED))
    write_image(directory / "b_green.png", solid(20, 20, GREEN))
    write_image(directory / "c_blue.png", solid(20, 20, BLUE))
    return str(directory)


@pytest.fixture
def master_path(tmp_path):
    """40x20 master: left half red, right half blue."""
    pixels = solid(40, 20, RED)
    pixels[:, 20:] = BLUE
    return write_image(tmp_path / "master.png", pixels)


class BlockingSink:
    """
    Progress sink that blocks the first tile report until released.

    Lets tests observe an operation while it is RUNNING.
    """

    def __init__(self):
        self.started = threading.Event()
        self.release = threading.Event()
        self.reports = []
        self._blocked = False
        self._lock = threading.Lock()

    def report(self, operation_id, percent, step):
        with self._lock:
            self.reports.append((operation_id, percent, step))
            block = step.startswith("analyzing") and not self._blocked
            if block:
                self._blocked = True
        if block:
            self.started.set()
            self.release.wait(30)


@pytest.fixture
def blocking_sink():
    sink = BlockingSink()
    yield sink
    sink.release.set()
